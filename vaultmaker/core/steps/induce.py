"""induce: propose Theme notes for the recurring patterns inside one MOC."""

from __future__ import annotations

from vaultmaker.core.steps.common import RELATIONSHIP_TYPES, StepContext, ask_json, clean_body, commit_note
from vaultmaker.core.tasks import InducePayload
from vaultmaker.core.vault import INSIGHTS_DIR

SYSTEM_PROMPT = """You are the inductive agent. Given the notes of one MOC, identify recurring patterns, themes or general hypotheses that span several notes.
- One Theme note per distinct pattern, linking back with "Relationship:: Evidence for [[Note Title]]" or "Relationship:: Supports [[Note Title]]".
- Use exact note titles from the list. Never invent titles.
- Return {"themes": []} when no clear pattern emerges.
Output only JSON: {"themes": [{"title": "...", "content": "markdown", "noteTitles": ["..."]}]}"""


def _note_body(ctx: StepContext, title: str) -> str:
    rel = ctx.notes.find_path_by_title(title)
    if rel is None:
        return "(not found)"
    try:
        return ctx.notes.load(rel).body or "(no content)"
    except OSError:
        return "(no content)"


def induce_for_moc(ctx: StepContext, payload: InducePayload) -> list[str]:
    if not payload.note_titles:
        return []
    bodies = "\n\n".join(f"## {t}\n{_note_body(ctx, t)}" for t in payload.note_titles)
    summary = f"\nMOC summary:\n{payload.moc_summary}\n" if payload.moc_summary else ""
    existing = ", ".join(ctx.index.titles()[:100])
    user = f"""MOC: {payload.moc_title}
Note titles in this cluster:
{chr(10).join(f"- {t}" for t in payload.note_titles)}
{summary}
Note contents:
{bodies}

Existing titles (do not duplicate): {existing}
Allowed relationship types: {RELATIONSHIP_TYPES}."""

    parsed = ask_json(ctx, SYSTEM_PROMPT, user, 2048, f"Induce {payload.moc_title}")
    themes = parsed.get("themes") if parsed else None
    if not isinstance(themes, list):
        return []

    created = []
    for theme in themes:
        if not isinstance(theme, dict):
            continue
        title, content = theme.get("title"), theme.get("content")
        if not isinstance(title, str) or not title.strip():
            continue
        if not isinstance(content, str) or not content.strip():
            continue
        rel = commit_note(ctx, INSIGHTS_DIR, title, clean_body(content), {"type": "Theme", "source": "induce"})
        if rel:
            created.append(rel)
            ctx.log(f"Induce: {rel}")
    return created
