"""organize-vault: group notes under Map of Content (MOC) notes."""

from __future__ import annotations

from vaultmaker.core.errors import GenerationError
from vaultmaker.core.steps.common import REASONING_PRINCIPLES, StepContext, ask_json, messages
from vaultmaker.core.vault import MOC_DIR, render_note, sanitize_title

HIGH_GRAVITY_TYPES = {"Conclusion", "Theme"}

SYSTEM_PROMPT = f"""{REASONING_PRINCIPLES}

You are organizing an Obsidian insight vault. Suggest 3-8 Map of Content (MOC) notes that group related notes by theme, topic or logical role (Assumptions, Evidence, Conclusions, Open questions, Methods ...).
- Use only exact note titles from the list provided. Never invent notes.
- A note may appear in more than one MOC.
Output only JSON: {{"mocs": [{{"title": "MOC Title", "noteTitles": ["Exact Note Title"]}}]}}"""

SUMMARY_PROMPT = "You write concise executive summaries for a group of notes. Output only the summary text, 3 sentences or fewer."

FIRST_PASS = "Suggest MOCs that group related insights by theme or topic."
REORGANIZE_PASS = (
    "Links between notes already exist. Suggest MOCs that reflect the clusters you see. "
    "Stability rule: notes of type Conclusion or Theme have high gravity; keep them in their "
    "current MOCs unless a new MOC clearly supersedes."
)


def _summarize(ctx: StepContext, title: str, note_titles: list[str]) -> str:
    prompt = (
        f"MOC title: {title}. Note titles in this MOC: {', '.join(note_titles)}. "
        "Write a 3-sentence executive summary of what this cluster is about. Output only the summary."
    )
    try:
        return ctx.llm.complete(messages(SUMMARY_PROMPT, prompt), max_tokens=150).strip()
    except GenerationError as e:
        ctx.log(f"Organize: summary for '{title}' failed: {e}")
        return ""


def organize_vault(ctx: StepContext, reorganize: bool = False, note_titles: tuple[str, ...] = ()) -> list[str]:
    """Write one MOC per proposed group; `note_titles` restricts the pass to one cluster."""
    notes = ctx.notes.load_notes()
    if note_titles:
        wanted = set(note_titles)
        notes = [n for n in notes if n.title in wanted]
    if not notes:
        ctx.log("Organize: no notes in vault, skipping.")
        return []

    lines = [f"- {n.title} (type: {n.note_type})" if n.note_type else f"- {n.title}" for n in notes]
    user = "Vault note titles (use these exact strings in noteTitles):\n" + "\n".join(lines)
    if reorganize:
        gravity = [n.title for n in notes if n.note_type in HIGH_GRAVITY_TYPES]
        if gravity:
            user += "\nHigh-gravity notes (prefer to keep in current MOCs): " + ", ".join(gravity)
    user += "\n\n" + (REORGANIZE_PASS if reorganize else FIRST_PASS)

    parsed = ask_json(ctx, SYSTEM_PROMPT, user, 2048, "Organize")
    mocs = parsed.get("mocs") if parsed else None
    if not isinstance(mocs, list):
        return []

    valid = {n.title for n in notes}
    created = []
    for moc in mocs:
        if not isinstance(moc, dict):
            continue
        title = moc.get("title")
        if not isinstance(title, str) or not title.strip():
            continue
        members = [t for t in moc.get("noteTitles") or [] if isinstance(t, str) and t in valid]
        body = "\n".join([f"# {title.strip()}", ""] + [f"- [[{t}]]" for t in members])
        summary = _summarize(ctx, title.strip(), members)
        rel = f"{MOC_DIR}/{sanitize_title(title)}.md"
        # MOCs are regenerated on every pass and overwrite in place.
        ctx.notes.write(rel, render_note(body, {"summary": summary} if summary else None))
        created.append(rel)
        ctx.log(f"MOC: {rel}")
    return created
