"""deduce: infer an unstated conclusion from the premises that point at a note."""

from __future__ import annotations

from vaultmaker.core.steps.common import StepContext, ask_json, clean_body, commit_note
from vaultmaker.core.vault import INSIGHTS_DIR, Note, note_title, parse_relationship_links

PREMISE_RELATIONS = {"Evidence for", "Supports", "Requires"}

SYSTEM_PROMPT = """You are the deductive agent. Given linked premises and the note they point at, infer the unspoken conclusion only if it is new and non-obvious.
- Return {"conclusion": null} when no new conclusion follows. Never restate the input.
- Otherwise return {"conclusion": {"title": "...", "content": "markdown"}} and cite each premise with "Relationship:: Conclusion of [[Premise Title]]".
Output only JSON."""


def premise_index(notes: list[Note]) -> dict[str, list[str]]:
    """target title -> titles of notes linking to it with a premise relationship."""
    index: dict[str, list[str]] = {}
    for note in notes:
        for relationship, target in parse_relationship_links(note.body):
            if relationship not in PREMISE_RELATIONS or not target:
                continue
            sources = index.setdefault(target, [])
            if note.title not in sources:
                sources.append(note.title)
    return index


def deduce_for_note(ctx: StepContext, rel_path: str) -> str | None:
    if not ctx.notes.exists(rel_path):
        ctx.log(f"Deduce: {rel_path} no longer exists, skipping")
        return None
    notes = ctx.notes.load_notes()
    by_title = {n.title: n for n in notes}
    title = note_title(rel_path)
    premises = premise_index(notes).get(title)
    if not premises:
        return None

    current = by_title.get(title) or ctx.notes.load(rel_path)
    premise_text = "\n\n".join(f"## {p}\n{by_title[p].body}" for p in premises if p in by_title)
    existing = ", ".join(list(by_title)[:200])
    user = f"""Premises (these link to "{title}" with Evidence for / Supports / Requires):
{premise_text}

Current note ("{title}"):
{current.body}

Existing note titles (do not duplicate): {existing}

What is the unspoken conclusion?"""

    parsed = ask_json(ctx, SYSTEM_PROMPT, user, 1024, f"Deduce {title}")
    conclusion = parsed.get("conclusion") if parsed else None
    if not isinstance(conclusion, dict):
        return None
    new_title, content = conclusion.get("title"), conclusion.get("content")
    if not isinstance(new_title, str) or not new_title.strip():
        return None
    if not isinstance(content, str) or not content.strip():
        return None

    rel = commit_note(ctx, INSIGHTS_DIR, new_title, clean_body(content), {"type": "Conclusion", "source": "deduce"})
    if rel:
        ctx.log(f"Deduce: {rel}")
    return rel
