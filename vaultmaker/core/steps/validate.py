"""validate: report contradictions and unsupported conclusions across the vault."""

from __future__ import annotations

from vaultmaker.core.source_index import now_iso
from vaultmaker.core.steps.common import StepContext, clean_body, commit_note, messages
from vaultmaker.core.vault import CONFLICTS_DIR, Note, parse_relationship_links

EVIDENCE_RELATIONS = {"Evidence for", "Supports"}
REPORT_FILE = "validation.json"

SYNTHESIS_PROMPT = (
    "You document logical conflicts between notes. Output only markdown. "
    "Do not fix or remove the contradiction; document it for review."
)


def find_contradictions(notes: list[Note]) -> list[dict]:
    return [
        {"fromTitle": note.title, "toTitle": target}
        for note in notes
        for relationship, target in parse_relationship_links(note.body)
        if relationship == "Contradicts"
    ]


def find_orphans(notes: list[Note]) -> list[str]:
    """Conclusion notes that nothing supports with Evidence for / Supports."""
    supported = {
        target
        for note in notes
        for relationship, target in parse_relationship_links(note.body)
        if relationship in EVIDENCE_RELATIONS
    }
    return [n.title for n in notes if n.note_type == "Conclusion" and n.title not in supported]


def _synthesize(ctx: StepContext, from_title: str, to_title: str) -> str | None:
    user = (
        f'Two notes contradict each other: "{from_title}" and "{to_title}". Write a short synthesis note '
        "that states both positions and that they conflict, without resolving it. Include "
        f"Relationship:: Contradicts [[{from_title}]] and Relationship:: Contradicts [[{to_title}]]. "
        "Output only the markdown body."
    )
    body = clean_body(ctx.llm.complete(messages(SYNTHESIS_PROMPT, user), max_tokens=512))
    if not body:
        return None
    title = f"Conflict-{from_title}-vs-{to_title}"
    return commit_note(ctx, CONFLICTS_DIR, title, body, {"type": "Conflict", "source": "validate"})


def run_validation(ctx: StepContext) -> dict:
    notes = ctx.notes.load_notes()
    conflicts = find_contradictions(notes)
    orphans = find_orphans(notes)

    created = []
    seen: set[tuple[str, str]] = set()
    for pair in conflicts:
        key = tuple(sorted((pair["fromTitle"], pair["toTitle"])))
        if key in seen:
            continue
        seen.add(key)
        rel = _synthesize(ctx, pair["fromTitle"], pair["toTitle"])
        if rel:
            created.append(rel)
            ctx.log(f"Validation: synthesis note {rel}")

    report = {
        "conflicts": conflicts,
        "orphans": orphans,
        "synthesisNotesCreated": created,
        "lastUpdated": now_iso(),
    }
    if ctx.storage is not None:
        ctx.storage.save_report(REPORT_FILE, report)
    ctx.log(f"Validation: {len(conflicts)} conflicts, {len(orphans)} orphans")
    return report
