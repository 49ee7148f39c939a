"""Shared plumbing for the generation steps: prompt scaffolding, JSON replies, gated commits."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from vaultmaker.config import AgentConfig
from vaultmaker.core.dedup import check_duplicate
from vaultmaker.core.llm import GenerationClient, parse_json_object, strip_markdown_fences
from vaultmaker.core.retrieval import RetrievalIndex
from vaultmaker.core.vault import RELATIONSHIP_TAXONOMY, NoteStore, render_note, sanitize_title

REASONING_PRINCIPLES = """Scientific method principles:
- Precision: use consistent terminology across all notes.
- Claim vs. evidence: every claim cites a source file or a parent note.
- Falsifiability: state what would make a conclusion incorrect (Assumptions).
- Strict linking: only link when the relationship is nameable."""

RELATIONSHIP_TYPES = ", ".join(RELATIONSHIP_TAXONOMY)


@dataclass
class StepContext:
    notes: NoteStore
    index: RetrievalIndex
    llm: GenerationClient
    config: AgentConfig
    log: Callable[[str], None]
    storage: object = None


def messages(system: str, user: str) -> list[dict]:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def bullet_list(items, empty: str = "(none yet)") -> str:
    items = list(items)
    return "\n".join(f"- {item}" for item in items) if items else empty


def ask_json(ctx: StepContext, system: str, user: str, max_tokens: int, label: str) -> dict | None:
    """One generation call expected to return a JSON object.

    Backend failures propagate to the caller; an unparseable reply is logged
    and treated as an empty result.
    """
    raw = ctx.llm.complete(messages(system, user), max_tokens=max_tokens)
    parsed = parse_json_object(raw)
    if parsed is None:
        ctx.log(f"{label}: no JSON in response ({len(raw)} chars): {raw[:200]}")
    return parsed


def clean_body(text: str) -> str:
    return strip_markdown_fences(text.strip())


def commit_note(ctx: StepContext, folder: str, title: str, body: str, frontmatter: dict) -> str | None:
    """Dedup-gate a generated note, then write and index it.

    Returns the note's relative path, or None when the gate rejected it.
    A rejection is routine and only logged.
    """
    title = sanitize_title(title)
    body = body.strip()
    decision = check_duplicate(ctx.index, title, body, ctx.config.dedup_similarity_threshold)
    if decision.duplicate:
        if decision.reason == "title":
            ctx.log(f"DEDUP skip '{title}' (title exists)")
        else:
            ctx.log(f"DEDUP skip '{title}' (similarity {decision.similarity:.3f} to '{decision.match}')")
        return None

    rel = f"{folder}/{title}.md"
    ctx.notes.write(rel, render_note(body, frontmatter))
    ctx.index.index_note(title, rel, body, embedding=decision.embedding)
    return rel
