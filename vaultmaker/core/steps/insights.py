"""extract-insights: turn one staged Source into atomic insight notes."""

from __future__ import annotations

from vaultmaker.core.steps.common import (
    REASONING_PRINCIPLES,
    RELATIONSHIP_TYPES,
    StepContext,
    ask_json,
    bullet_list,
    clean_body,
    commit_note,
)
from vaultmaker.core.vault import INSIGHTS_DIR

MAX_CHUNK = 12000

SYSTEM_PROMPT = f"""{REASONING_PRINCIPLES}

You are building an Obsidian insight vault. Extract only the key insights, ideas and concepts from the source text; never copy or paraphrase the whole text.
- One note per distinct insight. Titles are clear, reusable claims.
- Link other notes only with "Relationship:: <type> [[Exact Title]]". Allowed types: {RELATIONSHIP_TYPES}.
- type is one of Observation, Claim, Evidence, Method (or Conclusion, Theme).
- confidence is a number between 0.0 and 1.0.
- tags are single words or hyphenated strings.
Output only a JSON object."""


def chunk_text(text: str, max_len: int = MAX_CHUNK) -> list[str]:
    """Split into chunks of at most `max_len`, preferring paragraph boundaries."""
    if len(text) <= max_len:
        return [text]
    chunks = []
    start = 0
    while start < len(text):
        end = min(start + max_len, len(text))
        if end < len(text):
            last_break = text.rfind("\n\n", start, end)
            if last_break > start:
                end = last_break + 2
        chunks.append(text[start:end])
        start = end
    return chunks


def build_frontmatter(insight: dict, source_name: str) -> dict:
    props: dict = {}
    note_type = insight.get("type")
    if isinstance(note_type, str) and note_type.strip():
        props["type"] = note_type.strip()

    confidence = insight.get("confidence")
    if isinstance(confidence, str):
        try:
            confidence = float(confidence)
        except ValueError:
            confidence = None
    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool) and 0 <= confidence <= 1:
        props["confidence"] = float(confidence)

    importance = insight.get("importance")
    if isinstance(importance, str) and importance.strip():
        props["importance"] = importance.strip()
    props["source"] = source_name

    tags = insight.get("tags")
    if isinstance(tags, list):
        cleaned = ["-".join(t.split()) for t in tags if isinstance(t, str) and t.strip()]
        if cleaned:
            props["tags"] = cleaned
    return props


def _user_prompt(source_name: str, chunk: str, part: str, existing: list[str]) -> str:
    return f"""Source: {source_name}{part}

```
{chunk}
```

Existing insight notes (use these exact titles in [[links]] when an insight relates):
{bullet_list(existing)}

For each insight give title, content (markdown), type, confidence, optional importance and tags:
{{"insights": [{{"title": "Note Title", "content": "markdown", "type": "Claim", "confidence": 0.9, "tags": ["topic"]}}]}}"""


def extract_insights(ctx: StepContext, source_id: str) -> list[str]:
    source = ctx.storage.load_source(source_id) if ctx.storage is not None else None
    if source is None:
        ctx.log(f"Insights: source {source_id} not found, skipping")
        return []

    created: list[str] = []
    chunks = chunk_text(source.text)
    for i, chunk in enumerate(chunks):
        part = f" (part {i + 1}/{len(chunks)})" if len(chunks) > 1 else ""
        existing = ctx.index.relevant_titles(chunk, ctx.config.max_titles_extract)
        parsed = ask_json(ctx, SYSTEM_PROMPT, _user_prompt(source.name, chunk, part, existing),
                          4096, f"Insights {source.name}")
        insights = parsed.get("insights") if parsed else None
        if not isinstance(insights, list):
            continue
        for insight in insights:
            if not isinstance(insight, dict):
                continue
            title, content = insight.get("title"), insight.get("content")
            if not isinstance(title, str) or not title.strip():
                continue
            if not isinstance(content, str) or not content.strip():
                continue
            rel = commit_note(ctx, INSIGHTS_DIR, title, clean_body(content), build_frontmatter(insight, source.name))
            if rel:
                created.append(rel)
                ctx.log(f"Insight: {rel}")
    return created
