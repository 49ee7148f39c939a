"""link: add typed relationship links from one note to relevant others."""

from __future__ import annotations

from vaultmaker.core.steps.common import (
    REASONING_PRINCIPLES,
    RELATIONSHIP_TYPES,
    StepContext,
    bullet_list,
    clean_body,
    messages,
)
from vaultmaker.core.vault import note_title, render_note

SYSTEM_PROMPT = f"""{REASONING_PRINCIPLES}

You are adding connections between Obsidian notes.
- Use only exact titles from the list provided; never invent titles.
- Add a link only when the relationship is nameable, as "Relationship:: <type> [[Note Title]]". Allowed types: {RELATIONSHIP_TYPES}.
- If nothing fits, return the markdown unchanged. Zero links is fine.
Output only the complete markdown body."""


def link_note(ctx: StepContext, rel_path: str) -> bool:
    """Rewrite one note's body with new links; True when the note changed."""
    if not ctx.notes.exists(rel_path):
        ctx.log(f"Link: {rel_path} no longer exists, skipping")
        return False
    note = ctx.notes.load(rel_path)
    title = note_title(rel_path)
    query = f"{title} {note.body[:1000]}"
    others = ctx.index.relevant_titles(query, ctx.config.max_titles_link, exclude={title})
    if not others:
        return False

    user = f"""Note to update (file: {rel_path}):

```markdown
{note.body}
```

Other notes in the vault (exact titles):
{bullet_list(others)}

Add "Relationship:: <type> [[Note Title]]" links only where a real relationship exists. Output only the markdown."""
    updated = clean_body(ctx.llm.complete(messages(SYSTEM_PROMPT, user), max_tokens=4096))
    if not updated or updated == note.body.strip():
        return False

    ctx.notes.write(rel_path, render_note(updated, note.frontmatter))
    existing = ctx.index.get(title)
    ctx.index.upsert(title, rel_path, updated, existing.embedding if existing else None)
    ctx.log(f"Linked: {rel_path}")
    return True
