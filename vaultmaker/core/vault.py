"""Markdown note store rooted at the vault directory.

Notes are addressed by forward-slash paths relative to the vault root; a note's
title is its file stem. Frontmatter is flat YAML between `---` fences.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import yaml

from vaultmaker.core.storage import write_file_atomic

INSIGHTS_DIR = "Insights"
MOC_DIR = "MOCs"
CONFLICTS_DIR = ".vaultmaker/Conflicts"

RELATIONSHIP_TAXONOMY = (
    "Supports",
    "Contradicts",
    "Requires",
    "Evidence for",
    "Evidence against",
    "Assumption of",
    "Conclusion of",
)

_FM_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n?", re.DOTALL)
_WIKILINK_RE = re.compile(r"\[\[([^\]]+)\]\]")
_RELATIONSHIP_RE = re.compile(r"Relationship::\s*([^\n\[\]]+?)\s*\[\[([^\]]+)\]\]")
_UNSAFE_TITLE_CHARS = re.compile(r'[/\\?%*:|"<>]')


@dataclass
class Note:
    path: str
    frontmatter: dict = field(default_factory=dict)
    body: str = ""

    @property
    def title(self) -> str:
        return note_title(self.path)

    @property
    def note_type(self) -> str | None:
        value = self.frontmatter.get("type")
        return value.strip() if isinstance(value, str) and value.strip() else None


def note_title(rel_path: str) -> str:
    return PurePosixPath(rel_path).stem


def sanitize_title(title: str) -> str:
    return _UNSAFE_TITLE_CHARS.sub("-", title).strip() or "Untitled"


def is_moc(rel_path: str) -> bool:
    return rel_path.startswith(MOC_DIR + "/")


def parse_frontmatter(text: str) -> tuple[dict, str]:
    """Split a note into (frontmatter dict, body). Malformed YAML yields {}."""
    m = _FM_RE.match(text)
    if not m:
        return {}, text
    try:
        data = yaml.safe_load(m.group(1))
    except yaml.YAMLError:
        data = None
    return (data if isinstance(data, dict) else {}), text[m.end():]


def render_note(body: str, frontmatter: dict | None = None) -> str:
    body = body.strip() + "\n"
    if not frontmatter:
        return body
    header = yaml.safe_dump(frontmatter, sort_keys=False, allow_unicode=True).strip()
    return f"---\n{header}\n---\n{body}"


def parse_relationship_links(text: str) -> list[tuple[str, str]]:
    """All `Relationship:: <type> [[Title]]` links as (relationship, title) pairs."""
    return [(m.group(1).strip(), m.group(2).strip()) for m in _RELATIONSHIP_RE.finditer(text)]


def parse_wikilinks(text: str) -> list[str]:
    return [m.group(1).strip() for m in _WIKILINK_RE.finditer(text) if m.group(1).strip()]


class NoteStore:
    def __init__(self, vault_path: Path | str):
        self.root = Path(vault_path)

    def _full(self, rel_path: str) -> Path:
        return self.root / PurePosixPath(rel_path)

    def exists(self, rel_path: str) -> bool:
        return self._full(rel_path).is_file()

    def read(self, rel_path: str) -> str:
        return self._full(rel_path).read_text(encoding="utf-8")

    def write(self, rel_path: str, text: str) -> None:
        write_file_atomic(self._full(rel_path), text)

    def load(self, rel_path: str) -> Note:
        frontmatter, body = parse_frontmatter(self.read(rel_path))
        return Note(path=rel_path, frontmatter=frontmatter, body=body.strip())

    def save(self, note: Note) -> None:
        self.write(note.path, render_note(note.body, note.frontmatter))

    def list_markdown_files(self) -> list[str]:
        """Every `.md` note under the root, sorted, skipping dot-prefixed entries."""
        if not self.root.is_dir():
            return []
        out = []
        for path in self.root.rglob("*.md"):
            rel = path.relative_to(self.root)
            if any(part.startswith(".") for part in rel.parts):
                continue
            if path.is_file():
                out.append(rel.as_posix())
        return sorted(out)

    def note_files(self) -> list[str]:
        return [p for p in self.list_markdown_files() if not is_moc(p)]

    def moc_files(self) -> list[str]:
        return [p for p in self.list_markdown_files() if is_moc(p)]

    def titles(self) -> list[str]:
        return [note_title(p) for p in self.note_files()]

    def find_path_by_title(self, title: str) -> str | None:
        title = title.strip()
        return next((p for p in self.list_markdown_files() if note_title(p) == title), None)

    def load_notes(self, paths: list[str] | None = None) -> list[Note]:
        notes = []
        for rel in self.note_files() if paths is None else paths:
            try:
                notes.append(self.load(rel))
            except OSError:
                continue
        return notes

    def moc_list(self) -> list[dict]:
        """Each MOC as {path, title, noteTitles, summary}."""
        mocs = []
        for rel in self.moc_files():
            try:
                note = self.load(rel)
            except OSError:
                continue
            summary = note.frontmatter.get("summary")
            mocs.append({
                "path": rel,
                "title": note.title,
                "noteTitles": parse_wikilinks(note.body),
                "summary": summary.strip() if isinstance(summary, str) and summary.strip() else None,
            })
        return mocs
