"""Content-hash bookkeeping for tracked source folders, and the staged Source record."""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class Source:
    """Extracted text of one ingested file. Never mutated once saved."""

    id: str
    path: str
    name: str
    text: str

    def to_dict(self) -> dict:
        return {"id": self.id, "path": self.path, "name": self.name, "text": self.text}

    @classmethod
    def from_dict(cls, data) -> "Source | None":
        if not isinstance(data, dict):
            return None
        try:
            return cls(
                id=str(data["id"]),
                path=str(data.get("path", "")),
                name=str(data.get("name", "")),
                text=str(data["text"]),
            )
        except KeyError:
            return None


@dataclass(frozen=True)
class SourceIndexEntry:
    source_id: str
    content_hash: str


@dataclass
class SourceIndex:
    source_dir: str
    entries: dict[str, SourceIndexEntry] = field(default_factory=dict)
    last_updated: str = ""

    def to_dict(self) -> dict:
        return {
            "sourceDir": self.source_dir,
            "entries": {
                rel: {"sourceId": e.source_id, "contentHash": e.content_hash}
                for rel, e in self.entries.items()
            },
            "lastUpdated": self.last_updated or now_iso(),
        }

    @classmethod
    def from_dict(cls, data) -> "SourceIndex | None":
        if not isinstance(data, dict):
            return None
        source_dir = data.get("sourceDir")
        raw_entries = data.get("entries")
        if not isinstance(source_dir, str) or not isinstance(raw_entries, dict):
            return None
        entries = {}
        for rel, raw in raw_entries.items():
            if not isinstance(raw, dict):
                continue
            sid, digest = raw.get("sourceId"), raw.get("contentHash")
            if isinstance(sid, str) and isinstance(digest, str):
                entries[rel] = SourceIndexEntry(sid, digest)
        return cls(source_dir=source_dir, entries=entries, last_updated=str(data.get("lastUpdated", "")))


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def compute_content_hash(content: str | bytes) -> str:
    """SHA-256 hex digest of the extracted text (not the raw file bytes)."""
    data = content.encode("utf-8") if isinstance(content, str) else content
    return hashlib.sha256(data).hexdigest()


def generate_source_id() -> str:
    return uuid.uuid4().hex[:12]


def needs_processing(index: SourceIndex, rel_path: str, content_hash: str, source_dir: str) -> bool:
    """True iff the tracked root changed, the path is new, or its hash differs."""
    if index.source_dir != source_dir:
        return True
    entry = index.entries.get(rel_path)
    if entry is None:
        return True
    return entry.content_hash != content_hash
