"""Retrieval index over generated notes.

Canonical title → {path, snippet, embedding?} store. Ranking is exact
(brute-force cosine over every stored vector); when vectors are unavailable it
falls back to keyword overlap on title + snippet.
"""

from __future__ import annotations

import math
import re
import threading
from dataclasses import dataclass

from vaultmaker.core.errors import EmbeddingError
from vaultmaker.core.logfile import log

SNIPPET_CHARS = 300
EMBED_INPUT_CHARS = 8000

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


@dataclass
class IndexEntry:
    title: str
    path: str
    text_snippet: str
    embedding: list[float] | None = None

    def to_dict(self) -> dict:
        out = {"title": self.title, "path": self.path, "textSnippet": self.text_snippet}
        if self.embedding:
            out["embedding"] = self.embedding
        return out

    @classmethod
    def from_dict(cls, data) -> "IndexEntry | None":
        if not isinstance(data, dict):
            return None
        title, path, snippet = data.get("title"), data.get("path"), data.get("textSnippet")
        if not (isinstance(title, str) and isinstance(path, str) and isinstance(snippet, str)):
            return None
        emb = data.get("embedding")
        if not isinstance(emb, list) or not emb:
            emb = None
        return cls(title=title, path=path, text_snippet=snippet, embedding=emb)


# ─── Scoring ─────────────────────────────────────────────────────────────────


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity in [-1, 1]; 0 for empty, mismatched or zero-norm vectors."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = norm_a = norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    denom = math.sqrt(norm_a) * math.sqrt(norm_b)
    if denom == 0:
        return 0.0
    return max(-1.0, min(1.0, dot / denom))


def tokenize(text: str) -> list[str]:
    return [t for t in _TOKEN_SPLIT.split(text.lower()) if t]


def is_hidden_path(path: str) -> bool:
    """True for entries under a dot-folder (e.g. `.vaultmaker/Conflicts`), which are not link targets."""
    return any(part.startswith(".") for part in path.split("/"))


def keyword_score(query_tokens: list[str], entry: IndexEntry) -> int:
    target = set(tokenize(f"{entry.title} {entry.text_snippet}"))
    return len(set(query_tokens) & target)


def vector_rank(entries: list[IndexEntry], query_embedding: list[float], limit: int) -> list[str]:
    scored = [
        (cosine_similarity(query_embedding, e.embedding), e.title)
        for e in entries
        if e.embedding
    ]
    # sorted() is stable, so equal scores keep index order.
    scored = sorted(scored, key=lambda s: s[0], reverse=True)
    return [title for _, title in scored[:limit]]


def keyword_rank(entries: list[IndexEntry], query: str, limit: int) -> list[str]:
    query_tokens = tokenize(query)
    if not query_tokens:
        return [e.title for e in entries[:limit]]
    scored = sorted(
        ((keyword_score(query_tokens, e), e.title) for e in entries),
        key=lambda s: s[0],
        reverse=True,
    )
    return [title for _, title in scored[:limit]]


# ─── Index ───────────────────────────────────────────────────────────────────


class RetrievalIndex:
    """In-memory view of the embedding-index document, saved after every mutation."""

    def __init__(self, storage, embedder=None, use_embeddings: bool = True):
        self._storage = storage
        self.embedder = embedder
        self.use_embeddings = use_embeddings
        self._lock = threading.RLock()
        self._entries: list[IndexEntry] | None = None

    def _loaded(self) -> list[IndexEntry]:
        if self._entries is None:
            self._entries = self._storage.load_index_entries()
        return self._entries

    def reload(self) -> None:
        with self._lock:
            self._entries = None

    def entries(self) -> list[IndexEntry]:
        with self._lock:
            return list(self._loaded())

    def titles(self) -> list[str]:
        return [e.title for e in self.entries()]

    def get(self, title: str) -> IndexEntry | None:
        with self._lock:
            return next((e for e in self._loaded() if e.title == title), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._loaded())

    @property
    def vectors_enabled(self) -> bool:
        return self.use_embeddings and self.embedder is not None

    def embed_text(self, text: str) -> list[float] | None:
        """Embedding for `text`, or None when disabled or the backend fails."""
        if not self.vectors_enabled:
            return None
        return self._embed(text)

    def _embed(self, text: str) -> list[float] | None:
        try:
            return self.embedder.embed(text[:EMBED_INPUT_CHARS])
        except EmbeddingError as e:
            log(f"EMBED error (entry kept without vector): {e}")
            return None

    def upsert(self, title: str, path: str, snippet: str, embedding: list[float] | None = None) -> IndexEntry:
        entry = IndexEntry(title=title, path=path, text_snippet=snippet[:SNIPPET_CHARS], embedding=embedding or None)
        with self._lock:
            entries = self._loaded()
            for i, existing in enumerate(entries):
                if existing.title == title:
                    entries[i] = entry
                    break
            else:
                entries.append(entry)
            self._storage.save_index_entries(entries)
        return entry

    def index_note(self, title: str, path: str, body: str, embedding: list[float] | None = None) -> IndexEntry:
        """Upsert a note, embedding `title + snippet` unless a vector is supplied."""
        snippet = body.strip()[:SNIPPET_CHARS]
        if embedding is None:
            embedding = self.embed_text(f"{title} {snippet}")
        entry = self.upsert(title, path, snippet, embedding)
        log(f"INDEX {title} ({'vector' if entry.embedding else 'keyword'})")
        return entry

    def remove(self, title: str) -> bool:
        with self._lock:
            entries = self._loaded()
            kept = [e for e in entries if e.title != title]
            if len(kept) == len(entries):
                return False
            self._entries = kept
            self._storage.save_index_entries(kept)
        return True

    def relevant_titles(self, query: str, limit: int, use_embeddings: bool | None = None,
                        exclude: set[str] | None = None) -> list[str]:
        """Up to `limit` titles most relevant to `query` (vector ranking, else keywords)."""
        entries = [e for e in self.entries() if not is_hidden_path(e.path)]
        if exclude:
            entries = [e for e in entries if e.title not in exclude]
        if not entries:
            return []
        limit = max(1, limit)
        if use_embeddings is None:
            use_embeddings = self.use_embeddings

        if use_embeddings and self.embedder is not None and query.strip() and any(e.embedding for e in entries):
            query_embedding = self._embed(query.strip())
            if query_embedding:
                return vector_rank(entries, query_embedding, limit)

        return keyword_rank(entries, query, limit)
