from __future__ import annotations

import math
from dataclasses import dataclass

from vaultmaker.core.retrieval import SNIPPET_CHARS, IndexEntry, cosine_similarity

DEFAULT_DEDUP_THRESHOLD = 0.92


@dataclass(frozen=True)
class DedupDecision:
    duplicate: bool
    reason: str = ""
    similarity: float = 0.0
    match: str | None = None
    # Reused when indexing an accepted candidate.
    embedding: list[float] | None = None


def max_similarity(embedding: list[float], entries: list[IndexEntry]) -> tuple[float, str | None]:
    best, best_title = -1.0, None
    for e in entries:
        if not e.embedding:
            continue
        score = cosine_similarity(embedding, e.embedding)
        if score > best:
            best, best_title = score, e.title
    return best, best_title


def check_duplicate(index, title: str, snippet: str, threshold: float = DEFAULT_DEDUP_THRESHOLD) -> DedupDecision:
    """Decide whether a freshly generated note duplicates something already indexed.

    An identical title is always a duplicate. Otherwise the candidate is
    embedded from `title + snippet` and rejected when its best cosine match
    reaches `threshold`.
    """
    if index.get(title) is not None:
        return DedupDecision(True, reason="title", similarity=1.0, match=title)

    embedding = index.embed_text(f"{title} {snippet.strip()[:SNIPPET_CHARS]}")
    if not embedding:
        return DedupDecision(False)

    best, best_title = max_similarity(embedding, index.entries())
    if best_title is not None and best >= threshold:
        return DedupDecision(True, reason="similarity", similarity=best, match=best_title, embedding=embedding)
    return DedupDecision(False, similarity=max(best, 0.0), match=best_title, embedding=embedding)


def cluster_items(
    items: list[tuple[str, list[float] | None]],
    target_size: int,
    max_clusters: int,
) -> list[list[str]]:
    """Greedy balanced partition of `(key, embedding)` pairs.

    Each unassigned embedded item seeds a cluster and pulls in its most similar
    unassigned peers until the cluster is full. Items without an embedding are
    appended to the first cluster. Approximate, not optimal.
    """
    if not items:
        return []
    target_size = max(1, target_size)
    k = min(max(1, max_clusters), math.ceil(len(items) / target_size))

    embedded = [(key, emb) for key, emb in items if emb]
    size = max(target_size, math.ceil(len(embedded) / k)) if embedded else target_size

    assigned: set[str] = set()
    clusters: list[list[str]] = []
    for key, emb in embedded:
        if key in assigned:
            continue
        peers = [
            (cosine_similarity(emb, other_emb), other)
            for other, other_emb in embedded
            if other != key and other not in assigned
        ]
        peers.sort(key=lambda p: p[0], reverse=True)
        cluster = [key] + [other for _, other in peers[: size - 1]]
        assigned.update(cluster)
        clusters.append(cluster)

    missing = [key for key, emb in items if not emb]
    if missing:
        if clusters:
            clusters[0].extend(missing)
        else:
            clusters.append(missing)
    return clusters
