"""Persistence port for the pipeline's JSON documents.

The scheduler and tracker only talk to `VaultStorage`; `JsonVaultStorage`
keeps every document as a JSON file under `<vault>/.vaultmaker/`. Writes are
atomic (temp file + rename) and serialized by an in-process lock, so a watcher
thread and the scheduler never interleave partial writes. Across processes the
documents stay last-writer-wins.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from vaultmaker.config import AgentConfig
from vaultmaker.core.progress import ProgressSnapshot
from vaultmaker.core.retrieval import IndexEntry
from vaultmaker.core.source_index import Source, SourceIndex, now_iso

STATE_DIR_NAME = ".vaultmaker"
PROGRESS_FILE = "progress.json"
SOURCE_INDEX_FILE = "sourceIndex.json"
EMBEDDING_INDEX_FILE = "embeddingIndex.json"
AGENT_CONFIG_FILE = "agentConfig.json"
SOURCES_SUBDIR = "sources"


class VaultStorage(Protocol):
    def load_progress(self) -> ProgressSnapshot | None: ...

    def save_progress(self, snapshot: ProgressSnapshot) -> None: ...

    def load_source_index(self) -> SourceIndex | None: ...

    def save_source_index(self, index: SourceIndex) -> None: ...

    def save_source(self, source: Source) -> None: ...

    def load_source(self, source_id: str) -> Source | None: ...

    def load_index_entries(self) -> list[IndexEntry]: ...

    def save_index_entries(self, entries: list[IndexEntry]) -> None: ...

    def load_agent_config(self) -> AgentConfig: ...

    def save_agent_config(self, updates: dict) -> AgentConfig: ...

    def save_report(self, name: str, data: dict) -> None: ...


def write_file_atomic(path: Path, content: str) -> None:
    """Write content to file atomically using temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def read_json(path: Path):
    """Parsed JSON document, or None when missing or malformed."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None


class JsonVaultStorage:
    def __init__(self, vault_path: Path | str):
        self.vault_path = Path(vault_path)
        self.state_dir = self.vault_path / STATE_DIR_NAME
        self._lock = threading.RLock()

    def _write(self, name: str, data, indent: int | None = None) -> None:
        with self._lock:
            write_file_atomic(self.state_dir / name, json.dumps(data, ensure_ascii=False, indent=indent))

    # ─── Progress ────────────────────────────────────────────────────────────

    def load_progress(self) -> ProgressSnapshot | None:
        with self._lock:
            return ProgressSnapshot.from_dict(read_json(self.state_dir / PROGRESS_FILE))

    def save_progress(self, snapshot: ProgressSnapshot) -> None:
        snapshot.last_updated = now_iso()
        self._write(PROGRESS_FILE, snapshot.to_dict())

    # ─── Source index & staged sources ───────────────────────────────────────

    def load_source_index(self) -> SourceIndex | None:
        with self._lock:
            return SourceIndex.from_dict(read_json(self.state_dir / SOURCE_INDEX_FILE))

    def save_source_index(self, index: SourceIndex) -> None:
        index.last_updated = now_iso()
        self._write(SOURCE_INDEX_FILE, index.to_dict())

    def save_source(self, source: Source) -> None:
        self._write(f"{SOURCES_SUBDIR}/{source.id}.json", source.to_dict())

    def load_source(self, source_id: str) -> Source | None:
        return Source.from_dict(read_json(self.state_dir / SOURCES_SUBDIR / f"{source_id}.json"))

    # ─── Embedding index ─────────────────────────────────────────────────────

    def load_index_entries(self) -> list[IndexEntry]:
        with self._lock:
            data = read_json(self.state_dir / EMBEDDING_INDEX_FILE)
        if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
            return []
        return [e for e in (IndexEntry.from_dict(raw) for raw in data["entries"]) if e is not None]

    def save_index_entries(self, entries: list[IndexEntry]) -> None:
        self._write(EMBEDDING_INDEX_FILE, {
            "entries": [e.to_dict() for e in entries],
            "updatedAt": now_iso(),
        })

    # ─── Agent config & reports ──────────────────────────────────────────────

    def load_agent_config(self) -> AgentConfig:
        return AgentConfig.from_dict(read_json(self.state_dir / AGENT_CONFIG_FILE))

    def save_agent_config(self, updates: dict) -> AgentConfig:
        with self._lock:
            config = self.load_agent_config().merged(updates)
            self._write(AGENT_CONFIG_FILE, config.to_dict(), indent=2)
        return config

    def save_report(self, name: str, data: dict) -> None:
        self._write(name, data, indent=2)


# ─── Global vault selection ──────────────────────────────────────────────────


def load_vault_selection(path: Path) -> dict:
    data = read_json(path)
    if not isinstance(data, dict):
        data = {}
    return {
        key: data[key] if isinstance(data.get(key), str) else None
        for key in ("vaultPath", "vaultName", "sourceDir")
    }


def save_vault_selection(path: Path, **updates) -> dict:
    """Merge `vaultPath`/`vaultName`/`sourceDir` updates into the saved selection."""
    current = load_vault_selection(path)
    for key, value in updates.items():
        if key in current:
            current[key] = value
    write_file_atomic(path, json.dumps(current, indent=2))
    return current
