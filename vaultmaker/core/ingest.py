"""Source ingestion: detect changed files in the tracked folder and stage them.

A file is (re)staged when its *extracted text* hashes differently from the
last recorded hash for its relative path, or when the tracked root itself
changed. Each positive decision writes a new immutable Source record and
enqueues one extract-insights task; superseded Sources are left on disk.
"""

from __future__ import annotations

import threading
from pathlib import Path, PurePosixPath
from typing import Callable

from vaultmaker.core.logfile import log
from vaultmaker.core.source_index import (
    Source,
    SourceIndex,
    SourceIndexEntry,
    compute_content_hash,
    generate_source_id,
    needs_processing,
)
from vaultmaker.core.tasks import Task, extract_task

TEXT_EXT = (".md", ".txt")
OFFICE_EXT = (".pdf", ".docx", ".doc", ".pptx", ".ppt")
ALLOWED_EXT = TEXT_EXT + OFFICE_EXT

# (path, raw bytes) -> extracted text, or None when nothing could be extracted.
OfficeExtractor = Callable[[Path, bytes], "str | None"]


def is_allowed(path: Path | str) -> bool:
    return PurePosixPath(str(path)).suffix.lower() in ALLOWED_EXT


def relative_source_path(source_dir: Path, full_path: Path) -> str:
    return full_path.relative_to(source_dir).as_posix()


def iter_source_files(source_dir: Path) -> list[Path]:
    """Allow-listed files under `source_dir`, recursively, skipping hidden entries."""
    if not source_dir.is_dir():
        return []
    out = []
    for path in sorted(source_dir.rglob("*")):
        rel = path.relative_to(source_dir)
        if any(part.startswith(".") for part in rel.parts):
            continue
        if path.is_file() and is_allowed(path):
            out.append(path)
    return out


class SourceTracker:
    """Sole writer of the source-index document; a producer into the task queue."""

    def __init__(self, storage, enqueue: Callable[[Task], None],
                 extractor: OfficeExtractor | None = None,
                 log_fn: Callable[[str], None] = log):
        self.storage = storage
        self.enqueue = enqueue
        self.extractor = extractor
        self.log = log_fn
        self._lock = threading.Lock()

    def extract_text(self, full_path: Path) -> str | None:
        data = full_path.read_bytes()
        suffix = full_path.suffix.lower()
        if suffix in TEXT_EXT:
            return data.decode("utf-8", errors="replace")
        if self.extractor is None:
            self.log(f"INGEST SKIP (no extractor for {suffix}): {full_path.name}")
            return None
        text = self.extractor(full_path, data)
        if not text or not text.strip():
            self.log(f"INGEST SKIP (no text extracted): {full_path.name}")
            return None
        return text

    def _load_index(self, source_dir: str) -> SourceIndex:
        index = self.storage.load_source_index()
        if index is None or index.source_dir != source_dir:
            # A different tracked root invalidates every entry.
            index = SourceIndex(source_dir=source_dir)
        return index

    def process_file(self, source_dir: Path | str, full_path: Path | str) -> Task | None:
        """Stage one file if its content changed; return the enqueued task, else None."""
        source_dir, full_path = Path(source_dir), Path(full_path)
        if not is_allowed(full_path):
            return None
        rel = relative_source_path(source_dir, full_path)
        try:
            text = self.extract_text(full_path)
        except OSError as e:
            self.log(f"INGEST read error {rel}: {e}")
            return None
        if text is None:
            return None

        content_hash = compute_content_hash(text)
        # Compare roots in one canonical form so a relative or symlinked path is not a new root.
        root = str(source_dir.resolve())
        with self._lock:
            index = self._load_index(root)
            if not needs_processing(index, rel, content_hash, root):
                return None
            source_id = generate_source_id()
            name = PurePosixPath(rel).stem or rel
            self.storage.save_source(Source(id=source_id, path=rel, name=name, text=text))
            task = extract_task(source_id)
            self.enqueue(task)
            index.entries[rel] = SourceIndexEntry(source_id, content_hash)
            self.storage.save_source_index(index)
        self.log(f"INGEST {rel} -> source {source_id} queued")
        return task

    def scan(self, source_dir: Path | str) -> int:
        """Initial import of a tracked folder; returns how many files were enqueued."""
        source_dir = Path(source_dir)
        count = 0
        for path in iter_source_files(source_dir):
            if self.process_file(source_dir, path) is not None:
                count += 1
        self.log(f"INGEST scan {source_dir}: {count} queued")
        return count


class SourceWatcher:
    """Polling thread that rescans the tracked folder every `interval` seconds."""

    def __init__(self, tracker: SourceTracker, source_dir: Path | str, interval: float = 5.0,
                 on_change: Callable[[int], None] | None = None):
        self.tracker = tracker
        self.source_dir = Path(source_dir)
        self.interval = interval
        self.on_change = on_change
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def poll_once(self) -> int:
        count = 0
        for path in iter_source_files(self.source_dir):
            try:
                if self.tracker.process_file(self.source_dir, path) is not None:
                    count += 1
            except Exception as e:
                self.tracker.log(f"WATCH error {path.name}: {e}")
        if count and self.on_change is not None:
            self.on_change(count)
        return count

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.poll_once()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="vaultmaker-watcher", daemon=True)
        self._thread.start()
        self.tracker.log(f"WATCH {self.source_dir} every {self.interval:g}s")

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 1)
            self._thread = None
            self.tracker.log("WATCH stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
