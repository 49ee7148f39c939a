"""Stage scheduler: drains the task queue one stage at a time.

The run walks the fixed stage order. Within a stage it executes queued tasks
one by one; when the stage has nothing left it advances, derives the next
stage's tasks from the current vault contents, persists progress and carries
on. The last stage running dry ends the run. A failing task is logged and
dropped; only a missing vault or generation client stops a run from starting.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable

from vaultmaker.core.dedup import cluster_items
from vaultmaker.core.errors import PreconditionError
from vaultmaker.core.events import EventBus
from vaultmaker.core.ingest import OfficeExtractor, SourceTracker
from vaultmaker.core.progress import ProgressSnapshot
from vaultmaker.core.queue import TaskQueue
from vaultmaker.core.retrieval import RetrievalIndex
from vaultmaker.core.run_state import IDLE, PROCESSING, STOPPING, RunState, RunStatus
from vaultmaker.core.stages import Stage, first_stage, next_stage
from vaultmaker.core.steps.common import StepContext
from vaultmaker.core.steps.deduce import deduce_for_note
from vaultmaker.core.steps.induce import induce_for_moc
from vaultmaker.core.steps.insights import extract_insights
from vaultmaker.core.steps.link import link_note
from vaultmaker.core.steps.organize import organize_vault
from vaultmaker.core.steps.validate import run_validation
from vaultmaker.core.storage import JsonVaultStorage
from vaultmaker.core.tasks import ExtractPayload, InducePayload, OrganizePayload, Task, TaskKind
from vaultmaker.core.vault import NoteStore


class Scheduler:
    def __init__(self, llm=None, embedder=None, extractor: OfficeExtractor | None = None,
                 ring_size: int = 100, target_cluster_size: int = 40, max_clusters: int = 12):
        self.llm = llm
        self.embedder = embedder
        self.extractor = extractor
        self.target_cluster_size = target_cluster_size
        self.max_clusters = max_clusters

        self.events = EventBus()
        self.run_state = RunState(self.events, ring_size=ring_size)
        self.queue = TaskQueue(self.events)
        self.progress = ProgressSnapshot()

        self.vault_path: Path | None = None
        self.vault_name: str | None = None
        self.source_dir: Path | None = None
        self.storage = None
        self.notes: NoteStore | None = None
        self.index: RetrievalIndex | None = None
        self._tracker: SourceTracker | None = None

        self._stop = threading.Event()
        self._run_lock = threading.Lock()
        self._persist_lock = threading.Lock()

        self._handlers: dict[TaskKind, Callable[[StepContext, Task], object]] = {
            TaskKind.EXTRACT_INSIGHTS: self._do_extract,
            TaskKind.ORGANIZE_VAULT: self._do_organize,
            TaskKind.LINK: lambda ctx, task: link_note(ctx, task.path),
            TaskKind.DEDUCE: lambda ctx, task: deduce_for_note(ctx, task.path),
            TaskKind.INDUCE: self._do_induce,
            TaskKind.VALIDATE: lambda ctx, task: run_validation(ctx),
        }

    # ─── Observers & log ─────────────────────────────────────────────────────

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        return self.events.subscribe(callback)

    def log(self, msg: str) -> None:
        self.run_state.append_log(msg)

    # ─── Vault selection & persistence ───────────────────────────────────────

    def attach_vault(self, vault_path: Path | str, vault_name: str | None = None,
                     source_dir: Path | str | None = None, storage=None) -> bool:
        """Make `vault_path` the active vault and resume its persisted progress.

        Refused while a run is in progress. Returns True when a progress
        snapshot was restored, False for a fresh start.
        """
        if self.run_state.status != IDLE:
            self.log("Cannot switch vault while the pipeline is running.")
            return False
        self.vault_path = Path(vault_path)
        self.vault_name = vault_name or self.vault_path.name
        self.source_dir = Path(source_dir) if source_dir else None
        self.storage = storage or JsonVaultStorage(self.vault_path)
        self.notes = NoteStore(self.vault_path)
        config = self.storage.load_agent_config()
        self.index = RetrievalIndex(self.storage, self.embedder, use_embeddings=config.use_embeddings)
        self._tracker = None
        self.queue.clear()
        self.progress = ProgressSnapshot()
        self.run_state.reset()
        return self.restore_from_progress()

    def restore_from_progress(self) -> bool:
        snapshot = self.storage.load_progress()
        if snapshot is None:
            return False
        if not self.queue.restore(snapshot.queue):
            self.log("Queue not empty, persisted queue ignored.")
        self.progress = snapshot
        self.run_state.set_stage(snapshot.current_stage)
        self.log(f"Restored progress: {len(snapshot.queue)} queued, stage {_stage_name(snapshot.current_stage)}")
        return True

    def persist(self) -> None:
        if self.storage is None:
            return
        with self._persist_lock:
            self.progress.queue = self.queue.snapshot()
            self.progress.current_stage = self.run_state.current_stage
            self.storage.save_progress(self.progress)

    def submit(self, task: Task) -> None:
        """Enqueue from outside the run loop (e.g. the source tracker) and persist."""
        self.queue.enqueue(task)
        self.persist()

    def tracker(self) -> SourceTracker:
        """The attached vault's source tracker; one per vault so index updates share a lock."""
        if self.storage is None:
            raise PreconditionError("no vault attached")
        if self._tracker is None:
            self._tracker = SourceTracker(self.storage, self.submit, extractor=self.extractor, log_fn=self.log)
        return self._tracker

    # ─── Control & status ────────────────────────────────────────────────────

    def request_stop(self) -> None:
        self._stop.set()
        if self.run_state.status == PROCESSING:
            self.run_state.set_status(STOPPING, self.run_state.current_task)

    def status(self) -> RunStatus:
        return RunStatus(
            status=self.run_state.status,
            current_stage=self.run_state.current_stage,
            current_task=self.run_state.current_task,
            log=self.run_state.lines(),
            vault_path=str(self.vault_path) if self.vault_path else None,
            vault_name=self.vault_name,
            source_dir=str(self.source_dir) if self.source_dir else None,
            queue_length=self.queue.length(),
            processed_count=len(self.progress.processed_source_ids),
        )

    # ─── Stage population ────────────────────────────────────────────────────

    def populate_stage(self, stage: Stage) -> list[Task]:
        """Tasks for `stage`, derived from the vault as it is right now."""
        if stage is Stage.INGEST:
            # Ingest work only ever comes from the source tracker.
            return []
        if stage in (Stage.ORGANIZE, Stage.REORGANIZE):
            return self._organize_tasks(stage)
        if stage is Stage.CONNECT:
            return [Task(TaskKind.LINK, stage, path=p) for p in self.notes.note_files()]
        if stage is Stage.DEDUCE:
            return [Task(TaskKind.DEDUCE, stage, path=p) for p in self.notes.note_files()]
        if stage is Stage.INDUCE:
            return [
                Task(TaskKind.INDUCE, stage, path=moc["path"], payload=InducePayload(
                    moc_path=moc["path"],
                    moc_title=moc["title"],
                    note_titles=tuple(moc["noteTitles"]),
                    moc_summary=moc["summary"],
                ))
                for moc in self.notes.moc_list()
                if moc["noteTitles"]
            ]
        return [Task(TaskKind.VALIDATE, stage)]

    def _organize_tasks(self, stage: Stage) -> list[Task]:
        titles = self.notes.titles()
        if not titles:
            return []
        ceiling = self.storage.load_agent_config().max_titles_organize
        if len(titles) <= ceiling:
            return [Task(TaskKind.ORGANIZE_VAULT, stage)]
        items = []
        for title in titles:
            entry = self.index.get(title)
            items.append((title, entry.embedding if entry else None))
        clusters = cluster_items(items, self.target_cluster_size, self.max_clusters)
        self.log(f"Organize: {len(titles)} notes split into {len(clusters)} clusters")
        return [
            Task(TaskKind.ORGANIZE_VAULT, stage, payload=OrganizePayload(tuple(cluster)))
            for cluster in clusters
        ]

    # ─── Task execution ──────────────────────────────────────────────────────

    def _context(self) -> StepContext:
        config = self.storage.load_agent_config()
        self.index.use_embeddings = config.use_embeddings
        return StepContext(
            notes=self.notes,
            index=self.index,
            llm=self.llm,
            config=config,
            log=self.log,
            storage=self.storage,
        )

    def _do_extract(self, ctx: StepContext, task: Task):
        return extract_insights(ctx, task.payload.source_id)

    def _do_organize(self, ctx: StepContext, task: Task):
        titles = task.payload.note_titles if isinstance(task.payload, OrganizePayload) else ()
        return organize_vault(ctx, reorganize=task.stage is Stage.REORGANIZE, note_titles=titles)

    def _do_induce(self, ctx: StepContext, task: Task):
        return induce_for_moc(ctx, task.payload)

    def execute(self, ctx: StepContext, task: Task) -> bool:
        label = task.label()
        self.run_state.set_status(PROCESSING, label)
        self.log(f"TASK {label}")
        try:
            self._handlers[task.kind](ctx, task)
        except Exception as e:
            self.log(f"TASK error ({label}): {type(e).__name__}: {e}")
            return False
        if isinstance(task.payload, ExtractPayload):
            self.progress.mark_processed(task.payload.source_id)
        return True

    # ─── Run loop ────────────────────────────────────────────────────────────

    def check_ready(self) -> None:
        if self.storage is None:
            raise PreconditionError("no vault selected (vaultmaker config --vault PATH)")
        if self.llm is None:
            raise PreconditionError("no generation client (set OPENAI_API_KEY)")

    def run(self) -> bool:
        """Run the pipeline until it completes or a stop is requested.

        Returns False when the run could not start.
        """
        try:
            self.check_ready()
        except PreconditionError as e:
            self.log(f"Cannot start: {e}")
            return False
        if not self._run_lock.acquire(blocking=False):
            self.log("Pipeline is already running.")
            return False
        try:
            self._stop.clear()
            ctx = self._context()
            stage = self.run_state.current_stage or first_stage()
            self.run_state.set_stage(stage)
            self.run_state.set_status(PROCESSING)
            self.log(f"STAGE {stage.value}")
            self.persist()

            while not self._stop.is_set():
                task = self.queue.dequeue_for_stage(stage)
                if task is not None:
                    self.execute(ctx, task)
                    self.persist()
                    continue

                following = next_stage(stage)
                if following is None:
                    self.run_state.set_stage(None)
                    self.persist()
                    self.log("Pipeline complete. Idle.")
                    return True
                stage = following
                self.run_state.set_stage(stage)
                try:
                    tasks = self.populate_stage(stage)
                except Exception as e:
                    self.log(f"STAGE {stage.value}: population failed: {e}")
                    tasks = []
                self.queue.enqueue_many(tasks)
                self.log(f"STAGE {stage.value}: {len(tasks)} task(s)")
                self.persist()
                # Config edits take effect at stage boundaries.
                ctx = self._context()

            self.persist()
            self.log("Stopped by user.")
            return True
        finally:
            self.run_state.set_status(IDLE)
            self._run_lock.release()


def _stage_name(stage: Stage | None) -> str:
    return stage.value if stage else "none"
