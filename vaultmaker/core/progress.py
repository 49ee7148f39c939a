from __future__ import annotations

from dataclasses import dataclass, field

from vaultmaker.core.source_index import now_iso
from vaultmaker.core.stages import Stage, parse_stage
from vaultmaker.core.tasks import Task


@dataclass
class ProgressSnapshot:
    """Durable checkpoint of a run: queue, active stage and processed sources."""

    processed_source_ids: list[str] = field(default_factory=list)
    current_stage: Stage | None = None
    queue: list[Task] = field(default_factory=list)
    last_updated: str = ""

    def mark_processed(self, source_id: str) -> None:
        # Ordered set; growth only.
        if source_id not in self.processed_source_ids:
            self.processed_source_ids.append(source_id)

    def to_dict(self) -> dict:
        return {
            "processedSourceIds": list(self.processed_source_ids),
            "currentStage": self.current_stage.value if self.current_stage else None,
            "queue": [t.to_dict() for t in self.queue],
            "lastUpdated": self.last_updated or now_iso(),
        }

    @classmethod
    def from_dict(cls, data) -> "ProgressSnapshot | None":
        if not isinstance(data, dict):
            return None
        ids, queue = data.get("processedSourceIds"), data.get("queue")
        if not isinstance(ids, list) or not isinstance(queue, list):
            return None
        processed: list[str] = []
        for sid in ids:
            if isinstance(sid, str) and sid not in processed:
                processed.append(sid)
        tasks = [t for t in (Task.from_dict(raw) for raw in queue) if t is not None]
        return cls(
            processed_source_ids=processed,
            current_stage=parse_stage(data.get("currentStage")),
            queue=tasks,
            last_updated=str(data.get("lastUpdated") or ""),
        )
