"""Queued work items.

A task is `{kind, stage, path?, payload?}`. The payload is a tagged variant
whose shape depends on `kind`; each variant serializes to the camelCase keys
used by the progress document.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from vaultmaker.core.stages import Stage, parse_stage


class TaskKind(str, Enum):
    EXTRACT_INSIGHTS = "extract-insights"
    ORGANIZE_VAULT = "organize-vault"
    LINK = "link"
    DEDUCE = "deduce"
    INDUCE = "induce"
    VALIDATE = "validate"


@dataclass(frozen=True)
class ExtractPayload:
    source_id: str

    def to_dict(self) -> dict:
        return {"sourceId": self.source_id}

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractPayload | None":
        source_id = data.get("sourceId")
        if not isinstance(source_id, str) or not source_id:
            return None
        return cls(source_id=source_id)


@dataclass(frozen=True)
class OrganizePayload:
    """Restricts an organize pass to one cluster of note titles."""

    note_titles: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"noteTitles": list(self.note_titles)}

    @classmethod
    def from_dict(cls, data: dict) -> "OrganizePayload":
        return cls(note_titles=_str_tuple(data.get("noteTitles")))


@dataclass(frozen=True)
class InducePayload:
    moc_path: str
    moc_title: str
    note_titles: tuple[str, ...] = ()
    moc_summary: str | None = None

    def to_dict(self) -> dict:
        out = {
            "mocPath": self.moc_path,
            "mocTitle": self.moc_title,
            "noteTitles": list(self.note_titles),
        }
        if self.moc_summary:
            out["mocSummary"] = self.moc_summary
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "InducePayload | None":
        moc_title = data.get("mocTitle")
        if not isinstance(moc_title, str):
            return None
        summary = data.get("mocSummary")
        return cls(
            moc_path=str(data.get("mocPath") or ""),
            moc_title=moc_title,
            note_titles=_str_tuple(data.get("noteTitles")),
            moc_summary=summary if isinstance(summary, str) and summary.strip() else None,
        )


Payload = Union[ExtractPayload, OrganizePayload, InducePayload]

_PAYLOAD_TYPES: dict[TaskKind, type] = {
    TaskKind.EXTRACT_INSIGHTS: ExtractPayload,
    TaskKind.ORGANIZE_VAULT: OrganizePayload,
    TaskKind.INDUCE: InducePayload,
}


def _str_tuple(value) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(v.strip() for v in value if isinstance(v, str) and v.strip())


@dataclass(frozen=True)
class Task:
    kind: TaskKind
    stage: Stage
    path: str | None = None
    payload: Payload | None = field(default=None)

    def label(self) -> str:
        if isinstance(self.payload, ExtractPayload):
            return f"{self.kind.value}: source {self.payload.source_id}"
        if isinstance(self.payload, InducePayload):
            return f"{self.kind.value}: {self.payload.moc_title}"
        if self.path:
            return f"{self.kind.value}: {self.path}"
        return self.kind.value

    def to_dict(self) -> dict:
        out: dict = {"kind": self.kind.value, "stage": self.stage.value}
        if self.path is not None:
            out["path"] = self.path
        if self.payload is not None:
            out["payload"] = self.payload.to_dict()
        return out

    @classmethod
    def from_dict(cls, data) -> "Task | None":
        """Rebuild a task from its persisted form; None when the shape is invalid."""
        if not isinstance(data, dict):
            return None
        try:
            kind = TaskKind(data.get("kind"))
        except ValueError:
            return None
        stage = parse_stage(data.get("stage"))
        if stage is None:
            return None
        path = data.get("path")
        payload = None
        raw_payload = data.get("payload")
        payload_type = _PAYLOAD_TYPES.get(kind)
        if payload_type is not None and isinstance(raw_payload, dict):
            payload = payload_type.from_dict(raw_payload)
        if kind is TaskKind.EXTRACT_INSIGHTS and payload is None:
            return None
        if kind is TaskKind.INDUCE and payload is None:
            return None
        return cls(kind=kind, stage=stage, path=path if isinstance(path, str) else None, payload=payload)


def extract_task(source_id: str) -> Task:
    return Task(TaskKind.EXTRACT_INSIGHTS, Stage.INGEST, payload=ExtractPayload(source_id))
