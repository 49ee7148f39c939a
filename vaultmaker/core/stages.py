from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    INGEST = "ingest"
    ORGANIZE = "organize"
    CONNECT = "connect"
    DEDUCE = "deduce"
    INDUCE = "induce"
    REORGANIZE = "re-organize"
    VALIDATE = "validate"


STAGES: tuple[Stage, ...] = tuple(Stage)

# Names written by earlier progress documents.
_ALIASES = {
    "extract": Stage.INGEST,
    "organize-again": Stage.REORGANIZE,
}


def parse_stage(value) -> Stage | None:
    """Return the Stage for a persisted value, or None if unknown."""
    if value is None:
        return None
    if isinstance(value, Stage):
        return value
    try:
        return Stage(value)
    except ValueError:
        return _ALIASES.get(str(value))


def first_stage() -> Stage:
    return STAGES[0]


def next_stage(stage: Stage) -> Stage | None:
    idx = STAGES.index(stage)
    if idx + 1 >= len(STAGES):
        return None
    return STAGES[idx + 1]
