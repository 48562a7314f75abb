"""
smartcrm/stages.py

Object lifecycle as an explicit finite-state machine.

An Object moves through 8 ordered stages. Allowed moves are enumerated in two tables:

- FORWARD_TRANSITIONS: a stage may only advance to its direct successor.
  The last stage (support) has no successor; leaving it means finalizing the project.
- ROLLBACK_TARGETS: a stage may roll back to itself or any earlier stage.

Code outside this module never compares stage positions by hand; it asks
can_transition() / can_rollback() instead.
"""

from __future__ import annotations

import enum

from .errors import TransitionError, ValidationError


class Stage(str, enum.Enum):
    NEGOTIATION = "negotiation"
    DESIGN = "design"
    LOGISTICS = "logistics"
    ASSEMBLY = "assembly"
    MOUNTING = "mounting"
    COMMISSIONING = "commissioning"
    PROGRAMMING = "programming"
    SUPPORT = "support"


class StageStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"


class ObjectStatus(str, enum.Enum):
    IN_WORK = "in_work"
    ON_PAUSE = "on_pause"
    FROZEN = "frozen"
    REVIEW_REQUIRED = "review_required"
    COMPLETED = "completed"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)

STAGE_LABELS = {
    Stage.NEGOTIATION: "Переговоры",
    Stage.DESIGN: "Проектирование",
    Stage.LOGISTICS: "Логистика",
    Stage.ASSEMBLY: "Сборка",
    Stage.MOUNTING: "Монтаж",
    Stage.COMMISSIONING: "Пусконаладка",
    Stage.PROGRAMMING: "Программирование",
    Stage.SUPPORT: "Поддержка",
}

FORWARD_TRANSITIONS: dict[Stage, frozenset[Stage]] = {
    stage: frozenset({STAGE_ORDER[i + 1]}) if i + 1 < len(STAGE_ORDER) else frozenset()
    for i, stage in enumerate(STAGE_ORDER)
}

ROLLBACK_TARGETS: dict[Stage, frozenset[Stage]] = {
    stage: frozenset(STAGE_ORDER[: i + 1]) for i, stage in enumerate(STAGE_ORDER)
}

# Statuses a user may set directly. COMPLETED is reachable only through finalize.
MANUAL_OBJECT_STATUSES = frozenset(
    {ObjectStatus.IN_WORK, ObjectStatus.ON_PAUSE, ObjectStatus.FROZEN, ObjectStatus.REVIEW_REQUIRED}
)


def parse_stage(value) -> Stage:
    """Coerce a stage id (str or Stage) to Stage; unknown ids are a validation error."""
    if isinstance(value, Stage):
        return value
    try:
        return Stage((value or "").strip())
    except ValueError:
        raise ValidationError(f"Unknown stage: {value!r}") from None


def stage_index(stage) -> int:
    return STAGE_ORDER.index(parse_stage(stage))


def next_stage(stage) -> Stage | None:
    successors = FORWARD_TRANSITIONS[parse_stage(stage)]
    return next(iter(successors)) if successors else None


def is_last_stage(stage) -> bool:
    return not FORWARD_TRANSITIONS[parse_stage(stage)]


def can_transition(current, target) -> bool:
    return parse_stage(target) in FORWARD_TRANSITIONS[parse_stage(current)]


def can_rollback(current, target) -> bool:
    return parse_stage(target) in ROLLBACK_TARGETS[parse_stage(current)]


def require_transition(current, target) -> Stage:
    current, target = parse_stage(current), parse_stage(target)
    if not can_transition(current, target):
        raise TransitionError(
            f"Cannot advance from '{current.value}' to '{target.value}'.",
            details={"allowed": sorted(s.value for s in FORWARD_TRANSITIONS[current])},
        )
    return target


def require_rollback(current, target) -> Stage:
    current, target = parse_stage(current), parse_stage(target)
    if not can_rollback(current, target):
        raise TransitionError(f"Cannot roll back from '{current.value}' to '{target.value}'.")
    return target


def stage_label(stage) -> str:
    return STAGE_LABELS[parse_stage(stage)]
