"""
smartcrm/task_gate.py

Pure check run before a forward transition: an object may not leave its current stage
while tasks created on that stage are still open.

Tasks created on earlier stages never block later stages, soft-deleted tasks never block,
and force=True overrides the gate (the caller asked for explicit confirmation).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from .stages import TaskStatus


@dataclass(frozen=True)
class GateResult:
    allowed: bool
    pending: tuple = field(default_factory=tuple)

    @property
    def blocked(self) -> bool:
        return not self.allowed


def pending_tasks(obj, tasks: Iterable) -> list:
    return [
        t
        for t in tasks
        if t.stage_id == obj.current_stage
        and t.status != TaskStatus.COMPLETED.value
        and not getattr(t, "is_deleted", False)
    ]


def can_advance(obj, tasks: Iterable, force: bool = False) -> bool:
    if force:
        return True
    return not pending_tasks(obj, tasks)


def check_gate(obj, tasks: Iterable, force: bool = False) -> GateResult:
    pending = tuple(pending_tasks(obj, tasks))
    return GateResult(allowed=force or not pending, pending=pending)
