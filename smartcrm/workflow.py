"""
smartcrm/workflow.py

Object lifecycle operations (create, advance, finalize, rollback, restore, status, deadline).

Rules:
- Every operation takes an explicit actor_id (the acting Profile id).
- Legal moves come from the tables in stages.py; illegal ones raise TransitionError.
- A forward move is gated by open tasks of the current stage (task_gate). A blocked gate is
  NOT an exception: advance()/finalize() return a TransitionOutcome with blocked=True and
  leave the object untouched. Pass force=True after the user confirmed.
- A completed object is terminal: every further transition raises TransitionError.
- Notifications go out only after the database transaction committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from .audit import log_action, serialize_model
from .errors import TransitionError, ValidationError
from .gateway import Gateway
from .models import Object, ObjectStage, utcnow
from .notifications import notify
from .stages import (
    MANUAL_OBJECT_STATUSES,
    ObjectStatus,
    Stage,
    StageStatus,
    is_last_stage,
    next_stage as successor_of,
    parse_stage,
    require_rollback,
    require_transition,
    stage_label,
)
from .task_gate import check_gate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionOutcome:
    blocked: bool = False
    pending_tasks: list = field(default_factory=list)
    stage_row: ObjectStage | None = None
    finalized: bool = False

    def as_dict(self) -> dict:
        return {
            "blocked": self.blocked,
            "finalized": self.finalized,
            "stage": self.stage_row.stage_name if self.stage_row else None,
            "pending_tasks": [{"id": t.id, "title": t.title} for t in self.pending_tasks],
        }


def _link(obj: Object) -> str:
    return f"#objects/{obj.id}"


def _ensure_open(obj: Object) -> None:
    if obj.is_completed:
        raise TransitionError(f"Object '{obj.name}' is completed; no further changes are allowed.")


# ---------------------------------------------------------------------
# Create / edit
# ---------------------------------------------------------------------
def create_object(
    *,
    name: str,
    client_id: int,
    responsible_id: int,
    actor_id: int | None,
    address: str | None = None,
    comment: str | None = None,
    deadline: datetime | None = None,
    gateway: Gateway | None = None,
) -> Object:
    """Insert an Object at `negotiation` together with its single active stage row."""
    gw = gateway or Gateway()
    name = (name or "").strip()
    if not name:
        raise ValidationError("Object name is required.")
    if not client_id:
        raise ValidationError("Client is required.")
    if not responsible_id:
        raise ValidationError("Responsible person is required.")

    with gw.atomic():
        client = gw.get("clients", client_id)
        gw.get("profiles", responsible_id)

        obj = gw.create(
            "objects",
            {
                "name": name,
                "address": (address or "").strip() or None,
                "comment": (comment or "").strip() or None,
                "client_id": client_id,
                "responsible_id": responsible_id,
                "current_stage": Stage.NEGOTIATION.value,
                "current_status": ObjectStatus.IN_WORK.value,
                "created_by": actor_id,
                "updated_by": actor_id,
            },
        )
        obj.stages.append(
            ObjectStage(
                stage_name=Stage.NEGOTIATION.value,
                status=StageStatus.ACTIVE.value,
                started_at=utcnow(),
                deadline=deadline,
                responsible_id=responsible_id,
            )
        )
        gw.add_history(obj, actor_id, f"Объект создан на этапе «{stage_label(Stage.NEGOTIATION)}»")
        log_action(obj, "CREATE", actor_id=actor_id, after=serialize_model(obj))

    logger.info("Object %s created by %s", obj.id, actor_id)
    notify(
        responsible_id,
        f"Вам назначен новый объект: {obj.name}",
        _link(obj),
        telegram_text=(
            "🏠 Вам назначен новый объект\n\n"
            f"<b>🏗 Объект:</b> {obj.name}\n"
            f"<b>📍 Адрес:</b> {obj.address or 'Не указан'}\n"
            f"<b>👤 Клиент:</b> {client.name}"
        ),
        actor_id=actor_id,
    )
    return obj


EDITABLE_OBJECT_FIELDS = ("name", "address", "comment", "client_id", "responsible_id")


def update_object(obj: Object, actor_id: int | None, gateway: Gateway | None = None, **changes) -> Object:
    """Edit descriptive fields; a new responsible person is notified."""
    gw = gateway or Gateway()
    unknown = set(changes) - set(EDITABLE_OBJECT_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    for key in ("name", "address", "comment"):
        if key in changes:
            value = changes[key]
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{key} must be text.")
            changes[key] = (value or "").strip() or None
    if "name" in changes and changes["name"] is None:
        raise ValidationError("Object name is required.")
    for key in ("client_id", "responsible_id"):
        if key in changes and not changes[key]:
            raise ValidationError(f"{key} cannot be empty.")

    old_responsible = obj.responsible_id
    with gw.atomic():
        if changes.get("client_id"):
            gw.get("clients", changes["client_id"])
        if changes.get("responsible_id"):
            gw.get("profiles", changes["responsible_id"])

        before = serialize_model(obj)
        changes["updated_by"] = actor_id
        gw.update("objects", obj.id, changes)
        log_action(obj, "UPDATE", actor_id=actor_id, before=before, after=serialize_model(obj))

    if obj.responsible_id and obj.responsible_id != old_responsible:
        notify(obj.responsible_id, f"Вам назначен объект: {obj.name}", _link(obj), actor_id=actor_id)
    return obj


def delete_object(obj: Object, actor_id: int | None, gateway: Gateway | None = None) -> None:
    """Soft delete; the object disappears from lists and lookups."""
    gw = gateway or Gateway()
    with gw.atomic():
        before = serialize_model(obj)
        gw.update("objects", obj.id, {"is_deleted": True, "deleted_at": utcnow(), "updated_by": actor_id})
        log_action(obj, "DELETE", actor_id=actor_id, before=before)
    logger.info("Object %s deleted by %s", obj.id, actor_id)


# ---------------------------------------------------------------------
# Stage transitions
# ---------------------------------------------------------------------
def advance(
    obj: Object,
    next_stage=None,
    responsible_id: int | None = None,
    deadline: datetime | None = None,
    *,
    actor_id: int | None,
    force: bool = False,
    gateway: Gateway | None = None,
) -> TransitionOutcome:
    """
    Move the object to the next stage. At the last stage, with no next_stage given, this
    finalizes the project.

    next_stage defaults to the successor of the current stage; responsible_id defaults
    to the object's current responsible person.
    """
    gw = gateway or Gateway()
    _ensure_open(obj)
    if is_last_stage(obj.current_stage) and next_stage:
        raise TransitionError(
            f"'{obj.current_stage}' is the last stage; call finalize instead of moving to '{next_stage}'."
        )

    gate = check_gate(obj, obj.tasks, force=force)
    if gate.blocked:
        logger.info("Advance of object %s blocked by %d open task(s)", obj.id, len(gate.pending))
        return TransitionOutcome(blocked=True, pending_tasks=list(gate.pending))

    if is_last_stage(obj.current_stage):
        finalize(obj, actor_id=actor_id, force=True, gateway=gw)
        return TransitionOutcome(finalized=True)

    target = parse_stage(next_stage) if next_stage else successor_of(obj.current_stage)
    require_transition(obj.current_stage, target)
    responsible_id = responsible_id or obj.responsible_id
    if responsible_id:
        gw.get("profiles", responsible_id)

    row = gw.transition_stage(obj.id, target, responsible_id, deadline, actor_id)
    logger.info("Object %s advanced to %s by %s", obj.id, target.value, actor_id)

    notify(
        responsible_id,
        f"Объект «{obj.name}» переведён на этап «{stage_label(target)}»",
        _link(obj),
        actor_id=actor_id,
    )
    return TransitionOutcome(stage_row=row)


def finalize(
    obj: Object,
    *,
    actor_id: int | None,
    force: bool = False,
    gateway: Gateway | None = None,
) -> TransitionOutcome:
    """Complete the project from the last stage. No new stage row is created."""
    gw = gateway or Gateway()
    _ensure_open(obj)
    if not is_last_stage(obj.current_stage):
        raise TransitionError(f"Only an object at '{Stage.SUPPORT.value}' can be finalized.")

    gate = check_gate(obj, obj.tasks, force=force)
    if gate.blocked:
        return TransitionOutcome(blocked=True, pending_tasks=list(gate.pending))

    gw.finalize_project(obj.id, actor_id)
    logger.info("Object %s finalized by %s", obj.id, actor_id)

    notify(obj.responsible_id, f"Проект «{obj.name}» завершён", _link(obj), actor_id=actor_id)
    return TransitionOutcome(finalized=True)


def rollback(
    obj: Object,
    target_stage,
    reason: str,
    responsible_id: int | None,
    *,
    actor_id: int | None,
    gateway: Gateway | None = None,
) -> ObjectStage:
    """Return the object to a stage it has already been through. Reason and responsible are required."""
    gw = gateway or Gateway()
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rollback reason is required.")
    if not responsible_id:
        raise ValidationError("A responsible person is required for rollback.")

    _ensure_open(obj)
    target = require_rollback(obj.current_stage, target_stage)
    if target.value not in obj.reached_stages():
        raise TransitionError(f"Object has never reached stage '{target.value}'.")
    gw.get("profiles", responsible_id)

    row = gw.rollback_stage(obj.id, target, reason, responsible_id, actor_id)
    logger.info("Object %s rolled back to %s by %s", obj.id, target.value, actor_id)

    notify(
        responsible_id,
        f"Объект «{obj.name}» возвращён на этап «{stage_label(target)}». Причина: {reason}",
        _link(obj),
        actor_id=actor_id,
    )
    return row


def restore_forward(
    obj: Object,
    *,
    actor_id: int | None,
    responsible_id: int | None = None,
    deadline: datetime | None = None,
    gateway: Gateway | None = None,
) -> ObjectStage:
    """Jump back to the stage the object was rolled back from. Not gated by tasks."""
    gw = gateway or Gateway()
    _ensure_open(obj)
    if not obj.rolled_back_from:
        raise TransitionError("Object was not rolled back; nothing to restore.")
    if responsible_id:
        gw.get("profiles", responsible_id)

    row = gw.restore_stage(obj.id, responsible_id, actor_id, deadline=deadline)
    logger.info("Object %s restored to %s by %s", obj.id, row.stage_name, actor_id)

    notify(
        row.responsible_id,
        f"Объект «{obj.name}» возвращён на этап «{stage_label(row.stage_name)}»",
        _link(obj),
        actor_id=actor_id,
    )
    return row


# ---------------------------------------------------------------------
# Status & deadlines
# ---------------------------------------------------------------------
def update_status(obj: Object, status, *, actor_id: int | None, gateway: Gateway | None = None) -> Object:
    gw = gateway or Gateway()
    try:
        status = ObjectStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown object status: {status!r}") from None

    _ensure_open(obj)
    if status not in MANUAL_OBJECT_STATUSES:
        raise TransitionError("An object can only be completed by finalizing its last stage.")
    if obj.current_status == status.value:
        return obj

    with gw.atomic():
        before = serialize_model(obj)
        old = obj.current_status
        obj.current_status = status.value
        obj.updated_by = actor_id
        gw.add_history(obj, actor_id, f"Статус изменён: {old} → {status.value}")
        gw.session.flush()
        log_action(obj, "STATUS", actor_id=actor_id, before=before, after=serialize_model(obj))

    logger.info("Object %s status %s -> %s by %s", obj.id, old, status.value, actor_id)
    return obj


def extend_deadline(obj: Object, days: int, *, actor_id: int | None, gateway: Gateway | None = None) -> ObjectStage:
    """Push the active stage deadline by `days` and accumulate extension_days."""
    gw = gateway or Gateway()
    if not isinstance(days, int) or days <= 0:
        raise ValidationError("Extension must be a positive number of days.")

    _ensure_open(obj)
    row = obj.active_stage
    if row is None:
        raise TransitionError("Object has no active stage.")

    with gw.atomic():
        before = serialize_model(row)
        row.extend(days)
        gw.add_history(
            obj,
            actor_id,
            f"Срок этапа «{stage_label(row.stage_name)}» продлён на {days} дн.",
        )
        gw.session.flush()
        log_action(row, "EXTEND", actor_id=actor_id, before=before, after=serialize_model(row))

    return row
