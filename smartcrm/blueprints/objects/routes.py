"""
smartcrm/blueprints/objects/routes.py

Object routes (JSON)

Includes:
- Work-queue list with server-side filters
- Create / edit / soft delete
- Stage workflow: advance (task gated), finalize, rollback, restore, status, deadline extension
- Stage rows and event history

IMPORTANT:
- A gate block answers 409 with requires_confirmation=true and the open tasks;
  the client repeats the call with force=true after the user confirmed.
- Mutations require a managing role.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from ...extensions import db
from ...forms import (
    AdvanceForm,
    ExtendDeadlineForm,
    ObjectEditForm,
    ObjectForm,
    RestoreForm,
    RollbackForm,
    StatusForm,
    as_datetime,
    validate_or_raise,
)
from ...gateway import Gateway
from ...models import Object
from ...object_filters import TASK_FILTERS, list_objects
from ...security import api_login_required, current_actor_id, manager_required
from ...stages import STAGE_ORDER, stage_label
from ...task_gate import check_gate
from ... import workflow

objects_bp = Blueprint("objects", __name__, url_prefix="/objects")


# ---------------------------------------------------------------------
# Parsing / serialization helpers
# ---------------------------------------------------------------------
def _parse_optional_int(value: str | None) -> int | None:
    """Parse optional int from query string."""
    if value is None:
        return None
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _load_object(object_id: int) -> Object:
    return Gateway().get("objects", object_id)


def _iso(value):
    return value.isoformat() if value else None


def _object_dict(obj: Object) -> dict:
    open_tasks = [t for t in obj.tasks if t.is_open]
    active = obj.active_stage
    return {
        "id": obj.id,
        "name": obj.name,
        "address": obj.address,
        "comment": obj.comment,
        "client_id": obj.client_id,
        "client": obj.client.name if obj.client else None,
        "responsible_id": obj.responsible_id,
        "responsible": obj.responsible.full_name if obj.responsible else None,
        "current_stage": obj.current_stage,
        "current_stage_label": stage_label(obj.current_stage),
        "current_status": obj.current_status,
        "rolled_back_from": obj.rolled_back_from,
        "stage_deadline": _iso(active.deadline) if active else None,
        "is_overdue": bool(active and active.is_overdue),
        "open_tasks": len(open_tasks),
        "created_at": _iso(obj.created_at),
    }


def _stage_dict(row) -> dict:
    return {
        "id": row.id,
        "stage": row.stage_name,
        "label": stage_label(row.stage_name),
        "status": row.status,
        "started_at": _iso(row.started_at),
        "completed_at": _iso(row.completed_at),
        "deadline": _iso(row.deadline),
        "extension_days": row.extension_days,
        "responsible_id": row.responsible_id,
        "is_overdue": row.is_overdue,
    }


def _task_brief(task) -> dict:
    return {"id": task.id, "title": task.title, "assigned_to": task.assigned_to, "deadline": _iso(task.deadline)}


# ---------------------------------------------------------------------
# List / detail
# ---------------------------------------------------------------------
@objects_bp.route("/", methods=["GET"])
@api_login_required
def list_view():
    task_filter = request.args.get("tasks", "all")
    if task_filter not in TASK_FILTERS:
        task_filter = "all"

    objects = list_objects(
        search=request.args.get("search", ""),
        status=request.args.get("status", "all"),
        responsible_id=_parse_optional_int(request.args.get("responsible_id")),
        task_filter=task_filter,
    )
    return jsonify([_object_dict(o) for o in objects])


@objects_bp.route("/stages", methods=["GET"])
@api_login_required
def stages_view():
    return jsonify([{"id": s.value, "label": stage_label(s)} for s in STAGE_ORDER])


@objects_bp.route("/<int:object_id>", methods=["GET"])
@api_login_required
def detail(object_id: int):
    obj = _load_object(object_id)
    gate = check_gate(obj, obj.tasks)
    data = _object_dict(obj)
    data["stages"] = [_stage_dict(r) for r in obj.stages]
    data["can_advance"] = gate.allowed and not obj.is_completed
    data["pending_tasks"] = [_task_brief(t) for t in gate.pending]
    return jsonify(data)


@objects_bp.route("/<int:object_id>/history", methods=["GET"])
@api_login_required
def history(object_id: int):
    obj = _load_object(object_id)
    return jsonify(
        [
            {
                "id": h.id,
                "profile_id": h.profile_id,
                "profile": h.profile.full_name if h.profile else None,
                "text": h.action_text,
                "created_at": _iso(h.created_at),
            }
            for h in reversed(obj.history)
        ]
    )


# ---------------------------------------------------------------------
# Create / edit / delete
# ---------------------------------------------------------------------
@objects_bp.route("/", methods=["POST"])
@manager_required
def create():
    form = validate_or_raise(ObjectForm())
    obj = workflow.create_object(
        name=form.name.data,
        address=form.address.data,
        comment=form.comment.data,
        client_id=form.client_id.data,
        responsible_id=form.responsible_id.data,
        deadline=as_datetime(form.deadline.data),
        actor_id=current_actor_id(),
    )
    return jsonify(_object_dict(obj)), 201


@objects_bp.route("/<int:object_id>", methods=["PATCH"])
@manager_required
def update(object_id: int):
    obj = _load_object(object_id)
    form = validate_or_raise(ObjectEditForm())
    payload = request.get_json(silent=True) or {}
    changes = {k: getattr(form, k).data for k in workflow.EDITABLE_OBJECT_FIELDS if k in payload}
    workflow.update_object(obj, current_actor_id(), **changes)
    return jsonify(_object_dict(obj))


@objects_bp.route("/<int:object_id>", methods=["DELETE"])
@manager_required
def delete(object_id: int):
    obj = _load_object(object_id)
    workflow.delete_object(obj, current_actor_id())
    return jsonify({"ok": True})


# ---------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------
def _outcome_response(obj: Object, outcome):
    if outcome.blocked:
        return (
            jsonify(
                {
                    "error": "The current stage still has open tasks.",
                    "type": "GateBlocked",
                    "requires_confirmation": True,
                    "pending_tasks": [_task_brief(t) for t in outcome.pending_tasks],
                }
            ),
            409,
        )
    db.session.refresh(obj)
    return jsonify({**outcome.as_dict(), "object": _object_dict(obj)})


@objects_bp.route("/<int:object_id>/advance", methods=["POST"])
@manager_required
def advance(object_id: int):
    obj = _load_object(object_id)
    form = validate_or_raise(AdvanceForm())
    outcome = workflow.advance(
        obj,
        form.next_stage.data or None,
        form.responsible_id.data,
        as_datetime(form.deadline.data),
        actor_id=current_actor_id(),
        force=bool(form.force.data),
    )
    return _outcome_response(obj, outcome)


@objects_bp.route("/<int:object_id>/finalize", methods=["POST"])
@manager_required
def finalize(object_id: int):
    obj = _load_object(object_id)
    payload = request.get_json(silent=True) or {}
    outcome = workflow.finalize(obj, actor_id=current_actor_id(), force=payload.get("force") is True)
    return _outcome_response(obj, outcome)


@objects_bp.route("/<int:object_id>/rollback", methods=["POST"])
@manager_required
def rollback(object_id: int):
    obj = _load_object(object_id)
    form = validate_or_raise(RollbackForm())
    workflow.rollback(
        obj,
        form.target_stage.data,
        form.reason.data,
        form.responsible_id.data,
        actor_id=current_actor_id(),
    )
    db.session.refresh(obj)
    return jsonify(_object_dict(obj))


@objects_bp.route("/<int:object_id>/restore", methods=["POST"])
@manager_required
def restore(object_id: int):
    obj = _load_object(object_id)
    form = validate_or_raise(RestoreForm())
    workflow.restore_forward(
        obj,
        actor_id=current_actor_id(),
        responsible_id=form.responsible_id.data,
        deadline=as_datetime(form.deadline.data),
    )
    db.session.refresh(obj)
    return jsonify(_object_dict(obj))


@objects_bp.route("/<int:object_id>/status", methods=["POST"])
@manager_required
def status(object_id: int):
    obj = _load_object(object_id)
    form = validate_or_raise(StatusForm())
    workflow.update_status(obj, form.status.data, actor_id=current_actor_id())
    return jsonify(_object_dict(obj))


@objects_bp.route("/<int:object_id>/extend-deadline", methods=["POST"])
@manager_required
def extend_deadline(object_id: int):
    obj = _load_object(object_id)
    form = validate_or_raise(ExtendDeadlineForm())
    row = workflow.extend_deadline(obj, form.days.data, actor_id=current_actor_id())
    return jsonify(_stage_dict(row))
