"""
smartcrm/blueprints/tasks/routes.py

Task routes (JSON): list per object, create (one task per assignee), start, complete, delete.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from ...forms import CompleteTaskForm, TaskForm, as_datetime, validate_or_raise
from ...gateway import Gateway
from ...models import Task
from ...security import api_login_required, current_actor_id
from ...stages import stage_label
from ... import tasks as task_service

tasks_bp = Blueprint("tasks", __name__, url_prefix="/tasks")


def _iso(value):
    return value.isoformat() if value else None


def _task_dict(task: Task) -> dict:
    return {
        "id": task.id,
        "object_id": task.object_id,
        "stage_id": task.stage_id,
        "stage_label": stage_label(task.stage_id) if task.stage_id else None,
        "title": task.title,
        "comment": task.comment,
        "assigned_to": task.assigned_to,
        "status": task.status,
        "start_date": _iso(task.start_date),
        "deadline": _iso(task.deadline),
        "completed_at": _iso(task.completed_at),
        "completion_comment": task.completion_comment,
    }


@tasks_bp.route("/object/<int:object_id>", methods=["GET"])
@api_login_required
def list_for_object(object_id: int):
    obj = Gateway().get("objects", object_id)
    include_done = request.args.get("all") == "1"
    tasks = [t for t in obj.tasks if not t.is_deleted and (include_done or t.is_open)]
    return jsonify([_task_dict(t) for t in tasks])


@tasks_bp.route("/object/<int:object_id>", methods=["POST"])
@api_login_required
def create(object_id: int):
    obj = Gateway().get("objects", object_id)
    form = validate_or_raise(TaskForm())
    created = task_service.create_tasks(
        obj,
        title=form.title.data,
        assignee_ids=form.assignee_ids.data,
        start_date=as_datetime(form.start_date.data),
        deadline=as_datetime(form.deadline.data),
        comment=form.comment.data,
        actor_id=current_actor_id(),
    )
    return jsonify([_task_dict(t) for t in created]), 201


@tasks_bp.route("/<int:task_id>/start", methods=["POST"])
@api_login_required
def start(task_id: int):
    task = Gateway().get("tasks", task_id)
    task_service.start_task(task, actor_id=current_actor_id())
    return jsonify(_task_dict(task))


@tasks_bp.route("/<int:task_id>/complete", methods=["POST"])
@api_login_required
def complete(task_id: int):
    task = Gateway().get("tasks", task_id)
    form = validate_or_raise(CompleteTaskForm())
    task_service.complete_task(task, actor_id=current_actor_id(), comment=form.comment.data)
    return jsonify(_task_dict(task))


@tasks_bp.route("/<int:task_id>", methods=["DELETE"])
@api_login_required
def delete(task_id: int):
    task = Gateway().get("tasks", task_id)
    task_service.soft_delete_task(task, actor_id=current_actor_id())
    return jsonify({"ok": True})
