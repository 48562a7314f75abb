"""
smartcrm/tasks.py

Task mutations. A task is tagged with the stage that was active on its object when it was
created; that tag is what the task gate looks at.
"""

from __future__ import annotations

import logging
from datetime import datetime

from .audit import log_action, serialize_model
from .errors import TransitionError, ValidationError
from .gateway import Gateway
from .models import Object, Task, utcnow
from .notifications import notify
from .stages import TaskStatus

logger = logging.getLogger(__name__)


def create_tasks(
    obj: Object,
    *,
    title: str,
    assignee_ids: list[int],
    actor_id: int | None,
    start_date: datetime | None = None,
    deadline: datetime | None = None,
    comment: str | None = None,
    gateway: Gateway | None = None,
) -> list[Task]:
    """Create one task per assignee on the object's current stage."""
    gw = gateway or Gateway()
    title = (title or "").strip()
    if not title:
        raise ValidationError("Task title is required.")
    assignee_ids = list(dict.fromkeys(a for a in assignee_ids or [] if a))
    if not assignee_ids:
        raise ValidationError("Select at least one assignee.")
    if obj.is_completed:
        raise TransitionError("Cannot add tasks to a completed object.")

    created: list[Task] = []
    with gw.atomic():
        for assignee_id in assignee_ids:
            gw.get("profiles", assignee_id)
            task = Task(
                title=title,
                comment=(comment or "").strip() or None,
                assigned_to=assignee_id,
                status=TaskStatus.PENDING.value,
                stage_id=obj.current_stage,
                start_date=start_date or utcnow(),
                deadline=deadline,
                created_by=actor_id,
            )
            obj.tasks.append(task)
            gw.session.flush()
            log_action(task, "CREATE", actor_id=actor_id, after=serialize_model(task))
            created.append(task)

    deadline_str = deadline.strftime("%d.%m.%Y") if deadline else "Не указан"
    for task in created:
        notify(
            task.assigned_to,
            f"Вам назначена новая задача: {task.title}",
            f"#tasks/{task.id}",
            telegram_text=(
                "<b>📋 Вам назначена новая задача</b>\n\n"
                f"<b>🏠 Объект:</b> {obj.name}\n"
                f"<b>📅 Дедлайн:</b> {deadline_str}\n"
                f"<b>📝 Задача:</b> {task.title}"
            ),
            actor_id=actor_id,
        )
    logger.info("%d task(s) created on object %s stage %s", len(created), obj.id, obj.current_stage)
    return created


def start_task(task: Task, *, actor_id: int | None, gateway: Gateway | None = None) -> Task:
    gw = gateway or Gateway()
    if task.status != TaskStatus.PENDING.value:
        raise TransitionError("Only a pending task can be started.")
    with gw.atomic():
        before = serialize_model(task)
        task.status = TaskStatus.IN_PROGRESS.value
        gw.session.flush()
        log_action(task, "UPDATE", actor_id=actor_id, before=before, after=serialize_model(task))
    return task


def complete_task(
    task: Task,
    *,
    actor_id: int | None,
    comment: str | None = None,
    gateway: Gateway | None = None,
) -> Task:
    gw = gateway or Gateway()
    if task.status == TaskStatus.COMPLETED.value:
        raise TransitionError("Task is already completed.")

    with gw.atomic():
        before = serialize_model(task)
        task.status = TaskStatus.COMPLETED.value
        task.completed_at = utcnow()
        task.completed_by = actor_id
        task.completion_comment = (comment or "").strip() or None
        gw.session.flush()
        log_action(task, "COMPLETE", actor_id=actor_id, before=before, after=serialize_model(task))

    if task.created_by and task.created_by != task.assigned_to:
        notify(task.created_by, f"Задача выполнена: {task.title}", f"#tasks/{task.id}", actor_id=actor_id)
    return task


def soft_delete_task(task: Task, *, actor_id: int | None, gateway: Gateway | None = None) -> Task:
    """Mark a task deleted; it no longer blocks its stage."""
    gw = gateway or Gateway()
    with gw.atomic():
        before = serialize_model(task)
        task.is_deleted = True
        task.deleted_at = utcnow()
        task.deleted_by = actor_id
        gw.session.flush()
        log_action(task, "DELETE", actor_id=actor_id, before=before)
    return task
