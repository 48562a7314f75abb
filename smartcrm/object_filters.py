"""
smartcrm/object_filters.py

Object list: server-side filters (SQL) and the work-queue ordering (Python).

Ordering:
1. frozen objects last
2. objects with an overdue open task first
3. earliest open-task deadline first (objects without deadlines after those with)
4. objects with open tasks before objects without
5. newest first
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import and_, func, or_

from .extensions import db
from .models import Client, Object, Task, utcnow
from .stages import ObjectStatus, TaskStatus

TASK_FILTERS = ("all", "has_tasks", "no_tasks")


def open_task_filter():
    return and_(Task.is_deleted.is_(False), Task.status != TaskStatus.COMPLETED.value)


def search_filter(term: str):
    like = f"%{term.lower()}%"
    return or_(
        func.lower(Object.name).like(like),
        func.lower(func.coalesce(Object.address, "")).like(like),
        Object.client.has(func.lower(Client.name).like(like)),
    )


def filtered_objects_query(
    search: str = "",
    status: str = "all",
    responsible_id: int | None = None,
    task_filter: str = "all",
):
    q = db.select(Object).filter(Object.is_deleted.is_(False))

    search = (search or "").strip()
    if search:
        q = q.filter(search_filter(search))

    if status and status != "all":
        q = q.filter(Object.current_status == status)

    if responsible_id:
        q = q.filter(Object.responsible_id == responsible_id)

    has_open = Object.tasks.any(open_task_filter())
    if task_filter == "has_tasks":
        q = q.filter(has_open)
    elif task_filter == "no_tasks":
        q = q.filter(~has_open)

    return q


def _open_tasks(obj: Object) -> list[Task]:
    return [t for t in obj.tasks if t.is_open]


def work_queue_key(obj: Object, now: datetime | None = None):
    now = now or utcnow()
    tasks = _open_tasks(obj)
    deadlines = [t.deadline for t in tasks if t.deadline]
    min_deadline = min(deadlines) if deadlines else None
    overdue = any(d < now for d in deadlines)
    created = obj.created_at or datetime.min

    return (
        obj.current_status == ObjectStatus.FROZEN.value,
        not overdue,
        min_deadline is None,
        min_deadline or datetime.max,
        not tasks,
        -created.timestamp() if created != datetime.min else 0,
    )


def list_objects(search="", status="all", responsible_id=None, task_filter="all") -> list[Object]:
    objects = db.session.execute(
        filtered_objects_query(search, status, responsible_id, task_filter)
    ).scalars().all()
    now = utcnow()
    return sorted(objects, key=lambda o: work_queue_key(o, now))
