"""
smartcrm/audit.py

Audit logging helpers.

Goals:
- Capture WHO did WHAT to WHICH entity, with BEFORE/AFTER snapshots.
- Store a username snapshot so the entry survives a later rename.
- Store the IP address when the mutation came in through a request.

IMPORTANT:
- This helper ADDS AuditLog entries to the current SQLAlchemy session.
  The caller controls transaction boundaries (gateway.atomic()).
- The actor is passed explicitly (workflow/services take an actor_id),
  so the helper also works from the CLI and from tests.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from flask import has_request_context, request

from .extensions import db
from .models import AuditLog, Profile


def _safe_str(value: Any) -> Optional[str]:
    """Stable string form for JSON/DB storage (Decimal, datetime, enums)."""
    if value is None:
        return None
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return str(value)


def serialize_model(instance: Any) -> Dict[str, Optional[str]]:
    """
    Snapshot of a model instance based on its table columns.

    Only scalar column values are captured (no relationships).
    """
    data: Dict[str, Optional[str]] = {}
    for column in instance.__table__.columns:
        data[column.name] = _safe_str(getattr(instance, column.name))
    return data


def log_action(
    entity: Any,
    action: str,
    *,
    actor_id: int | None = None,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Add an AuditLog entry to the current db session.

    Parameters:
        entity: model instance with .id (flush first for new rows)
        action: CREATE / UPDATE / DELETE / TRANSITION / ROLLBACK / RESTORE / FINALIZE ...
        actor_id: Profile id of the acting user (None for system actions)
        before / after: dict snapshots (optional)
    """
    entity_id = getattr(entity, "id", None)
    if entity_id is None:
        raise ValueError("log_action entity must have an 'id' attribute (after flush).")

    username = None
    if actor_id is not None:
        actor = db.session.get(Profile, actor_id)
        username = actor.username if actor else None

    entry = AuditLog(
        profile_id=actor_id,
        username_snapshot=username,
        entity_type=entity.__class__.__name__,
        entity_id=int(entity_id),
        action=str(action),
        before_data=json.dumps(before, ensure_ascii=False) if before else None,
        after_data=json.dumps(after, ensure_ascii=False) if after else None,
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)
    return entry
