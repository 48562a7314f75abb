"""
smartcrm/security.py

Access control helpers for the JSON API.

Key rules:
- Every endpoint except login requires an authenticated session (api_login_required).
- Workflow mutations (advance, rollback, restore, status, proposal/invoice deletes) require
  a managing role: admin, director or manager (manager_required).
- Responses are JSON 401/403, never redirects.

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Tuple

from flask import Response, jsonify
from flask_login import current_user


def _unauthorized() -> Tuple[Response, int]:
    return jsonify({"error": "Authentication required.", "type": "Unauthorized"}), 401


def _forbidden() -> Tuple[Response, int]:
    return jsonify({"error": "Not allowed for your role.", "type": "Forbidden"}), 403


def current_actor_id() -> int | None:
    return current_user.id if current_user.is_authenticated else None


def is_manager() -> bool:
    if not current_user.is_authenticated:
        return False
    can_manage = getattr(current_user, "can_manage", None)
    return bool(callable(can_manage) and can_manage())


def api_login_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: authenticated session, JSON 401 otherwise."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not current_user.is_authenticated:
            return _unauthorized()
        return view_func(*args, **kwargs)

    return wrapper


def manager_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: admin/director/manager."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not current_user.is_authenticated:
            return _unauthorized()
        if not is_manager():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper
