"""
smartcrm/blueprints/tasks/__init__.py

Blueprint package export.

IMPORTANT:
- Must expose tasks_bp for app factory registration.
- Keep import minimal to avoid side effects.
"""

from __future__ import annotations

from .routes import tasks_bp  # noqa: F401
