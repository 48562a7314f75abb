"""
smartcrm/blueprints/objects/__init__.py

Blueprint package export.

IMPORTANT:
- Must expose objects_bp for app factory registration.
- Keep import minimal to avoid side effects.
"""

from __future__ import annotations

from .routes import objects_bp  # noqa: F401
