"""
smartcrm/blueprints/proposals/__init__.py

Blueprint package export (proposals and the invoices made from them).
"""

from __future__ import annotations

from .routes import invoices_bp, proposals_bp  # noqa: F401
