"""
smartcrm/errors.py

Error taxonomy for the CRM core.

- ValidationError: missing/invalid input, raised before anything touches the database.
- NotFoundError: a referenced record does not exist (or is soft-deleted).
- TransitionError: an illegal stage/status transition for the object's current state.
- PersistenceError: the database rejected a statement. The message is kept verbatim
  so it can be surfaced to the user as-is. Never retried automatically.

A gate block (pending tasks on the current stage) is NOT an error; see task_gate.GateResult.
"""

from __future__ import annotations


class CRMError(Exception):
    """Base class for every error raised by the CRM core."""

    status_code = 400

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "type": self.__class__.__name__}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CRMError):
    status_code = 400


class NotFoundError(CRMError):
    status_code = 404


class TransitionError(CRMError):
    status_code = 409


class PersistenceError(CRMError):
    status_code = 500
