"""
smartcrm/gateway.py

Persistence gateway over the Flask-SQLAlchemy session.

Provides:
- Named collections (objects, tasks, proposals, ...) with create/update/get/query/delete
- atomic(): one database transaction per logical operation
- The four stage procedures (transition / rollback / restore / finalize), each all-or-nothing

IMPORTANT:
- Gateway methods never commit on their own outside atomic().
- atomic() blocks nest: only the outermost block commits.
- Any SQLAlchemyError rolls the whole transaction back and is re-raised as
  PersistenceError with the backend message kept verbatim. No automatic retry.
- Stage procedures mutate through the Object.stages / Object.history relationships so
  the in-session collections always reflect the new state.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from sqlalchemy.exc import SQLAlchemyError

from .audit import log_action, serialize_model
from .errors import NotFoundError, PersistenceError, ValidationError
from .extensions import db
from .models import (
    Client,
    Invoice,
    InvoiceItem,
    Notification,
    Object,
    ObjectHistory,
    ObjectStage,
    Product,
    Profile,
    Proposal,
    ProposalItem,
    Task,
    Transaction,
    TransactionPayment,
    utcnow,
)
from .stages import ObjectStatus, Stage, StageStatus, stage_index, stage_label

logger = logging.getLogger(__name__)


COLLECTIONS: dict[str, type] = {
    "profiles": Profile,
    "clients": Client,
    "objects": Object,
    "object_stages": ObjectStage,
    "object_history": ObjectHistory,
    "tasks": Task,
    "products": Product,
    "proposals": Proposal,
    "proposal_items": ProposalItem,
    "invoices": Invoice,
    "invoice_items": InvoiceItem,
    "transactions": Transaction,
    "transaction_payments": TransactionPayment,
    "notifications": Notification,
}

# Collections whose rows are soft-deleted; get() treats deleted rows as missing.
SOFT_DELETE_COLLECTIONS = {"objects", "tasks"}


def _backend_message(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


class Gateway:
    """Repository + unit of work over db.session."""

    def __init__(self, session=None):
        self.session = session or db.session
        self._depth = 0

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    @contextmanager
    def atomic(self) -> Iterator[Any]:
        self._depth += 1
        try:
            yield self.session
            if self._depth == 1:
                self.session.commit()
        except SQLAlchemyError as exc:
            if self._depth == 1:
                self.session.rollback()
                logger.error("Transaction rolled back: %s", _backend_message(exc))
                raise PersistenceError(_backend_message(exc)) from exc
            raise
        except Exception:
            if self._depth == 1:
                self.session.rollback()
            raise
        finally:
            self._depth -= 1

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------
    @staticmethod
    def model_for(collection: str) -> type:
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise ValidationError(f"Unknown collection: {collection}") from None

    @staticmethod
    def _check_columns(model: type, data: dict) -> None:
        columns = set(model.__table__.columns.keys())
        unknown = set(data) - columns
        if unknown:
            raise ValidationError(f"Unknown fields for {model.__tablename__}: {', '.join(sorted(unknown))}")

    def create(self, collection: str, record: dict):
        model = self.model_for(collection)
        self._check_columns(model, record)
        instance = model(**record)
        self.session.add(instance)
        self.session.flush()
        return instance

    def get(self, collection: str, id: int):
        model = self.model_for(collection)
        instance = self.session.get(model, id)
        if instance is None or (collection in SOFT_DELETE_COLLECTIONS and instance.is_deleted):
            raise NotFoundError(f"{model.__name__} {id} not found.")
        return instance

    def update(self, collection: str, id: int, patch: dict):
        instance = self.get(collection, id)
        self._check_columns(type(instance), patch)
        for key, value in patch.items():
            setattr(instance, key, value)
        self.session.flush()
        return instance

    def query(self, collection: str, **filters) -> list:
        model = self.model_for(collection)
        self._check_columns(model, filters)
        return list(
            self.session.execute(db.select(model).filter_by(**filters).order_by(model.id)).scalars()
        )

    def delete(self, collection: str, id: int) -> None:
        model = self.model_for(collection)
        instance = self.session.get(model, id)
        if instance is None:
            raise NotFoundError(f"{model.__name__} {id} not found.")
        self.session.delete(instance)
        self.session.flush()

    def add_history(self, obj: Object, actor_id: int | None, text: str) -> ObjectHistory:
        entry = ObjectHistory(profile_id=actor_id, action_text=text)
        obj.history.append(entry)
        return entry

    # ------------------------------------------------------------------
    # Stage procedures
    # ------------------------------------------------------------------
    def _close_active(self, obj: Object, status: StageStatus, now: datetime) -> ObjectStage | None:
        active = obj.active_stage
        if active is not None:
            active.status = status.value
            active.completed_at = now
        return active

    def _open_stage(
        self,
        obj: Object,
        stage: Stage,
        responsible_id: int | None,
        deadline: datetime | None,
        now: datetime,
    ) -> ObjectStage:
        row = ObjectStage(
            stage_name=stage.value,
            status=StageStatus.ACTIVE.value,
            started_at=now,
            deadline=deadline,
            responsible_id=responsible_id,
        )
        obj.stages.append(row)
        obj.current_stage = stage.value
        return row

    def transition_stage(
        self,
        object_id: int,
        next_stage: Stage,
        responsible_id: int | None,
        deadline: datetime | None,
        actor_id: int | None,
    ) -> ObjectStage:
        with self.atomic():
            obj = self.get("objects", object_id)
            before = serialize_model(obj)
            now = utcnow()

            self._close_active(obj, StageStatus.COMPLETED, now)
            row = self._open_stage(obj, next_stage, responsible_id, deadline, now)

            if responsible_id is not None:
                obj.responsible_id = responsible_id
            # Moving forward past the stage that was rolled back from ends the detour.
            if obj.rolled_back_from and stage_index(next_stage) >= stage_index(obj.rolled_back_from):
                obj.rolled_back_from = None
            obj.updated_by = actor_id

            self.add_history(obj, actor_id, f"Переход на этап «{stage_label(next_stage)}»")
            self.session.flush()
            log_action(obj, "TRANSITION", actor_id=actor_id, before=before, after=serialize_model(obj))
        return row

    def rollback_stage(
        self,
        object_id: int,
        target_stage: Stage,
        reason: str,
        responsible_id: int,
        actor_id: int | None,
    ) -> ObjectStage:
        with self.atomic():
            obj = self.get("objects", object_id)
            before = serialize_model(obj)
            now = utcnow()
            from_stage = obj.current_stage

            self._close_active(obj, StageStatus.ROLLED_BACK, now)
            row = self._open_stage(obj, target_stage, responsible_id, None, now)

            obj.rolled_back_from = from_stage
            obj.responsible_id = responsible_id
            obj.updated_by = actor_id

            self.add_history(
                obj,
                actor_id,
                f"Откат с этапа «{stage_label(from_stage)}» на этап «{stage_label(target_stage)}». "
                f"Причина: {reason}",
            )
            self.session.flush()
            log_action(obj, "ROLLBACK", actor_id=actor_id, before=before, after=serialize_model(obj))
        return row

    def restore_stage(
        self,
        object_id: int,
        responsible_id: int | None,
        actor_id: int | None,
        deadline: datetime | None = None,
    ) -> ObjectStage:
        with self.atomic():
            obj = self.get("objects", object_id)
            if not obj.rolled_back_from:
                raise ValidationError("Object has no stage to restore to.")

            before = serialize_model(obj)
            now = utcnow()
            target = Stage(obj.rolled_back_from)

            previous = obj.latest_row_for(target.value)
            if responsible_id is None and previous is not None:
                responsible_id = previous.responsible_id
            if deadline is None and previous is not None:
                deadline = previous.deadline

            self._close_active(obj, StageStatus.COMPLETED, now)
            row = self._open_stage(obj, target, responsible_id, deadline, now)

            obj.rolled_back_from = None
            if responsible_id is not None:
                obj.responsible_id = responsible_id
            obj.updated_by = actor_id

            self.add_history(obj, actor_id, f"Возврат на этап «{stage_label(target)}»")
            self.session.flush()
            log_action(obj, "RESTORE", actor_id=actor_id, before=before, after=serialize_model(obj))
        return row

    def finalize_project(self, object_id: int, actor_id: int | None) -> Object:
        with self.atomic():
            obj = self.get("objects", object_id)
            before = serialize_model(obj)

            self._close_active(obj, StageStatus.COMPLETED, utcnow())
            obj.current_status = ObjectStatus.COMPLETED.value
            obj.rolled_back_from = None
            obj.updated_by = actor_id

            self.add_history(obj, actor_id, "Проект завершён")
            self.session.flush()
            log_action(obj, "FINALIZE", actor_id=actor_id, before=before, after=serialize_model(obj))
        return obj
