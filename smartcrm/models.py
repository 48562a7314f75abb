"""
Smart Home CRM – Domain Models

Covers:
- Staff profiles (login users) and clients
- Objects (installation sites) with their stage history and event log
- Tasks bound to the stage that was active when they were created
- Product catalog, commercial proposals (two-level item tree) and invoices
- Transactions/payments (only as far as the invoice delete cascade needs them)
- Notifications and audit log

IMPORTANT:
- Stage / status columns hold the string values of the enums in stages.py.
- Money is Numeric(12, 2) and always handled as Decimal.
- The stage pointer invariant (exactly one active ObjectStage whose stage_name equals
  Object.current_stage) is maintained by gateway.py procedures, never by ad-hoc updates.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from .extensions import db
from .pricing import round2, to_decimal, vat_from_inclusive, net_from_inclusive
from .stages import ObjectStatus, Stage, StageStatus, TaskStatus


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite friendly)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------
# Staff & clients
# ---------------------------------------------------------------------
class Profile(UserMixin, db.Model):
    """Staff member and login user."""

    __tablename__ = "profiles"

    ROLES = ("admin", "director", "manager", "specialist", "storekeeper")
    MANAGING_ROLES = ("admin", "director", "manager")

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    full_name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(30), nullable=False, default="specialist", index=True)
    telegram_chat_id = db.Column(db.String(64), nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def can_manage(self) -> bool:
        return self.role in self.MANAGING_ROLES

    def __repr__(self):
        return f"<Profile {self.username}>"


class Client(db.Model):
    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    phone = db.Column(db.String(50))
    email = db.Column(db.String(120))

    manager_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    manager = db.relationship("Profile", foreign_keys=[manager_id])

    def __repr__(self):
        return f"<Client {self.name}>"


# ---------------------------------------------------------------------
# Objects & workflow
# ---------------------------------------------------------------------
class Object(db.Model):
    """Installation site / project."""

    __tablename__ = "objects"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    address = db.Column(db.String(255))
    comment = db.Column(db.Text)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    responsible_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)

    current_stage = db.Column(db.String(32), nullable=False, default=Stage.NEGOTIATION.value, index=True)
    current_status = db.Column(db.String(32), nullable=False, default=ObjectStatus.IN_WORK.value, index=True)
    rolled_back_from = db.Column(db.String(32), nullable=True)

    is_deleted = db.Column(db.Boolean, default=False, nullable=False, index=True)
    deleted_at = db.Column(db.DateTime, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    client = db.relationship("Client", backref=db.backref("objects", lazy=True))
    responsible = db.relationship("Profile", foreign_keys=[responsible_id])

    stages = db.relationship(
        "ObjectStage",
        back_populates="object",
        order_by="ObjectStage.id",
        cascade="all, delete-orphan",
    )
    history = db.relationship(
        "ObjectHistory",
        back_populates="object",
        order_by="ObjectHistory.id",
        cascade="all, delete-orphan",
    )
    tasks = db.relationship("Task", back_populates="object", order_by="Task.id", lazy=True)

    @property
    def active_stage(self) -> "ObjectStage | None":
        for row in self.stages:
            if row.status == StageStatus.ACTIVE.value:
                return row
        return None

    @property
    def is_completed(self) -> bool:
        return self.current_status == ObjectStatus.COMPLETED.value

    def reached_stages(self) -> set[str]:
        """Stage ids the object has entered at least once."""
        return {row.stage_name for row in self.stages}

    def latest_row_for(self, stage_name: str) -> "ObjectStage | None":
        rows = [r for r in self.stages if r.stage_name == stage_name]
        return rows[-1] if rows else None

    def __repr__(self):
        return f"<Object {self.name} @ {self.current_stage}>"


class ObjectStage(db.Model):
    """One row per stage instance (a stage revisited after rollback gets a new row)."""

    __tablename__ = "object_stages"

    id = db.Column(db.Integer, primary_key=True)

    object_id = db.Column(db.Integer, db.ForeignKey("objects.id", ondelete="CASCADE"), nullable=False, index=True)
    stage_name = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=StageStatus.PENDING.value, index=True)

    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    deadline = db.Column(db.DateTime, nullable=True)
    extension_days = db.Column(db.Integer, nullable=False, default=0)

    responsible_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow)

    object = db.relationship("Object", back_populates="stages")
    responsible = db.relationship("Profile", foreign_keys=[responsible_id])

    @property
    def is_overdue(self) -> bool:
        if self.status != StageStatus.ACTIVE.value or not self.deadline:
            return False
        return self.deadline < utcnow()

    def extend(self, days: int):
        self.deadline = (self.deadline or utcnow()) + timedelta(days=days)
        self.extension_days = (self.extension_days or 0) + days


class ObjectHistory(db.Model):
    """Human readable event log of an object (transitions, rollback reasons, status changes)."""

    __tablename__ = "object_history"

    id = db.Column(db.Integer, primary_key=True)

    object_id = db.Column(db.Integer, db.ForeignKey("objects.id", ondelete="CASCADE"), nullable=False, index=True)
    profile_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    action_text = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    object = db.relationship("Object", back_populates="history")
    profile = db.relationship("Profile")


class Task(db.Model):
    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)

    object_id = db.Column(db.Integer, db.ForeignKey("objects.id", ondelete="CASCADE"), nullable=False, index=True)
    # Stage that was active on the object when the task was created.
    stage_id = db.Column(db.String(32), nullable=True, index=True)

    title = db.Column(db.String(255), nullable=False)
    comment = db.Column(db.Text)
    assigned_to = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)
    status = db.Column(db.String(20), nullable=False, default=TaskStatus.PENDING.value, index=True)

    start_date = db.Column(db.DateTime, nullable=True)
    deadline = db.Column(db.DateTime, nullable=True)

    completed_at = db.Column(db.DateTime, nullable=True)
    completed_by = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    completion_comment = db.Column(db.Text)

    is_deleted = db.Column(db.Boolean, default=False, nullable=False, index=True)
    deleted_at = db.Column(db.DateTime, nullable=True)
    deleted_by = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    object = db.relationship("Object", back_populates="tasks")
    executor = db.relationship("Profile", foreign_keys=[assigned_to])

    @property
    def is_open(self) -> bool:
        return not self.is_deleted and self.status != TaskStatus.COMPLETED.value


# ---------------------------------------------------------------------
# Catalog, proposals, invoices
# ---------------------------------------------------------------------
class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    sku = db.Column(db.String(80), nullable=True, unique=True, index=True)
    category = db.Column(db.String(120), nullable=True, index=True)
    unit = db.Column(db.String(20), nullable=False, default="шт")
    description = db.Column(db.Text)

    base_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    retail_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    is_archived = db.Column(db.Boolean, default=False, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self):
        return f"<Product {self.sku or self.id} {self.name}>"


class Proposal(db.Model):
    """Commercial proposal (КП)."""

    __tablename__ = "commercial_proposals"

    STATUSES = ("draft", "sent", "accepted", "rejected")

    id = db.Column(db.Integer, primary_key=True)

    number = db.Column(db.Integer, nullable=False, index=True)
    title = db.Column(db.String(255))
    preamble = db.Column(db.Text)
    footer = db.Column(db.Text)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    object_id = db.Column(db.Integer, db.ForeignKey("objects.id", ondelete="SET NULL"), nullable=True, index=True)

    has_vat = db.Column(db.Boolean, nullable=False, default=True)
    # VAT-inclusive snapshot taken at save time.
    total_amount_byn = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    status = db.Column(db.String(20), nullable=False, default="draft", index=True)

    created_by = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    client = db.relationship("Client")
    object = db.relationship("Object")

    items = db.relationship(
        "ProposalItem",
        back_populates="proposal",
        order_by="ProposalItem.position",
        cascade="all, delete-orphan",
    )
    invoices = db.relationship("Invoice", back_populates="proposal", lazy=True)

    @property
    def reference(self) -> str:
        day = self.created_at or utcnow()
        return f"{day:%d%m%y}-{self.created_by or 0}-{self.number}"

    @property
    def root_items(self) -> list["ProposalItem"]:
        return [i for i in self.items if i.parent_id is None]

    @property
    def vat_amount(self) -> Decimal:
        if not self.has_vat:
            return Decimal("0.00")
        return vat_from_inclusive(self.total_amount_byn)

    @property
    def net_amount(self) -> Decimal:
        if not self.has_vat:
            return round2(self.total_amount_byn)
        return net_from_inclusive(self.total_amount_byn)


class ProposalItem(db.Model):
    __tablename__ = "cp_items"

    id = db.Column(db.Integer, primary_key=True)

    proposal_id = db.Column(
        db.Integer,
        db.ForeignKey("commercial_proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_id = db.Column(db.Integer, db.ForeignKey("cp_items.id", ondelete="CASCADE"), nullable=True, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    # NULL for bundle headers
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    quantity = db.Column(db.Numeric(12, 2), nullable=False, default=1)
    snapshot_base_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    manual_markup = db.Column(db.Numeric(8, 2), nullable=False, default=Decimal("0.00"))
    price_at_moment = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    final_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    is_manual_price = db.Column(db.Boolean, nullable=False, default=False)

    snapshot_name = db.Column(db.String(255), nullable=False)
    snapshot_description = db.Column(db.Text)
    snapshot_unit = db.Column(db.String(20))
    snapshot_category = db.Column(db.String(120))

    proposal = db.relationship("Proposal", back_populates="items")
    product = db.relationship("Product")
    parent = db.relationship("ProposalItem", remote_side=[id], backref=db.backref("children", lazy=True))

    @property
    def is_bundle_header(self) -> bool:
        return self.product_id is None

    @property
    def line_total(self) -> Decimal:
        return round2(to_decimal(self.price_at_moment) * to_decimal(self.quantity))


class Invoice(db.Model):
    __tablename__ = "invoices"

    STATUSES = ("draft", "sent", "paid")

    id = db.Column(db.Integer, primary_key=True)

    number = db.Column(db.Integer, nullable=False, index=True)
    proposal_id = db.Column(
        db.Integer,
        db.ForeignKey("commercial_proposals.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    object_id = db.Column(db.Integer, db.ForeignKey("objects.id", ondelete="SET NULL"), nullable=True, index=True)

    has_vat = db.Column(db.Boolean, nullable=False, default=True)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    status = db.Column(db.String(20), nullable=False, default="draft", index=True)
    shipping_status = db.Column(db.String(20), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    proposal = db.relationship("Proposal", back_populates="invoices")
    client = db.relationship("Client")

    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        order_by="InvoiceItem.position",
        cascade="all, delete-orphan",
    )

    @property
    def reference(self) -> str:
        day = self.created_at or utcnow()
        return f"{day:%d%m%y}-{self.created_by or 0}-{self.number}"

    @property
    def vat_amount(self) -> Decimal:
        if not self.has_vat:
            return Decimal("0.00")
        return vat_from_inclusive(self.total_amount)


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"

    id = db.Column(db.Integer, primary_key=True)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("invoice_items.id", ondelete="CASCADE"), nullable=True, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(20))
    quantity = db.Column(db.Numeric(12, 2), nullable=False, default=1)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    invoice = db.relationship("Invoice", back_populates="items")


# ---------------------------------------------------------------------
# Finance (invoice delete cascade)
# ---------------------------------------------------------------------
class Transaction(db.Model):
    __tablename__ = "transactions"

    id = db.Column(db.Integer, primary_key=True)

    type = db.Column(db.String(20), nullable=False, default="income", index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    description = db.Column(db.Text)

    object_id = db.Column(db.Integer, db.ForeignKey("objects.id", ondelete="SET NULL"), nullable=True, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True)

    created_by = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    deleted_at = db.Column(db.DateTime, nullable=True)

    payments = db.relationship("TransactionPayment", back_populates="transaction", lazy=True)


class TransactionPayment(db.Model):
    __tablename__ = "transaction_payments"

    id = db.Column(db.Integer, primary_key=True)

    transaction_id = db.Column(
        db.Integer,
        db.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    payment_date = db.Column(db.DateTime, default=utcnow)

    created_by = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    transaction = db.relationship("Transaction", back_populates="payments")


# ---------------------------------------------------------------------
# Notifications & audit
# ---------------------------------------------------------------------
class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)

    profile_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    content = db.Column(db.String(500), nullable=False)
    link = db.Column(db.String(255), nullable=True)
    is_read = db.Column(db.Boolean, default=False, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)


class AuditLog(db.Model):
    """Who did what to which entity, with before/after snapshots."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    profile_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)
    username_snapshot = db.Column(db.String(150), nullable=True)

    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(30), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    profile = db.relationship("Profile", backref=db.backref("audit_entries", lazy=True))
