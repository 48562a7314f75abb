"""
smartcrm/proposals.py

Commercial proposals (КП) and invoices.

IMPORTANT:
- Saving a proposal is one transaction: header upsert, old items removed, roots inserted
  first, then children with their parent ids remapped from cart keys to row ids.
- Stored totals are VAT-inclusive snapshots; display VAT is extracted with
  pricing.vat_from_inclusive().
- An invoice freezes each line's unit price at the proposal's price_at_moment.
- Numbers are sequential per author and calendar day (reference DDMMYY-<author>-<n>).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from .audit import log_action, serialize_model
from .cart import Cart
from .errors import ValidationError
from .extensions import db
from .gateway import Gateway
from .models import Invoice, InvoiceItem, Proposal, ProposalItem, utcnow
from .pricing import ZERO, VAT_RATE, compute_totals, line_total, round2, to_decimal, unit_price

logger = logging.getLogger(__name__)

HEADER_FIELDS = ("title", "client_id", "object_id", "has_vat", "preamble", "footer", "status")


# ---------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------
def _day_bounds(day: date | datetime | None) -> tuple[datetime, datetime]:
    day = day or utcnow()
    if isinstance(day, datetime):
        day = day.date()
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)


def _next_number(model, author_id: int | None, day) -> int:
    start, end = _day_bounds(day)
    count = db.session.scalar(
        db.select(db.func.count(model.id)).filter(
            model.created_by == author_id,
            model.created_at >= start,
            model.created_at < end,
        )
    )
    return (count or 0) + 1


def next_proposal_number(author_id: int | None, day=None) -> int:
    return _next_number(Proposal, author_id, day)


def next_invoice_number(author_id: int | None, day=None) -> int:
    return _next_number(Invoice, author_id, day)


# ---------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------
def _clean_header(header: dict) -> dict:
    unknown = set(header) - set(HEADER_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown proposal fields: {', '.join(sorted(unknown))}")
    data = dict(header)
    if not data.get("client_id"):
        raise ValidationError("Select a client for the proposal.")
    if "status" in data and data["status"] not in Proposal.STATUSES:
        raise ValidationError(f"Unknown proposal status: {data['status']!r}")
    data["has_vat"] = bool(data.get("has_vat", True))
    if data.get("title") is not None:
        data["title"] = data["title"].strip() or None
    return data


def _clear_items(gw: Gateway, items) -> None:
    """Delete an item tree children first (delete-orphan on the owning collection)."""
    for row in [r for r in items if r.parent_id is not None]:
        items.remove(row)
    gw.session.flush()
    items.clear()
    gw.session.flush()


def _item_row(item, position: int, parent_id: int | None) -> ProposalItem:
    return ProposalItem(
        parent_id=parent_id,
        position=position,
        product_id=None if item.is_bundle_header else item.product_id,
        quantity=item.quantity,
        snapshot_base_price=round2(item.base_price),
        manual_markup=round2(item.manual_markup_percent),
        price_at_moment=unit_price(item),
        final_price=line_total(item),
        is_manual_price=item.is_manual_price,
        snapshot_name=item.name,
        snapshot_description=item.description or None,
        snapshot_unit=item.unit or None,
        snapshot_category=item.category or None,
    )


def save_proposal(
    cart: Cart,
    header: dict,
    *,
    actor_id: int | None,
    proposal_id: int | None = None,
    gateway: Gateway | None = None,
) -> Proposal:
    """Create or replace a proposal from a cart."""
    gw = gateway or Gateway()
    data = _clean_header(header)
    if not len(cart):
        raise ValidationError("The proposal has no items.")

    totals = compute_totals(cart.items, data["has_vat"])
    ordered = cart.ordered()

    with gw.atomic():
        gw.get("clients", data["client_id"])
        if data.get("object_id"):
            gw.get("objects", data["object_id"])

        if proposal_id:
            proposal = gw.get("proposals", proposal_id)
            before = serialize_model(proposal)
            action = "UPDATE"
            for key, value in data.items():
                setattr(proposal, key, value)
            _clear_items(gw, proposal.items)
        else:
            before = None
            action = "CREATE"
            proposal = gw.create(
                "proposals",
                {**data, "number": next_proposal_number(actor_id), "created_by": actor_id},
            )

        proposal.total_amount_byn = totals.total

        id_map: dict[str, int] = {}
        for position, item in enumerate(ordered):
            if item.parent_key is None:
                row = _item_row(item, position, None)
                proposal.items.append(row)
                gw.session.flush()
                id_map[item.key] = row.id

        for position, item in enumerate(ordered):
            if item.parent_key is not None:
                proposal.items.append(_item_row(item, position, id_map[item.parent_key]))

        gw.session.flush()
        log_action(proposal, action, actor_id=actor_id, before=before, after=serialize_model(proposal))

    logger.info("Proposal %s saved (%s) by %s, total %s", proposal.id, action, actor_id, totals.total)
    return proposal


def set_proposal_status(proposal: Proposal, status: str, *, actor_id: int | None, gateway: Gateway | None = None):
    gw = gateway or Gateway()
    if status not in Proposal.STATUSES:
        raise ValidationError(f"Unknown proposal status: {status!r}")
    with gw.atomic():
        before = serialize_model(proposal)
        proposal.status = status
        gw.session.flush()
        log_action(proposal, "STATUS", actor_id=actor_id, before=before, after=serialize_model(proposal))
    return proposal


def delete_proposal(proposal_id: int, *, actor_id: int | None, gateway: Gateway | None = None) -> None:
    """Items first, then the proposal. Invoices made from it keep existing (link cleared)."""
    gw = gateway or Gateway()
    with gw.atomic():
        proposal = gw.get("proposals", proposal_id)
        before = serialize_model(proposal)
        log_action(proposal, "DELETE", actor_id=actor_id, before=before)

        _clear_items(gw, proposal.items)
        for invoice in list(proposal.invoices):
            invoice.proposal_id = None
        gw.session.delete(proposal)
    logger.info("Proposal %s deleted by %s", proposal_id, actor_id)


# ---------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------
def create_invoice_from_proposal(
    proposal: Proposal,
    *,
    actor_id: int | None,
    gateway: Gateway | None = None,
) -> Invoice:
    """Copy the proposal's item tree 1:1 into a new draft invoice."""
    gw = gateway or Gateway()
    if not proposal.items:
        raise ValidationError("The proposal has no items.")

    with gw.atomic():
        invoice = gw.create(
            "invoices",
            {
                "number": next_invoice_number(actor_id),
                "proposal_id": proposal.id,
                "client_id": proposal.client_id,
                "object_id": proposal.object_id,
                "has_vat": proposal.has_vat,
                "status": "draft",
                "created_by": actor_id,
            },
        )

        id_map: dict[int, int] = {}
        subtotal = ZERO
        source_rows = sorted(proposal.items, key=lambda r: (r.parent_id is not None, r.position, r.id))
        for row in source_rows:
            price = round2(row.price_at_moment)
            total = round2(price * to_decimal(row.quantity))
            copy = InvoiceItem(
                parent_id=id_map[row.parent_id] if row.parent_id else None,
                position=row.position,
                product_id=row.product_id,
                name=row.snapshot_name,
                unit=row.snapshot_unit,
                quantity=row.quantity,
                price=price,
                total=total,
            )
            invoice.items.append(copy)
            gw.session.flush()
            id_map[row.id] = copy.id
            if row.parent_id is None:
                subtotal += total

        vat = round2(subtotal * VAT_RATE) if invoice.has_vat else ZERO
        invoice.total_amount = round2(subtotal + vat)
        gw.session.flush()
        log_action(invoice, "CREATE", actor_id=actor_id, after=serialize_model(invoice))

    logger.info("Invoice %s created from proposal %s by %s", invoice.id, proposal.id, actor_id)
    return invoice


def delete_invoice(invoice_id: int, *, actor_id: int | None, gateway: Gateway | None = None) -> None:
    """Cascade: payments -> transactions -> invoice items -> invoice, all or nothing."""
    gw = gateway or Gateway()
    with gw.atomic():
        invoice = gw.get("invoices", invoice_id)
        log_action(invoice, "DELETE", actor_id=actor_id, before=serialize_model(invoice))

        for transaction in gw.query("transactions", invoice_id=invoice_id):
            for payment in gw.query("transaction_payments", transaction_id=transaction.id):
                gw.session.delete(payment)
            gw.session.flush()
            gw.session.delete(transaction)
        gw.session.flush()

        _clear_items(gw, invoice.items)
        gw.session.delete(invoice)
    logger.info("Invoice %s deleted by %s", invoice_id, actor_id)


# ---------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------
def preview(cart: Cart, has_vat: bool) -> dict:
    """Totals and per-line prices for a cart that has not been saved yet."""
    return {
        "items": [
            {**item.as_dict(), "unit_price": str(unit_price(item)), "line_total": str(line_total(item))}
            for item in cart.ordered()
        ],
        "totals": compute_totals(cart.items, has_vat).as_dict(),
    }


def _proposal_item_dict(row: ProposalItem) -> dict:
    return {
        "id": row.id,
        "parent_id": row.parent_id,
        "position": row.position,
        "product_id": row.product_id,
        "is_bundle_header": row.is_bundle_header,
        "is_manual_price": row.is_manual_price,
        "name": row.snapshot_name,
        "description": row.snapshot_description,
        "unit": row.snapshot_unit,
        "category": row.snapshot_category,
        "quantity": str(row.quantity),
        "base_price": str(row.snapshot_base_price),
        "manual_markup_percent": str(row.manual_markup),
        "price": str(row.price_at_moment),
        "total": str(row.line_total),
    }


def proposal_summary(proposal: Proposal) -> dict:
    return {
        "id": proposal.id,
        "reference": proposal.reference,
        "number": proposal.number,
        "title": proposal.title,
        "status": proposal.status,
        "client_id": proposal.client_id,
        "client": proposal.client.name if proposal.client else None,
        "object_id": proposal.object_id,
        "has_vat": proposal.has_vat,
        "preamble": proposal.preamble,
        "footer": proposal.footer,
        "total": str(round2(proposal.total_amount_byn)),
        "vat": str(proposal.vat_amount),
        "net": str(proposal.net_amount),
        "created_at": proposal.created_at.isoformat() if proposal.created_at else None,
        "items": [_proposal_item_dict(r) for r in proposal.items],
        "invoice_ids": [i.id for i in proposal.invoices],
    }


def invoice_summary(invoice: Invoice) -> dict:
    return {
        "id": invoice.id,
        "reference": invoice.reference,
        "number": invoice.number,
        "status": invoice.status,
        "shipping_status": invoice.shipping_status,
        "proposal_id": invoice.proposal_id,
        "client_id": invoice.client_id,
        "client": invoice.client.name if invoice.client else None,
        "object_id": invoice.object_id,
        "has_vat": invoice.has_vat,
        "total": str(round2(invoice.total_amount)),
        "vat": str(invoice.vat_amount),
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
        "items": [
            {
                "id": r.id,
                "parent_id": r.parent_id,
                "position": r.position,
                "product_id": r.product_id,
                "name": r.name,
                "unit": r.unit,
                "quantity": str(r.quantity),
                "price": str(r.price),
                "total": str(r.total),
            }
            for r in invoice.items
        ],
    }
