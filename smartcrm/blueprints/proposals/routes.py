"""
smartcrm/blueprints/proposals/routes.py

Commercial proposal and invoice routes (JSON).

Proposal payload:
    {
      "client_id": 1, "title": "...", "object_id": null, "has_vat": true,
      "preamble": "...", "footer": "...",
      "items": [ {key, parent_key, name, quantity, base_price, retail_price,
                  manual_markup_percent, product_id, is_bundle_header, is_manual_price}, ... ]
    }

IMPORTANT:
- Header fields go through ProposalHeaderForm; the item tree through cart.cart_from_payload(),
  which also re-derives every auto-priced bundle header server-side.
- Deleting proposals/invoices requires a managing role.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from ...cart import cart_from_payload, cart_from_proposal
from ...errors import ValidationError
from ...extensions import db
from ...forms import ProposalHeaderForm, validate_or_raise
from ...gateway import Gateway
from ...models import Invoice, Proposal
from ...security import api_login_required, current_actor_id, manager_required
from ... import proposals as proposal_service

proposals_bp = Blueprint("proposals", __name__, url_prefix="/proposals")
invoices_bp = Blueprint("invoices", __name__, url_prefix="/invoices")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _payload() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Expected a JSON object.")
    return payload


def _has_vat(payload: dict) -> bool:
    value = payload.get("has_vat", True)
    if not isinstance(value, bool):
        raise ValidationError("has_vat must be true or false.")
    return value


def _header_from_request(payload: dict) -> dict:
    form = validate_or_raise(ProposalHeaderForm())
    header = {
        "title": form.title.data,
        "client_id": form.client_id.data,
        "object_id": form.object_id.data,
        "preamble": form.preamble.data,
        "footer": form.footer.data,
        "has_vat": _has_vat(payload),
    }
    if "status" in payload:
        header["status"] = payload["status"]
    return header


def _list_row(p: Proposal) -> dict:
    return {
        "id": p.id,
        "reference": p.reference,
        "title": p.title,
        "status": p.status,
        "client": p.client.name if p.client else None,
        "total": str(p.total_amount_byn),
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


# ---------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------
@proposals_bp.route("/", methods=["GET"])
@api_login_required
def list_view():
    q = db.select(Proposal).order_by(Proposal.created_at.desc(), Proposal.id.desc())
    status = (request.args.get("status") or "").strip()
    if status:
        q = q.filter(Proposal.status == status)
    client_id = request.args.get("client_id", type=int)
    if client_id:
        q = q.filter(Proposal.client_id == client_id)
    return jsonify([_list_row(p) for p in db.session.execute(q).scalars()])


@proposals_bp.route("/preview", methods=["POST"])
@api_login_required
def preview():
    payload = _payload()
    cart = cart_from_payload(payload.get("items", []))
    return jsonify(proposal_service.preview(cart, _has_vat(payload)))


@proposals_bp.route("/", methods=["POST"])
@api_login_required
def create():
    payload = _payload()
    header = _header_from_request(payload)
    cart = cart_from_payload(payload.get("items", []))
    proposal = proposal_service.save_proposal(cart, header, actor_id=current_actor_id())
    return jsonify(proposal_service.proposal_summary(proposal)), 201


@proposals_bp.route("/<int:proposal_id>", methods=["GET"])
@api_login_required
def detail(proposal_id: int):
    proposal = Gateway().get("proposals", proposal_id)
    return jsonify(proposal_service.proposal_summary(proposal))


@proposals_bp.route("/<int:proposal_id>/cart", methods=["GET"])
@api_login_required
def cart_view(proposal_id: int):
    """Editable item tree for the builder (stable keys, pinned headers)."""
    proposal = Gateway().get("proposals", proposal_id)
    cart = cart_from_proposal(proposal)
    return jsonify({"items": [i.as_dict() for i in cart.ordered()], "has_vat": proposal.has_vat})


@proposals_bp.route("/<int:proposal_id>", methods=["PUT"])
@api_login_required
def update(proposal_id: int):
    payload = _payload()
    header = _header_from_request(payload)
    cart = cart_from_payload(payload.get("items", []))
    proposal = proposal_service.save_proposal(
        cart, header, actor_id=current_actor_id(), proposal_id=proposal_id
    )
    return jsonify(proposal_service.proposal_summary(proposal))


@proposals_bp.route("/<int:proposal_id>/status", methods=["POST"])
@api_login_required
def set_status(proposal_id: int):
    proposal = Gateway().get("proposals", proposal_id)
    proposal_service.set_proposal_status(proposal, _payload().get("status"), actor_id=current_actor_id())
    return jsonify(proposal_service.proposal_summary(proposal))


@proposals_bp.route("/<int:proposal_id>", methods=["DELETE"])
@manager_required
def delete(proposal_id: int):
    proposal_service.delete_proposal(proposal_id, actor_id=current_actor_id())
    return jsonify({"ok": True})


@proposals_bp.route("/<int:proposal_id>/invoice", methods=["POST"])
@api_login_required
def create_invoice(proposal_id: int):
    proposal = Gateway().get("proposals", proposal_id)
    invoice = proposal_service.create_invoice_from_proposal(proposal, actor_id=current_actor_id())
    return jsonify(proposal_service.invoice_summary(invoice)), 201


# ---------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------
@invoices_bp.route("/", methods=["GET"])
@api_login_required
def invoice_list():
    q = db.select(Invoice).order_by(Invoice.created_at.desc(), Invoice.id.desc())
    proposal_id = request.args.get("proposal_id", type=int)
    if proposal_id:
        q = q.filter(Invoice.proposal_id == proposal_id)
    return jsonify(
        [
            {
                "id": i.id,
                "reference": i.reference,
                "status": i.status,
                "proposal_id": i.proposal_id,
                "client": i.client.name if i.client else None,
                "total": str(i.total_amount),
            }
            for i in db.session.execute(q).scalars()
        ]
    )


@invoices_bp.route("/<int:invoice_id>", methods=["GET"])
@api_login_required
def invoice_detail(invoice_id: int):
    invoice = Gateway().get("invoices", invoice_id)
    return jsonify(proposal_service.invoice_summary(invoice))


@invoices_bp.route("/<int:invoice_id>", methods=["DELETE"])
@manager_required
def invoice_delete(invoice_id: int):
    proposal_service.delete_invoice(invoice_id, actor_id=current_actor_id())
    return jsonify({"ok": True})
