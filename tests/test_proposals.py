import unittest
from decimal import Decimal

from smartcrm import cart as C
from smartcrm import proposals as P
from smartcrm.errors import NotFoundError, ValidationError
from smartcrm.extensions import db
from smartcrm.models import Invoice, InvoiceItem, ProposalItem, Transaction, TransactionPayment, utcnow

from support import AppTestCase


class ProposalServiceTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.sensor = self.make_product("SNS", "10.00", "12.00", name="Датчик")
        self.valve = self.make_product("VLV", "4.00", "5.00", name="Кран")
        self.knx = self.make_product("KNX", "50.00", "55.00", name="Актуатор")

        cart = C.add_bundle_header(C.Cart(), name="Защита от протечек", key="h")
        cart = C.add_product(cart, self.sensor, quantity=2, key="a")
        cart = C.add_product(cart, self.valve, quantity=1, key="b")
        cart = C.set_active_bundle(cart, None)
        cart = C.add_product(cart, self.knx, quantity=1, key="c")
        self.cart = cart
        self.header = {"client_id": self.client_row.id, "title": "КП на автоматику", "has_vat": True}

    def test_save_persists_tree_and_vat_inclusive_total(self):
        proposal = P.save_proposal(self.cart, self.header, actor_id=self.manager.id)

        self.assertEqual(proposal.number, 1)
        self.assertEqual(proposal.total_amount_byn, Decimal("100.80"))  # (29 + 55) * 1.2
        self.assertEqual(proposal.vat_amount, Decimal("16.80"))
        self.assertEqual(proposal.net_amount, Decimal("84.00"))
        self.assertEqual(proposal.reference, f"{utcnow():%d%m%y}-{self.manager.id}-1")

        rows = {r.snapshot_name: r for r in proposal.items}
        header = rows["Защита от протечек"]
        self.assertTrue(header.is_bundle_header)
        self.assertEqual(header.price_at_moment, Decimal("29.00"))
        self.assertEqual(rows["Датчик"].parent_id, header.id)
        self.assertEqual(rows["Кран"].parent_id, header.id)
        self.assertIsNone(rows["Актуатор"].parent_id)
        self.assertEqual(rows["Датчик"].final_price, Decimal("24.00"))
        self.assertEqual([r.position for r in proposal.items], [0, 1, 2, 3])

    def test_numbers_are_sequential_per_author_and_day(self):
        first = P.save_proposal(self.cart, self.header, actor_id=self.manager.id)
        second = P.save_proposal(self.cart, self.header, actor_id=self.manager.id)
        other = P.save_proposal(self.cart, self.header, actor_id=self.engineer.id)
        self.assertEqual((first.number, second.number, other.number), (1, 2, 1))

    def test_update_replaces_items(self):
        proposal = P.save_proposal(self.cart, self.header, actor_id=self.manager.id)
        smaller = C.remove_item(self.cart, "h")
        P.save_proposal(smaller, {**self.header, "has_vat": False}, actor_id=self.manager.id, proposal_id=proposal.id)

        self.assertEqual(ProposalItem.query.filter_by(proposal_id=proposal.id).count(), 1)
        self.assertEqual(proposal.total_amount_byn, Decimal("55.00"))
        self.assertEqual(proposal.number, 1)

    def test_validation(self):
        with self.assertRaises(ValidationError):
            P.save_proposal(self.cart, {"title": "no client"}, actor_id=None)
        with self.assertRaises(ValidationError):
            P.save_proposal(C.Cart(), self.header, actor_id=None)
        with self.assertRaises(NotFoundError):
            P.save_proposal(self.cart, {"client_id": 9999}, actor_id=None)

    def test_cart_round_trip_loads_headers_pinned(self):
        proposal = P.save_proposal(self.cart, self.header, actor_id=self.manager.id)
        cart = C.cart_from_proposal(proposal)
        header = [i for i in cart.items if i.is_bundle_header][0]
        self.assertTrue(header.is_manual_price)
        self.assertEqual(header.retail_price, Decimal("29.00"))
        self.assertEqual(len(cart.children_of(header.key)), 2)

    def test_invoice_copies_tree_with_frozen_prices(self):
        proposal = P.save_proposal(self.cart, self.header, actor_id=self.manager.id)
        invoice = P.create_invoice_from_proposal(proposal, actor_id=self.manager.id)

        self.assertEqual(invoice.status, "draft")
        self.assertEqual(len(invoice.items), 4)
        self.assertEqual(invoice.total_amount, Decimal("100.80"))
        self.assertEqual(invoice.vat_amount, Decimal("16.80"))

        by_name = {i.name: i for i in invoice.items}
        header = by_name["Защита от протечек"]
        self.assertEqual(by_name["Датчик"].parent_id, header.id)
        self.assertEqual(by_name["Датчик"].price, Decimal("12.00"))
        self.assertEqual(by_name["Датчик"].total, Decimal("24.00"))

        # Catalog price changes do not touch the invoice.
        self.sensor.retail_price = Decimal("99.00")
        db.session.commit()
        self.assertEqual(by_name["Датчик"].price, Decimal("12.00"))

        again = P.create_invoice_from_proposal(proposal, actor_id=self.manager.id)
        self.assertEqual(again.number, 2)
        self.assertEqual(len(proposal.invoices), 2)

    def test_delete_invoice_cascades_to_finance(self):
        proposal = P.save_proposal(self.cart, self.header, actor_id=self.manager.id)
        invoice = P.create_invoice_from_proposal(proposal, actor_id=self.manager.id)
        tx = Transaction(type="income", amount=Decimal("50.00"), invoice_id=invoice.id)
        db.session.add(tx)
        db.session.flush()
        db.session.add(TransactionPayment(transaction_id=tx.id, amount=Decimal("50.00")))
        db.session.commit()
        invoice_id = invoice.id

        P.delete_invoice(invoice_id, actor_id=self.manager.id)

        self.assertIsNone(db.session.get(Invoice, invoice_id))
        self.assertEqual(InvoiceItem.query.filter_by(invoice_id=invoice_id).count(), 0)
        self.assertEqual(Transaction.query.count(), 0)
        self.assertEqual(TransactionPayment.query.count(), 0)

    def test_delete_proposal_keeps_invoices(self):
        proposal = P.save_proposal(self.cart, self.header, actor_id=self.manager.id)
        invoice = P.create_invoice_from_proposal(proposal, actor_id=self.manager.id)
        proposal_id, invoice_id = proposal.id, invoice.id

        P.delete_proposal(proposal_id, actor_id=self.manager.id)

        self.assertEqual(ProposalItem.query.filter_by(proposal_id=proposal_id).count(), 0)
        self.assertIsNone(db.session.get(Invoice, invoice_id).proposal_id)

    def test_preview(self):
        data = P.preview(self.cart, has_vat=False)
        self.assertEqual(data["totals"]["total"], "84.00")
        self.assertEqual([i["key"] for i in data["items"]], ["h", "a", "b", "c"])


if __name__ == "__main__":
    unittest.main()
