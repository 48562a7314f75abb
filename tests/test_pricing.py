import unittest
from decimal import Decimal

from smartcrm.cart import CartItem
from smartcrm.pricing import (
    bundle_auto_price,
    compute_totals,
    line_total,
    markup_from_prices,
    net_from_inclusive,
    round2,
    unit_price,
    vat_from_inclusive,
)


def item(key, base="0", retail="0", qty="1", markup="0", parent=None, header=False):
    return CartItem(
        key=key,
        name=key,
        quantity=Decimal(qty),
        base_price=Decimal(base),
        retail_price=Decimal(retail),
        manual_markup_percent=Decimal(markup),
        parent_key=parent,
        product_id=None if header else 1,
        is_bundle_header=header,
    )


class RoundingTests(unittest.TestCase):
    def test_half_up_at_two_decimals(self):
        self.assertEqual(round2("10.005"), Decimal("10.01"))
        self.assertEqual(round2("10.004"), Decimal("10.00"))
        self.assertEqual(round2("2.675"), Decimal("2.68"))

    def test_unit_price_is_rounded_before_multiplying(self):
        row = item("a", base="0", retail="10.005", qty="1000")
        self.assertEqual(unit_price(row), Decimal("10.01"))
        self.assertEqual(line_total(row), Decimal("10010.00"))

    def test_markup_applies_to_base_price(self):
        row = item("a", base="10", markup="0.05")
        self.assertEqual(unit_price(row), Decimal("10.01"))

        row = item("b", base="100", retail="999", markup="40")
        self.assertEqual(unit_price(row), Decimal("140.00"))

    def test_without_base_price_retail_is_used(self):
        row = item("a", base="0", retail="25.00", markup="50")
        self.assertEqual(unit_price(row), Decimal("25.00"))

    def test_markup_from_prices(self):
        self.assertEqual(markup_from_prices("100", "140"), Decimal("40.00"))
        self.assertEqual(markup_from_prices("0", "140"), Decimal("0.00"))


class BundleTests(unittest.TestCase):
    def test_auto_price_is_sum_of_children(self):
        items = [
            item("h", header=True),
            item("a", retail="12", qty="2", parent="h"),
            item("b", retail="5", qty="1", parent="h"),
            item("c", retail="100"),
        ]
        self.assertEqual(bundle_auto_price("h", items), Decimal("29.00"))

    def test_empty_bundle_is_zero(self):
        self.assertEqual(bundle_auto_price("h", [item("h", header=True)]), Decimal("0.00"))


class TotalsTests(unittest.TestCase):
    def setUp(self):
        self.items = [
            item("h", retail="29.00", header=True),
            item("a", base="10", markup="20", qty="2", parent="h"),
            item("b", base="4", markup="25", qty="1", parent="h"),
            item("c", base="50", markup="10", qty="1"),
        ]

    def test_revenue_counts_roots_only_cost_counts_all(self):
        totals = compute_totals(self.items, has_vat=False)
        self.assertEqual(totals.subtotal, Decimal("84.00"))  # 29 + 55
        self.assertEqual(totals.cost, Decimal("74.00"))  # 20 + 4 + 50
        self.assertEqual(totals.vat, Decimal("0.00"))
        self.assertEqual(totals.total, Decimal("84.00"))
        self.assertEqual(totals.profit, Decimal("10.00"))
        self.assertEqual(totals.markup_percent, Decimal("13.51"))

    def test_vat_is_added_on_top(self):
        totals = compute_totals(self.items, has_vat=True)
        self.assertEqual(totals.vat, Decimal("16.80"))
        self.assertEqual(totals.total, Decimal("100.80"))

    def test_display_vat_matches_entry_vat(self):
        totals = compute_totals(self.items, has_vat=True)
        self.assertEqual(vat_from_inclusive(totals.total), totals.vat)
        self.assertEqual(net_from_inclusive(totals.total), totals.subtotal)

    def test_vat_back_calculation(self):
        self.assertEqual(vat_from_inclusive("120.00"), Decimal("20.00"))
        self.assertEqual(net_from_inclusive("120.00"), Decimal("100.00"))
        self.assertEqual(vat_from_inclusive("0"), Decimal("0.00"))

    def test_zero_cost_has_zero_markup(self):
        totals = compute_totals([item("a", retail="10")], has_vat=False)
        self.assertEqual(totals.markup_percent, Decimal("0.00"))


if __name__ == "__main__":
    unittest.main()
