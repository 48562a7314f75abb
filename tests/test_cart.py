import unittest
from decimal import Decimal

from smartcrm import cart as C
from smartcrm.errors import NotFoundError, ValidationError
from smartcrm.pricing import bundle_auto_price

from support import product


def assert_auto_invariant(testcase, cart):
    for item in cart.items:
        if item.is_bundle_header and not item.is_manual_price:
            testcase.assertEqual(item.retail_price, bundle_auto_price(item.key, cart.items), item.key)


class CartReducerTests(unittest.TestCase):
    def setUp(self):
        cart = C.add_bundle_header(C.Cart(), name="Комплект", key="h")
        cart = C.add_product(cart, product(1, retail="12.00", base="0"), quantity=2, key="a")
        cart = C.add_product(cart, product(2, retail="5.00", base="0"), quantity=1, key="b")
        self.cart = cart

    def test_products_land_in_active_bundle(self):
        self.assertEqual(self.cart.active_bundle_key, "h")
        self.assertEqual([i.key for i in self.cart.children_of("h")], ["a", "b"])
        self.assertEqual(self.cart.get("h").retail_price, Decimal("29.00"))
        assert_auto_invariant(self, self.cart)

    def test_header_is_prepended(self):
        cart = C.add_product(C.Cart(), product(3, retail="1"), key="x")
        cart = C.add_bundle_header(cart, key="h2")
        self.assertEqual([i.key for i in cart.items], ["h2", "x"])
        self.assertIsNone(cart.get("x").parent_key)

    def test_initial_markup_is_derived_from_catalog_prices(self):
        cart = C.add_product(C.Cart(), product(3, base="100", retail="140"), key="x")
        self.assertEqual(cart.get("x").manual_markup_percent, Decimal("40.00"))

    def test_child_edits_recompute_auto_header(self):
        cart = C.update_item(self.cart, "a", quantity=3)
        self.assertEqual(cart.get("h").retail_price, Decimal("41.00"))
        cart = C.update_item(cart, "b", retail_price="6.50")
        self.assertEqual(cart.get("h").retail_price, Decimal("42.50"))
        assert_auto_invariant(self, cart)

    def test_markup_edit_recomputes_auto_header(self):
        cart = C.add_bundle_header(C.Cart(), name="Защита от протечек", key="h")
        cart = C.add_product(cart, product(1, base="10.00", retail="12.00"), quantity=2, key="a")
        cart = C.add_product(cart, product(2, base="5.00", retail="5.00"), quantity=1, key="b")
        self.assertEqual(cart.get("a").manual_markup_percent, Decimal("20.00"))
        self.assertEqual(cart.get("b").manual_markup_percent, Decimal("0.00"))
        self.assertEqual(cart.get("h").retail_price, Decimal("29.00"))

        cart = C.update_item(cart, "a", manual_markup_percent="50")
        self.assertEqual(cart.get("h").retail_price, Decimal("35.00"))
        assert_auto_invariant(self, cart)

    def test_invalid_numbers_in_edits(self):
        with self.assertRaises(ValidationError):
            C.update_item(self.cart, "a", retail_price="-1")
        with self.assertRaises(ValidationError):
            C.update_item(self.cart, "a", quantity="NaN")
        with self.assertRaises(ValidationError):
            C.update_item(self.cart, "a", base_price="abc")

    def test_reducers_do_not_mutate_input(self):
        C.update_item(self.cart, "a", quantity=10)
        self.assertEqual(self.cart.get("a").quantity, Decimal("2"))
        self.assertEqual(self.cart.get("h").retail_price, Decimal("29.00"))

    def test_manual_price_pins_header(self):
        cart = C.set_bundle_price(self.cart, "h", "25.00")
        self.assertTrue(cart.get("h").is_manual_price)
        self.assertEqual(cart.get("h").retail_price, Decimal("25.00"))

        cart = C.update_item(cart, "a", quantity=5)
        self.assertEqual(cart.get("h").retail_price, Decimal("25.00"))

        cart = C.recalculate_bundle(cart, "h")
        self.assertFalse(cart.get("h").is_manual_price)
        self.assertEqual(cart.get("h").retail_price, Decimal("65.00"))

    def test_remove_child_reprices_parent(self):
        cart = C.remove_item(self.cart, "b")
        self.assertEqual(cart.get("h").retail_price, Decimal("24.00"))
        assert_auto_invariant(self, cart)

    def test_remove_header_removes_children_and_active_bundle(self):
        cart = C.remove_item(self.cart, "h")
        self.assertEqual(len(cart), 0)
        self.assertIsNone(cart.active_bundle_key)

    def test_set_active_bundle_requires_header(self):
        with self.assertRaises(ValidationError):
            C.set_active_bundle(self.cart, "a")
        cart = C.set_active_bundle(self.cart, None)
        cart = C.add_product(cart, product(9, retail="3"), key="z")
        self.assertIsNone(cart.get("z").parent_key)

    def test_invalid_edits(self):
        with self.assertRaises(ValidationError):
            C.update_item(self.cart, "a", quantity=0)
        with self.assertRaises(ValidationError):
            C.update_item(self.cart, "a", product_id=5)
        with self.assertRaises(NotFoundError):
            C.update_item(self.cart, "missing", quantity=1)

    def test_ordered_lists_children_after_their_header(self):
        cart = C.add_product(C.set_active_bundle(self.cart, None), product(9, retail="3"), key="z")
        self.assertEqual([i.key for i in cart.ordered()], ["h", "a", "b", "z"])


class CartPayloadTests(unittest.TestCase):
    def test_payload_reconciles_stale_auto_header(self):
        rows = [
            {"key": "h", "name": "Комплект", "is_bundle_header": True, "retail_price": "1.00"},
            {"key": "a", "name": "A", "product_id": 1, "parent_key": "h", "quantity": 2, "retail_price": "12"},
            {"key": "b", "name": "B", "product_id": 2, "parent_key": "h", "quantity": 1, "retail_price": "5"},
        ]
        cart = C.cart_from_payload(rows)
        self.assertEqual(cart.get("h").retail_price, Decimal("29.00"))

    def test_payload_keeps_pinned_header(self):
        rows = [
            {"key": "h", "name": "Комплект", "is_bundle_header": True, "is_manual_price": True, "retail_price": "20"},
            {"key": "a", "name": "A", "product_id": 1, "parent_key": "h", "retail_price": "12"},
        ]
        cart = C.cart_from_payload(rows)
        self.assertEqual(cart.get("h").retail_price, Decimal("20"))

    def test_payload_rejects_broken_trees(self):
        with self.assertRaises(ValidationError):
            C.cart_from_payload([{"key": "a", "name": "A", "product_id": 1, "parent_key": "nope"}])
        with self.assertRaises(ValidationError):
            C.cart_from_payload(
                [
                    {"key": "h", "name": "H", "is_bundle_header": True},
                    {"key": "h2", "name": "H2", "is_bundle_header": True, "parent_key": "h"},
                ]
            )
        with self.assertRaises(ValidationError):
            C.cart_from_payload([{"key": "a", "name": "", "product_id": 1}])
        with self.assertRaises(ValidationError):
            C.cart_from_payload([{"key": "a", "name": "A", "product_id": 1, "quantity": "abc"}])

    def test_payload_rejects_non_positive_root_quantity(self):
        for quantity in (0, -5):
            with self.assertRaises(ValidationError):
                C.cart_from_payload(
                    [{"key": "a", "name": "A", "product_id": 1, "quantity": quantity, "retail_price": "10"}]
                )

    def test_payload_rejects_negative_prices_and_markup(self):
        bad_rows = [
            {"key": "a", "name": "A", "product_id": 1, "retail_price": "-10"},
            {"key": "a", "name": "A", "product_id": 1, "base_price": "-1"},
            {"key": "a", "name": "A", "product_id": 1, "base_price": "10", "manual_markup_percent": "-150"},
            {"key": "h", "name": "H", "is_bundle_header": True, "is_manual_price": True, "retail_price": "-3"},
        ]
        for row in bad_rows:
            with self.assertRaises(ValidationError):
                C.cart_from_payload([row])

    def test_payload_rejects_non_finite_numbers(self):
        for value in ("NaN", "Infinity", "-Infinity", "sNaN"):
            with self.assertRaises(ValidationError):
                C.cart_from_payload([{"key": "a", "name": "A", "product_id": 1, "quantity": value}])
            with self.assertRaises(ValidationError):
                C.cart_from_payload([{"key": "a", "name": "A", "product_id": 1, "retail_price": value}])


if __name__ == "__main__":
    unittest.main()
