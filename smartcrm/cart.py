"""
smartcrm/cart.py

Proposal builder state as an explicit item tree.

A Cart is an immutable arena of CartItems keyed by a stable `key`; each item may point
at a bundle header through `parent_key` (two levels only: roots and their children).
Every edit is a pure function Cart -> Cart.

Invariant kept by every reducer:
    for each bundle header with is_manual_price == False,
    header.retail_price == pricing.bundle_auto_price(header.key, cart.items)

Editing a header's price pins it (is_manual_price = True); recalculate_bundle() unpins it.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, replace
from decimal import Decimal
from typing import Iterable

from .errors import NotFoundError, ValidationError
from .pricing import HUNDRED, ZERO, bundle_auto_price, markup_from_prices, to_decimal

PRICE_FIELDS = ("quantity", "manual_markup_percent", "retail_price", "base_price")
EDITABLE_FIELDS = PRICE_FIELDS + ("name", "description", "unit", "category")
DECIMAL_FIELDS = ("quantity", "manual_markup_percent", "retail_price", "base_price")

DEFAULT_BUNDLE_NAME = "Новый комплект / Решение"


def new_key() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class CartItem:
    key: str
    name: str
    quantity: Decimal = Decimal("1")
    base_price: Decimal = ZERO
    retail_price: Decimal = ZERO
    manual_markup_percent: Decimal = ZERO
    parent_key: str | None = None
    product_id: int | None = None
    description: str = ""
    unit: str = "шт"
    category: str = ""
    is_bundle_header: bool = False
    is_manual_price: bool = False

    def as_dict(self) -> dict:
        data = asdict(self)
        for name in DECIMAL_FIELDS:
            data[name] = str(data[name])
        return data


@dataclass(frozen=True)
class Cart:
    items: tuple[CartItem, ...] = field(default_factory=tuple)
    active_bundle_key: str | None = None

    def get(self, key: str) -> CartItem:
        for item in self.items:
            if item.key == key:
                return item
        raise NotFoundError(f"Cart item not found: {key}")

    def has(self, key: str) -> bool:
        return any(item.key == key for item in self.items)

    def children_of(self, key: str) -> list[CartItem]:
        return [item for item in self.items if item.parent_key == key]

    @property
    def roots(self) -> list[CartItem]:
        return [item for item in self.items if item.parent_key is None]

    def ordered(self) -> list[CartItem]:
        """Roots in order, each followed by its children (display order)."""
        out: list[CartItem] = []
        for root in self.roots:
            out.append(root)
            out.extend(self.children_of(root.key))
        return out

    def __len__(self) -> int:
        return len(self.items)


# ---------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------
def _replace_item(items: tuple[CartItem, ...], key: str, **changes) -> tuple[CartItem, ...]:
    return tuple(replace(i, **changes) if i.key == key else i for i in items)


def _reprice_bundle(items: tuple[CartItem, ...], bundle_key: str | None) -> tuple[CartItem, ...]:
    """Re-derive an auto-mode header's price from its children. Pinned headers are left alone."""
    if bundle_key is None:
        return items
    for item in items:
        if item.key == bundle_key:
            if not item.is_bundle_header or item.is_manual_price:
                return items
            return _replace_item(items, bundle_key, retail_price=bundle_auto_price(bundle_key, items))
    return items


def _require_bundle(cart: Cart, key: str) -> CartItem:
    item = cart.get(key)
    if not item.is_bundle_header:
        raise ValidationError("Items can only be nested under a bundle header.")
    return item


def _check_numbers(item: CartItem) -> None:
    """Quantities and prices every cart line must satisfy, however it was built."""
    for name in DECIMAL_FIELDS:
        if not getattr(item, name).is_finite():
            raise ValidationError(f"Invalid number in item '{item.name}'.")
    if item.quantity <= 0:
        raise ValidationError("Quantity must be greater than zero.")
    if item.base_price < 0 or item.retail_price < 0:
        raise ValidationError("Prices cannot be negative.")
    if item.manual_markup_percent < -HUNDRED:
        raise ValidationError("Markup cannot be below -100%.")


def _coerce_changes(changes: dict) -> dict:
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    out = dict(changes)
    try:
        for name in DECIMAL_FIELDS:
            if name in out:
                out[name] = to_decimal(out[name])
    except ArithmeticError:
        raise ValidationError("Invalid number.") from None
    return out


# ---------------------------------------------------------------------
# Reducers
# ---------------------------------------------------------------------
def add_product(cart: Cart, product, *, quantity=1, key: str | None = None, parent_key=...) -> Cart:
    """
    Add a catalog product. By default it lands in the active bundle (if any).
    The initial markup is derived from the product's base/retail prices.
    """
    if parent_key is ...:
        parent_key = cart.active_bundle_key
    if parent_key is not None:
        _require_bundle(cart, parent_key)

    base_price = to_decimal(product.base_price)
    retail_price = to_decimal(product.retail_price)
    item = CartItem(
        key=key or new_key(),
        name=product.name,
        quantity=to_decimal(quantity),
        base_price=base_price,
        retail_price=retail_price,
        manual_markup_percent=markup_from_prices(base_price, retail_price),
        parent_key=parent_key,
        product_id=product.id,
        description=product.description or "",
        unit=product.unit or "шт",
        category=product.category or "",
    )
    _check_numbers(item)

    items = _reprice_bundle(cart.items + (item,), parent_key)
    return replace(cart, items=items)


def add_bundle_header(cart: Cart, *, name: str = DEFAULT_BUNDLE_NAME, key: str | None = None) -> Cart:
    """Prepend an empty auto-priced bundle header and make it the active bundle."""
    header = CartItem(
        key=key or new_key(),
        name=name,
        unit="компл",
        category="Комплекты",
        is_bundle_header=True,
        is_manual_price=False,
    )
    return replace(cart, items=(header,) + cart.items, active_bundle_key=header.key)


def update_item(cart: Cart, key: str, **changes) -> Cart:
    item = cart.get(key)
    changes = _coerce_changes(changes)

    if item.is_bundle_header and "retail_price" in changes:
        changes["is_manual_price"] = True
    _check_numbers(replace(item, **changes))

    items = _replace_item(cart.items, key, **changes)

    if item.parent_key is not None and any(f in changes for f in PRICE_FIELDS):
        items = _reprice_bundle(items, item.parent_key)

    return replace(cart, items=items)


def set_bundle_price(cart: Cart, key: str, price) -> Cart:
    _require_bundle(cart, key)
    return update_item(cart, key, retail_price=price)


def recalculate_bundle(cart: Cart, key: str) -> Cart:
    _require_bundle(cart, key)
    items = _replace_item(cart.items, key, is_manual_price=False)
    return replace(cart, items=_reprice_bundle(items, key))


def remove_item(cart: Cart, key: str) -> Cart:
    """Remove an item (and, for a header, its children); an auto parent is repriced."""
    item = cart.get(key)
    items = tuple(i for i in cart.items if i.key != key and i.parent_key != key)
    items = _reprice_bundle(items, item.parent_key)
    active = None if cart.active_bundle_key == key else cart.active_bundle_key
    return replace(cart, items=items, active_bundle_key=active)


def set_active_bundle(cart: Cart, key: str | None) -> Cart:
    if key is not None:
        _require_bundle(cart, key)
    return replace(cart, active_bundle_key=key)


def reconcile(cart: Cart) -> Cart:
    """Bring every auto-mode header in line with its children."""
    items = cart.items
    for item in cart.items:
        if item.is_bundle_header:
            items = _reprice_bundle(items, item.key)
    return replace(cart, items=items)


# ---------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------
def _validate_tree(items: Iterable[CartItem]) -> None:
    items = list(items)
    by_key = {}
    for item in items:
        if item.key in by_key:
            raise ValidationError(f"Duplicate cart key: {item.key}")
        by_key[item.key] = item
    for item in items:
        _check_numbers(item)
        if item.parent_key is None:
            continue
        parent = by_key.get(item.parent_key)
        if parent is None:
            raise ValidationError(f"Unknown parent for item {item.key}: {item.parent_key}")
        if not parent.is_bundle_header or parent.parent_key is not None:
            raise ValidationError("Only root bundle headers can have children.")
        if item.is_bundle_header:
            raise ValidationError("Bundle headers cannot be nested.")


def cart_from_payload(rows: list[dict]) -> Cart:
    """
    Build a cart from the JSON item list sent by the proposal builder.

    Expected keys per row: key, parent_key, name, quantity, base_price, retail_price,
    manual_markup_percent, product_id, is_bundle_header, is_manual_price (+ optional text fields).
    """
    if not isinstance(rows, list):
        raise ValidationError("Items must be a list.")

    items = []
    for row in rows:
        if not isinstance(row, dict):
            raise ValidationError("Each item must be an object.")
        name = (row.get("name") or "").strip()
        if not name:
            raise ValidationError("Each item needs a name.")
        try:
            is_header = bool(row.get("is_bundle_header")) or row.get("product_id") is None
            items.append(
                CartItem(
                    key=str(row.get("key") or new_key()),
                    name=name,
                    quantity=to_decimal(row.get("quantity", 1)),
                    base_price=to_decimal(row.get("base_price")),
                    retail_price=to_decimal(row.get("retail_price")),
                    manual_markup_percent=to_decimal(row.get("manual_markup_percent")),
                    parent_key=str(row["parent_key"]) if row.get("parent_key") else None,
                    product_id=row.get("product_id"),
                    description=row.get("description") or "",
                    unit=row.get("unit") or ("компл" if is_header else "шт"),
                    category=row.get("category") or "",
                    is_bundle_header=is_header,
                    is_manual_price=bool(row.get("is_manual_price")) if is_header else False,
                )
            )
        except ArithmeticError:
            raise ValidationError(f"Invalid number in item '{name}'.") from None

    _validate_tree(items)
    return reconcile(Cart(items=tuple(items)))


def cart_from_proposal(proposal) -> Cart:
    """Load a saved proposal back into an editable cart (keys are derived from row ids)."""
    items = []
    for row in proposal.items:
        items.append(
            CartItem(
                key=f"db-{row.id}",
                name=row.snapshot_name,
                quantity=to_decimal(row.quantity),
                base_price=to_decimal(row.snapshot_base_price),
                retail_price=to_decimal(row.price_at_moment),
                manual_markup_percent=to_decimal(row.manual_markup),
                parent_key=f"db-{row.parent_id}" if row.parent_id else None,
                product_id=row.product_id,
                description=row.snapshot_description or "",
                unit=row.snapshot_unit or "шт",
                category=row.snapshot_category or "",
                is_bundle_header=row.is_bundle_header,
                # Saved header prices are kept as-is until the user recalculates.
                is_manual_price=row.is_bundle_header,
            )
        )
    return Cart(items=tuple(items))
