"""
smartcrm/pricing.py

Pricing rules for commercial proposals and invoices.

All functions are pure and work on Decimal. Line items are duck-typed; they need:
    key, parent_key, quantity, base_price, retail_price,
    manual_markup_percent, is_bundle_header

Rounding rule (pinned): ROUND_HALF_UP at 2 decimals, applied to the UNIT price before
multiplying by quantity, then again to the line total. 10.005 -> 10.01.

VAT:
- Entry time: totals are computed VAT-exclusive, VAT = round2(subtotal * 0.20) is added.
- Display time: VAT is extracted from a stored VAT-inclusive total as total - total / 1.2.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
VAT_RATE = Decimal("0.20")


def to_decimal(value) -> Decimal:
    """Convert Numeric/float/str/None to Decimal safely."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def markup_from_prices(base_price, retail_price) -> Decimal:
    """Markup percent that turns base_price into retail_price (0 when there is no base)."""
    base = to_decimal(base_price)
    if base <= 0:
        return ZERO
    return round2((to_decimal(retail_price) - base) / base * HUNDRED)


def unit_price(item) -> Decimal:
    if getattr(item, "is_bundle_header", False):
        return round2(item.retail_price)
    base = to_decimal(item.base_price)
    if base > 0:
        markup = to_decimal(item.manual_markup_percent)
        return round2(base * (1 + markup / HUNDRED))
    return round2(item.retail_price)


def line_total(item) -> Decimal:
    return round2(unit_price(item) * to_decimal(item.quantity))


def line_cost(item) -> Decimal:
    return round2(to_decimal(item.base_price) * to_decimal(item.quantity))


def bundle_auto_price(bundle_key, items: Iterable) -> Decimal:
    """Sum of the children's line totals, each rounded on its own before summing."""
    total = ZERO
    for child in items:
        if child.parent_key == bundle_key:
            total += line_total(child)
    return round2(total)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    cost: Decimal
    vat: Decimal
    total: Decimal
    profit: Decimal
    markup_percent: Decimal

    def as_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "cost": str(self.cost),
            "vat": str(self.vat),
            "total": str(self.total),
            "profit": str(self.profit),
            "markup_percent": str(self.markup_percent),
        }


def compute_totals(items: Iterable, has_vat: bool, vat_rate: Decimal = VAT_RATE) -> Totals:
    """
    Revenue comes from root items only (a bundle's children are folded into its price).
    Cost accumulates over every item regardless of depth.
    """
    subtotal = ZERO
    cost = ZERO
    for item in items:
        if item.parent_key is None:
            subtotal += line_total(item)
        cost += line_cost(item)

    subtotal = round2(subtotal)
    cost = round2(cost)
    vat = round2(subtotal * vat_rate) if has_vat else ZERO
    profit = round2(subtotal - cost)
    markup = round2(profit / cost * HUNDRED) if cost > 0 else ZERO

    return Totals(
        subtotal=subtotal,
        cost=cost,
        vat=vat,
        total=round2(subtotal + vat),
        profit=profit,
        markup_percent=markup,
    )


def vat_from_inclusive(total, vat_rate: Decimal = VAT_RATE) -> Decimal:
    total = to_decimal(total)
    return round2(total - total / (1 + vat_rate))


def net_from_inclusive(total, vat_rate: Decimal = VAT_RATE) -> Decimal:
    return round2(to_decimal(total) - vat_from_inclusive(total, vat_rate))
