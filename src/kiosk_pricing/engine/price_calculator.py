"""
Price Calculator - Applies a price list's adjustment to one product.

Exclusions are absolute overrides; rounding ties always go up (away from
zero), the way round(x / k) * k behaves at checkout.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from ..errors import NegativePriceError
from .models import PriceList, PriceQuote, Product, ROUNDING_STEPS

HUNDRED = Decimal(100)


def round_to_step(value: Decimal, rounding_rule: str) -> Decimal:
    """Round to the nearest multiple of the rule's step, ties away from zero."""
    step = ROUNDING_STEPS.get(rounding_rule)
    if step is None:
        return value
    return (value / step).quantize(Decimal(1), rounding=ROUND_HALF_UP) * step


def round_currency(value: Decimal, decimals: int = 2) -> Decimal:
    """Round a money amount to the currency precision, ties away from zero."""
    return Decimal(value).quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)


def apply_percentage(value: Decimal, percentage: Decimal) -> Decimal:
    """value + value * percentage / 100"""
    return value + value * (Decimal(str(percentage)) / HUNDRED)


def quote_price(product: Product, active_list: Optional[PriceList]) -> PriceQuote:
    """
    Price a product against the active list with a full trace.

    Raises NegativePriceError when the list's adjustment drives the price
    below zero; that is a list misconfiguration, not something to clamp.
    """
    quote = PriceQuote(product_id=product.id, base_price=product.price, unit_price=product.price)
    quote.add_trace("Base Price", f"Product {product.id}", f"{product.price}")

    if active_list is None:
        quote.add_trace("Price List", "No active price list")
        return quote

    quote.price_list_id = active_list.id
    quote.price_list_name = active_list.name

    if active_list.adjustment_percentage == 0:
        quote.add_trace("Price List", f"{active_list.name} has no adjustment", "0%")
        return quote

    if active_list.excludes(product):
        quote.source = "Excluded"
        if product.category_id is not None and product.category_id in active_list.excluded_category_ids:
            quote.add_trace("Exclusion", f"Category {product.category_id} excluded from {active_list.name}")
        else:
            quote.add_trace("Exclusion", f"Product {product.id} excluded from {active_list.name}")
        return quote

    adjusted = apply_percentage(product.price, active_list.adjustment_percentage)
    quote.add_trace(
        "Adjustment",
        f"{active_list.name} applies {active_list.adjustment_percentage}%",
        f"{adjusted}",
    )

    if active_list.rounding_rule in ROUNDING_STEPS:
        rounded = round_to_step(adjusted, active_list.rounding_rule)
        quote.add_trace("Rounding", f"Rounded {active_list.rounding_rule}", f"{rounded}")
        adjusted = rounded

    if adjusted < 0:
        raise NegativePriceError(product.id, active_list.id, adjusted)

    quote.unit_price = adjusted
    quote.source = "PriceList"
    quote.rules_applied.append(active_list.id)
    return quote


def calculate_price(product: Product, active_list: Optional[PriceList]) -> Decimal:
    """Final unit price of `product` under `active_list` (None = base price)."""
    return quote_price(product, active_list).unit_price
