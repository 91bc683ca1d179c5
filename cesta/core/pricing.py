from __future__ import annotations

import math
from collections import Counter
from decimal import Decimal
from functools import reduce
from typing import List, Optional, Sequence

from cesta.core.normalization import normalize_item_name
from cesta.schemas.prices import (
    ItemPriceSummary,
    Offer,
    QuantityRule,
    ShoppingItemInput,
    Unit,
)

# Ties on offer count go to the earlier unit.
UNIT_PRIORITY: Sequence[Unit] = (Unit.KG, Unit.G, Unit.L, Unit.ML, Unit.UN)


def decimal_places(value: float) -> int:
    """decimal_places(0.25) == 2, decimal_places(3.0) == 0"""
    exponent = Decimal(repr(float(value))).normalize().as_tuple().exponent
    return max(0, -exponent) if isinstance(exponent, int) else 0


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def pick_reference_unit(offers: Sequence[Offer]) -> Unit:
    if not offers:
        return Unit.UN

    counts = Counter(o.package_unit for o in offers)
    winner = Unit.UN
    best = -1
    for unit in UNIT_PRIORITY:
        if counts[unit] > best:
            best = counts[unit]
            winner = unit
    return winner


def infer_quantity_rule(unit: Unit, offers: Sequence[Offer]) -> QuantityRule:
    """
    Smallest purchasable amount + increment, from the package sizes on sale.

    Packages of 0.5 and 1.5 kg -> min 0.5, step 0.5
    Packages of 200 and 500 g  -> min 200, step 100
    """
    if unit == Unit.UN:
        return QuantityRule(min=1, step=1)

    quantities = sorted(
        {
            round(o.package_quantity, 3)
            for o in offers
            if math.isfinite(o.package_quantity) and o.package_quantity > 0
        }
    )
    if not quantities:
        return QuantityRule(min=1, step=1)
    if len(quantities) == 1:
        return QuantityRule(min=quantities[0], step=quantities[0])

    max_decimals = max(decimal_places(q) for q in quantities)
    factor = 10 ** max_decimals
    ints = [int(round(q * factor)) for q in quantities]
    divisor = reduce(math.gcd, ints) or 1

    step = round(divisor / factor, max_decimals)
    return QuantityRule(min=quantities[0], step=step if step > 0 else quantities[0])


def apply_quantity_rule(quantity: float, rule: QuantityRule) -> float:
    """Snap a requested quantity onto the min + n * step grid."""
    safe_qty = quantity if math.isfinite(quantity) and quantity > 0 else rule.min
    if safe_qty <= rule.min:
        return rule.min

    steps = _round_half_up((safe_qty - rule.min) / rule.step)
    snapped = rule.min + steps * rule.step
    precision = max(decimal_places(rule.min), decimal_places(rule.step))
    return round(snapped, precision)


def _same_price(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-12)


def summarize_item(item: ShoppingItemInput, offers: Sequence[Offer]) -> ItemPriceSummary:
    reference_unit = pick_reference_unit(offers)
    in_unit: List[Offer] = [
        o.model_copy(update={"normalized_price_per_user_unit": o.package_price / o.package_quantity})
        for o in offers
        if o.package_unit == reference_unit and o.package_quantity > 0
    ]
    real_offers = [o for o in in_unit if not o.is_fallback]
    base_offers = real_offers or in_unit

    rule = infer_quantity_rule(reference_unit, in_unit)
    quantity = apply_quantity_rule(item.quantity, rule)

    unit_prices = [o.normalized_price_per_user_unit for o in base_offers]
    lowest = min(unit_prices) if unit_prices else 0.0
    average = sum(unit_prices) / len(unit_prices) if unit_prices else 0.0

    best: Optional[Offer] = next(
        (o for o in base_offers if _same_price(o.normalized_price_per_user_unit, lowest)),
        None,
    )

    return ItemPriceSummary(
        item_name=normalize_item_name(item.name),
        quantity=quantity,
        unit=reference_unit,
        quantity_rule=rule,
        lowest_unit_price=lowest,
        average_unit_price=average,
        lowest_total_price=lowest * quantity,
        average_total_price=average * quantity,
        best_source=best.source if best else None,
        best_offer_url=None if best is None or best.is_fallback else best.product_url,
        best_offer_title=best.product_title if best else None,
        has_real_offers=bool(real_offers),
        offers=in_unit,
    )
