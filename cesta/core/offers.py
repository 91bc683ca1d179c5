from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from cesta.core.normalization import (
    PackageInfo,
    normalize_item_name,
    normalize_loose,
    parse_package_from_title,
)
from cesta.core.relevance import is_relevant_for_term, is_weight_based_item
from cesta.schemas.prices import Offer, RawCandidate, SourceName, Unit

logger = logging.getLogger(__name__)

# Default for the per-100g heuristic; the service passes settings.PER_100G_PRICE_THRESHOLD.
PER_100G_PRICE_THRESHOLD = 15.0

_UNIT_PRICE_PATTERNS: list[tuple[re.Pattern[str], Unit]] = [
    (re.compile(r"(\d+[.,]\d{2})\s*/\s*kg\b"), Unit.KG),
    (re.compile(r"(\d+[.,]\d{2})\s*/\s*g\b"), Unit.G),
    (re.compile(r"(\d+[.,]\d{2})\s*/\s*l\b"), Unit.L),
    (re.compile(r"(\d+[.,]\d{2})\s*/\s*ml\b"), Unit.ML),
]

_KNOWN_UNITS = {u.value for u in Unit}


@dataclass(frozen=True)
class UnitPrice:
    price: float
    unit: Unit


def extract_unit_price_from_text(raw_text: Optional[str]) -> Optional[UnitPrice]:
    """
    Find an explicit per-measure price on a product card ("R$ 59,90/kg", "8,49 / L").
    """
    if not raw_text:
        return None
    normalized = normalize_loose(raw_text)
    for regex, unit in _UNIT_PRICE_PATTERNS:
        m = regex.search(normalized)
        if not m:
            continue
        price = float(m.group(1).replace(",", "."))
        if math.isfinite(price) and price > 0:
            return UnitPrice(price=price, unit=unit)
    return None


def _resolve_offer(
    source: SourceName,
    normalized_term: str,
    term: str,
    raw: RawCandidate,
    per_100g_threshold: float,
) -> Optional[Offer]:
    if not is_relevant_for_term(normalized_term, raw.title):
        return None

    package = parse_package_from_title(raw.title)
    if package is None or not math.isfinite(package.quantity) or package.quantity <= 0:
        return None

    weighted = is_weight_based_item(term, raw.title)
    card_price = extract_unit_price_from_text(raw.raw_text)

    if weighted and package.unit == Unit.UN:
        package = PackageInfo(quantity=1.0, unit=Unit.KG)
    elif weighted and package.unit == Unit.G:
        package = PackageInfo(quantity=package.quantity / 1000, unit=Unit.KG)

    # VTEX exposes the sold measure directly on the SKU
    if raw.unit_multiplier and raw.measurement_unit in _KNOWN_UNITS:
        vtex_unit = Unit(raw.measurement_unit)
        if vtex_unit != Unit.UN or package.unit == Unit.UN:
            package = PackageInfo(quantity=raw.unit_multiplier, unit=vtex_unit)

    # Without a R$/kg or R$/L tag a size in the title ("arroz 5kg") is just one package.
    if not weighted and card_price is None and package.unit != Unit.UN:
        package = PackageInfo(quantity=1.0, unit=Unit.UN)

    if not math.isfinite(package.quantity) or package.quantity <= 0:
        return None

    final_price = raw.price
    if card_price is not None and (weighted or card_price.unit == package.unit):
        package = PackageInfo(quantity=1.0, unit=card_price.unit)
        final_price = card_price.price

    # Some butcher cards show R$/100g where R$/kg is expected.
    if weighted and package.unit == Unit.KG and final_price < per_100g_threshold:
        final_price = round(final_price * 10, 2)

    unit_price = final_price / package.quantity
    if not (math.isfinite(final_price) and math.isfinite(unit_price)) or final_price <= 0 or unit_price <= 0:
        return None

    return Offer(
        source=source,
        item_name=normalized_term,
        product_title=raw.title,
        package_quantity=package.quantity,
        package_unit=package.unit,
        package_price=final_price,
        normalized_price_per_user_unit=unit_price,
        product_url=raw.url,
        is_fallback=raw.is_fallback,
    )


def build_offers(
    source: SourceName,
    term: str,
    candidates: Iterable[RawCandidate],
    *,
    per_100g_threshold: float = PER_100G_PRICE_THRESHOLD,
) -> List[Offer]:
    """
    Turn one source's raw candidates into comparable, unit-priced offers.

    Pure transform: irrelevant or malformed candidates are dropped, never raised.
    """
    normalized_term = normalize_item_name(term)
    out: List[Offer] = []
    for raw in candidates:
        offer = _resolve_offer(source, normalized_term, term, raw, per_100g_threshold)
        if offer is None:
            logger.debug("drop source=%s term=%r title=%r", source.value, normalized_term, raw.title)
            continue
        out.append(offer)
    return out
