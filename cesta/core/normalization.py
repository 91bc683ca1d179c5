from __future__ import annotations

import math
import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from cesta.schemas.units import Unit

# Keys and values are already in normalized form, so lookups stay idempotent.
SYNONYMS: dict[str, str] = {
    "tomatinho": "tomate",
    "banana prata": "banana",
    "leite integral": "leite",
    "arroz branco": "arroz",
    "pao frances": "pao",
}

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class PackageInfo:
    quantity: float
    unit: Unit


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_loose(text: str) -> str:
    """Lowercase + strip accents. No trimming, no synonyms."""
    return strip_diacritics(text.lower())


def normalize_item_name(name: str) -> str:
    """
    Canonical form of a shopping item name:
      "  Pão Francês " -> "pao"
      "Banana Prata"   -> "banana"
    """
    normalized = _WHITESPACE_RE.sub(" ", normalize_loose(name).strip())
    return SYNONYMS.get(normalized, normalized)


# Order matters: kg before g, l before ml.
_NUMERIC_PACKAGE_PATTERNS: list[tuple[re.Pattern[str], Unit]] = [
    (re.compile(r"(\d+[.,]?\d*)\s?(kg|quilo|quilos)\b"), Unit.KG),
    (re.compile(r"(\d+[.,]?\d*)\s?(g|grama|gramas)\b"), Unit.G),
    (re.compile(r"(\d+[.,]?\d*)\s?(l|litro|litros)\b"), Unit.L),
    (re.compile(r"(\d+[.,]?\d*)\s?(ml|mililitro|mililitros)\b"), Unit.ML),
]

_BARE_UNIT_PATTERNS: list[tuple[re.Pattern[str], Unit]] = [
    (re.compile(r"\b(kg|quilo|quilos)\b"), Unit.KG),
    (re.compile(r"\b(g|grama|gramas)\b"), Unit.G),
    (re.compile(r"\b(l|litro|litros)\b"), Unit.L),
    (re.compile(r"\b(ml|mililitro|mililitros)\b"), Unit.ML),
]


def _to_number(token: str) -> Optional[float]:
    try:
        value = float(token.replace(",", "."))
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_package_from_title(title: str) -> Optional[PackageInfo]:
    """
    Extract package size from a product title.

    "Arroz Tio João 5kg"      -> 5 kg
    "Leite Integral 1,5 L"    -> 1.5 l
    "Alcatra bovina kg"       -> 1 kg   (bare unit word)
    "Ovos brancos dúzia"      -> 1 un   (nothing detected)

    A number followed by a unit always wins over a bare unit word.
    Returns None when that number is too large to be a real size.
    """
    lower = title.lower()

    for regex, unit in _NUMERIC_PACKAGE_PATTERNS:
        m = regex.search(lower)
        if m:
            qty = _to_number(m.group(1))
            # a size we can't represent makes the title unusable
            if qty is None:
                return None
            return PackageInfo(quantity=qty, unit=unit)

    for regex, unit in _BARE_UNIT_PATTERNS:
        if regex.search(lower):
            return PackageInfo(quantity=1.0, unit=unit)

    return PackageInfo(quantity=1.0, unit=Unit.UN)


_BRL_AMOUNT_RE = re.compile(r"(\d{1,3}(?:\.\d{3})*,\d{2})")
_DECIMAL_AMOUNT_RE = re.compile(r"(\d+[.,]\d{2})")
_INTEGER_AMOUNT_RE = re.compile(r"(\d+)")
_THOUSANDS_DOT_RE = re.compile(r"\.(?=\d{3})")


def parse_price_text(text: str) -> Optional[float]:
    """
    Converts retailer price strings like "R$ 1.234,56", "por 4,99", "12.90" to float.
    Returns None if not parseable or not positive.
    """
    if not text:
        return None
    compact = _WHITESPACE_RE.sub(" ", text).strip()

    m = (
        _BRL_AMOUNT_RE.search(compact)
        or _DECIMAL_AMOUNT_RE.search(compact)
        or _INTEGER_AMOUNT_RE.search(compact)
    )
    if not m:
        return None

    num = _THOUSANDS_DOT_RE.sub("", m.group(1)).replace(",", ".")
    try:
        value = float(num)
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value
