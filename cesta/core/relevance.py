"""
Relevance rules for matching retailer product titles against a search term.

Everything here works on `normalize_loose` text (lowercase, no accents).
Policy lives in the tables at the top of the module; the predicates below
take them as parameters so tests (or another market) can swap them out.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

from cesta.core.normalization import normalize_loose


def _word_set_regex(tokens: Iterable[str]) -> re.Pattern[str]:
    return re.compile(r"\b(" + "|".join(tokens) + r")\b")


@dataclass(frozen=True)
class CategoryRule:
    """A named set of tokens; a text belongs to the category if any token appears as a word."""

    name: str
    tokens: Tuple[str, ...]
    pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", _word_set_regex(self.tokens))

    def matches(self, text: str) -> bool:
        return bool(self.pattern.search(text))


@dataclass(frozen=True)
class TermRule:
    """
    Extra constraints for one exact search term.

    required:   words that must all appear in the title
    denied:     any of these rejects the title
    indicators: at least one must appear (regex fragments allowed)
    """

    term: str
    required: Tuple[str, ...] = ()
    denied: Tuple[str, ...] = ()
    indicators: Tuple[str, ...] = ()

    def accepts(self, title: str) -> bool:
        for word in self.required:
            if not re.search(rf"\b{re.escape(word)}\b", title):
                return False
        if self.denied and _word_set_regex(self.denied).search(title):
            return False
        if self.indicators and not _word_set_regex(self.indicators).search(title):
            return False
        return True


_CUTS = (
    "ancho", "bife", "contra", "file", "picanha", "alcatra", "maminha", "fraldinha",
    "patinho", "acem", "costela", "cupim", "musculo", "coxao", "lagarto", "linguica",
    "carne", "frango", "coxa", "sobrecoxa", "asa", "peixe", "salmao", "tilapia",
    "suino", "suina", "porco",
)

# Items priced per kilo regardless of how the package is labelled.
WEIGHT_SOLD = CategoryRule(name="weight_sold", tokens=_CUTS)

# Butcher searches only accept butcher products ("carne" must not match a meat tenderizer).
BUTCHER = CategoryRule(name="butcher", tokens=_CUTS + ("bovino", "resfriado"))

TERM_RULES: Dict[str, TermRule] = {
    # Keep liquid/UHT milk only; the catalog is full of "leite" derivatives.
    "leite": TermRule(
        term="leite",
        required=("leite",),
        denied=(
            "doce", "condensado", "coco", "fermentado", "po", "chocolate", "biscoito",
            "sabonete", "desodorante", "creme", "pudim", "whey", "bala", "sorvete",
            "licor", "pao", "sonho", "fondant", "bombom", "cookies?",
        ),
        indicators=(
            "uht", "longa vida", "integral", "desnatado", "semidesnatado", "zero lactose",
            "lactose", "a2", "liquido", "liquida", "litro", r"[0-9]+l",
        ),
    ),
}


def contains_token_as_word(text: str, token: str) -> bool:
    token = token.strip()
    if not token:
        return False
    return bool(re.search(rf"(^|[^a-z0-9]){re.escape(token)}([^a-z0-9]|$)", text))


def _all_tokens_present(term: str, title: str) -> bool:
    tokens = term.split()
    if not tokens:
        return False
    for tok in tokens:
        if len(tok) >= 3:
            if not contains_token_as_word(title, tok):
                return False
        elif tok not in title:
            return False
    return True


def is_relevant_for_term(
    term: str,
    title: str,
    *,
    category_rules: Iterable[CategoryRule] = (BUTCHER,),
    term_rules: Optional[Dict[str, TermRule]] = None,
) -> bool:
    """
    True when `title` is a genuine match for the search `term`.

    1) every term token must be in the title (whole word when >= 3 chars)
    2) category rules: a term inside a category only accepts titles of that category
    3) term rules: exact-term overrides (e.g. "leite")
    """
    norm_term = normalize_loose(term).strip()
    norm_title = normalize_loose(title)
    if not norm_term or not norm_title:
        return False

    if not _all_tokens_present(norm_term, norm_title):
        return False

    for rule in category_rules:
        if rule.matches(norm_term) and not rule.matches(norm_title):
            return False

    rules = TERM_RULES if term_rules is None else term_rules
    term_rule = rules.get(norm_term)
    if term_rule is not None:
        return term_rule.accepts(norm_title)

    return True


def is_weight_based_item(term: str, title: str, *, rule: CategoryRule = WEIGHT_SOLD) -> bool:
    return rule.matches(normalize_loose(f"{term} {title}"))
