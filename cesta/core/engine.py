from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from cesta.core.cache import PriceCache
from cesta.core.normalization import normalize_item_name
from cesta.core.offers import PER_100G_PRICE_THRESHOLD, build_offers
from cesta.core.pricing import summarize_item
from cesta.core.retailers import make_source_search_url
from cesta.core.sources import SourceFetcher
from cesta.schemas.prices import (
    CalculationResponse,
    ItemPriceSummary,
    ListSummary,
    Offer,
    RefreshResult,
    SearchResponse,
    SearchSuggestion,
    ShoppingItemInput,
    SourceName,
    SourceStatus,
)

logger = logging.getLogger(__name__)


class InvalidRequestError(ValueError):
    """Bad user input (empty search term, ...). Maps to HTTP 400."""


def _valid_items(items: Iterable[ShoppingItemInput]) -> List[ShoppingItemInput]:
    out: List[ShoppingItemInput] = []
    for item in items:
        name = (item.name or "").strip()
        if not name:
            continue
        if not math.isfinite(item.quantity) or item.quantity <= 0:
            continue
        out.append(ShoppingItemInput(name=normalize_item_name(name), quantity=item.quantity))
    return out


def relevance_score(query: str, value: str) -> float:
    """Lower is better; inf = not a match."""
    if value == query:
        return 0
    if value.startswith(query):
        return 1
    if any(word.startswith(query) for word in value.split(" ")):
        return 2
    if query in value:
        return 3
    return math.inf


def build_suggestions(term: str, offers: Iterable[Offer], limit: int = 5) -> List[SearchSuggestion]:
    """Cheapest package per distinct product name, best textual matches first."""
    query = term.lower()
    best: Dict[str, SearchSuggestion] = {}

    for offer in offers:
        name = (offer.product_title or offer.item_name or "").strip()
        if not name:
            continue
        if math.isinf(relevance_score(query, name.lower())):
            continue

        key = normalize_item_name(name)
        current = best.get(key)
        if current is None or offer.package_price < current.min_price:
            best[key] = SearchSuggestion(
                id=key,
                name=name,
                unit=offer.package_unit,
                min_price=offer.package_price,
                source=offer.source,
                product_url=offer.product_url,
            )

    ranked = sorted(
        best.values(),
        key=lambda s: (relevance_score(query, s.name.lower()), s.min_price, len(s.name), s.name),
    )
    return ranked[:limit]


class PriceEngine:
    """
    Orchestrates fetch -> build offers -> summarize for shopping lists and searches.

    Sources and cache are injected; the engine keeps no global state.
    """

    def __init__(
        self,
        sources: Mapping[SourceName, SourceFetcher],
        cache: Optional[PriceCache] = None,
        *,
        per_100g_threshold: float = PER_100G_PRICE_THRESHOLD,
        suggestion_limit: int = 5,
    ):
        self.sources = dict(sources)
        self.cache = cache if cache is not None else PriceCache()
        self.per_100g_threshold = per_100g_threshold
        self.suggestion_limit = suggestion_limit

    async def _load_offers(self, source: SourceName, term: str) -> List[Offer]:
        fetch = self.sources[source]
        raw = await fetch(term)
        return build_offers(source, term, raw, per_100g_threshold=self.per_100g_threshold)

    async def _fetch_by_source(self, term: str) -> List[Tuple[SourceName, List[Offer], Optional[str]]]:
        """All sources in parallel; a failing source yields no offers plus its error message."""
        normalized = normalize_item_name(term)
        names = list(self.sources)

        async def one(source: SourceName) -> List[Offer]:
            return await self.cache.get_or_fetch(
                source, normalized, lambda t, s=source: self._load_offers(s, t)
            )

        results = await asyncio.gather(*(one(s) for s in names), return_exceptions=True)

        out: List[Tuple[SourceName, List[Offer], Optional[str]]] = []
        for source, result in zip(names, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning("source %s failed for %r: %s", source.value, normalized, result)
                out.append((source, [], str(result) or type(result).__name__))
            else:
                out.append((source, result, None))
        return out

    async def fetch_offers(self, term: str) -> List[Offer]:
        offers: List[Offer] = []
        for _, source_offers, _ in await self._fetch_by_source(term):
            offers.extend(source_offers)
        return offers

    async def summarize(self, item: ShoppingItemInput) -> ItemPriceSummary:
        offers = await self.fetch_offers(item.name)
        summary = summarize_item(item, offers)
        logger.info(
            "item=%r qty=%s unit=%s offers=%d lowest=%.2f avg=%.2f",
            summary.item_name,
            summary.quantity,
            summary.unit.value,
            len(summary.offers),
            summary.lowest_total_price,
            summary.average_total_price,
        )
        return summary

    async def calculate_list_prices(self, cep: str, items: Iterable[ShoppingItemInput]) -> CalculationResponse:
        """
        Price a shopping list.

        Invalid items (blank name, non-positive quantity) are dropped, not rejected.
        Items are processed one after the other; sources fan out per item.
        """
        summaries: List[ItemPriceSummary] = []
        for item in _valid_items(items):
            summaries.append(await self.summarize(item))

        return CalculationResponse(
            cep=cep,
            generated_at=datetime.now(timezone.utc),
            items=summaries,
            summary=ListSummary(
                items_count=len(summaries),
                lowest_total_list_price=sum(s.lowest_total_price for s in summaries),
                average_total_list_price=sum(s.average_total_price for s in summaries),
            ),
        )

    async def search(self, term: str) -> SearchResponse:
        raw_term = (term or "").strip()
        if not raw_term:
            raise InvalidRequestError("Informe o parâmetro term")

        normalized = normalize_item_name(raw_term)
        by_source = await self._fetch_by_source(normalized)

        offers: List[Offer] = []
        statuses: List[SourceStatus] = []
        counts: Dict[str, int] = {}
        for source, source_offers, error in by_source:
            real = [o for o in source_offers if not o.is_fallback]
            offers.extend(real)
            counts[source.value] = len(real)
            statuses.append(
                SourceStatus(
                    source=source,
                    ok=error is None,
                    offers=len(real),
                    error=error,
                    search_url=make_source_search_url(source, normalized),
                )
            )

        return SearchResponse(
            term=raw_term,
            normalized_term=normalized,
            suggestions=build_suggestions(normalized, offers, self.suggestion_limit),
            offers_count=len(offers),
            checked_markets=len(by_source),
            checked_sources=statuses,
            offers_by_source=counts,
        )

    async def refresh_all(self) -> RefreshResult:
        """Re-fetch every cached (source, term). A failed refresh keeps the previous snapshot."""
        snapshots = self.cache.snapshots()
        refreshed = 0

        for snap in snapshots:
            if snap.source not in self.sources:
                continue
            try:
                await self.cache.refresh(snap.source, snap.term, lambda t, s=snap.source: self._load_offers(s, t))
            except Exception as e:
                logger.warning("refresh %s|%s failed, keeping old snapshot: %s", snap.source.value, snap.term, e)
                continue
            refreshed += 1

        self.cache.mark_updated()
        logger.info("refresh done: %d/%d snapshots", refreshed, len(snapshots))

        return RefreshResult(
            updated=len(snapshots),
            estimated_seconds=max(6, len(snapshots) * 2),
            updated_at=self.cache.last_update,
        )

    def last_update(self) -> Optional[datetime]:
        return self.cache.last_update
