import asyncio
from types import SimpleNamespace

import pytest

import cesta.core.cache as cache_module
from cesta.core.cache import PriceCache
from cesta.core.engine import InvalidRequestError, PriceEngine, build_suggestions, relevance_score
from cesta.core.sources import SourceUnavailableError
from cesta.schemas.prices import Offer, RawCandidate, ShoppingItemInput
from cesta.schemas.units import SourceName, Unit


class FakeSource:
    """Serves canned candidates per normalized term and records every call."""

    def __init__(self, source, catalog=None, error=None, delay=0):
        self.source = source
        self.catalog = catalog or {}
        self.error = error
        self.delay = delay
        self.calls = []

    async def __call__(self, term):
        self.calls.append(term)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise SourceUnavailableError(self.source, self.error)
        return [RawCandidate(**record) for record in self.catalog.get(term, [])]


MILK = {
    SourceName.PREZUNIC: {
        "leite": [
            {"title": "Leite Integral Italac 1L", "price": 4.5, "raw_text": "R$ 4,50/l",
             "url": "https://www.prezunic.com.br/leite-italac/p"},
            {"title": "Leite Condensado Moça 395g", "price": 7.99},
        ]
    },
    SourceName.ZONASUL: {
        "leite": [{"title": "Leite Integral Piracanjuba 1L", "price": 5.5, "raw_text": "R$ 5,50/l"}]
    },
}

PICANHA = {
    SourceName.PREZUNIC: {"picanha": [{"title": "Picanha Bovina Resfriada kg", "price": 69.9}]},
    SourceName.ZONASUL: {
        "picanha": [
            {"title": "Picanha Bovina Resfriada kg", "price": 65.9},
            {"title": "Picanha Suína kg", "price": 29.9},
            {"title": "Picanha Bovina Congelada kg", "price": 19.9, "is_fallback": True},
        ]
    },
}


def _engine(catalogs, failing=()):
    sources = {name: FakeSource(name, catalogs.get(name)) for name in catalogs}
    for name in failing:
        sources[name] = FakeSource(name, error="timeout")
    return PriceEngine(sources), sources


def test_calculate_two_liters_of_milk():
    engine, _ = _engine(MILK)
    result = asyncio.run(engine.calculate_list_prices("22470-220", [ShoppingItemInput(name="Leite", quantity=2)]))

    assert result.cep == "22470-220"
    assert result.summary.items_count == 1
    item = result.items[0]
    assert item.item_name == "leite"
    assert item.unit == Unit.L
    assert item.quantity == 2
    assert item.lowest_unit_price == 4.5
    assert item.lowest_total_price == 9.0
    assert item.average_total_price == pytest.approx(10.0)
    assert item.best_source == SourceName.PREZUNIC
    assert item.best_offer_url == "https://www.prezunic.com.br/leite-italac/p"
    assert result.summary.lowest_total_list_price == 9.0
    assert result.summary.average_total_list_price == pytest.approx(10.0)


def test_failing_source_counts_as_no_offers():
    engine, _ = _engine(MILK, failing=[SourceName.EXTRA])
    result = asyncio.run(engine.calculate_list_prices("22470-220", [ShoppingItemInput(name="leite", quantity=1)]))
    assert result.items[0].lowest_unit_price == 4.5
    assert {o.source for o in result.items[0].offers} == {SourceName.PREZUNIC, SourceName.ZONASUL}


def test_invalid_items_are_filtered():
    engine, sources = _engine(MILK)
    items = [
        ShoppingItemInput(name="   ", quantity=1),
        ShoppingItemInput(name="arroz", quantity=0),
        ShoppingItemInput(name="arroz", quantity=-2),
        ShoppingItemInput(name="arroz", quantity=float("nan")),
    ]
    result = asyncio.run(engine.calculate_list_prices("22470-220", items))
    assert result.items == []
    assert result.summary.items_count == 0
    assert result.summary.lowest_total_list_price == 0
    assert sources[SourceName.PREZUNIC].calls == []


def test_item_without_offers_still_summarized():
    engine, _ = _engine(MILK)
    result = asyncio.run(engine.calculate_list_prices("22470-220", [ShoppingItemInput(name="Feijão", quantity=2)]))
    item = result.items[0]
    assert item.item_name == "feijao"
    assert item.unit == Unit.UN
    assert item.lowest_total_price == 0
    assert item.best_source is None


def test_repeated_items_hit_the_cache():
    engine, sources = _engine(MILK)
    items = [ShoppingItemInput(name="Leite", quantity=1), ShoppingItemInput(name="leite integral", quantity=3)]
    result = asyncio.run(engine.calculate_list_prices("22470-220", items))
    assert len(result.items) == 2
    assert sources[SourceName.PREZUNIC].calls == ["leite"]
    assert sources[SourceName.ZONASUL].calls == ["leite"]


def test_search_blank_term():
    engine, _ = _engine(MILK)
    with pytest.raises(InvalidRequestError):
        asyncio.run(engine.search("   "))


def test_search_suggestions_and_statuses():
    engine, _ = _engine(PICANHA, failing=[SourceName.EXTRA])
    result = asyncio.run(engine.search("Picanha"))

    assert result.term == "Picanha"
    assert result.normalized_term == "picanha"
    assert result.checked_markets == 3
    assert result.offers_count == 3
    assert result.offers_by_source == {"prezunic": 1, "zonasul": 2, "extra": 0}

    statuses = {s.source: s for s in result.checked_sources}
    assert statuses[SourceName.PREZUNIC].ok
    assert not statuses[SourceName.EXTRA].ok
    assert "timeout" in statuses[SourceName.EXTRA].error
    assert statuses[SourceName.ZONASUL].search_url == "https://www.zonasul.com.br/busca?ft=picanha"

    # cheapest package per product name; fallback offers never suggested
    assert [(s.name, s.min_price) for s in result.suggestions] == [
        ("Picanha Suína kg", 29.9),
        ("Picanha Bovina Resfriada kg", 65.9),
    ]
    assert result.suggestions[1].source == SourceName.ZONASUL


def test_search_respects_suggestion_limit():
    sources = {SourceName.PREZUNIC: FakeSource(SourceName.PREZUNIC, PICANHA[SourceName.ZONASUL])}
    engine = PriceEngine(sources, suggestion_limit=1)
    result = asyncio.run(engine.search("picanha"))
    assert len(result.suggestions) == 1


def test_relevance_score_order():
    assert relevance_score("arroz", "arroz") == 0
    assert relevance_score("arroz", "arroz tio joao") == 1
    assert relevance_score("arroz", "bolinho de arroz") == 2
    assert relevance_score("roz", "arroz") == 3
    assert relevance_score("feijao", "arroz") == float("inf")


def test_build_suggestions_skips_non_matching_titles():
    offer = Offer(
        source=SourceName.EXTRA,
        item_name="cafe",
        product_title="Filtro de Papel Melitta",
        package_quantity=1,
        package_unit=Unit.UN,
        package_price=5.0,
        normalized_price_per_user_unit=5.0,
    )
    assert build_suggestions("cafe", [offer]) == []


def test_refresh_all_updates_cached_terms():
    engine, sources = _engine(MILK)
    asyncio.run(engine.fetch_offers("leite"))
    assert engine.last_update() is None

    sources[SourceName.ZONASUL].catalog = {
        "leite": [{"title": "Leite Integral Piracanjuba 1L", "price": 3.9, "raw_text": "R$ 3,90/l"}]
    }
    result = asyncio.run(engine.refresh_all())

    assert result.updated == 2
    assert result.estimated_seconds == 6
    assert result.updated_at == engine.last_update()
    assert sources[SourceName.ZONASUL].calls == ["leite", "leite"]

    offers = asyncio.run(engine.fetch_offers("leite"))
    assert min(o.package_price for o in offers) == 3.9


def test_refresh_failure_keeps_previous_snapshot():
    engine, sources = _engine(MILK)
    asyncio.run(engine.fetch_offers("leite"))

    sources[SourceName.PREZUNIC].error = "503"
    asyncio.run(engine.refresh_all())

    offers = asyncio.run(engine.fetch_offers("leite"))
    assert {o.source for o in offers} == {SourceName.PREZUNIC, SourceName.ZONASUL}
    assert engine.last_update() is not None


def test_refresh_shares_fetch_with_concurrent_lookup(monkeypatch):
    clock = [0.0]
    monkeypatch.setattr(cache_module, "time", SimpleNamespace(monotonic=lambda: clock[0]))

    sources = {SourceName.PREZUNIC: FakeSource(SourceName.PREZUNIC, MILK[SourceName.PREZUNIC], delay=0.02)}
    engine = PriceEngine(sources, PriceCache(ttl_seconds=60))
    asyncio.run(engine.fetch_offers("leite"))

    # snapshots expired: a lookup racing the refresh must join its fetch
    clock[0] = 100.0

    async def run():
        await asyncio.gather(engine.refresh_all(), engine.fetch_offers("leite"))

    asyncio.run(run())
    assert sources[SourceName.PREZUNIC].calls == ["leite", "leite"]
