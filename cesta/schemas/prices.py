import math
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from cesta.core.normalization import parse_price_text
from cesta.schemas.units import SourceName, Unit


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """
    Base for everything that crosses the JSON boundary.
    Python side uses snake_case, the wire uses camelCase.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RawCandidate(CamelModel):
    """
    One product record as handed over by a retrieval collaborator.
    Validated here so the offer builder never sees untyped payloads.
    """
    title: str
    price: float
    raw_text: Optional[str] = None
    url: Optional[str] = None

    # VTEX item metadata (optional, only some storefronts expose it)
    list_price: Optional[float] = None
    unit_multiplier: Optional[float] = None
    measurement_unit: Optional[str] = None

    # Set by fallback collaborators that synthesize placeholder prices
    is_fallback: bool = False

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title is empty")
        return v

    @field_validator("price", mode="before")
    @classmethod
    def _parse_price(cls, v):
        if isinstance(v, str):
            parsed = parse_price_text(v)
            if parsed is None:
                raise ValueError(f"unparseable price: {v!r}")
            return parsed
        return v

    @field_validator("price")
    @classmethod
    def _price_positive(cls, v: float) -> float:
        if not math.isfinite(v) or v <= 0:
            raise ValueError("price must be finite and positive")
        return v

    @field_validator("list_price", "unit_multiplier")
    @classmethod
    def _optional_positive(cls, v: Optional[float]) -> Optional[float]:
        if v is None or not math.isfinite(v) or v <= 0:
            return None
        return v

    @field_validator("measurement_unit")
    @classmethod
    def _lower_unit(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip().lower() or None


class Offer(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    source: SourceName
    item_name: str
    product_title: str
    package_quantity: float = Field(gt=0)
    package_unit: Unit
    package_price: float = Field(gt=0)
    normalized_price_per_user_unit: float
    product_url: Optional[str] = None
    is_fallback: bool = False
    collected_at: datetime = Field(default_factory=utcnow)


class QuantityRule(CamelModel):
    min: float
    step: float


class ShoppingItemInput(CamelModel):
    """
    One shopping list line as sent by the client.
    Unusable values become "" / 0 so the engine filters the line out
    instead of the whole request failing validation.
    """
    name: str = ""
    quantity: float = 0

    @field_validator("name", mode="before")
    @classmethod
    def _name_or_blank(cls, v):
        if isinstance(v, bool) or not isinstance(v, (str, int, float)):
            return ""
        return str(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity_or_zero(cls, v):
        if isinstance(v, bool):
            return 0
        if isinstance(v, (int, float)):
            return v
        if isinstance(v, str):
            try:
                return float(v.strip().replace(",", "."))
            except ValueError:
                return 0
        return 0


class ItemPriceSummary(CamelModel):
    item_name: str
    quantity: float
    unit: Unit
    quantity_rule: QuantityRule
    lowest_unit_price: float
    average_unit_price: float
    lowest_total_price: float
    average_total_price: float
    best_source: Optional[SourceName] = None
    best_offer_url: Optional[str] = None
    best_offer_title: Optional[str] = None
    has_real_offers: bool
    offers: List[Offer]


class ListSummary(CamelModel):
    items_count: int
    lowest_total_list_price: float
    average_total_list_price: float


class CalculationResponse(CamelModel):
    cep: str
    generated_at: datetime
    items: List[ItemPriceSummary]
    summary: ListSummary


class CalculateRequest(CamelModel):
    cep: Optional[str] = None
    items: List[ShoppingItemInput] = Field(default_factory=list)

    @field_validator("items", mode="before")
    @classmethod
    def _drop_non_objects(cls, v):
        # a non-list body is still a 422; stray entries inside the list are skipped
        if isinstance(v, list):
            return [i for i in v if isinstance(i, (dict, ShoppingItemInput))]
        return v


class PriceSnapshot(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    source: SourceName
    term: str
    offers: List[Offer]
    fetched_at: datetime = Field(default_factory=utcnow)


class SearchSuggestion(CamelModel):
    id: str
    name: str
    unit: Unit
    min_price: float
    source: SourceName
    product_url: Optional[str] = None


class SourceStatus(CamelModel):
    source: SourceName
    ok: bool
    offers: int
    error: Optional[str] = None
    search_url: Optional[str] = None


class SearchResponse(CamelModel):
    term: str
    normalized_term: str
    suggestions: List[SearchSuggestion]
    offers_count: int
    checked_markets: int
    checked_sources: List[SourceStatus]
    offers_by_source: Dict[str, int]


class RefreshResult(CamelModel):
    updated: int
    estimated_seconds: int
    updated_at: datetime
