"""
Retrieval collaborators: one async callable per storefront.

Each source is called with a normalized search term and returns validated
RawCandidate records. Anything the storefront sends that doesn't validate
is skipped here, so the offer builder only sees typed data.
"""
import json
import logging
import math
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from cesta.core.config import Settings
from cesta.core.retailers import VTEX_BASE_URLS, resolve_sources
from cesta.schemas.prices import RawCandidate, SourceName

logger = logging.getLogger(__name__)

SourceFetcher = Callable[[str], Awaitable[List[RawCandidate]]]

INSTALEAP_API_URL = "https://nextgentheadless.instaleap.io/api/v3"
INSTALEAP_CLIENT_ID = "TORRE_SUPERMERCADO"
SUPERMARKETDELIVERY_BASE = "https://www.supermarketdelivery.com.br"


class SourceUnavailableError(Exception):
    def __init__(self, source: SourceName, message: str):
        super().__init__(f"{source.value}: {message}")
        self.source = source
        self.message = message


def _first(value: Any) -> Optional[dict]:
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value[0]
    return None


def _positive_number(value: Any) -> Optional[float]:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) and num > 0 else None


def to_absolute_url(base_url: str, href: Any) -> Optional[str]:
    if not isinstance(href, str) or not href.strip():
        return None
    value = href.strip()
    if value.startswith("http://") or value.startswith("https://"):
        return value
    if value.startswith("/"):
        return f"{base_url}{value}"
    return f"{base_url}/{value}"


def _validate(source: SourceName, payload: Dict[str, Any]) -> Optional[RawCandidate]:
    try:
        return RawCandidate.model_validate(payload)
    except ValidationError as e:
        logger.debug("skip %s record %r: %s", source.value, payload.get("title"), e.errors()[:1])
        return None


# ---------------------------------------------------------------------------
# VTEX (Prezunic, Zona Sul, Extra)
# ---------------------------------------------------------------------------

def _vtex_commercial_offer(product: dict) -> dict:
    item = _first(product.get("items")) or {}
    seller = _first(item.get("sellers")) or {}
    return seller.get("commertialOffer") or seller.get("commercialOffer") or {}


def _vtex_price(product: dict) -> Optional[float]:
    price = _positive_number(_vtex_commercial_offer(product).get("Price"))
    if price is not None:
        return price
    price_range = product.get("priceRange") or {}
    return _positive_number((price_range.get("sellingPrice") or {}).get("lowPrice"))


def _vtex_list_price(product: dict) -> Optional[float]:
    price = _positive_number(_vtex_commercial_offer(product).get("ListPrice"))
    if price is not None:
        return price
    price_range = product.get("priceRange") or {}
    return _positive_number((price_range.get("listPrice") or {}).get("highPrice"))


def map_vtex_product(source: SourceName, base_url: str, product: Any) -> Optional[RawCandidate]:
    if not isinstance(product, dict):
        return None

    item = _first(product.get("items")) or {}
    measurement_unit = item.get("measurementUnit")
    measurement_unit = measurement_unit.strip().lower() if isinstance(measurement_unit, str) else None
    unit_multiplier = _positive_number(item.get("unitMultiplier"))

    return _validate(
        source,
        {
            "title": str(product.get("productName") or ""),
            "price": _vtex_price(product),
            "list_price": _vtex_list_price(product),
            "unit_multiplier": unit_multiplier,
            "measurement_unit": measurement_unit or None,
            "raw_text": json.dumps(
                {
                    "productName": product.get("productName"),
                    "categories": product.get("categories"),
                    "measurementUnit": measurement_unit,
                    "unitMultiplier": unit_multiplier,
                },
                ensure_ascii=False,
            ),
            "url": to_absolute_url(base_url, product.get("link") or product.get("linkText")),
        },
    )


def _vtex_products(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("products"), list):
        return payload["products"]
    return []


class VtexSource:
    """
    Search a VTEX storefront by term.

    Tries the legacy catalog API first, then intelligent search; stops at the
    first endpoint that yields products.
    """

    def __init__(
        self,
        source: SourceName,
        base_url: str,
        *,
        page_size: int = 24,
        max_pages: int = 3,
        timeout: float = 15.0,
        user_agent: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.source = source
        self.base_url = base_url.rstrip("/")
        self.page_size = max(1, min(50, int(page_size)))
        self.max_pages = max(1, min(6, int(max_pages)))
        self.timeout = timeout
        self.user_agent = user_agent
        self.transport = transport

    def _endpoints(self, term: str):
        catalog = f"{self.base_url}/api/catalog_system/pub/products/search"
        intelligent = f"{self.base_url}/api/io/_v/api/intelligent-search/product_search"
        return [
            (catalog, lambda frm, to: {"ft": term, "_from": frm, "_to": to}),
            (intelligent, lambda frm, to: {"ft": term, "from": frm, "to": to}),
        ]

    async def __call__(self, term: str) -> List[RawCandidate]:
        headers = {"Accept": "application/json,text/plain,*/*"}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent

        seen: set[str] = set()
        output: List[RawCandidate] = []
        errors: List[str] = []
        any_ok = False

        async with httpx.AsyncClient(timeout=self.timeout, headers=headers, transport=self.transport) as client:
            for url, params_for in self._endpoints(term):
                for page in range(self.max_pages):
                    frm = page * self.page_size
                    to = frm + self.page_size - 1
                    try:
                        r = await client.get(url, params=params_for(frm, to))
                        r.raise_for_status()
                        products = _vtex_products(r.json())
                    except (httpx.HTTPError, ValueError) as e:
                        errors.append(f"{url}: {e}")
                        break

                    any_ok = True
                    if not products:
                        break

                    for product in products:
                        candidate = map_vtex_product(self.source, self.base_url, product)
                        if candidate is None:
                            continue
                        dedupe_key = f"{candidate.title.lower()}|{candidate.price}"
                        if dedupe_key in seen:
                            continue
                        seen.add(dedupe_key)
                        output.append(candidate)

                    if len(products) < self.page_size:
                        break

                if output:
                    return output

        if not any_ok and errors:
            raise SourceUnavailableError(self.source, "; ".join(errors))
        return output


# ---------------------------------------------------------------------------
# Instaleap GraphQL (Supermarket Delivery)
# ---------------------------------------------------------------------------

INSTALEAP_SEARCH_QUERY = """
query SearchProducts($input: SearchProductsInput!) {
  searchProducts(searchProductsInput: $input) {
    products {
      sku
      name
      slug
      description
      price
      isAvailable
      brand
      unit
      stock
      ean
      categories { name path reference slug }
    }
  }
}
"""


def map_instaleap_product(product: Any) -> Optional[RawCandidate]:
    if not isinstance(product, dict):
        return None

    slug = str(product.get("slug") or "").strip()
    categories = [c.get("name") for c in product.get("categories") or [] if isinstance(c, dict) and c.get("name")]
    return _validate(
        SourceName.SUPERMARKETDELIVERY,
        {
            "title": str(product.get("name") or ""),
            "price": product.get("price"),
            "raw_text": json.dumps(
                {
                    "description": product.get("description"),
                    "unit": product.get("unit"),
                    "stock": product.get("stock"),
                    "ean": product.get("ean"),
                    "categories": categories,
                },
                ensure_ascii=False,
            ),
            "url": f"{SUPERMARKETDELIVERY_BASE}/p/{slug}" if slug else None,
        },
    )


class InstaleapSource:
    def __init__(
        self,
        *,
        store_reference: str = "2",
        page_size: int = 24,
        max_pages: int = 3,
        timeout: float = 20.0,
        user_agent: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.source = SourceName.SUPERMARKETDELIVERY
        self.store_reference = store_reference
        self.page_size = page_size
        self.max_pages = max_pages
        self.timeout = timeout
        self.user_agent = user_agent
        self.transport = transport

    async def _fetch_page(self, client: httpx.AsyncClient, term: str, page: int) -> List[RawCandidate]:
        payload = {
            "query": INSTALEAP_SEARCH_QUERY,
            "variables": {
                "input": {
                    "clientId": INSTALEAP_CLIENT_ID,
                    "storeReference": self.store_reference,
                    "pageSize": self.page_size,
                    "currentPage": page,
                    "search": [{"query": term}],
                }
            },
        }
        r = await client.post(INSTALEAP_API_URL, json=payload)
        r.raise_for_status()
        body = r.json()

        if isinstance(body, dict) and body.get("errors"):
            logger.warning("instaleap errors for %r: %s", term, body["errors"][:1])
            return []

        products = (((body or {}).get("data") or {}).get("searchProducts") or {}).get("products") or []
        out: List[RawCandidate] = []
        for product in products:
            candidate = map_instaleap_product(product)
            if candidate is not None:
                out.append(candidate)
        return out

    async def __call__(self, term: str) -> List[RawCandidate]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent

        collected: List[RawCandidate] = []
        async with httpx.AsyncClient(timeout=self.timeout, headers=headers, transport=self.transport) as client:
            for page in range(1, self.max_pages + 1):
                try:
                    page_items = await self._fetch_page(client, term, page)
                except (httpx.HTTPError, ValueError) as e:
                    if page == 1:
                        raise SourceUnavailableError(self.source, str(e))
                    break

                if not page_items:
                    break
                collected.extend(page_items)
                if len(page_items) < self.page_size:
                    break

        return collected


def build_default_sources(cfg: Settings) -> Dict[SourceName, SourceFetcher]:
    """Registry of the enabled storefronts, in configured order."""
    registry: Dict[SourceName, SourceFetcher] = {}
    for source in resolve_sources(cfg.enabled_sources()):
        if source in VTEX_BASE_URLS:
            registry[source] = VtexSource(
                source,
                VTEX_BASE_URLS[source],
                page_size=cfg.VTEX_PAGE_SIZE,
                max_pages=cfg.VTEX_MAX_PAGES,
                timeout=cfg.SOURCE_TIMEOUT_SECONDS,
                user_agent=cfg.USER_AGENT,
            )
        elif source == SourceName.SUPERMARKETDELIVERY:
            registry[source] = InstaleapSource(
                store_reference=cfg.INSTALEAP_STORE_REFERENCE,
                max_pages=cfg.INSTALEAP_MAX_PAGES,
                timeout=cfg.SOURCE_TIMEOUT_SECONDS,
                user_agent=cfg.USER_AGENT,
            )
    return registry
