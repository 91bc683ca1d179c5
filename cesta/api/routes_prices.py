import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Request

from cesta.core.config import settings
from cesta.core.engine import InvalidRequestError, PriceEngine
from cesta.core.retailers import SOURCE_CATEGORIES, SOURCE_LABELS
from cesta.schemas.prices import CalculateRequest, CalculationResponse, SearchResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["prices"])


def get_engine(request: Request) -> PriceEngine:
    return request.app.state.engine


def _internal_error(message: str, e: Exception) -> HTTPException:
    return HTTPException(status_code=500, detail={"error": message, "details": str(e)})


@router.post("/calculate", response_model=CalculationResponse)
async def calculate(body: CalculateRequest, engine: PriceEngine = Depends(get_engine)):
    """
    Prices a shopping list across every enabled market.
    Items with blank names or non-positive quantities are ignored.
    """
    cep = (body.cep or "").strip() or settings.DEFAULT_CEP
    try:
        return await engine.calculate_list_prices(cep, body.items)
    except Exception as e:
        logger.exception("calculate failed")
        raise _internal_error("Falha ao calcular preços", e)


@router.get("/search", response_model=SearchResponse)
async def search(term: str = "", engine: PriceEngine = Depends(get_engine)):
    """
    Up to SEARCH_SUGGESTION_LIMIT products matching `term`, cheapest package per product.
    """
    try:
        return await engine.search(term)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail={"error": str(e)})
    except Exception as e:
        logger.exception("search failed for %r", term)
        raise _internal_error("Falha ao buscar itens nos mercados", e)


@router.get("/update-prices")
async def update_status(engine: PriceEngine = Depends(get_engine)):
    last = engine.last_update()
    return {
        "lastUpdate": last.isoformat() if last else None,
        "estimateSeconds": 0,
    }


@router.post("/update-prices")
async def update_prices(engine: PriceEngine = Depends(get_engine)):
    started = time.monotonic()
    try:
        result = await engine.refresh_all()
    except Exception as e:
        logger.exception("manual refresh failed")
        raise _internal_error("Falha na atualização manual", e)

    payload = result.model_dump(mode="json", by_alias=True)
    payload["elapsedSeconds"] = round(time.monotonic() - started)
    return payload


@router.get("/categories")
def categories():
    return {
        "cep": settings.DEFAULT_CEP,
        "sources": [
            {"source": src.value, "label": SOURCE_LABELS[src], "categories": cats}
            for src, cats in SOURCE_CATEGORIES.items()
        ],
    }
