"""
Cesta - grocery price comparison API

✅ LOCAL:
    pip install -e ".[test]"
    python -m uvicorn cesta.main:app --reload --host 0.0.0.0 --port 8000

✅ TEST:
    curl -i http://127.0.0.1:8000/health
    curl -i "http://127.0.0.1:8000/v1/search?term=picanha"
    curl -i -X POST http://127.0.0.1:8000/v1/calculate \
        -H "Content-Type: application/json" \
        -d '{"cep": "22470-220", "items": [{"name": "leite", "quantity": 2}]}'

✅ TESTS:
    pytest
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cesta.api.routes_meta import router as meta_router
from cesta.api.routes_prices import router as prices_router
from cesta.core.cache import PriceCache
from cesta.core.config import settings
from cesta.core.engine import PriceEngine
from cesta.core.sources import build_default_sources

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_LEVEL = logging.getLevelName(settings.LOG_LEVEL.upper())

# force=True replaces uvicorn's default handlers so cesta.* records show up
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, force=True)
for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx"):
    logging.getLogger(name).setLevel(LOG_LEVEL)

logger = logging.getLogger(__name__)


def build_engine() -> PriceEngine:
    cache = PriceCache(ttl_seconds=settings.CACHE_TTL_SECONDS)
    cache.init()
    sources = build_default_sources(settings)
    logger.info("Enabled sources: %s", ", ".join(s.value for s in sources) or "(none)")
    return PriceEngine(
        sources,
        cache,
        per_100g_threshold=settings.PER_100G_PRICE_THRESHOLD,
        suggestion_limit=settings.SEARCH_SUGGESTION_LIMIT,
    )


def create_app(engine: Optional[PriceEngine] = None) -> FastAPI:
    app = FastAPI(
        title="Cesta API",
        version=settings.APP_VERSION,
        description="Grocery price comparison across Rio de Janeiro supermarkets",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.engine = engine if engine is not None else build_engine()

    # ✅ Root (GET /)
    @app.get("/")
    def root():
        return {
            "name": "Cesta API",
            "status": "ok",
            "docs": "/docs",
            "health": "/health",
            "version": "/version",
        }

    # ✅ Health Check (GET /health)
    @app.get("/health")
    def health():
        return {"ok": True, "sources": [s.value for s in app.state.engine.sources]}

    # ✅ Mount routers
    app.include_router(meta_router)
    app.include_router(prices_router)

    return app


app = create_app()
