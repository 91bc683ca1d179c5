from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central settings object.
    Environment variables win; locally you can use a .env file next to the app.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Versioning
    APP_VERSION: str = "0.1.0"
    BUILD_ID: str = "dev"

    LOG_LEVEL: str = "INFO"

    # Copacabana, Rio de Janeiro
    DEFAULT_CEP: str = "22470-220"

    # Comma separated list of source names
    ENABLED_SOURCES: str = "prezunic,zonasul,extra,supermarketdelivery"

    # Retrieval collaborators
    SOURCE_TIMEOUT_SECONDS: float = 15.0
    VTEX_PAGE_SIZE: int = 24
    VTEX_MAX_PAGES: int = 3
    INSTALEAP_STORE_REFERENCE: str = "2"
    INSTALEAP_MAX_PAGES: int = 3
    USER_AGENT: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    )

    # Butcher cards priced below this are assumed to show R$/100g instead of R$/kg.
    # Observed on retailer sites; review before applying to a new source.
    PER_100G_PRICE_THRESHOLD: float = 15.0

    # 0 = cached snapshots never expire (refresh happens via /v1/update-prices)
    CACHE_TTL_SECONDS: int = 0

    SEARCH_SUGGESTION_LIMIT: int = 5

    def enabled_sources(self) -> List[str]:
        return [s.strip().lower() for s in self.ENABLED_SOURCES.split(",") if s.strip()]


# ✅ MUST EXIST: other modules import this
settings = Settings()
