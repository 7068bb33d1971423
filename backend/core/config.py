"""
Centralized configuration for the Quarry backend.

All environment variables and settings should be defined here
to avoid duplication across modules.
"""
import os
from functools import lru_cache
from pathlib import Path

from quarry.material_match import (
    CatalogConfigError,
    CatalogProvider,
    JsonFileCatalogProvider,
    LcaDataCatalogProvider,
)
from quarry.material_match.catalog import DEFAULT_LCADATA_URL


class Settings:
    """Application settings loaded from environment variables."""

    # CORS - comma-separated list of allowed origins
    ALLOWED_ORIGINS: list = os.environ.get(
        "ALLOWED_ORIGINS",
        "http://localhost:8090,http://localhost:5173,http://127.0.0.1:8090"
    ).split(",")

    # KBOB catalog on lcadata.ch
    LCADATA_API_URL: str = os.environ.get("LCADATA_API_URL", DEFAULT_LCADATA_URL)
    LCADATA_API_KEY: str = os.environ.get("LCADATA_API_KEY", "")
    LCADATA_TIMEOUT: float = float(os.environ.get("LCADATA_TIMEOUT", "30"))

    # Saved catalog JSON, used instead of lcadata.ch when set
    CATALOG_FILE: str = os.environ.get("QUARRY_CATALOG_FILE", "")

    # Material category rules (default: the module's material_categories.json)
    CATEGORY_CONFIG: str = os.environ.get("QUARRY_CATEGORY_CONFIG", "")

    # API key for protecting destructive endpoints (optional)
    API_KEY: str = os.environ.get("QUARRY_API_KEY", "")

    # Working sessions kept in memory; the least recently used one is dropped beyond this
    MAX_SESSIONS: int = int(os.environ.get("QUARRY_MAX_SESSIONS", "100"))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton instance for easy import
settings = get_settings()


def validate_catalog_settings(config: Settings = settings) -> None:
    """
    Fail fast when no catalog source is configured.

    Raises:
        CatalogConfigError: if neither an API key nor a catalog file is set,
            or the catalog file does not exist
    """
    if config.CATALOG_FILE:
        if not Path(config.CATALOG_FILE).exists():
            raise CatalogConfigError(f"Catalog file not found: {config.CATALOG_FILE}")
        return
    if not config.LCADATA_API_KEY:
        raise CatalogConfigError(
            "LCA data API key is not configured. Set LCADATA_API_KEY or QUARRY_CATALOG_FILE."
        )


def build_catalog_provider(config: Settings = settings) -> CatalogProvider:
    """Catalog provider for the configured source (file wins over API)."""
    if config.CATALOG_FILE:
        return JsonFileCatalogProvider(config.CATALOG_FILE)
    return LcaDataCatalogProvider(
        api_key=config.LCADATA_API_KEY,
        url=config.LCADATA_API_URL,
        timeout=config.LCADATA_TIMEOUT,
    )
