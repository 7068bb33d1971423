"""
Test configuration and fixtures for the Quarry backend test suite.

Provides:
- A KBOB-like catalog served from memory (no network)
- FastAPI TestClient fixtures with the catalog source patched
- Helpers for creating sessions through the API
"""
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from quarry.material_match import CatalogConfigError, InMemoryCatalogProvider, JsonFileCatalogProvider


ROOT_DIR = Path(__file__).resolve().parents[2]
CATALOG_PATH = ROOT_DIR / "quarry" / "material_match" / "tests" / "fixtures" / "catalog.json"

BOQ_ROWS = [
    {"element": "Wand EG", "material": "Hochbaubeton C25/30", "quantity": 2.5, "unit": "m3"},
    {"element": "Decke", "material": "Beton", "quantity": 10, "unit": "m3"},
    {"element": "Wand EG", "material": "Hochbaubeton C25/30", "quantity": 1.5, "unit": "m3"},
    {"element": "Dämmung", "material": "Dämmung Glas", "quantity": 10, "unit": "m3"},
    {"element": "Bodenfläche", "material": "Fläche", "quantity": 120, "unit": "m2"},
]


# ---------------------------------------------------------------------------
# Catalog fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def catalog_provider():
    """In-memory provider loaded from the library's catalog fixture."""
    return InMemoryCatalogProvider(JsonFileCatalogProvider(CATALOG_PATH).fetch_entries())


# ---------------------------------------------------------------------------
# Client fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def client(catalog_provider):
    """
    Provide a FastAPI TestClient with the catalog source patched.

    Entering the client runs the app lifespan (startup validation).
    """
    from backend.api.main import app

    with patch("backend.api.routers.lca.validate_catalog_settings"), \
         patch("backend.api.routers.lca.build_catalog_provider", return_value=catalog_provider):
        with TestClient(app) as c:
            yield c


@pytest.fixture()
def unconfigured_client():
    """TestClient for an app started without any catalog source."""
    from backend.api.main import app

    error = CatalogConfigError("LCA data API key is not configured.")
    with patch("backend.api.routers.lca.validate_catalog_settings", side_effect=error):
        with TestClient(app) as c:
            yield c


@pytest.fixture()
def api_key():
    """Configure QUARRY_API_KEY for the duration of a test."""
    from backend.core.config import settings

    with patch.object(settings, "API_KEY", "secret"):
        yield "secret"


@pytest.fixture()
def create_session(client):
    """Factory: create a session through the API and return its JSON body."""
    def _create(rows=None, **extra) -> dict:
        body = {"rows": BOQ_ROWS if rows is None else rows}
        body.update(extra)
        resp = client.post("/api/sessions", json=body)
        assert resp.status_code == 200, resp.text
        return resp.json()
    return _create


@pytest.fixture()
def session_rows(client):
    """Factory: current rows of a session."""
    def _rows(session_id: str) -> list:
        resp = client.get(f"/api/sessions/{session_id}")
        assert resp.status_code == 200, resp.text
        return resp.json()["rows"]
    return _rows
