"""
Shared fixtures for the Material Match test suite.

Provides:
- Config loaded from the module's material_categories.json
- A small KBOB-like catalog (from fixtures/catalog.json)
- Lookup clients and a session factory running fully in-process
"""

from pathlib import Path

import pytest

from quarry.material_match.catalog import (
    CatalogProvider,
    CatalogUnavailableError,
    InMemoryCatalogProvider,
    JsonFileCatalogProvider,
)
from quarry.material_match.config import load_config
from quarry.material_match.index import build_snapshot
from quarry.material_match.lookup import LocalLookupClient
from quarry.material_match.session import WorkingSession


FIXTURES_DIR = Path(__file__).parent / "fixtures"
CATALOG_PATH = FIXTURES_DIR / "catalog.json"
BOQ_CSV = FIXTURES_DIR / "boq.csv"
BOQ_JSON = FIXTURES_DIR / "boq.json"


class FailingCatalogProvider(CatalogProvider):
    """Provider that is always unreachable."""

    def fetch_entries(self):
        raise CatalogUnavailableError("Unable to connect to the LCA data service.")


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def entries():
    return JsonFileCatalogProvider(CATALOG_PATH).fetch_entries()


@pytest.fixture
def entry_by_id(entries):
    return {e.id: e for e in entries}


@pytest.fixture
def snapshot(entries):
    return build_snapshot(entries)


@pytest.fixture
def provider(entries):
    return InMemoryCatalogProvider(entries)


@pytest.fixture
def lookup(provider, config):
    return LocalLookupClient(provider, config)


@pytest.fixture
def failing_lookup(config):
    return LocalLookupClient(FailingCatalogProvider(), config)


@pytest.fixture
def make_session(lookup, config):
    """Factory: ingest raw rows into a fresh session."""
    def _make(rows, **kwargs):
        return WorkingSession.ingest(rows, lookup=lookup, config=config, **kwargs)
    return _make
