"""
Catalog Providers - Bridge to the reference material catalog.

The adapter pattern lets us swap implementations (in-memory for testing,
JSON file for offline use, lcadata.ch for production) without changing
matcher logic. The core only ever sees a list of ReferenceEntry.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import requests

from .models import ReferenceEntry

logger = logging.getLogger(__name__)

DEFAULT_LCADATA_URL = "https://www.lcadata.ch/api/kbob/materials?pageSize=all"


class CatalogError(Exception):
    """Base error for anything that prevents reading the catalog."""


class CatalogConfigError(CatalogError):
    """Catalog access is not configured (missing API key / source)."""


class CatalogUnavailableError(CatalogError):
    """Catalog service could not be reached or returned an error status."""


class CatalogFormatError(CatalogError):
    """Catalog (or lookup) response did not have the expected shape."""


def _parse_number(value: Any) -> Optional[float]:
    """Parse a catalog number; KBOB sends density as a string."""
    if value is None or value == "":
        return None
    try:
        return float(str(value).replace(",", ".").strip())
    except (ValueError, TypeError):
        return None


def parse_reference_entry(raw: dict) -> Optional[ReferenceEntry]:
    """
    Map a raw KBOB material record to a ReferenceEntry.

    Returns None for records without a usable name.
    """
    if not isinstance(raw, dict):
        return None

    name = raw.get("nameDE") or raw.get("name")
    if not name:
        return None

    return ReferenceEntry(
        id=str(raw.get("uuid") or raw.get("id") or name),
        display_name=str(name).strip(),
        density=_parse_number(raw.get("density")),
        gwp_per_kg=_parse_number(raw.get("gwpTotal")),
        burden_per_kg=_parse_number(raw.get("ubp21Total")),
        energy_per_kg=_parse_number(raw.get("primaryEnergyNonRenewableTotal")),
    )


def parse_materials_payload(payload: Any) -> list[ReferenceEntry]:
    """
    Parse a `{"materials": [...]}` payload into entries.

    Raises:
        CatalogFormatError: if the payload is not in the expected shape
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("materials"), list):
        raise CatalogFormatError("Invalid catalog response format: expected {'materials': [...]}")

    entries = []
    skipped = 0
    for raw in payload["materials"]:
        entry = parse_reference_entry(raw)
        if entry is None:
            skipped += 1
            continue
        entries.append(entry)

    if skipped:
        logger.warning(f"Skipped {skipped} catalog records without a name")
    return entries


class CatalogProvider(ABC):
    """
    Abstract interface for reference catalog access.

    Implementations return a fresh snapshot of catalog entries.
    The matcher doesn't know or care where the data actually lives.
    """

    @abstractmethod
    def fetch_entries(self) -> list[ReferenceEntry]:
        """
        Fetch all catalog entries.

        Returns:
            List of ReferenceEntry in catalog order

        Raises:
            CatalogError: if the catalog cannot be read
        """
        pass


class InMemoryCatalogProvider(CatalogProvider):
    """
    In-memory provider for programmatic test setup.

    Useful for unit tests where you want to control exact entries.
    """

    def __init__(self, entries: list[ReferenceEntry] | None = None):
        self._entries = list(entries or [])

    def add_entry(self, entry: ReferenceEntry):
        """Add a single entry."""
        self._entries.append(entry)

    def fetch_entries(self) -> list[ReferenceEntry]:
        return list(self._entries)


class JsonFileCatalogProvider(CatalogProvider):
    """
    Provider that reads a saved KBOB export from disk.

    JSON format expected (same as the lcadata.ch response):
        {"materials": [{"uuid": "...", "nameDE": "...", "density": "2400", ...}]}
    A bare list of material records is accepted too.
    """

    def __init__(self, data_path: str | Path):
        self._data_path = Path(data_path)

    def fetch_entries(self) -> list[ReferenceEntry]:
        if not self._data_path.exists():
            raise CatalogConfigError(f"Catalog file not found: {self._data_path}")

        try:
            with open(self._data_path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except json.JSONDecodeError as e:
            raise CatalogFormatError(f"Catalog file is not valid JSON: {e}") from e

        if isinstance(payload, list):
            payload = {"materials": payload}

        entries = parse_materials_payload(payload)
        logger.info(f"Loaded {len(entries)} catalog entries from {self._data_path.name}")
        return entries


class LcaDataCatalogProvider(CatalogProvider):
    """
    Production provider for the KBOB catalog on lcadata.ch.

    Every call performs one GET; callers reuse the returned snapshot
    for a whole ingest or re-match batch.
    """

    def __init__(
        self,
        api_key: str,
        url: str = DEFAULT_LCADATA_URL,
        timeout: float = 30,
    ):
        if not api_key:
            raise CatalogConfigError("Catalog API key is not configured")
        self._api_key = api_key
        self._url = url
        self._timeout = timeout

    def _headers(self) -> dict:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
        }

    def fetch_entries(self) -> list[ReferenceEntry]:
        try:
            resp = requests.get(self._url, headers=self._headers(), timeout=self._timeout)
        except requests.RequestException as e:
            logger.error(f"Catalog request failed: {e}")
            raise CatalogUnavailableError(
                "Unable to connect to the LCA data service. "
                "Please check your internet connection and try again."
            ) from e

        if not resp.ok:
            logger.error(f"Catalog API error: {resp.status_code} {resp.text[:200]}")
            raise CatalogUnavailableError(f"API error: {resp.status_code} {resp.text[:200]}")

        try:
            payload = resp.json()
        except ValueError as e:
            raise CatalogFormatError("Catalog response is not JSON") from e

        entries = parse_materials_payload(payload)
        logger.info(f"Fetched {len(entries)} catalog entries")
        return entries
