"""
Catalog Lookup Service - the request/response boundary of the engine.

Request:  list of {element, material, quantity, unit}
Response: list (same order and length) of LookupResult

A local client runs matcher + calculator in-process against a provider;
a remote client talks to the HTTP endpoint. Either way, a failure is a
single CatalogError for the whole batch, never per row.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import requests

from .calculator import compute
from .catalog import CatalogFormatError, CatalogProvider, CatalogUnavailableError
from .config import Config
from .index import CatalogSnapshot, build_snapshot
from .matcher import match_label
from .models import InventoryItem, LookupResult, Unit

logger = logging.getLogger(__name__)


class InvalidInputError(ValueError):
    """Request or parameter has the wrong overall shape."""


def _parse_quantity(value: Any) -> float:
    """Parse a quantity, defaulting to 0 on anything unparseable."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).replace("'", "").replace(",", ".").strip())
        except (ValueError, TypeError):
            return 0.0
    # NaN and infinities are as useless as garbage text
    if number != number or number in (float("inf"), float("-inf")):
        return 0.0
    return number


def clean_item(raw: Any, position: int) -> InventoryItem:
    """
    Turn one raw request item into an InventoryItem.

    Malformed items are defaulted, never rejected.
    """
    if not isinstance(raw, dict):
        raw = {}

    element = str(raw.get("element") or "").strip()
    material = str(raw.get("material") or raw.get("material_label") or "").strip()

    return InventoryItem(
        element=element or f"Unknown Element {position + 1}",
        material_label=material or f"Unknown Material {position + 1}",
        quantity=_parse_quantity(raw.get("quantity")),
        unit=Unit.parse(raw.get("unit")),
    )


def clean_items(data: Any) -> list[InventoryItem]:
    """
    Validate the overall request shape and clean every item.

    Raises:
        InvalidInputError: if data is not a list
    """
    if not isinstance(data, list):
        raise InvalidInputError("Invalid input: data must be an array of rows")
    return [clean_item(raw, i) for i, raw in enumerate(data)]


def lookup_item(item: InventoryItem, snapshot: CatalogSnapshot, config: Config) -> LookupResult:
    """Run matcher and calculator for one cleaned item."""
    if item.unit == Unit.M2:
        return LookupResult(
            item=item, mass_kg=0.0, density=0.0,
            gwp=0.0, burden=0.0, energy=0.0,
        )

    result = match_label(item.material_label, snapshot, config)
    confident = result.is_confident(config.settings.confidence_threshold)
    values = compute(item, result.best, confident)

    return LookupResult(
        item=item,
        mass_kg=values.mass_kg,
        density=(result.best.density or 0.0) if result.best else 0.0,
        gwp=values.gwp,
        burden=values.burden,
        energy=values.energy,
        matched_entry_id=result.best.id if confident else None,
        matched_entry_name=result.best.display_name if confident else None,
        match_score=result.score,
        candidates=result.candidates,
    )


def lookup_items(
    items: list[InventoryItem],
    snapshot: CatalogSnapshot,
    config: Config,
) -> list[LookupResult]:
    """Look up every item against one shared snapshot, preserving order."""
    results = [lookup_item(item, snapshot, config) for item in items]
    matched = sum(1 for r in results if r.matched_entry_id)
    logger.info(f"Looked up {len(results)} items, {matched} confident matches")
    return results


class LookupClient(ABC):
    """
    Abstract interface to the catalog lookup service.

    The session engine calls this for ingest, unit changes and the
    reinforcement entry; it doesn't know whether the work is local.
    """

    @abstractmethod
    def lookup(self, items: list[InventoryItem]) -> list[LookupResult]:
        """
        Look up a batch of items.

        Returns:
            One LookupResult per item, same order

        Raises:
            CatalogError: if the batch could not be looked up
        """
        pass


class LocalLookupClient(LookupClient):
    """Runs the lookup in-process against a catalog provider."""

    def __init__(self, provider: CatalogProvider, config: Config):
        self._provider = provider
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    def lookup(self, items: list[InventoryItem]) -> list[LookupResult]:
        snapshot = build_snapshot(self._provider.fetch_entries())
        return lookup_items(items, snapshot, self._config)


class RemoteLookupClient(LookupClient):
    """
    Client for the HTTP lookup endpoint (POST /api/lca-data).

    A non-2xx status, an unparseable body or a response whose length
    differs from the request fails the whole batch.
    """

    def __init__(self, base_url: str, timeout: float = 60, api_key: str | None = None):
        self._url = base_url.rstrip("/") + "/api/lca-data"
        self._timeout = timeout
        self._api_key = api_key

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    def lookup(self, items: list[InventoryItem]) -> list[LookupResult]:
        try:
            resp = requests.post(
                self._url,
                headers=self._headers(),
                json=[item.to_dict() for item in items],
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Lookup request failed: {e}")
            raise CatalogUnavailableError(f"Lookup service unreachable: {e}") from e

        if not resp.ok:
            raise CatalogUnavailableError(f"HTTP error! status: {resp.status_code}, message: {resp.text[:200]}")

        try:
            data = resp.json()
        except ValueError as e:
            raise CatalogFormatError("Lookup response is not JSON") from e

        if not isinstance(data, list) or len(data) != len(items):
            raise CatalogFormatError("Lookup response must be a list with one result per item")

        try:
            return [LookupResult.from_dict(row) for row in data]
        except (KeyError, TypeError, ValueError) as e:
            raise CatalogFormatError(f"Malformed lookup result: {e}") from e
