"""
Pydantic request/response models for the API.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


# ============== Sessions ==============

class ColumnMapRequest(BaseModel):
    """Which original columns feed element, material, quantity (and unit)."""
    element: str
    material: str
    quantity: str
    unit: Optional[str] = None


class SessionCreateRequest(BaseModel):
    """
    Ingest request.

    Either send `rows` already in {element, material, quantity, unit}
    form, or send `originals` plus a `column_map` and let the server
    map them. `headers` keeps the original column order for export.
    """
    rows: Optional[List[Any]] = None
    headers: List[str] = Field(default_factory=list)
    originals: Optional[List[Dict[str, Any]]] = None
    column_map: Optional[ColumnMapRequest] = None
    default_unit: str = "m3"


# ============== Row edits ==============

class CatalogEntryRequest(BaseModel):
    """Entry picked in the override dropdown (from a row's candidates)."""
    id: str
    name: str
    density: Optional[float] = None
    gwp: Optional[float] = None
    burden: Optional[float] = None
    energy: Optional[float] = None


class OverrideRequest(BaseModel):
    entry: CatalogEntryRequest
    row_ids: List[str] = Field(default_factory=list)
    # Grouped view: [element, material] instead of row ids
    group: Optional[List[str]] = None


class UnitChangeRequest(BaseModel):
    row_id: str
    unit: str


class AreaRequest(BaseModel):
    row_ids: List[str]
    area: Optional[float] = None
    area_row_id: Optional[str] = None  # copy the quantity of an m2 row instead


class PerAreaRequest(BaseModel):
    row_id: str


class ReinforcementRequest(BaseModel):
    row_ids: List[str]
    kg_per_m3: Any  # validated by the session so bad values get a clean 400


class DeleteRowsRequest(BaseModel):
    row_ids: List[str]
