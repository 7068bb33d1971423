"""
LCA API router.

Stateless lookup (POST /api/lca-data) plus in-memory working sessions
for the row aggregation engine.
"""
import logging
import uuid
from dataclasses import asdict
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import Response

from backend.api.models import (
    AreaRequest,
    DeleteRowsRequest,
    OverrideRequest,
    PerAreaRequest,
    ReinforcementRequest,
    SessionCreateRequest,
    UnitChangeRequest,
)
from backend.api.security import require_api_key
from backend.core.config import build_catalog_provider, settings, validate_catalog_settings

from quarry.material_match import (
    CatalogConfigError,
    CatalogError,
    ColumnMap,
    InvalidInputError,
    LocalLookupClient,
    ReferenceEntry,
    ReinforcementError,
    Unit,
    UnknownRowError,
    WorkingSession,
    build_snapshot,
    load_config,
    lookup_items,
)
from quarry.material_match.inventory import LoadedInventory
from quarry.material_match.lookup import clean_items
from quarry.material_match.report import export_csv, export_xlsx, generate_report_filename

logger = logging.getLogger(__name__)

router = APIRouter(tags=["LCA"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Process-wide state (sessions are not persisted)
_lca_state = {
    "config": None,
    "startup_error": None,
    "sessions": {},
}


def init_lca():
    """Validate catalog settings and load category rules. Called from the app lifespan."""
    _lca_state["config"] = load_config(settings.CATEGORY_CONFIG or None)
    _lca_state["sessions"] = {}
    try:
        validate_catalog_settings()
        _lca_state["startup_error"] = None
    except CatalogConfigError as e:
        logger.error(f"LCA catalog not configured: {e}")
        _lca_state["startup_error"] = str(e)


def _config():
    if _lca_state["config"] is None:
        _lca_state["config"] = load_config(settings.CATEGORY_CONFIG or None)
    return _lca_state["config"]


def _require_catalog():
    if _lca_state["startup_error"]:
        raise HTTPException(status_code=503, detail=_lca_state["startup_error"])


def _http_error(e: Exception) -> HTTPException:
    """Map engine errors to HTTP status codes."""
    if isinstance(e, UnknownRowError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (InvalidInputError, ValueError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ReinforcementError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, CatalogConfigError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, CatalogError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _get_session(session_id: str) -> WorkingSession:
    sessions = _lca_state["sessions"]
    session = sessions.pop(session_id, None)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    # re-insert so dict order runs from least to most recently used
    sessions[session_id] = session
    return session


def _store_session(session_id: str, session: WorkingSession):
    sessions = _lca_state["sessions"]
    while sessions and len(sessions) >= max(settings.MAX_SESSIONS, 1):
        evicted = next(iter(sessions))
        del sessions[evicted]
        logger.info(f"Dropped least recently used session {evicted}")
    sessions[session_id] = session


def _row_payload(session: WorkingSession, row) -> dict:
    data = row.to_dict()
    data["per_area"] = session.is_per_area(row.row_id)
    data["display"] = asdict(session.display_values(row.row_id))
    return data


# ============== Lookup service ==============

@router.post("/api/lca-data")
def lca_data(data: Any = Body(None)):
    """
    Match a batch of bill-of-quantities rows against the KBOB catalog.

    Response has the same order and length as the request.
    """
    _require_catalog()

    try:
        items = clean_items(data)
        entries = build_catalog_provider().fetch_entries()
    except (InvalidInputError, CatalogError) as e:
        raise _http_error(e)

    results = lookup_items(items, build_snapshot(entries), _config())
    return [r.to_dict() for r in results]


# ============== Working sessions ==============

@router.post("/api/sessions")
def create_session(request: SessionCreateRequest):
    """Ingest an uploaded bill of quantities into a new working session."""
    _require_catalog()

    originals = None
    if request.originals is not None:
        originals = [
            {k: "" if v is None else str(v) for k, v in row.items()}
            for row in request.originals
        ]

    try:
        if request.column_map is not None:
            if originals is None:
                raise InvalidInputError("column_map requires originals")
            headers = request.headers or list(originals[0].keys() if originals else [])
            loaded = LoadedInventory(headers=headers, originals=originals)
            rows = loaded.to_items(
                ColumnMap(**request.column_map.model_dump()),
                default_unit=Unit.parse(request.default_unit, default=Unit.M3),
            )
        elif request.rows is not None:
            rows = request.rows
            headers = request.headers
        else:
            raise InvalidInputError("Invalid input: send rows or originals with a column_map")

        lookup = LocalLookupClient(build_catalog_provider(), _config())
        session = WorkingSession.ingest(
            rows, lookup=lookup, config=_config(), headers=headers, originals=originals,
        )
    except (InvalidInputError, ValueError, CatalogError) as e:
        raise _http_error(e)

    session_id = uuid.uuid4().hex
    _store_session(session_id, session)
    logger.info(f"Created session {session_id} with {len(session.rows)} rows")

    return {
        "session_id": session_id,
        "row_count": len(session.rows),
        "notices": list(session.notices),
    }


@router.get("/api/sessions/{session_id}")
def get_session(
    session_id: str,
    search: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    desc: bool = Query(False),
    grouped: bool = Query(False),
):
    """Rows (filtered/sorted view), optional groups, totals of the view and notices."""
    session = _get_session(session_id)

    try:
        rows = session.view(search=search, sort_key=sort, descending=desc)
    except InvalidInputError as e:
        raise _http_error(e)

    response = {
        "session_id": session_id,
        "headers": session.headers,
        "rows": [_row_payload(session, r) for r in rows],
        "totals": session.totals(rows).to_dict(),
        "notices": list(session.notices),
    }
    if grouped:
        response["groups"] = [g.to_dict() for g in session.group_view(rows)]
    return response


def _catalog_entry(session: WorkingSession, row_ids: List[str], posted) -> ReferenceEntry:
    """
    The catalog entry the client picked.

    Coefficients come from the target rows' candidate lists; the posted
    values are only used for ids no candidate list knows.
    """
    for row in session.selected_rows(row_ids):
        for candidate in row.candidates:
            if candidate.id == posted.id:
                return candidate
    return ReferenceEntry(
        id=posted.id,
        display_name=posted.name,
        density=posted.density,
        gwp_per_kg=posted.gwp,
        burden_per_kg=posted.burden,
        energy_per_kg=posted.energy,
    )


@router.post("/api/sessions/{session_id}/override")
def override_rows(session_id: str, request: OverrideRequest):
    """Assign a catalog entry to rows (or to a group of the grouped view)."""
    session = _get_session(session_id)

    try:
        if request.group:
            if len(request.group) != 2:
                raise InvalidInputError("group must be [element, material]")
            key = tuple(request.group)
            members = next((g.member_row_ids for g in session.group_view() if g.key == key), [])
            entry = _catalog_entry(session, members, request.entry)
            updated = session.override_group(key, entry)
        else:
            entry = _catalog_entry(session, request.row_ids, request.entry)
            updated = session.bulk_update(request.row_ids, entry)
    except (InvalidInputError, UnknownRowError) as e:
        raise _http_error(e)

    return {"updated": updated, "totals": session.totals().to_dict()}


@router.post("/api/sessions/{session_id}/unit")
def change_unit(session_id: str, request: UnitChangeRequest):
    """Change a row's unit and re-run the lookup for that row."""
    session = _get_session(session_id)

    try:
        outcome = session.change_unit(request.row_id, request.unit)
        row = session.get_row(request.row_id)
    except (InvalidInputError, UnknownRowError) as e:
        raise _http_error(e)

    return {
        "row_id": outcome.row_id,
        "applied": outcome.applied,
        "stale": outcome.stale,
        "error": outcome.error,
        "row": _row_payload(session, row),
        "notices": list(session.notices),
    }


@router.post("/api/sessions/{session_id}/area")
def set_area(session_id: str, request: AreaRequest):
    """Set a per-m2 denominator directly or from an area row."""
    session = _get_session(session_id)

    try:
        if request.area_row_id:
            updated = session.link_area(request.row_ids, request.area_row_id)
        else:
            updated = session.set_area(request.row_ids, request.area)
    except (InvalidInputError, UnknownRowError) as e:
        raise _http_error(e)

    return {"updated": updated}


@router.post("/api/sessions/{session_id}/per-area")
def toggle_per_area(session_id: str, request: PerAreaRequest):
    """Flip per-area display for one row."""
    session = _get_session(session_id)

    try:
        state = session.toggle_per_area(request.row_id)
        display = session.display_values(request.row_id)
    except UnknownRowError as e:
        raise _http_error(e)

    return {"row_id": request.row_id, "per_area": state, "display": asdict(display)}


@router.post("/api/sessions/{session_id}/reinforcement")
def derive_reinforcement(session_id: str, request: ReinforcementRequest):
    """Add reinforcement steel rows for the selected volume rows."""
    session = _get_session(session_id)

    try:
        added = session.derive_reinforcement(request.row_ids, request.kg_per_m3)
    except (InvalidInputError, UnknownRowError, ReinforcementError) as e:
        raise _http_error(e)

    return {"added": [_row_payload(session, r) for r in added]}


@router.post("/api/sessions/{session_id}/delete", dependencies=[Depends(require_api_key)])
def delete_rows(session_id: str, request: DeleteRowsRequest):
    """Delete rows (derived rows follow the configured orphan policy)."""
    session = _get_session(session_id)

    try:
        removed = session.delete(request.row_ids)
    except UnknownRowError as e:
        raise _http_error(e)

    return {"removed": removed, "totals": session.totals().to_dict()}


@router.get("/api/sessions/{session_id}/export")
def export_session(
    session_id: str,
    format: str = Query("csv"),
    row_ids: Optional[List[str]] = Query(None),
):
    """Download all rows, or the selected ones, as CSV or XLSX."""
    session = _get_session(session_id)
    if format not in ("csv", "xlsx"):
        raise HTTPException(status_code=400, detail="format must be csv or xlsx")

    try:
        rows = session.selected_rows(row_ids) if row_ids else session.rows
    except UnknownRowError as e:
        raise _http_error(e)

    filename = generate_report_filename(len(row_ids) if row_ids else 0, extension=format)
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}

    if format == "xlsx":
        buffer = export_xlsx(rows, session.headers, session.originals)
        return Response(content=buffer.getvalue(), media_type=XLSX_MEDIA_TYPE, headers=headers)

    content = export_csv(rows, session.headers, session.originals)
    return Response(content=content.encode("utf-8"), media_type="text/csv; charset=utf-8", headers=headers)


@router.delete("/api/sessions/{session_id}", dependencies=[Depends(require_api_key)])
def delete_session(session_id: str):
    """Drop a working session."""
    _get_session(session_id)
    del _lca_state["sessions"][session_id]
    return {"deleted": session_id}
