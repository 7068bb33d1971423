"""
Working Session - the row aggregation engine.

Owns the working collection of rows for one uploaded bill of quantities
and answers every read/mutate operation locally. The lookup service is
only called again when a row's unit changes, rows are added, or the
reinforcement entry is needed.

Every row has a stable `row_id`. Selections, derived-row parent links
and the original-row store (used for export) are keyed by it, never
by list position.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .calculator import compute, fallback_values
from .catalog import CatalogError
from .config import Config, OrphanPolicy
from .lookup import InvalidInputError, LookupClient, clean_items
from .matcher import looks_like_reinforcement
from .models import (
    DisplayValues,
    GroupRow,
    InventoryItem,
    LookupResult,
    ReferenceEntry,
    Totals,
    Unit,
    WorkingRow,
)

logger = logging.getLogger(__name__)


class UnknownRowError(KeyError):
    """A row id is not (or no longer) part of the working collection."""

    def __str__(self) -> str:
        return f"Unknown row id: {self.args[0]}"


class ReinforcementError(Exception):
    """Reinforcement derivation aborted; no rows were added."""


SORTABLE_FIELDS = {
    "element": lambda r: r.element.lower(),
    "material": lambda r: r.material_label.lower(),
    "unit": lambda r: r.unit.value,
    "matched_entry_name": lambda r: (r.matched_entry_name or "").lower(),
    "quantity": lambda r: r.quantity,
    "mass_kg": lambda r: r.mass_kg,
    "gwp": lambda r: r.gwp,
    "burden": lambda r: r.burden,
    "energy": lambda r: r.energy,
    "density": lambda r: r.density or 0.0,
    "match_score": lambda r: r.match_score or 0.0,
}


@dataclass
class PendingUnitChange:
    """An in-flight unit change; only applies if the row is untouched meanwhile."""
    row_id: str
    unit: Unit
    revision: int
    item: InventoryItem


@dataclass
class UnitChangeOutcome:
    row_id: str
    applied: bool
    stale: bool = False
    error: Optional[str] = None


@dataclass
class WorkingSession:
    """
    Rows of one upload plus everything needed to export them again.

    Attributes:
        rows: Working collection, in input order (derived rows appended)
        headers: Original input column names, in original order
        originals: row_id -> original input row (derived rows have none)
        notices: Non-blocking messages for the user (fetch errors etc.)
    """
    lookup: LookupClient
    config: Config
    headers: list[str] = field(default_factory=list)
    rows: list[WorkingRow] = field(default_factory=list)
    originals: dict[str, dict[str, str]] = field(default_factory=dict)
    notices: list[str] = field(default_factory=list)
    _per_area: set[str] = field(default_factory=set, repr=False)

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    @classmethod
    def ingest(
        cls,
        data,
        lookup: LookupClient,
        config: Config,
        headers: Optional[list[str]] = None,
        originals: Optional[list[dict[str, str]]] = None,
    ) -> "WorkingSession":
        """
        Create a session from raw inventory rows.

        Args:
            data: List of raw {element, material, quantity, unit} dicts
            lookup: Lookup service client
            config: Matcher configuration
            headers: Original column names (for export)
            originals: Original input rows, parallel to `data`

        Raises:
            InvalidInputError: if data is not a list (no session is created)
        """
        session = cls(lookup=lookup, config=config, headers=list(headers or []))
        session.add_items(data, originals)
        return session

    def add_items(
        self,
        data,
        originals: Optional[list[dict[str, str]]] = None,
    ) -> list[WorkingRow]:
        """
        Match and append new input rows.

        A catalog failure does not abort: affected rows fall back to
        unmatched values and a notice is recorded.
        """
        items = clean_items(data)
        if originals is not None and len(originals) != len(items):
            raise InvalidInputError("Original rows must be parallel to the input rows")

        try:
            results = self.lookup.lookup(items)
        except CatalogError as e:
            logger.warning(f"Catalog lookup failed, {len(items)} rows unmatched: {e}")
            self.notices.append(f"Failed to fetch LCA data: {e}")
            results = None

        new_rows = []
        for i, item in enumerate(items):
            if results is None:
                row = self._fallback_row(item)
            else:
                row = WorkingRow(item=item)
                self._apply_result(row, results[i])
            new_rows.append(row)
            if originals is not None:
                self.originals[row.row_id] = dict(originals[i])

        self.rows.extend(new_rows)
        return new_rows

    def _fallback_row(self, item: InventoryItem) -> WorkingRow:
        values = fallback_values(item)
        # area rows are never matched, so they carry no fetch-error label
        label = None if item.unit == Unit.M2 else self.config.settings.unmatched_fetch_error_label
        return WorkingRow(
            item=item,
            matched_entry_name=label,
            mass_kg=values.mass_kg,
        )

    @staticmethod
    def _apply_result(row: WorkingRow, result: LookupResult):
        row.matched_entry_id = result.matched_entry_id
        row.matched_entry_name = result.matched_entry_name
        row.match_score = result.match_score
        row.mass_kg = result.mass_kg
        row.gwp = result.gwp
        row.burden = result.burden
        row.energy = result.energy
        row.density = result.density if result.match_score else None
        row.candidates = list(result.candidates)
        row.overridden = False

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def get_row(self, row_id: str) -> WorkingRow:
        for row in self.rows:
            if row.row_id == row_id:
                return row
        raise UnknownRowError(row_id)

    def _resolve(self, row_ids: Iterable[str]) -> list[WorkingRow]:
        """Resolve ids to rows (deduplicated), failing before any mutation."""
        wanted = list(dict.fromkeys(row_ids))
        by_id = {row.row_id: row for row in self.rows}
        missing = [rid for rid in wanted if rid not in by_id]
        if missing:
            raise UnknownRowError(missing[0])
        return [by_id[rid] for rid in wanted]

    def selected_rows(self, row_ids: Iterable[str]) -> list[WorkingRow]:
        """Selected rows in working-collection order, not selection order."""
        wanted = {row.row_id for row in self._resolve(row_ids)}
        return [row for row in self.rows if row.row_id in wanted]

    def original_for(self, row_id: str) -> Optional[dict[str, str]]:
        return self.originals.get(row_id)

    # ------------------------------------------------------------------
    # Manual override / bulk update
    # ------------------------------------------------------------------

    def override(self, row_ids: Iterable[str], entry: ReferenceEntry) -> list[str]:
        """
        Assign `entry` to the named rows and recompute their impacts.

        Each row keeps its own quantity and unit; density comes from the
        entry. Candidate lists are left alone. Area rows are skipped.

        Returns:
            Ids of the rows actually updated
        """
        updated = []
        for row in self._resolve(row_ids):
            if row.unit == Unit.M2:
                logger.debug(f"Skipping override of area row {row.row_id}")
                continue

            values = compute(row.item, entry, confident=True)
            row.matched_entry_id = entry.id
            row.matched_entry_name = entry.display_name
            row.density = entry.density
            row.mass_kg = values.mass_kg
            row.gwp = values.gwp
            row.burden = values.burden
            row.energy = values.energy
            row.overridden = True
            row.revision += 1
            updated.append(row.row_id)

        return updated

    def bulk_update(self, row_ids: Iterable[str], entry: ReferenceEntry) -> list[str]:
        """Override applied to a multi-row selection; row order is untouched."""
        return self.override(row_ids, entry)

    def override_group(self, key: tuple[str, str], entry: ReferenceEntry) -> list[str]:
        """Route an override made in the grouped view to the group's members."""
        for group in group_rows(self.rows):
            if group.key == tuple(key):
                return self.override(group.member_row_ids, entry)
        raise InvalidInputError(f"No group for element/material {key!r}")

    # ------------------------------------------------------------------
    # Unit change
    # ------------------------------------------------------------------

    def begin_unit_change(self, row_id: str, unit: Unit | str) -> PendingUnitChange:
        """
        Start a unit change.

        Bumps the row revision so that any earlier in-flight change for
        the same row becomes stale.
        """
        row = self.get_row(row_id)
        new_unit = Unit.parse(unit, default=row.unit)
        row.revision += 1
        item = InventoryItem(
            element=row.element,
            material_label=row.material_label,
            quantity=row.quantity,
            unit=new_unit,
        )
        return PendingUnitChange(row_id=row_id, unit=new_unit, revision=row.revision, item=item)

    def complete_unit_change(
        self,
        pending: PendingUnitChange,
        results: Optional[list[LookupResult]] = None,
        error: Optional[str] = None,
    ) -> UnitChangeOutcome:
        """
        Apply the lookup response of a unit change.

        Stale responses (row deleted or mutated since the request) are
        discarded. On error the row keeps its previous values.
        """
        row = next((r for r in self.rows if r.row_id == pending.row_id), None)
        if row is None or row.revision != pending.revision:
            logger.info(f"Discarding stale unit change for row {pending.row_id}")
            return UnitChangeOutcome(row_id=pending.row_id, applied=False, stale=True)

        if error is not None:
            self.notices.append(f"Unit change failed for '{row.element}': {error}")
            return UnitChangeOutcome(row_id=row.row_id, applied=False, error=error)

        if pending.unit != Unit.M2 and (not results or len(results) != 1):
            raise InvalidInputError("Unit change needs exactly one lookup result")

        row.item = pending.item
        if pending.unit == Unit.M2:
            row.matched_entry_id = None
            row.matched_entry_name = None
            row.match_score = None
            row.candidates = []
            row.density = None
            row.mass_kg = row.gwp = row.burden = row.energy = 0.0
            row.overridden = False
        else:
            self._apply_result(row, results[0])

        row.revision += 1
        return UnitChangeOutcome(row_id=row.row_id, applied=True)

    def change_unit(self, row_id: str, unit: Unit | str) -> UnitChangeOutcome:
        """Synchronous unit change: request, lookup and apply in one call."""
        pending = self.begin_unit_change(row_id, unit)
        if pending.unit == Unit.M2:
            return self.complete_unit_change(pending)

        try:
            results = self.lookup.lookup([pending.item])
        except CatalogError as e:
            logger.warning(f"Unit change lookup failed for row {row_id}: {e}")
            return self.complete_unit_change(pending, error=str(e))

        return self.complete_unit_change(pending, results)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete(self, row_ids: Iterable[str]) -> list[str]:
        """
        Remove rows from the collection and the original-row store.

        Derived rows whose parent is deleted are cascade-deleted or
        flagged as orphaned, depending on the configured policy.

        Returns:
            Ids of all removed rows, in collection order
        """
        targets = {row.row_id for row in self._resolve(row_ids)}
        policy = self.config.settings.orphan_policy

        children = [r for r in self.rows if r.derived_from_row_id in targets and r.row_id not in targets]
        while policy == OrphanPolicy.CASCADE and children:
            targets.update(r.row_id for r in children)
            children = [r for r in self.rows if r.derived_from_row_id in targets and r.row_id not in targets]

        for child in children:
            child.orphaned = True
            child.revision += 1

        removed = [row.row_id for row in self.rows if row.row_id in targets]
        for row in self.rows:
            if row.row_id in targets:
                row.revision += 1
        self.rows = [row for row in self.rows if row.row_id not in targets]
        for row_id in removed:
            self.originals.pop(row_id, None)
            self._per_area.discard(row_id)

        return removed

    # ------------------------------------------------------------------
    # Area normalization
    # ------------------------------------------------------------------

    def set_area(self, row_ids: Iterable[str], area: Optional[float]) -> list[str]:
        """Set the per-area denominator; a missing or non-positive area clears it."""
        value = area if area is not None and area > 0 else None
        changed = []
        for row in self._resolve(row_ids):
            row.area = value
            row.revision += 1
            changed.append(row.row_id)
        return changed

    def link_area(self, row_ids: Iterable[str], area_row_id: str) -> list[str]:
        """Use the quantity of an area (m2) row as the denominator for other rows."""
        area_row = self.get_row(area_row_id)
        if area_row.unit != Unit.M2:
            raise InvalidInputError("Area source row must have unit m2")
        return self.set_area(row_ids, area_row.quantity)

    def toggle_per_area(self, row_id: str) -> bool:
        """Flip per-area display for a row; returns the new state."""
        self.get_row(row_id)
        if row_id in self._per_area:
            self._per_area.discard(row_id)
            return False
        self._per_area.add(row_id)
        return True

    def is_per_area(self, row_id: str) -> bool:
        return row_id in self._per_area

    def display_values(self, row_id: str) -> DisplayValues:
        """
        Values to show for a row.

        Divides by area only when toggled and an area is set; stored
        values are never touched.
        """
        row = self.get_row(row_id)
        if row_id in self._per_area and row.area:
            area = row.area
            return DisplayValues(
                quantity=row.quantity / area,
                mass_kg=row.mass_kg / area,
                gwp=row.gwp / area,
                burden=row.burden / area,
                energy=row.energy / area,
                per_area=True,
            )
        return DisplayValues(
            quantity=row.quantity,
            mass_kg=row.mass_kg,
            gwp=row.gwp,
            burden=row.burden,
            energy=row.energy,
        )

    # ------------------------------------------------------------------
    # Reinforcement derivation
    # ------------------------------------------------------------------

    def derive_reinforcement(self, parent_ids: Iterable[str], kg_per_m3: float) -> list[WorkingRow]:
        """
        Add reinforcement steel rows computed from concrete volumes.

        For every selected m3 row: steel mass = volume x kg_per_m3, with
        impacts from the catalog's reinforcement steel entry. Rows with
        another unit are skipped. If the steel entry can't be found the
        whole batch aborts without changing anything.

        Raises:
            InvalidInputError: kg_per_m3 is not a positive number
            ReinforcementError: steel entry missing or implausible
        """
        try:
            rate = float(kg_per_m3)
        except (TypeError, ValueError):
            raise InvalidInputError(f"Invalid reinforcement amount: {kg_per_m3!r}")
        if not math.isfinite(rate) or rate <= 0:
            raise InvalidInputError(f"Invalid reinforcement amount: {kg_per_m3!r}")

        parents = [row for row in self.selected_rows(parent_ids) if row.unit == Unit.M3]
        if not parents:
            return []

        steel_result, steel = self._find_reinforcement_entry()

        new_rows = []
        settings = self.config.settings
        for parent in parents:
            quantity = parent.quantity * rate
            item = InventoryItem(
                element=f"{parent.element} - {settings.reinforcement_element} {rate:g}kg/m³",
                material_label=settings.reinforcement_label,
                quantity=quantity,
                unit=Unit.KG,
            )
            values = compute(item, steel, confident=True)
            new_rows.append(WorkingRow(
                item=item,
                matched_entry_id=steel.id,
                matched_entry_name=steel.display_name,
                match_score=steel_result.match_score or 1.0,
                mass_kg=values.mass_kg,
                gwp=values.gwp,
                burden=values.burden,
                energy=values.energy,
                density=steel.density,
                candidates=list(steel_result.candidates),
                derived_from_row_id=parent.row_id,
            ))

        self.rows.extend(new_rows)
        logger.info(f"Added {len(new_rows)} reinforcement rows at {rate:g} kg/m3")
        return new_rows

    def _find_reinforcement_entry(self) -> tuple[LookupResult, ReferenceEntry]:
        """Look up the steel entry with a 1 kg probe so totals equal per-kg rates."""
        settings = self.config.settings
        probe = InventoryItem(
            element=settings.reinforcement_element,
            material_label=settings.reinforcement_label,
            quantity=1.0,
            unit=Unit.KG,
        )
        message = f"Could not find a matching catalog entry for {settings.reinforcement_label}."

        try:
            results = self.lookup.lookup([probe])
        except CatalogError as e:
            logger.warning(f"Reinforcement lookup failed: {e}")
            raise ReinforcementError(f"{message} ({e})") from e

        if len(results) != 1:
            raise ReinforcementError(message)
        result = results[0]

        if not looks_like_reinforcement(result.matched_entry_name, self.config):
            logger.warning(f"Reinforcement lookup matched {result.matched_entry_name!r}, aborting")
            raise ReinforcementError(message)

        entry = next((c for c in result.candidates if c.id == result.matched_entry_id), None)
        if entry is None:
            entry = ReferenceEntry(
                id=result.matched_entry_id or result.matched_entry_name,
                display_name=result.matched_entry_name,
                density=result.density or None,
                gwp_per_kg=result.gwp,
                burden_per_kg=result.burden,
                energy_per_kg=result.energy,
            )
        return result, entry

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def view(
        self,
        search: Optional[str] = None,
        sort_key: Optional[str] = None,
        descending: bool = False,
    ) -> list[WorkingRow]:
        """
        Filtered/sorted view of the collection; stored order is unchanged.

        Search matches element, material label or matched entry name
        (case-insensitive).
        """
        rows = list(self.rows)

        if search:
            term = search.lower()
            rows = [
                r for r in rows
                if term in r.element.lower()
                or term in r.material_label.lower()
                or (r.matched_entry_name and term in r.matched_entry_name.lower())
            ]

        if sort_key:
            if sort_key not in SORTABLE_FIELDS:
                raise InvalidInputError(f"Cannot sort by {sort_key!r}")
            rows.sort(key=SORTABLE_FIELDS[sort_key], reverse=descending)

        return rows

    def group_view(self, rows: Optional[list[WorkingRow]] = None) -> list[GroupRow]:
        return group_rows(self.rows if rows is None else rows)

    def totals(self, rows: Optional[list[WorkingRow]] = None) -> Totals:
        return summarize_rows(self.rows if rows is None else rows)


def group_rows(rows: list[WorkingRow]) -> list[GroupRow]:
    """
    Group rows by (element, material_label).

    Sums are computed fresh from the given rows; groups appear in the
    order their first member appears.
    """
    groups: dict[tuple[str, str], GroupRow] = {}
    for row in rows:
        key = (row.element, row.material_label)
        group = groups.get(key)
        if group is None:
            group = GroupRow(
                element=row.element,
                material_label=row.material_label,
                unit=row.unit,
                density=row.density,
                matched_entry_name=row.matched_entry_name,
                match_score=row.match_score,
                candidates=list(row.candidates),
            )
            groups[key] = group

        group.quantity += row.quantity
        group.mass_kg += row.mass_kg
        group.gwp += row.gwp
        group.burden += row.burden
        group.energy += row.energy
        group.member_row_ids.append(row.row_id)

    return list(groups.values())


def summarize_rows(rows: list[WorkingRow]) -> Totals:
    """Generate totals for a row set."""
    totals = Totals(item_count=len(rows))
    for row in rows:
        totals.mass_kg += row.mass_kg
        totals.gwp += row.gwp
        totals.burden += row.burden
        totals.energy += row.energy
    return totals
