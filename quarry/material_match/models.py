"""
Data models for Material Match.

All structured data uses dataclasses for type hints, __eq__, and __repr__.
Impact values are plain floats (kg CO2 eq, UBP points, kWh).
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Unit(Enum):
    """Supported quantity units for bill-of-quantities rows."""
    KG = "kg"    # mass - used directly as mass_kg
    M3 = "m3"    # volume - converted via catalog density
    M2 = "m2"    # area - never matched, only a normalization denominator

    @classmethod
    def parse(cls, value: Any, default: "Unit" = None) -> "Unit":
        """
        Parse a unit string leniently.

        Accepts the enum itself, "kg", "m3", "m³", "m2", "m²" (any case).
        Unknown or empty values fall back to `default` (KG if not given).
        """
        if isinstance(value, Unit):
            return value
        fallback = default or cls.KG
        if value is None:
            return fallback
        text = str(value).strip().lower().replace("³", "3").replace("²", "2")
        for unit in cls:
            if unit.value == text:
                return unit
        return fallback


@dataclass(frozen=True)
class ReferenceEntry:
    """
    A single material from the reference catalog (KBOB).

    Coefficients are per kilogram. Missing values are treated as 0
    by the calculator, never guessed.
    """
    id: str
    display_name: str
    density: Optional[float] = None        # kg/m3
    gwp_per_kg: Optional[float] = None     # kg CO2 eq / kg
    burden_per_kg: Optional[float] = None  # UBP / kg
    energy_per_kg: Optional[float] = None  # kWh / kg (non-renewable)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.display_name,
            "density": self.density or 0.0,
            "gwp": self.gwp_per_kg or 0.0,
            "burden": self.burden_per_kg or 0.0,
            "energy": self.energy_per_kg or 0.0,
        }


@dataclass
class InventoryItem:
    """A cleaned bill-of-quantities line as supplied by the import step."""
    element: str
    material_label: str
    quantity: float = 0.0
    unit: Unit = Unit.KG

    def to_dict(self) -> dict:
        return {
            "element": self.element,
            "material": self.material_label,
            "quantity": self.quantity,
            "unit": self.unit.value,
        }


@dataclass
class MatchResult:
    """
    Output of the matcher for a single label.

    `best` is the highest-scoring entry (even below the confidence
    threshold); `candidates` is the category-filtered override list.
    """
    best: Optional[ReferenceEntry]
    score: float
    candidates: list[ReferenceEntry] = field(default_factory=list)

    def is_confident(self, threshold: float = 0.8) -> bool:
        return self.best is not None and self.score >= threshold


@dataclass
class ImpactValues:
    """Mass and the three impact metrics computed for one row."""
    mass_kg: float = 0.0
    gwp: float = 0.0
    burden: float = 0.0
    energy: float = 0.0


@dataclass
class LookupResult:
    """
    One response item of the catalog lookup service.

    Mirrors the wire format: same order and length as the request.
    """
    item: InventoryItem
    mass_kg: float
    density: float
    gwp: float
    burden: float
    energy: float
    matched_entry_id: Optional[str] = None
    matched_entry_name: Optional[str] = None
    match_score: Optional[float] = None
    candidates: list[ReferenceEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = self.item.to_dict()
        data.update({
            "mass_kg": self.mass_kg,
            "density": self.density,
            "gwp": self.gwp,
            "burden": self.burden,
            "energy": self.energy,
            "matched_entry_id": self.matched_entry_id,
            "matched_entry_name": self.matched_entry_name,
            "match_score": self.match_score,
            "candidates": [c.to_dict() for c in self.candidates],
        })
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "LookupResult":
        """Rebuild a result from its wire form (used by the remote client)."""
        item = InventoryItem(
            element=str(data.get("element", "")),
            material_label=str(data.get("material", "")),
            quantity=float(data.get("quantity") or 0),
            unit=Unit.parse(data.get("unit")),
        )
        candidates = [
            ReferenceEntry(
                id=str(c["id"]),
                display_name=str(c["name"]),
                density=c.get("density"),
                gwp_per_kg=c.get("gwp"),
                burden_per_kg=c.get("burden"),
                energy_per_kg=c.get("energy"),
            )
            for c in data.get("candidates") or []
        ]
        return cls(
            item=item,
            mass_kg=float(data["mass_kg"]),
            density=float(data.get("density") or 0),
            gwp=float(data["gwp"]),
            burden=float(data["burden"]),
            energy=float(data["energy"]),
            matched_entry_id=data.get("matched_entry_id"),
            matched_entry_name=data.get("matched_entry_name"),
            match_score=data.get("match_score"),
            candidates=candidates,
        )


def new_row_id() -> str:
    """Stable, immutable identifier for a working row."""
    return uuid.uuid4().hex


@dataclass
class WorkingRow:
    """
    The engine's central per-line record.

    Embeds the input item plus match result and computed impacts.
    `row_id` never changes; every cross-reference (derived rows,
    selections, original-row store) keys off it.
    """
    item: InventoryItem
    row_id: str = field(default_factory=new_row_id)

    matched_entry_id: Optional[str] = None
    matched_entry_name: Optional[str] = None
    match_score: Optional[float] = None

    mass_kg: float = 0.0
    gwp: float = 0.0
    burden: float = 0.0
    energy: float = 0.0
    density: Optional[float] = None

    candidates: list[ReferenceEntry] = field(default_factory=list)

    area: Optional[float] = None
    derived_from_row_id: Optional[str] = None
    orphaned: bool = False
    overridden: bool = False

    # Bumped on every mutation; used to discard stale lookup responses
    revision: int = 0

    @property
    def element(self) -> str:
        return self.item.element

    @property
    def material_label(self) -> str:
        return self.item.material_label

    @property
    def quantity(self) -> float:
        return self.item.quantity

    @property
    def unit(self) -> Unit:
        return self.item.unit

    @property
    def is_derived(self) -> bool:
        return self.derived_from_row_id is not None

    def to_dict(self) -> dict:
        data = self.item.to_dict()
        data.update({
            "row_id": self.row_id,
            "matched_entry_id": self.matched_entry_id,
            "matched_entry_name": self.matched_entry_name,
            "match_score": self.match_score,
            "mass_kg": self.mass_kg,
            "gwp": self.gwp,
            "burden": self.burden,
            "energy": self.energy,
            "density": self.density,
            "area": self.area,
            "derived_from_row_id": self.derived_from_row_id,
            "orphaned": self.orphaned,
            "overridden": self.overridden,
            "candidates": [c.to_dict() for c in self.candidates],
        })
        return data


@dataclass
class GroupRow:
    """
    Aggregate over rows sharing (element, material_label).

    Sums are recomputed from live members on every call; never cached.
    Display fields come from the first member encountered.
    """
    element: str
    material_label: str
    unit: Unit
    member_row_ids: list[str] = field(default_factory=list)
    quantity: float = 0.0
    mass_kg: float = 0.0
    gwp: float = 0.0
    burden: float = 0.0
    energy: float = 0.0
    density: Optional[float] = None
    matched_entry_name: Optional[str] = None
    match_score: Optional[float] = None
    candidates: list[ReferenceEntry] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.element, self.material_label)

    def to_dict(self) -> dict:
        return {
            "element": self.element,
            "material": self.material_label,
            "unit": self.unit.value,
            "row_ids": list(self.member_row_ids),
            "quantity": self.quantity,
            "mass_kg": self.mass_kg,
            "gwp": self.gwp,
            "burden": self.burden,
            "energy": self.energy,
            "density": self.density,
            "matched_entry_name": self.matched_entry_name,
            "match_score": self.match_score,
            "candidates": [c.to_dict() for c in self.candidates],
        }


@dataclass
class DisplayValues:
    """Values shown for a row, optionally normalized per m2 of area."""
    quantity: float
    mass_kg: float
    gwp: float
    burden: float
    energy: float
    per_area: bool = False


@dataclass
class Totals:
    """Summary over a row set."""
    mass_kg: float = 0.0
    gwp: float = 0.0
    burden: float = 0.0
    energy: float = 0.0
    item_count: int = 0

    def to_dict(self) -> dict:
        return {
            "mass_kg": self.mass_kg,
            "gwp": self.gwp,
            "burden": self.burden,
            "energy": self.energy,
            "item_count": self.item_count,
        }
