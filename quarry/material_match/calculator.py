"""
Unit Converter & Impact Calculator.

Pure functions: (quantity, unit, entry) -> mass and three impact values.
Must be re-run whenever quantity, unit or the assigned entry changes.
"""

from typing import Optional

from .models import ImpactValues, InventoryItem, ReferenceEntry, Unit


def mass_for(item: InventoryItem, entry: Optional[ReferenceEntry]) -> float:
    """
    Convert an item's quantity to kilograms.

    - kg: quantity as-is
    - m3: quantity x entry density (0 when no entry or no density)
    - m2: 0, area rows carry no mass
    """
    if item.unit == Unit.KG:
        return item.quantity
    if item.unit == Unit.M3:
        density = entry.density if entry is not None else None
        return item.quantity * (density or 0.0)
    return 0.0


def compute(
    item: InventoryItem,
    entry: Optional[ReferenceEntry],
    confident: bool,
) -> ImpactValues:
    """
    Compute mass and impacts for one item.

    Args:
        item: Cleaned inventory item
        entry: Best (or manually assigned) catalog entry, may be None
        confident: Whether the entry may populate impacts (score >= threshold)

    Returns:
        ImpactValues; impacts are 0 when not confident or no entry,
        everything is 0 for area rows
    """
    if item.unit == Unit.M2:
        return ImpactValues()

    mass_kg = mass_for(item, entry)

    if not confident or entry is None:
        return ImpactValues(mass_kg=mass_kg)

    return ImpactValues(
        mass_kg=mass_kg,
        gwp=mass_kg * (entry.gwp_per_kg or 0.0),
        burden=mass_kg * (entry.burden_per_kg or 0.0),
        energy=mass_kg * (entry.energy_per_kg or 0.0),
    )


def fallback_values(item: InventoryItem) -> ImpactValues:
    """
    Values used when the catalog could not be read at all.

    Mass items keep their quantity; volume and area rows get 0 since
    no density is known.
    """
    if item.unit == Unit.KG:
        return ImpactValues(mass_kg=item.quantity)
    return ImpactValues()


def per_kg_rate(total: float, mass_kg: float) -> float:
    """Impact per kilogram, 0 for massless rows."""
    if mass_kg > 0:
        return total / mass_kg
    return 0.0
