"""
Catalog Snapshot - Read-only lookup structure over one catalog fetch.

A snapshot is built once per ingest / re-match call and shared by all
rows of that call. Nothing in the engine mutates it.
"""

from dataclasses import dataclass, field
from typing import Optional

from .models import ReferenceEntry


@dataclass(frozen=True)
class CatalogSnapshot:
    """
    Indexed catalog entries for one request.

    Attributes:
        entries: Entries in catalog order (order decides match ties)
        by_id: Dict mapping entry id -> ReferenceEntry (first write wins for dupes)
        normalized_names: Lowercased/trimmed names, parallel to `entries`
    """
    entries: tuple[ReferenceEntry, ...] = ()
    by_id: dict[str, ReferenceEntry] = field(default_factory=dict)
    normalized_names: tuple[str, ...] = ()

    @property
    def entry_count(self) -> int:
        return len(self.entries)

    def lookup_id(self, entry_id: str) -> Optional[ReferenceEntry]:
        """Look up an entry by exact id."""
        return self.by_id.get(entry_id)

    def __len__(self) -> int:
        return len(self.entries)


def normalize_name(name: str) -> str:
    """Normalize a label or catalog name for comparison."""
    return (name or "").lower().strip()


def build_snapshot(entries: list[ReferenceEntry]) -> CatalogSnapshot:
    """
    Build a snapshot from catalog entries.

    Args:
        entries: List of ReferenceEntry from a catalog provider

    Returns:
        CatalogSnapshot with id lookup and precomputed normalized names
    """
    by_id: dict[str, ReferenceEntry] = {}
    for entry in entries:
        by_id.setdefault(entry.id, entry)

    return CatalogSnapshot(
        entries=tuple(entries),
        by_id=by_id,
        normalized_names=tuple(normalize_name(e.display_name) for e in entries),
    )
