# Material Match: bill-of-quantities -> KBOB environmental impacts
# Self-contained module - the HTTP backend imports from here, never the reverse

from .models import (
    Unit,
    ReferenceEntry,
    InventoryItem,
    MatchResult,
    LookupResult,
    WorkingRow,
    GroupRow,
    Totals,
)
from .config import load_config, Config, MatchSettings, MaterialCategory, FallbackPolicy, OrphanPolicy
from .catalog import (
    CatalogError,
    CatalogConfigError,
    CatalogUnavailableError,
    CatalogFormatError,
    CatalogProvider,
    InMemoryCatalogProvider,
    JsonFileCatalogProvider,
    LcaDataCatalogProvider,
)
from .index import build_snapshot, CatalogSnapshot
from .matcher import match_label, match_many
from .calculator import compute, mass_for
from .lookup import InvalidInputError, LookupClient, LocalLookupClient, RemoteLookupClient, lookup_items
from .session import WorkingSession, UnknownRowError, ReinforcementError, group_rows, summarize_rows
from .inventory import ColumnMap, load_inventory
from .report import format_console, export_csv, export_session_csv, export_xlsx

__version__ = "1.0.0"

__all__ = [
    # Models
    "Unit",
    "ReferenceEntry",
    "InventoryItem",
    "MatchResult",
    "LookupResult",
    "WorkingRow",
    "GroupRow",
    "Totals",
    # Config
    "Config",
    "MatchSettings",
    "MaterialCategory",
    "FallbackPolicy",
    "OrphanPolicy",
    "load_config",
    # Catalog
    "CatalogError",
    "CatalogConfigError",
    "CatalogUnavailableError",
    "CatalogFormatError",
    "CatalogProvider",
    "InMemoryCatalogProvider",
    "JsonFileCatalogProvider",
    "LcaDataCatalogProvider",
    "build_snapshot",
    "CatalogSnapshot",
    # Matcher / calculator
    "match_label",
    "match_many",
    "compute",
    "mass_for",
    # Lookup
    "InvalidInputError",
    "LookupClient",
    "LocalLookupClient",
    "RemoteLookupClient",
    "lookup_items",
    # Session
    "WorkingSession",
    "UnknownRowError",
    "ReinforcementError",
    "group_rows",
    "summarize_rows",
    # Inventory
    "ColumnMap",
    "load_inventory",
    # Report
    "format_console",
    "export_csv",
    "export_session_csv",
    "export_xlsx",
]
