"""
Inventory Loader - read a bill of quantities from disk.

Supports CSV (delimiter sniffed), XLSX (first sheet, headers in row 1)
and JSON (list of objects). A ColumnMap says which columns hold the
element, material and quantity; every original column is kept so the
export can reproduce it.
"""

import csv
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from openpyxl import load_workbook

from .models import Unit

logger = logging.getLogger(__name__)


@dataclass
class ColumnMap:
    """Which original columns feed the inventory fields."""
    element: str
    material: str
    quantity: str
    unit: Optional[str] = None  # no unit column -> default unit for every row

    def missing_from(self, headers: list[str]) -> list[str]:
        wanted = [self.element, self.material, self.quantity]
        if self.unit:
            wanted.append(self.unit)
        return [col for col in wanted if col not in headers]


@dataclass
class LoadedInventory:
    """
    Parsed file content.

    headers:   original column names in file order
    originals: one dict per data row, all values as strings
    """
    headers: list[str] = field(default_factory=list)
    originals: list[dict[str, str]] = field(default_factory=list)

    def to_items(self, column_map: ColumnMap, default_unit: Unit = Unit.M3) -> list[dict]:
        """
        Map original rows to raw lookup items.

        Raises:
            ValueError: if a mapped column does not exist
        """
        missing = column_map.missing_from(self.headers)
        if missing:
            raise ValueError(f"Mapped columns not found in file: {', '.join(missing)}")

        items = []
        for row in self.originals:
            unit = default_unit
            if column_map.unit:
                unit = Unit.parse(row.get(column_map.unit), default=default_unit)
            items.append({
                "element": row.get(column_map.element, ""),
                "material": row.get(column_map.material, ""),
                "quantity": row.get(column_map.quantity, ""),
                "unit": unit.value,
            })
        return items


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def load_inventory(file_path: str | Path) -> LoadedInventory:
    """
    Load a bill of quantities file.

    Raises:
        FileNotFoundError: if the file does not exist
        ValueError: if the format is unsupported or the file is unreadable
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Inventory file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        inventory = _load_csv(path)
    elif suffix in (".xlsx", ".xlsm"):
        inventory = _load_xlsx(path)
    elif suffix == ".json":
        inventory = _load_json(path)
    else:
        raise ValueError(f"Unsupported file format: {suffix}")

    logger.info(f"Loaded {len(inventory.originals)} rows from {path.name}")
    return inventory


def _load_csv(path: Path) -> LoadedInventory:
    with open(path, "r", newline="", encoding="utf-8-sig") as f:
        sample = f.read(4096)
        f.seek(0)

        try:
            dialect = csv.Sniffer().sniff(sample, delimiters=",;\t")
        except csv.Error:
            dialect = csv.excel

        reader = csv.reader(f, dialect=dialect)
        rows = [row for row in reader if any(cell.strip() for cell in row)]

    if not rows:
        return LoadedInventory()

    headers = [h.strip() for h in rows[0]]
    originals = []
    for row in rows[1:]:
        padded = row + [""] * (len(headers) - len(row))
        originals.append({h: padded[i].strip() for i, h in enumerate(headers)})
    return LoadedInventory(headers=headers, originals=originals)


def _load_xlsx(path: Path) -> LoadedInventory:
    try:
        wb = load_workbook(path, read_only=True, data_only=True)
    except Exception as e:
        raise ValueError(f"Failed to open workbook: {e}") from e

    try:
        ws = wb.worksheets[0]
        rows = [list(r) for r in ws.iter_rows(values_only=True)]
    finally:
        wb.close()

    rows = [r for r in rows if any(v not in (None, "") for v in r)]
    if not rows:
        return LoadedInventory()

    headers = [_cell_text(h) for h in rows[0]]
    originals = []
    for row in rows[1:]:
        padded = list(row) + [None] * (len(headers) - len(row))
        originals.append({h: _cell_text(padded[i]) for i, h in enumerate(headers)})
    return LoadedInventory(headers=headers, originals=originals)


def _load_json(path: Path) -> LoadedInventory:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError("JSON inventory must be a list of objects")

    headers: list[str] = []
    for row in data:
        if isinstance(row, dict):
            for key in row:
                if key not in headers:
                    headers.append(key)

    originals = [
        {h: _cell_text(row.get(h)) for h in headers}
        for row in data if isinstance(row, dict)
    ]
    return LoadedInventory(headers=headers, originals=originals)
