"""
Report Generator - Format working rows for humans and spreadsheets.

Produces console output, CSV export (UTF-8 with BOM so spreadsheet
tools pick the right encoding) and an XLSX variant of the same table.
"""

import csv
import io
from datetime import datetime
from io import BytesIO
from typing import Iterable, Optional, TextIO

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from .calculator import per_kg_rate
from .models import WorkingRow
from .session import WorkingSession, group_rows, summarize_rows

BOM = "\ufeff"

MATERIAL_COLUMN = "KBOB Material"

# (rate header, total header, attribute)
IMPACT_COLUMNS = [
    ("CO2 pro kg (kg CO2 eq/kg)", "CO2 Total (kg CO2 eq)", "gwp"),
    ("UBP pro kg (pts/kg)", "UBP Total (pts)", "burden"),
    ("kWh pro kg (kWh/kg)", "kWh Total (kWh)", "energy"),
]


def derived_headers(include_rates: bool = True) -> list[str]:
    """Result columns appended after the original input columns."""
    headers = [MATERIAL_COLUMN]
    for rate_header, total_header, _ in IMPACT_COLUMNS:
        if include_rates:
            headers.append(rate_header)
        headers.append(total_header)
    return headers


def _derived_values(row: WorkingRow, include_rates: bool) -> list[str]:
    values = [row.matched_entry_name or ""]
    for _, _, attr in IMPACT_COLUMNS:
        total = getattr(row, attr)
        if include_rates:
            values.append(f"{per_kg_rate(total, row.mass_kg):.3f}")
        values.append(f"{total:.2f}")
    return values


def export_csv(
    rows: list[WorkingRow],
    headers: list[str],
    originals: dict[str, dict[str, str]],
    output: TextIO | None = None,
    include_rates: bool = True,
    delimiter: str = ",",
) -> str:
    """
    Export rows to CSV.

    Columns are the original input columns (in original order) followed
    by the matched entry and impact columns. Rows keep the order given.
    Fields containing the delimiter or a quote are quoted, with doubled
    internal quotes.

    Args:
        rows: Rows to export, in working-collection order
        headers: Original input column names
        originals: row_id -> original input row
        output: Optional file handle to write to
        include_rates: Whether to add per-kg rate columns

    Returns:
        CSV string including the BOM (also writes to output if provided)
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")

    writer.writerow(list(headers) + derived_headers(include_rates))

    for row in rows:
        original = originals.get(row.row_id) or {}
        writer.writerow(
            [original.get(h, "") or "" for h in headers]
            + _derived_values(row, include_rates)
        )

    csv_content = BOM + buffer.getvalue()

    if output:
        output.write(csv_content)

    return csv_content


def export_session_csv(
    session: WorkingSession,
    row_ids: Optional[Iterable[str]] = None,
    output: TextIO | None = None,
    include_rates: bool = True,
) -> str:
    """Export the full session, or a selection of it, with one column layout."""
    rows = session.rows if row_ids is None else session.selected_rows(row_ids)
    return export_csv(rows, session.headers, session.originals, output=output, include_rates=include_rates)


def export_xlsx(
    rows: list[WorkingRow],
    headers: list[str],
    originals: dict[str, dict[str, str]],
    include_rates: bool = True,
) -> BytesIO:
    """
    Export rows as an Excel workbook with the same columns as the CSV.

    Impact cells are numbers (rounded like the CSV) instead of text.

    Returns:
        BytesIO buffer containing the Excel file
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "LCA Results"

    all_headers = list(headers) + derived_headers(include_rates)
    ws.append(all_headers)

    for cell in ws[1]:
        cell.font = Font(bold=True)

    for row in rows:
        original = originals.get(row.row_id) or {}
        values = [original.get(h, "") or "" for h in headers]
        values.append(row.matched_entry_name or "")
        for _, _, attr in IMPACT_COLUMNS:
            total = getattr(row, attr)
            if include_rates:
                values.append(round(per_kg_rate(total, row.mass_kg), 3))
            values.append(round(total, 2))
        ws.append(values)

    for col_idx, header in enumerate(all_headers, 1):
        ws.column_dimensions[get_column_letter(col_idx)].width = max(12, min(40, len(str(header)) + 2))

    buffer = BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer


def format_console(rows: list[WorkingRow], grouped: bool = False) -> str:
    """
    Format rows for console display.

    Lists every row (or group), then the rows that found no confident
    match, then totals.

    Args:
        rows: Rows to format
        grouped: Aggregate by (element, material) before listing

    Returns:
        Formatted string for console output
    """
    if not rows:
        return "No inventory rows to report.\n"

    lines = []
    lines.append(f"{'ELEMENT':<25} {'MATERIAL':<25} {'MASS KG':>12} {'CO2 KG':>12} {'MATCH':<30}")
    lines.append("-" * 108)

    if grouped:
        for group in group_rows(rows):
            match = group.matched_entry_name or "-"
            lines.append(
                f"{group.element[:25]:<25} {group.material_label[:25]:<25} "
                f"{group.mass_kg:>12.2f} {group.gwp:>12.2f} {match[:30]:<30} "
                f"({len(group.member_row_ids)} rows)"
            )
    else:
        for row in rows:
            match = row.matched_entry_name or "-"
            lines.append(
                f"{row.element[:25]:<25} {row.material_label[:25]:<25} "
                f"{row.mass_kg:>12.2f} {row.gwp:>12.2f} {match[:30]:<30}"
            )

    unmatched = [r for r in rows if not r.matched_entry_id and not r.is_derived]
    if unmatched:
        lines.append(f"\nUNMATCHED ({len(unmatched)}) - assign a catalog entry manually")
        lines.append("-" * 70)
        for row in unmatched:
            score = f"{row.match_score:.2f}" if row.match_score is not None else "n/a"
            lines.append(f"{row.material_label[:40]:<40} score {score}")

    totals = summarize_rows(rows)
    lines.append("\n" + "=" * 70)
    lines.append("SUMMARY")
    lines.append(f"  Items:          {totals.item_count}")
    lines.append(f"  Total mass:     {totals.mass_kg:,.0f} kg")
    lines.append(f"  CO2 emissions:  {totals.gwp:,.0f} kg CO2 eq")
    lines.append(f"  UBP:            {totals.burden / 1000:,.0f}k pts")
    lines.append(f"  Energy:         {totals.energy:,.0f} kWh")
    lines.append("=" * 70)

    return "\n".join(lines)


def generate_report_filename(selected_count: int = 0, extension: str = "csv") -> str:
    """
    Generate a filename for an export.

    Returns:
        Filename like "lca-results-all-2026-01-08.csv" or
        "lca-results-3-selected-2026-01-08.csv"
    """
    date_str = datetime.now().strftime("%Y-%m-%d")
    if selected_count > 0:
        return f"lca-results-{selected_count}-selected-{date_str}.{extension}"
    return f"lca-results-all-{date_str}.{extension}"
