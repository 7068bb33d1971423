"""
CLI entry point for Material Match.

Usage:
    python -m quarry.material_match --inventory boq.xlsx --element Bauteil --material Material --quantity Volumen
    python -m quarry.material_match --inventory boq.csv --element E --material M --quantity Q \
        --catalog kbob.json --output-csv results.csv
"""

import argparse
import os
import sys
from pathlib import Path

from .catalog import DEFAULT_LCADATA_URL, CatalogError, JsonFileCatalogProvider, LcaDataCatalogProvider
from .config import load_config
from .inventory import ColumnMap, load_inventory
from .lookup import LocalLookupClient
from .models import Unit
from .report import export_csv, export_xlsx, format_console
from .session import ReinforcementError, WorkingSession


def main():
    parser = argparse.ArgumentParser(
        prog="material_match",
        description="Material Match - Environmental impacts for a bill of quantities",
    )

    parser.add_argument(
        "--inventory",
        required=True,
        metavar="FILE",
        help="Bill of quantities (CSV, XLSX or JSON)",
    )

    parser.add_argument("--element", required=True, metavar="COL", help="Column holding the element name")
    parser.add_argument("--material", required=True, metavar="COL", help="Column holding the material label")
    parser.add_argument("--quantity", required=True, metavar="COL", help="Column holding the quantity")
    parser.add_argument("--unit", metavar="COL", help="Column holding the unit (default: every row is m3)")

    parser.add_argument(
        "--catalog",
        metavar="FILE",
        help="Saved KBOB catalog JSON (default: lcadata.ch using LCADATA_API_KEY)",
    )

    parser.add_argument(
        "--config",
        default=None,
        metavar="FILE",
        help="Material category config (default: module's material_categories.json)",
    )

    parser.add_argument(
        "--reinforcement",
        type=float,
        metavar="KG_PER_M3",
        help="Add reinforcement steel rows for every m3 row at this rate",
    )

    parser.add_argument("--output-csv", metavar="FILE", help="Output CSV file path")
    parser.add_argument("--output-xlsx", metavar="FILE", help="Output XLSX file path")

    parser.add_argument(
        "--grouped",
        action="store_true",
        help="Group console output by element and material",
    )

    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Suppress console output (only write files)",
    )

    args = parser.parse_args()

    inventory_path = Path(args.inventory)
    if not inventory_path.exists():
        print(f"Error: Inventory file not found: {inventory_path}", file=sys.stderr)
        sys.exit(1)

    if args.config and not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}", file=sys.stderr)
        sys.exit(1)

    try:
        config = load_config(args.config)

        if args.catalog:
            provider = JsonFileCatalogProvider(args.catalog)
        else:
            provider = LcaDataCatalogProvider(
                api_key=os.getenv("LCADATA_API_KEY", ""),
                url=os.getenv("LCADATA_API_URL", DEFAULT_LCADATA_URL),
            )

        # Load inventory
        if not args.quiet:
            print(f"Loading inventory from {inventory_path}...")
        loaded = load_inventory(inventory_path)
        column_map = ColumnMap(
            element=args.element,
            material=args.material,
            quantity=args.quantity,
            unit=args.unit,
        )
        items = loaded.to_items(column_map, default_unit=Unit.M3)

        if not items:
            print("Warning: No rows found in inventory", file=sys.stderr)
            sys.exit(0)

        if not args.quiet:
            print(f"Matching {len(items)} rows...")

        session = WorkingSession.ingest(
            items,
            lookup=LocalLookupClient(provider, config),
            config=config,
            headers=loaded.headers,
            originals=loaded.originals,
        )

        for notice in session.notices:
            print(f"Warning: {notice}", file=sys.stderr)

        if args.reinforcement is not None:
            volume_rows = [r.row_id for r in session.rows if r.unit == Unit.M3]
            added = session.derive_reinforcement(volume_rows, args.reinforcement)
            if not args.quiet:
                print(f"Added {len(added)} reinforcement rows")

        # Output console report
        if not args.quiet:
            print(format_console(session.rows, grouped=args.grouped))

        if args.output_csv:
            output_path = Path(args.output_csv)
            with open(output_path, "w", newline="", encoding="utf-8") as f:
                export_csv(session.rows, session.headers, session.originals, output=f)
            if not args.quiet:
                print(f"\nCSV exported to: {output_path}")

        if args.output_xlsx:
            output_path = Path(args.output_xlsx)
            buffer = export_xlsx(session.rows, session.headers, session.originals)
            output_path.write_bytes(buffer.getvalue())
            if not args.quiet:
                print(f"XLSX exported to: {output_path}")

    except CatalogError as e:
        print(f"Catalog error: {e}", file=sys.stderr)
        sys.exit(1)
    except ReinforcementError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
