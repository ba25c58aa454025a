#!/usr/bin/env python3
"""Load shipments into the FreightLens store from a CSV export or a synthetic generator."""

from __future__ import annotations

import argparse
import csv
from pathlib import Path
import sys
from typing import Any, Dict, Iterator

# Ensure `freightlens` package is importable when script is run directly.
CURRENT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = CURRENT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from freightlens.core.logging import configure_logging, logger
from freightlens.services.shipment_store import SHIPMENT_COLUMNS, ShipmentStore


NUMERIC_COLUMNS = {"retail", "miles", "total_weight"}
BOOLEAN_COLUMNS = {"is_late", "is_completed", "has_hazmat"}
TRUTHY = {"1", "true", "yes", "y", "t"}


def coerce_row(raw: Dict[str, str]) -> Dict[str, Any]:
    """Map a CSV row onto store columns; blanks become NULL."""
    row: Dict[str, Any] = {}
    if raw.get("shipment_id"):
        row["shipment_id"] = raw["shipment_id"].strip()
    for column in SHIPMENT_COLUMNS:
        value = (raw.get(column) or "").strip()
        if not value:
            row[column] = None
        elif column in NUMERIC_COLUMNS:
            try:
                row[column] = float(value.replace(",", "").replace("$", ""))
            except ValueError:
                row[column] = None
        elif column in BOOLEAN_COLUMNS:
            row[column] = int(value.lower() in TRUTHY)
        elif column.endswith("_date"):
            row[column] = value[:10]
        else:
            row[column] = value
    return row


def read_csv(path: Path) -> Iterator[Dict[str, Any]]:
    with path.open(newline="", encoding="utf-8-sig") as handle:
        for raw in csv.DictReader(handle):
            yield coerce_row(raw)


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the FreightLens shipment store")
    parser.add_argument("--tenant-id", type=str, default="demo", help="Tenant to load shipments for")
    parser.add_argument("--csv", type=Path, default=None, help="CSV export with shipment columns")
    parser.add_argument("--replace", action="store_true", help="Delete the tenant's shipments before a CSV load")
    parser.add_argument("--shipments", type=int, default=500, help="Synthetic shipment count")
    parser.add_argument("--seed", type=int, default=42, help="Synthetic generator seed")
    parser.add_argument("--days-back", type=int, default=180, help="Synthetic date spread in days")
    parser.add_argument("--db-path", type=str, default=None, help="Override SHIPMENTS_DB_PATH")
    args = parser.parse_args()

    configure_logging("INFO")
    tenant_id = args.tenant_id.strip() or "demo"
    store = ShipmentStore(db_path=args.db_path)

    if args.csv is None:
        result = store.seed_synthetic(
            tenant_id,
            seed=args.seed,
            shipments=max(1, args.shipments),
            days_back=max(1, args.days_back),
        )
        print(f"Seeded {result['shipments_created']} synthetic shipments for {tenant_id}")
        return

    path = args.csv.expanduser().resolve()
    if not path.is_file():
        raise SystemExit(f"CSV not found: {path}")
    if args.replace:
        store.clear_tenant(tenant_id)
    inserted = store.insert_shipments(tenant_id, read_csv(path))
    logger.info("CSV import complete", tenant_id=tenant_id, path=str(path), inserted=inserted)
    print(f"Imported {inserted} shipments for {tenant_id} (total {store.count(tenant_id)})")


if __name__ == "__main__":
    main()
