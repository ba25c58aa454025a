"""SQLite-backed, tenant-scoped shipment store queried by the analytic engine."""
from __future__ import annotations

import random
import sqlite3
from datetime import date, timedelta
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from freightlens.core.config import get_settings
from freightlens.core.errors import QueryExecutionError, ToolArgumentError, UnknownFieldError
from freightlens.core.logging import logger
from freightlens.services.schema_registry import SchemaRegistry, schema_registry


SHIPMENT_COLUMNS: Tuple[str, ...] = (
    "carrier_name",
    "origin_state",
    "destination_state",
    "origin_city",
    "destination_city",
    "mode_name",
    "equipment_name",
    "status_name",
    "retail",
    "miles",
    "total_weight",
    "created_date",
    "pickup_date",
    "delivery_date",
    "is_late",
    "is_completed",
    "has_hazmat",
)

AGGREGATE_SQL = {
    "sum": "SUM({col})",
    "avg": "AVG({col})",
    "count": "COUNT(*)",
    "min": "MIN({col})",
    "max": "MAX({col})",
}


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


class ShipmentStore:
    """Read-mostly shipment table. Identifiers are checked against the registry."""

    _lock_registry: dict[str, RLock] = {}
    _lock_registry_guard = Lock()

    def __init__(self, db_path: Optional[str] = None, registry: Optional[SchemaRegistry] = None) -> None:
        settings = get_settings()
        self._registry = registry or schema_registry
        self._db_path = Path(db_path or settings.shipments_db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = self._get_shared_lock(str(self._db_path.resolve()))
        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            timeout=30.0,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA busy_timeout = 30000")
        self._initialize_schema()

    @classmethod
    def _get_shared_lock(cls, key: str) -> RLock:
        with cls._lock_registry_guard:
            lock = cls._lock_registry.get(key)
            if lock is None:
                lock = RLock()
                cls._lock_registry[key] = lock
            return lock

    def _initialize_schema(self) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS shipments (
                    tenant_id TEXT NOT NULL,
                    shipment_id TEXT NOT NULL,
                    carrier_name TEXT,
                    origin_state TEXT,
                    destination_state TEXT,
                    origin_city TEXT,
                    destination_city TEXT,
                    mode_name TEXT,
                    equipment_name TEXT,
                    status_name TEXT,
                    retail REAL,
                    miles REAL,
                    total_weight REAL,
                    created_date TEXT,
                    pickup_date TEXT,
                    delivery_date TEXT,
                    is_late INTEGER,
                    is_completed INTEGER,
                    has_hazmat INTEGER,
                    PRIMARY KEY (tenant_id, shipment_id)
                );

                CREATE INDEX IF NOT EXISTS idx_shipments_tenant_created
                    ON shipments (tenant_id, created_date);
                """
            )
            self._conn.commit()

    def _column(self, name: str) -> str:
        if name not in SHIPMENT_COLUMNS or not self._registry.has_field(name):
            raise UnknownFieldError(name, self._registry.field_names())
        return name

    @staticmethod
    def _date_filters(since: Optional[date], until: Optional[date]) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if since is not None:
            clauses.append("created_date >= ?")
            params.append(_iso(since))
        if until is not None:
            clauses.append("created_date < ?")
            params.append(_iso(until))
        return "".join(f" AND {clause}" for clause in clauses), params

    # ------------------------------------------------------------------ writes

    def insert_shipments(self, tenant_id: str, rows: Iterable[Dict[str, Any]]) -> int:
        """Upsert rows for a tenant. Missing columns are stored as NULL."""
        placeholders = ", ".join("?" for _ in range(len(SHIPMENT_COLUMNS) + 2))
        columns = ", ".join(("tenant_id", "shipment_id") + SHIPMENT_COLUMNS)
        inserted = 0
        with self._lock:
            base = self._next_id(tenant_id)
            for index, row in enumerate(rows):
                shipment_id = str(row.get("shipment_id") or f"SHP-{base + index:07d}")
                values = [tenant_id, shipment_id] + [row.get(col) for col in SHIPMENT_COLUMNS]
                self._conn.execute(
                    f"INSERT OR REPLACE INTO shipments ({columns}) VALUES ({placeholders})",
                    values,
                )
                inserted += 1
            self._conn.commit()
        return inserted

    def _next_id(self, tenant_id: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS n FROM shipments WHERE tenant_id = ?",
            (tenant_id,),
        ).fetchone()
        return int(row["n"]) + 1

    def clear_tenant(self, tenant_id: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM shipments WHERE tenant_id = ?", (tenant_id,))
            self._conn.commit()

    def count(self, tenant_id: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS n FROM shipments WHERE tenant_id = ?",
                (tenant_id,),
            ).fetchone()
        return int(row["n"])

    # ------------------------------------------------------------------- reads

    def _query(self, sql: str, params: Sequence[Any]) -> List[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(sql, list(params)).fetchall()
        except sqlite3.Error as exc:
            logger.error("Shipment query failed", error=str(exc))
            raise QueryExecutionError(str(exc)) from exc

    def fetch_rows(
        self,
        tenant_id: str,
        fields: Sequence[str],
        *,
        since: Optional[date] = None,
        until: Optional[date] = None,
        not_null: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        """Select the requested fields for one tenant, ordered by created_date."""
        selected = [self._column(name) for name in dict.fromkeys(fields)]
        required = [self._column(name) for name in not_null]
        date_sql, params = self._date_filters(since, until)
        null_sql = "".join(f" AND {col} IS NOT NULL" for col in required)
        sql = (
            f"SELECT {', '.join(selected)} FROM shipments "
            f"WHERE tenant_id = ?{null_sql}{date_sql} "
            "ORDER BY created_date ASC, shipment_id ASC"
        )
        return [dict(row) for row in self._query(sql, [tenant_id, *params])]

    def group_aggregate(
        self,
        tenant_id: str,
        group_by: str,
        metric: str,
        aggregation: str,
        *,
        since: Optional[date] = None,
        until: Optional[date] = None,
        limit: int = 15,
        ratio: Optional[Tuple[str, Optional[str]]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Group by a field's value and aggregate a metric in SQL.

        ``ratio`` adds ``derived_value = SUM(numerator) / SUM(denominator)``
        (or ``SUM(numerator) / COUNT(*)`` without a denominator); groups are
        then ordered by the derived value instead of the plain aggregate.
        """
        group_col = self._column(group_by)
        metric_col = self._column(metric)
        template = AGGREGATE_SQL.get(aggregation)
        if template is None:
            raise ToolArgumentError(f"Unsupported aggregation: {aggregation}")

        select = [
            f"CAST({group_col} AS TEXT) AS name",
            f"{template.format(col=metric_col)} AS value",
            "COUNT(*) AS count",
        ]
        order_by = "value DESC"
        if ratio is not None:
            numerator = self._column(ratio[0])
            if ratio[1]:
                denominator = f"SUM({self._column(ratio[1])})"
            else:
                denominator = "COUNT(*)"
            select.append(f"CAST(SUM({numerator}) AS REAL) / NULLIF({denominator}, 0) AS derived_value")
            order_by = "derived_value DESC"

        date_sql, params = self._date_filters(since, until)
        sql = (
            f"SELECT {', '.join(select)} FROM shipments "
            f"WHERE tenant_id = ? AND {group_col} IS NOT NULL{date_sql} "
            f"GROUP BY {group_col} "
            f"ORDER BY {order_by}, name ASC "
            "LIMIT ?"
        )
        return [dict(row) for row in self._query(sql, [tenant_id, *params, int(limit)])]

    def totals(
        self,
        tenant_id: str,
        group_by: str,
        metric: str,
        aggregation: str,
        *,
        since: Optional[date] = None,
        until: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Aggregate over every row that has a group value, ignoring the group limit."""
        group_col = self._column(group_by)
        metric_col = self._column(metric)
        template = AGGREGATE_SQL.get(aggregation)
        if template is None:
            raise ToolArgumentError(f"Unsupported aggregation: {aggregation}")
        date_sql, params = self._date_filters(since, until)
        sql = (
            f"SELECT {template.format(col=metric_col)} AS value, COUNT(*) AS count, "
            f"COUNT(DISTINCT {group_col}) AS group_count FROM shipments "
            f"WHERE tenant_id = ? AND {group_col} IS NOT NULL{date_sql}"
        )
        row = self._query(sql, [tenant_id, *params])[0]
        return {"value": row["value"], "count": int(row["count"]), "groups": int(row["group_count"])}

    # ------------------------------------------------------------------- seeds

    def seed_synthetic(
        self,
        tenant_id: str,
        *,
        seed: int,
        shipments: int,
        days_back: int = 180,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Replace a tenant's shipments with a deterministic synthetic set."""
        rng = random.Random(seed)
        anchor = today or date.today()
        carriers = ["XPO Logistics", "Old Dominion", "Estes Express", "Saia", "R+L Carriers", "FedEx Freight"]
        modes = ["LTL", "FTL", "Partial", "Intermodal"]
        equipment = ["Dry Van", "Reefer", "Flatbed", "Step Deck"]
        lanes = [
            ("TX", "Dallas"), ("CA", "Los Angeles"), ("IL", "Chicago"), ("GA", "Atlanta"),
            ("FL", "Tampa"), ("OH", "Columbus"), ("NJ", "Newark"), ("WA", "Seattle"),
        ]
        statuses = ["Delivered", "In Transit", "Booked", "Invoiced"]

        rows: List[Dict[str, Any]] = []
        for index in range(shipments):
            origin_state, origin_city = rng.choice(lanes)
            destination_state, destination_city = rng.choice(lanes)
            miles = round(rng.uniform(40, 2400), 1)
            weight = round(rng.uniform(150, 42000), 0)
            rate_per_mile = rng.uniform(1.6, 4.2)
            created = anchor - timedelta(days=rng.randint(0, max(0, days_back - 1)))
            pickup = created + timedelta(days=rng.randint(0, 3))
            delivery = pickup + timedelta(days=max(1, int(miles // 500)) + rng.randint(0, 2))
            status = rng.choice(statuses)
            rows.append(
                {
                    "shipment_id": f"SHP-{index + 1:07d}",
                    "carrier_name": rng.choice(carriers),
                    "origin_state": origin_state,
                    "destination_state": destination_state,
                    "origin_city": origin_city,
                    "destination_city": destination_city,
                    "mode_name": rng.choice(modes),
                    "equipment_name": rng.choice(equipment),
                    "status_name": status,
                    "retail": round(miles * rate_per_mile + rng.uniform(75, 250), 2),
                    "miles": miles,
                    "total_weight": weight,
                    "created_date": created.isoformat(),
                    "pickup_date": pickup.isoformat(),
                    "delivery_date": delivery.isoformat(),
                    "is_late": int(rng.random() < 0.12),
                    "is_completed": int(status in {"Delivered", "Invoiced"}),
                    "has_hazmat": int(rng.random() < 0.05),
                }
            )

        with self._lock:
            self.clear_tenant(tenant_id)
            created_count = self.insert_shipments(tenant_id, rows)
        logger.info("Seeded synthetic shipments", tenant_id=tenant_id, shipments=created_count, seed=seed)
        return {
            "tenant_id": tenant_id,
            "shipments_created": created_count,
            "earliest": min((r["created_date"] for r in rows), default=None),
            "latest": max((r["created_date"] for r in rows), default=None),
        }


shipment_store = ShipmentStore()
