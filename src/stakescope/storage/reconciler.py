"""Reconciler — computed records → store.

Batched, idempotent upserts keyed by natural identifiers. A failing batch is
logged and counted; the remaining batches still run. Nothing is rolled back
across batches: partial persistence is preferred to none.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from stakescope.storage.database import Database, key_columns
from stakescope.storage.models import Base

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100


@dataclass
class SyncResult:
    """Outcome of reconciling one table.

    Attributes:
        table: Table name
        attempted: Distinct rows submitted (after key dedupe)
        stored: Rows written successfully
        failed: Rows in failed batches
        errors: One message per failed batch
    """

    table: str
    attempted: int = 0
    stored: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "attempted": self.attempted,
            "stored": self.stored,
            "failed": self.failed,
            "errors": list(self.errors),
        }


def dedupe_by_key(rows: list[dict[str, Any]], keys: list[str]) -> list[dict[str, Any]]:
    """Drop rows that repeat a natural key, keeping the last occurrence.

    Insertion order of first appearance is preserved.
    """
    by_key: dict[tuple, dict[str, Any]] = {}
    for row in rows:
        by_key[tuple(row[k] for k in keys)] = row
    return list(by_key.values())


class Reconciler:
    """Upserts computed records into the store in fixed-size batches.

    Args:
        database: Store handle
        batch_size: Rows per upsert statement (1..100, default: 50)

    Usage:
        reconciler = Reconciler(db, batch_size=50)
        result = await reconciler.reconcile(ValidatorHistory, rows)
        print(result.stored, result.failed)
    """

    def __init__(self, database: Database, batch_size: int = 50) -> None:
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size ({batch_size}) must be in [1, {MAX_BATCH_SIZE}]")
        self.database = database
        self.batch_size = batch_size

    async def reconcile(self, model: type[Base], rows: list[dict[str, Any]]) -> SyncResult:
        """Upsert ``rows`` into ``model``'s table.

        Args:
            model: Mapped table class
            rows: Column dicts, all with the same columns

        Returns:
            SyncResult with attempted/stored/failed counts
        """
        table = model.__tablename__
        unique_rows = dedupe_by_key(rows, key_columns(model))
        result = SyncResult(table=table, attempted=len(unique_rows))

        if len(unique_rows) < len(rows):
            logger.debug(
                "%s: dropped %d rows with duplicate keys",
                table, len(rows) - len(unique_rows),
            )

        for start in range(0, len(unique_rows), self.batch_size):
            batch = unique_rows[start:start + self.batch_size]
            try:
                stored = await asyncio.to_thread(self.database.upsert, model, batch)
            except SQLAlchemyError as e:
                batch_no = start // self.batch_size + 1
                message = f"{table} batch {batch_no}: {e.__class__.__name__}: {e}"
                logger.error("Upsert failed — %s", message)
                result.failed += len(batch)
                result.errors.append(message)
                continue
            result.stored += stored

        logger.info(
            "%s: %d/%d rows stored (%d failed)",
            table, result.stored, result.attempted, result.failed,
        )
        return result

    async def reconcile_many(
        self,
        records: dict[type[Base], list[dict[str, Any]]],
    ) -> dict[str, SyncResult]:
        """Reconcile several tables in order; one table's failure never stops the next."""
        results: dict[str, SyncResult] = {}
        for model, rows in records.items():
            results[model.__tablename__] = await self.reconcile(model, rows)
        return results
