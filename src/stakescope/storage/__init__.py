"""Relational store for StakeScope.

- models: SQLAlchemy tables keyed by natural identifiers
- database: Store handle (engine, upsert, queries)
- reconciler: Batched idempotent upserts with per-batch failure tracking
"""

from stakescope.storage.database import Database
from stakescope.storage.reconciler import Reconciler, SyncResult

__all__ = ["Database", "Reconciler", "SyncResult"]
