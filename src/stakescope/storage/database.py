"""Store handle — SQLAlchemy engine plus the few queries the pipeline needs.

The handle is an explicit value passed to whoever needs the store
(orchestrator, reconciler, cache backend, layered source). It is not a
module-level singleton: create one per process or per test and dispose of
it when done.

All methods are synchronous. Async callers run them through
``asyncio.to_thread``.

Usage:
    db = Database("sqlite:///stakescope.db")
    db.create_all()
    db.upsert(Validator, [{"pubkey": "...", ...}])
"""

import logging
from collections import defaultdict
from typing import Any, Iterable

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session, sessionmaker

from stakescope.errors import ConfigurationError
from stakescope.storage.models import Base, RewardHistory, RpcCacheEntry, Validator

logger = logging.getLogger(__name__)

# Columns the database owns; never overwritten by an upsert
_PRESERVED_ON_UPDATE = {"created_at"}


def _insert_for(dialect: str):
    """Return the dialect-specific ``insert`` that supports ON CONFLICT."""
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise ConfigurationError(
            f"Unsupported database dialect '{dialect}' (need postgresql or sqlite)"
        )
    return insert


def key_columns(model: type[Base]) -> list[str]:
    """Natural key (primary key column names) of a mapped table."""
    return [column.name for column in model.__table__.primary_key.columns]


class Database:
    """Relational store handle.

    Args:
        url: SQLAlchemy database URL
        echo: Log emitted SQL (default: False)
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        if not url:
            raise ConfigurationError("database_url is empty")
        self.url = url
        try:
            backend = make_url(url).get_backend_name()
        except ArgumentError as e:
            raise ConfigurationError(f"Invalid database_url: {e}") from e
        self._insert = _insert_for(backend)
        self.engine: Engine = create_engine(url, echo=echo)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    def session(self) -> Session:
        return self._sessions()

    def upsert(self, model: type[Base], rows: list[dict[str, Any]]) -> int:
        """Insert rows, updating existing rows that share the natural key.

        All rows must carry the same set of columns. Duplicate keys inside
        ``rows`` are not allowed (PostgreSQL rejects them); the reconciler
        dedupes before calling.

        Args:
            model: Mapped table class
            rows: Column dicts

        Returns:
            Number of rows written

        Raises:
            sqlalchemy.exc.SQLAlchemyError: On any database failure
        """
        if not rows:
            return 0

        keys = key_columns(model)
        stmt = self._insert(model).values(rows)
        updates = {
            name: stmt.excluded[name]
            for name in rows[0]
            if name not in keys and name not in _PRESERVED_ON_UPDATE
        }
        if updates:
            stmt = stmt.on_conflict_do_update(index_elements=keys, set_=updates)
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=keys)

        with self.engine.begin() as conn:
            conn.execute(stmt)
        return len(rows)

    def count(self, model: type[Base]) -> int:
        with self.session() as session:
            return session.scalar(select(func.count()).select_from(model)) or 0

    def all_rows(self, model: type[Base]) -> list[Any]:
        with self.session() as session:
            return list(session.scalars(select(model)))

    # --- Validators ---

    def top_validators(self, limit: int = 50) -> list[Validator]:
        """Validators ordered by activated stake, largest first."""
        with self.session() as session:
            stmt = select(Validator).order_by(Validator.activated_stake.desc()).limit(limit)
            return list(session.scalars(stmt))

    def recent_rewards(
        self,
        pubkeys: Iterable[str],
        limit: int = 10,
    ) -> dict[str, list[RewardHistory]]:
        """Most recent reward rows per validator, newest epoch first."""
        pubkeys = list(pubkeys)
        grouped: dict[str, list[RewardHistory]] = defaultdict(list)
        if not pubkeys:
            return grouped

        with self.session() as session:
            stmt = (
                select(RewardHistory)
                .where(RewardHistory.validator_pubkey.in_(pubkeys))
                .order_by(RewardHistory.validator_pubkey, RewardHistory.epoch.desc())
            )
            for row in session.scalars(stmt):
                bucket = grouped[row.validator_pubkey]
                if len(bucket) < limit:
                    bucket.append(row)
        return grouped

    # --- Response cache ---

    def get_cache_entry(self, cache_key: str) -> tuple[Any, float] | None:
        with self.session() as session:
            entry = session.get(RpcCacheEntry, cache_key)
            if entry is None:
                return None
            return entry.payload, entry.expires_at

    def put_cache_entry(self, cache_key: str, payload: Any, expires_at: float) -> None:
        self.upsert(
            RpcCacheEntry,
            [{"cache_key": cache_key, "payload": payload, "expires_at": expires_at}],
        )

    def purge_expired_cache(self, now: float) -> int:
        """Delete cache rows whose expiry has passed."""
        with self.engine.begin() as conn:
            result = conn.execute(delete(RpcCacheEntry).where(RpcCacheEntry.expires_at <= now))
        purged = result.rowcount or 0
        if purged:
            logger.info("Purged %d expired cache entries", purged)
        return purged
