"""
SQLAlchemy-backed snapshot store.

Writes are a single native upsert (INSERT ... ON CONFLICT DO UPDATE) so
racing writers never interleave a read-modify-write on the payload.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from scorecache.cache.core import CacheKey, Snapshot, ensure_utc
from scorecache.db import make_session_factory
from scorecache.errors import StoreUnavailable
from scorecache.models import SnapshotRow

logger = logging.getLogger("store.sql")

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class SQLSnapshotStore:
    """
    SnapshotStore over the `snapshots` table.

    Usage:
        engine = make_engine("sqlite:///./scorecache.db")
        init_db(engine)
        store = SQLSnapshotStore(engine)
    """

    def __init__(self, engine: Engine):
        dialect = engine.dialect.name
        if dialect not in _UPSERT_DIALECTS:
            raise ValueError(f"No upsert support for dialect '{dialect}'")
        self._insert = _UPSERT_DIALECTS[dialect]
        self._session_factory = make_session_factory(engine)

    def get(self, key: CacheKey) -> Optional[Snapshot]:
        stmt = select(SnapshotRow).where(
            SnapshotRow.domain == key.domain,
            SnapshotRow.subject == key.subject,
            SnapshotRow.variant == key.variant,
        )
        try:
            with self._session_factory() as session:
                row = session.execute(stmt).scalar_one_or_none()
                if row is None:
                    return None
                return Snapshot(
                    key=key,
                    payload=row.payload,
                    updated_at=ensure_utc(row.updated_at),
                )
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Snapshot read failed for {key}: {e}") from e

    def upsert(self, key: CacheKey, payload: Any, updated_at: datetime) -> None:
        written_at = ensure_utc(updated_at).astimezone(timezone.utc).replace(tzinfo=None)
        stmt = self._insert(SnapshotRow).values(
            domain=key.domain,
            subject=key.subject,
            variant=key.variant,
            payload=payload,
            updated_at=written_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["domain", "subject", "variant"],
            set_={
                "payload": stmt.excluded.payload,
                "updated_at": stmt.excluded.updated_at,
            },
            # Newest wall-clock write wins when writers race
            where=SnapshotRow.updated_at <= stmt.excluded.updated_at,
        )
        try:
            with self._session_factory() as session:
                session.execute(stmt)
                session.commit()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Snapshot write failed for {key}: {e}") from e
        logger.debug(f"Upserted snapshot {key} at {written_at.isoformat()}")
