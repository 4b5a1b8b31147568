"""
Database models for scorecache
SQLAlchemy ORM model for persisted snapshots
"""
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SnapshotRow(Base):
    """
    Snapshot entity - one persisted payload per composite cache key
    Rows are overwritten whole on every successful upstream fetch
    """
    __tablename__ = "snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain = Column(String, nullable=False, index=True)
    subject = Column(String, nullable=False)
    variant = Column(String, nullable=False, default="")
    payload = Column(JSON, nullable=True)
    # Naive UTC; SQLite has no timezone-aware storage
    updated_at = Column(DateTime, nullable=False, default=_utcnow_naive)

    # Constraints - one row per composite key
    __table_args__ = (
        UniqueConstraint("domain", "subject", "variant", name="uix_snapshot_key"),
    )

    def __repr__(self):
        return f"<SnapshotRow(key='{self.domain}:{self.subject}:{self.variant}', updated_at={self.updated_at})>"
