"""
Snapshot Store - Persistent Cached snapshot.

============================================================
KEY-VALUE SNAPSHOT PERSISTENCE
============================================================

One row per key: {key, payload (JSON), timestamp, schema_version}.
Read once at cycle start, written at cycle end only when the cycle
produced meaningful data. Rows written under another schema version are
treated as absent.

SQLite by default; any SQLAlchemy URL works.
============================================================
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .exceptions import SnapshotStoreError
from .models import DataSource, Snapshot


logger = logging.getLogger(__name__)

# =============================================================
# ORM MODEL
# =============================================================

Base = declarative_base()


class SnapshotRecord(Base):
    """Persisted snapshot payload."""

    __tablename__ = "circulation_snapshots"

    key = Column(String(128), primary_key=True)
    payload = Column(Text, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    schema_version = Column(Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<SnapshotRecord(key={self.key}, schema_version={self.schema_version}, timestamp={self.timestamp})>"


# =============================================================
# STORE
# =============================================================

def _create_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        database = url.database
        if not database or database == ":memory:":
            # One shared connection so the in-memory database outlives a session
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                future=True,
            )
        Path(database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, future=True)


class SnapshotStore:
    """Key-value store of serialized snapshots with schema versioning."""

    def __init__(
        self,
        database_url: str,
        schema_version: int,
        key: str = "circulation_snapshot",
    ) -> None:
        self._database_url = database_url
        self._schema_version = schema_version
        self._key = key
        try:
            self._engine = _create_engine(database_url)
            Base.metadata.create_all(self._engine)
        except (SQLAlchemyError, OSError) as e:
            raise SnapshotStoreError(f"Cannot open snapshot store: {e}", key, e) from e
        self._session_factory = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False,
        )

    @property
    def schema_version(self) -> int:
        return self._schema_version

    @contextmanager
    def transaction_scope(self) -> Generator[Session, None, None]:
        """Commit on success, roll back and raise SnapshotStoreError on failure."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Snapshot store transaction failed, rolling back: {e}")
            session.rollback()
            raise SnapshotStoreError(f"Transaction failed: {e}", self._key, e) from e
        finally:
            session.close()

    def load(self, key: Optional[str] = None) -> Optional[Snapshot]:
        """
        Load the cached snapshot.

        Returns None when the row is absent, written under another schema
        version, or unreadable.
        """
        key = key or self._key
        try:
            with self.transaction_scope() as session:
                record = session.get(SnapshotRecord, key)
                if record is None:
                    logger.debug(f"No cached snapshot under '{key}'")
                    return None
                if record.schema_version != self._schema_version:
                    logger.warning(
                        f"Cached snapshot '{key}' has schema version {record.schema_version}, "
                        f"expected {self._schema_version}; ignoring it"
                    )
                    return None
                payload = record.payload
        except SnapshotStoreError as e:
            logger.warning(f"Cached snapshot unavailable: {e}")
            return None

        try:
            snapshot = Snapshot.from_dict(json.loads(payload))
        except (ValueError, KeyError, TypeError, ArithmeticError) as e:
            logger.warning(f"Cached snapshot '{key}' is corrupt, ignoring it: {e}")
            return None

        snapshot.source = DataSource.CACHED
        logger.debug(f"Loaded cached snapshot '{key}' taken at {snapshot.taken_at}")
        return snapshot

    def save(self, snapshot: Snapshot, key: Optional[str] = None) -> None:
        """
        Persist a snapshot, replacing the previous one.

        Raises:
            SnapshotStoreError: on write failure
        """
        key = key or self._key
        payload = json.dumps(snapshot.to_dict(), sort_keys=True)
        timestamp = snapshot.taken_at or datetime.now(timezone.utc)

        with self.transaction_scope() as session:
            record = session.get(SnapshotRecord, key)
            if record is None:
                session.add(SnapshotRecord(
                    key=key,
                    payload=payload,
                    timestamp=timestamp,
                    schema_version=self._schema_version,
                ))
            else:
                record.payload = payload
                record.timestamp = timestamp
                record.schema_version = self._schema_version
        logger.info(f"Cached snapshot '{key}' updated ({len(snapshot.accounts)} accounts)")

    def close(self) -> None:
        self._engine.dispose()
