"""Persistent fingerprint -> verdict store.

Records live in an SQLite database inside a fixed directory, so reopening the
same directory after a restart restores every committed record. Writes are
committed before ``put`` returns and the first write for a fingerprint wins.
There is no eviction or expiry: the store grows for as long as it is used.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError

from common.errors import CacheError
from dedup_cache.models import CacheRecord, Verdict

logger = logging.getLogger(__name__)

DB_FILENAME = "dedup_cache.sqlite3"
BUSY_TIMEOUT_SECONDS = 30

metadata = MetaData()

cache_records = Table(
    "cache_records",
    metadata,
    Column("fingerprint", String, primary_key=True),
    Column("verdict", String, nullable=False),
    Column("recorded_at", String, nullable=False),
    Column("summary", Text, nullable=True),
    Column("url", Text, nullable=True),
)


def _configure_sqlite(dbapi_connection, connection_record) -> None:
    """Enable WAL with full fsync on every new connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.close()


def _row_to_record(row) -> CacheRecord:
    return CacheRecord(
        fingerprint=row["fingerprint"],
        verdict=Verdict(row["verdict"]),
        recorded_at=datetime.fromisoformat(row["recorded_at"]),
        summary=row["summary"],
        url=row["url"],
    )


class DedupCache:
    """Durable map from item fingerprint to its committed CacheRecord."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        db_file = self.path / DB_FILENAME
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            self._engine = create_engine(
                f"sqlite:///{db_file}",
                connect_args={"timeout": BUSY_TIMEOUT_SECONDS, "check_same_thread": False},
            )
            event.listen(self._engine, "connect", _configure_sqlite)
            metadata.create_all(self._engine)
        except (OSError, SQLAlchemyError) as exc:
            raise CacheError(f"Could not open dedup cache at {db_file}: {exc}") from exc

        logger.debug("Dedup cache ready at %s", db_file)

    def get(self, fingerprint: str) -> CacheRecord | None:
        """Return the committed record for a fingerprint, or None."""
        stmt = select(cache_records).where(cache_records.c.fingerprint == fingerprint)
        try:
            with self._engine.connect() as conn:
                row = conn.execute(stmt).mappings().first()
        except SQLAlchemyError as exc:
            raise CacheError(f"Could not read fingerprint {fingerprint}: {exc}") from exc

        if row is None:
            return None

        try:
            return _row_to_record(row)
        except ValueError as exc:
            raise CacheError(f"Corrupt record for fingerprint {fingerprint}: {exc}") from exc

    def put(self, fingerprint: str, record: CacheRecord) -> None:
        """Commit a record durably. A second put for the same key is a no-op."""
        if record.fingerprint != fingerprint:
            raise ValueError(
                f"Record fingerprint {record.fingerprint} does not match key {fingerprint}"
            )

        stmt = (
            insert(cache_records)
            .values(
                fingerprint=fingerprint,
                verdict=record.verdict.value,
                recorded_at=record.recorded_at.isoformat(),
                summary=record.summary,
                url=record.url,
            )
            .on_conflict_do_nothing(index_elements=["fingerprint"])
        )
        try:
            with self._engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise CacheError(f"Could not write fingerprint {fingerprint}: {exc}") from exc

        if result.rowcount == 0:
            logger.debug("Fingerprint %s already recorded, keeping first write", fingerprint)

    def __contains__(self, fingerprint: str) -> bool:
        return self.get(fingerprint) is not None

    def __len__(self) -> int:
        stmt = select(func.count()).select_from(cache_records)
        try:
            with self._engine.connect() as conn:
                return conn.execute(stmt).scalar_one()
        except SQLAlchemyError as exc:
            raise CacheError(f"Could not count records: {exc}") from exc

    def close(self) -> None:
        self._engine.dispose()

    def __enter__(self) -> DedupCache:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
