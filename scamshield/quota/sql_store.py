"""
SQLAlchemy-backed quota store.

Uses any SQLAlchemy URL (PostgreSQL in production, SQLite by default). One row
per (subject, endpoint, tier, window_start). Increments are a conditional
UPDATE ... WHERE request_count < max, so two concurrent admissions can never
both push a window past its limit. A first-request race on the insert is
resolved by the unique constraint and a retry.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from sqlalchemy import Column, Float, Integer, String, UniqueConstraint, create_engine, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from scamshield.core.exceptions import QuotaStoreError
from scamshield.quota.store import QuotaKey, QuotaStore
from scamshield.shield_logging import get_logger

logger = get_logger(__name__)

Base = declarative_base()

INSERT_RACE_RETRIES = 2


class RateLimitWindow(Base):
    """One fixed quota window for a (subject, endpoint, tier)."""

    __tablename__ = "rate_limits"
    __table_args__ = (
        UniqueConstraint("subject", "endpoint", "tier", "window_start", name="uq_rate_limits_window"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject = Column(String(128), nullable=False, index=True)
    endpoint = Column(String(64), nullable=False)
    tier = Column(String(32), nullable=False)
    window_start = Column(Integer, nullable=False, index=True)  # Unix seconds, quantized
    request_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(Float, nullable=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "endpoint": self.endpoint,
            "tier": self.tier,
            "window_start": self.window_start,
            "request_count": self.request_count,
            "updated_at": self.updated_at,
        }


class SqlQuotaStore(QuotaStore):
    """Quota store over a relational database."""

    def __init__(self, url: str, clock: Callable[[], float] = time.time) -> None:
        self.url = url
        self._clock = clock
        connect_args: dict[str, Any] = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self._engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)

    def init_db(self) -> None:
        """Create the rate_limits table if missing. Safe to call on every startup."""
        try:
            Base.metadata.create_all(bind=self._engine)
            logger.info("quota_store_init_db", url=self.url.split("?")[0].split("//")[-1])
        except SQLAlchemyError as e:
            logger.exception("quota_store_init_db_failed", error=str(e))
            raise QuotaStoreError(f"Failed to initialize quota store: {e}") from e

    def dispose(self) -> None:
        self._engine.dispose()

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """Single session. Commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _window_filter(query: Any, key: QuotaKey, window_start: int) -> Any:
        return query.filter(
            RateLimitWindow.subject == key.subject,
            RateLimitWindow.endpoint == key.endpoint,
            RateLimitWindow.tier == key.tier,
            RateLimitWindow.window_start == window_start,
        )

    def _try_increment(self, key: QuotaKey, window_start: int, max_requests: int) -> tuple[bool, int]:
        now = self._clock()
        with self._session_scope() as session:
            updated = (
                self._window_filter(session.query(RateLimitWindow), key, window_start)
                .filter(RateLimitWindow.request_count < max_requests)
                .update(
                    {
                        RateLimitWindow.request_count: RateLimitWindow.request_count + 1,
                        RateLimitWindow.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            current = (
                self._window_filter(session.query(RateLimitWindow.request_count), key, window_start)
                .scalar()
            )
            if updated:
                return True, int(current)
            if current is not None:
                return False, int(current)
            if max_requests <= 0:
                return False, 0
            session.add(
                RateLimitWindow(
                    subject=key.subject,
                    endpoint=key.endpoint,
                    tier=key.tier,
                    window_start=window_start,
                    request_count=1,
                    updated_at=now,
                )
            )
            session.flush()
            return True, 1

    def get_and_increment(self, key: QuotaKey, window_start: int, max_requests: int) -> tuple[bool, int]:
        for attempt in range(INSERT_RACE_RETRIES):
            try:
                return self._try_increment(key, window_start, max_requests)
            except IntegrityError:
                # Another writer created the window row first; retry as an update
                logger.debug("quota_store_insert_race", subject=key.subject[:16], attempt=attempt)
                continue
            except SQLAlchemyError as e:
                raise QuotaStoreError(f"Quota increment failed: {e}") from e
        raise QuotaStoreError("Quota increment failed: window row contention")

    def get_usage(self, key: QuotaKey, window_range: tuple[int, int]) -> int:
        start, end = window_range
        try:
            with self._session_scope() as session:
                total = (
                    session.query(func.coalesce(func.sum(RateLimitWindow.request_count), 0))
                    .filter(
                        RateLimitWindow.subject == key.subject,
                        RateLimitWindow.endpoint == key.endpoint,
                        RateLimitWindow.tier == key.tier,
                        RateLimitWindow.window_start >= start,
                        RateLimitWindow.window_start < end,
                    )
                    .scalar()
                )
                return int(total or 0)
        except SQLAlchemyError as e:
            raise QuotaStoreError(f"Quota usage read failed: {e}") from e

    def purge_before(self, cutoff: int) -> int:
        try:
            with self._session_scope() as session:
                removed = (
                    session.query(RateLimitWindow)
                    .filter(RateLimitWindow.window_start < cutoff)
                    .delete(synchronize_session=False)
                )
            if removed:
                logger.info("quota_windows_purged", removed=removed, cutoff=cutoff)
            return int(removed or 0)
        except SQLAlchemyError as e:
            raise QuotaStoreError(f"Quota purge failed: {e}") from e

    def list_windows(self, subject: str | None = None, *, limit: int = 100) -> list[dict[str, Any]]:
        """Return window rows as dicts, newest first. For admin and debugging."""
        try:
            with self._session_scope() as session:
                q = session.query(RateLimitWindow)
                if subject:
                    q = q.filter(RateLimitWindow.subject == subject)
                rows = q.order_by(RateLimitWindow.window_start.desc()).limit(limit).all()
                return [r.to_dict() for r in rows]
        except SQLAlchemyError as e:
            raise QuotaStoreError(f"Quota window listing failed: {e}") from e
