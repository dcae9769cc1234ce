"""Persistence backends for backlinks and their monitoring logs."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from itertools import count
from threading import Lock
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from app.config import settings
from app.models.backlink import Backlink, CheckLog
from app.models.backlink_record import BacklinkRecord, MonitoringLogRecord
from app.observability.metrics import metrics
from app.services.backlinks.errors import BacklinkPersistenceError

logger = logging.getLogger(__name__)


class BacklinkRepository(Protocol):
    """Persistence contract for backlink records."""

    def get(self, backlink_id: UUID) -> Backlink | None:
        ...

    def get_owned(self, backlink_id: UUID, user_id: str) -> Backlink | None:
        ...

    def list_for_user(
        self, user_id: str, *, pitch_id: str | None = None, active: bool | None = None
    ) -> list[Backlink]:
        ...

    def create(self, backlink: Backlink) -> Backlink:
        ...

    def save(self, backlink: Backlink) -> Backlink:
        ...

    def delete(self, backlink_id: UUID) -> bool:
        ...

    def claim_due(self, limit: int, *, now: datetime) -> list[Backlink]:
        ...


class CheckLogStore(Protocol):
    """Append-only store of check results."""

    def append(self, log: CheckLog) -> CheckLog:
        ...

    def recent(self, backlink_id: UUID, *, since: datetime, limit: int) -> list[CheckLog]:
        ...


class BacklinkStore(BacklinkRepository, CheckLogStore, Protocol):
    """Both halves of the persistence contract, served by one backend."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _not_found(backlink_id: UUID) -> BacklinkPersistenceError:
    return BacklinkPersistenceError(
        f"Backlink {backlink_id} does not exist.", code="404_BACKLINK_NOT_FOUND"
    )


def _duplicate() -> BacklinkPersistenceError:
    return BacklinkPersistenceError(
        "A backlink with this source and target URL already exists.",
        code="409_BACKLINK_EXISTS",
    )


class InMemoryBacklinkRepository(BacklinkStore):
    """Thread-safe repository used for API/local development."""

    def __init__(self) -> None:
        self._backlinks: dict[UUID, Backlink] = {}
        self._logs: dict[UUID, list[CheckLog]] = {}
        self._log_ids = count(1)
        self._lock = Lock()

    def get(self, backlink_id: UUID) -> Backlink | None:
        with self._lock:
            stored = self._backlinks.get(backlink_id)
            return stored.model_copy(deep=True) if stored else None

    def get_owned(self, backlink_id: UUID, user_id: str) -> Backlink | None:
        backlink = self.get(backlink_id)
        if backlink is None or backlink.user_id != user_id:
            return None
        return backlink

    def list_for_user(
        self, user_id: str, *, pitch_id: str | None = None, active: bool | None = None
    ) -> list[Backlink]:
        with self._lock:
            matches = [
                backlink.model_copy(deep=True)
                for backlink in self._backlinks.values()
                if backlink.user_id == user_id
                and (pitch_id is None or backlink.pitch_id == pitch_id)
                and (active is None or backlink.is_active == active)
            ]
        return sorted(matches, key=lambda entry: entry.created_at, reverse=True)

    def create(self, backlink: Backlink) -> Backlink:
        with self._lock:
            self._ensure_unique(backlink)
            stored = backlink.model_copy(deep=True)
            stored.updated_at = stored.created_at
            self._backlinks[stored.id] = stored
            self._logs.setdefault(stored.id, [])
        metrics.increment("persistence.created", tags={"repository": "memory"})
        logger.info(
            "backlinks.persistence.created",
            extra={"backlink_id": str(backlink.id), "backend": "memory"},
        )
        return stored.model_copy(deep=True)

    def save(self, backlink: Backlink) -> Backlink:
        with self._lock:
            if backlink.id not in self._backlinks:
                raise _not_found(backlink.id)
            self._ensure_unique(backlink)
            stored = backlink.model_copy(deep=True)
            stored.updated_at = _utcnow()
            self._backlinks[stored.id] = stored
        metrics.increment("persistence.saved", tags={"repository": "memory"})
        return stored.model_copy(deep=True)

    def delete(self, backlink_id: UUID) -> bool:
        with self._lock:
            removed = self._backlinks.pop(backlink_id, None)
            self._logs.pop(backlink_id, None)
        return removed is not None

    def claim_due(self, limit: int, *, now: datetime) -> list[Backlink]:
        if limit <= 0:
            return []
        with self._lock:
            eligible = [entry for entry in self._backlinks.values() if entry.is_verified]
            eligible.sort(
                key=lambda entry: (
                    entry.last_checked_at is not None,
                    entry.last_checked_at or entry.created_at,
                    entry.created_at,
                )
            )
            claimed: list[Backlink] = []
            for entry in eligible[:limit]:
                entry.last_checked_at = now
                claimed.append(entry.model_copy(deep=True))
        return claimed

    def _ensure_unique(self, backlink: Backlink) -> None:
        for existing in self._backlinks.values():
            if existing.id == backlink.id:
                continue
            if (existing.source_url, existing.target_url) == (
                backlink.source_url,
                backlink.target_url,
            ):
                raise _duplicate()

    def append(self, log: CheckLog) -> CheckLog:
        with self._lock:
            if log.backlink_id not in self._backlinks:
                raise _not_found(log.backlink_id)
            stored = log.model_copy(update={"id": next(self._log_ids)})
            self._logs.setdefault(log.backlink_id, []).append(stored)
        metrics.increment(
            "persistence.log_appended",
            tags={"repository": "memory", "status": log.check_status.value},
        )
        return stored

    def recent(self, backlink_id: UUID, *, since: datetime, limit: int) -> list[CheckLog]:
        with self._lock:
            history = list(self._logs.get(backlink_id, []))
        window = [log for log in history if log.checked_at >= since]
        window.sort(key=lambda log: (log.checked_at, log.id or 0), reverse=True)
        return window[: max(0, limit)]


class SqlBacklinkRepository(BacklinkStore):
    """SQLModel-backed repository that persists backlinks to Postgres/Supabase or SQLite."""

    def __init__(
        self,
        database_url: str,
        *,
        pool_min_size: int | None = None,
        pool_max_size: int | None = None,
        auto_create_schema: bool = False,
    ) -> None:
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlBacklinkRepository.")

        parsed_url = make_url(database_url)
        sync_url, connect_args, drivername = _coerce_sync_database_url(parsed_url)
        pool_min = max(pool_min_size or settings.db_pool_min_size, 1)
        pool_max = max(pool_max_size or settings.db_pool_max_size, pool_min)
        max_overflow = max(pool_max - pool_min, 0)
        is_sqlite = drivername.startswith("sqlite")
        engine_kwargs: dict[str, Any] = {
            "echo": settings.debug and not is_sqlite,
            "connect_args": connect_args,
            "pool_pre_ping": not is_sqlite,
        }
        if not is_sqlite:
            engine_kwargs["pool_size"] = pool_min
            engine_kwargs["max_overflow"] = max_overflow

        self._engine: Engine = create_engine(sync_url, **engine_kwargs)
        if auto_create_schema:
            SQLModel.metadata.create_all(self._engine)
        self._metrics_tags = {"repository": _resolve_metrics_tag(parsed_url, drivername)}

    def dispose(self) -> None:
        """Close the underlying SQLAlchemy engine."""
        self._engine.dispose()

    def get(self, backlink_id: UUID) -> Backlink | None:
        with self._guard("get", backlink_id=backlink_id), self._session() as session:
            record = session.get(BacklinkRecord, backlink_id)
            return record.to_backlink() if record else None

    def get_owned(self, backlink_id: UUID, user_id: str) -> Backlink | None:
        with self._guard("get_owned", backlink_id=backlink_id), self._session() as session:
            statement = select(BacklinkRecord).where(
                BacklinkRecord.id == backlink_id,
                BacklinkRecord.user_id == user_id,
            )
            record = session.exec(statement).first()
            return record.to_backlink() if record else None

    def list_for_user(
        self, user_id: str, *, pitch_id: str | None = None, active: bool | None = None
    ) -> list[Backlink]:
        with self._guard("list"), self._session() as session:
            statement = select(BacklinkRecord).where(BacklinkRecord.user_id == user_id)
            if pitch_id is not None:
                statement = statement.where(BacklinkRecord.pitch_id == pitch_id)
            if active is not None:
                statement = statement.where(BacklinkRecord.is_active.is_(active))
            statement = statement.order_by(BacklinkRecord.created_at.desc())
            return [record.to_backlink() for record in session.exec(statement).all()]

    def create(self, backlink: Backlink) -> Backlink:
        record = BacklinkRecord.from_backlink(backlink)
        try:
            with self._session() as session:
                session.add(record)
                session.commit()
                session.refresh(record)
                metrics.increment("persistence.created", tags=self._metrics_tags)
                logger.info(
                    "backlinks.persistence.created",
                    extra={
                        "backlink_id": str(record.id),
                        "backend": self._metrics_tags["repository"],
                    },
                )
                return record.to_backlink()
        except IntegrityError as exc:
            logger.warning(
                "backlinks.persistence.conflict",
                extra={"backlink_id": str(backlink.id), "backend": self._metrics_tags["repository"]},
            )
            raise _duplicate() from exc
        except SQLAlchemyError as exc:
            logger.exception(
                "backlinks.persistence.error",
                extra={"backlink_id": str(backlink.id), "operation": "create"},
            )
            raise BacklinkPersistenceError(
                "Failed to create backlink.", code="500_INTERNAL"
            ) from exc

    def save(self, backlink: Backlink) -> Backlink:
        try:
            with self._session() as session:
                record = session.get(BacklinkRecord, backlink.id)
                if record is None:
                    raise _not_found(backlink.id)
                record.apply(backlink)
                record.updated_at = _utcnow()
                session.add(record)
                session.commit()
                session.refresh(record)
                metrics.increment("persistence.saved", tags=self._metrics_tags)
                return record.to_backlink()
        except IntegrityError as exc:
            raise _duplicate() from exc
        except SQLAlchemyError as exc:
            logger.exception(
                "backlinks.persistence.error",
                extra={"backlink_id": str(backlink.id), "operation": "save"},
            )
            raise BacklinkPersistenceError(
                "Failed to persist backlink.", code="500_INTERNAL"
            ) from exc

    def delete(self, backlink_id: UUID) -> bool:
        with self._guard("delete", backlink_id=backlink_id), self._session() as session:
            record = session.get(BacklinkRecord, backlink_id)
            if record is None:
                return False
            logs = session.exec(
                select(MonitoringLogRecord).where(MonitoringLogRecord.backlink_id == backlink_id)
            ).all()
            for log in logs:
                session.delete(log)
            session.delete(record)
            session.commit()
            return True

    def claim_due(self, limit: int, *, now: datetime) -> list[Backlink]:
        if limit <= 0:
            return []
        with self._guard("claim_due"), self._session() as session:
            statement = (
                select(BacklinkRecord)
                .where(BacklinkRecord.is_verified.is_(True))
                .order_by(
                    BacklinkRecord.last_checked_at.asc().nulls_first(),
                    BacklinkRecord.created_at.asc(),
                )
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            records = session.exec(statement).all()
            for record in records:
                record.last_checked_at = now
                session.add(record)
            session.commit()
            claimed = []
            for record in records:
                session.refresh(record)
                claimed.append(record.to_backlink())
            return claimed

    def append(self, log: CheckLog) -> CheckLog:
        record = MonitoringLogRecord.from_check_log(log)
        with self._guard("append", backlink_id=log.backlink_id), self._session() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            metrics.increment(
                "persistence.log_appended",
                tags={**self._metrics_tags, "status": log.check_status.value},
            )
            return record.to_check_log()

    def recent(self, backlink_id: UUID, *, since: datetime, limit: int) -> list[CheckLog]:
        with self._guard("recent", backlink_id=backlink_id), self._session() as session:
            statement = (
                select(MonitoringLogRecord)
                .where(
                    MonitoringLogRecord.backlink_id == backlink_id,
                    MonitoringLogRecord.checked_at >= since,
                )
                .order_by(MonitoringLogRecord.checked_at.desc(), MonitoringLogRecord.id.desc())
                .limit(max(0, limit))
            )
            return [record.to_check_log() for record in session.exec(statement).all()]

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self._engine) as session:
            yield session

    @contextmanager
    def _guard(self, operation: str, *, backlink_id: UUID | None = None) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            logger.exception(
                "backlinks.persistence.error",
                extra={
                    "operation": operation,
                    "backlink_id": str(backlink_id) if backlink_id else None,
                    "backend": self._metrics_tags["repository"],
                },
            )
            raise BacklinkPersistenceError(
                f"Backlink store failed during {operation}.", code="500_INTERNAL"
            ) from exc


def _coerce_sync_database_url(url: URL) -> tuple[str, dict[str, Any], str]:
    """Convert async connection strings into sync SQLAlchemy URLs."""
    drivername = url.drivername
    connect_args: dict[str, Any] = {}
    if drivername.endswith("+asyncpg"):
        drivername = drivername.replace("+asyncpg", "+psycopg2")
    elif drivername.endswith("+psycopg"):
        drivername = drivername.replace("+psycopg", "+psycopg2")
    elif drivername.endswith("+aiosqlite"):
        drivername = drivername.replace("+aiosqlite", "")
    sync_url = url.set(drivername=drivername)
    query = dict(sync_url.query) if sync_url.query else {}
    removed_ssl = False
    if "ssl" in query:
        query.pop("ssl", None)
        removed_ssl = True
    sync_url = sync_url.set(query=query)

    host = (url.host or "").lower()
    if drivername.startswith("postgresql"):
        query = dict(sync_url.query) if sync_url.query else {}
        if "sslmode" not in query and (removed_ssl or "supabase.co" in host):
            connect_args["sslmode"] = "require"
    if drivername.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    return sync_url.render_as_string(hide_password=False), connect_args, drivername


def _resolve_metrics_tag(url: URL, drivername: str) -> str:
    host = (url.host or "").lower()
    if "supabase.co" in host:
        return "supabase"
    if drivername.startswith("sqlite"):
        return "sqlite"
    return "postgres"


def build_backlink_repository(database_url: str | None = None) -> BacklinkStore:
    """Instantiate a backlink store using DATABASE_URL when available."""
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        logger.info("backlinks.repository.initialized", extra={"backend": "memory"})
        return InMemoryBacklinkRepository()
    try:
        repository = SqlBacklinkRepository(
            resolved_url,
            pool_min_size=settings.db_pool_min_size,
            pool_max_size=settings.db_pool_max_size,
            auto_create_schema=settings.db_auto_create_schema,
        )
        logger.info("backlinks.repository.initialized", extra={"backend": "database"})
        return repository
    except Exception:
        logger.exception("backlinks.repository.init_failed", extra={"backend": "database"})
        raise


_REPOSITORY_INSTANCE: BacklinkStore | None = None


def get_backlink_repository() -> BacklinkStore:
    """Singleton accessor used by API routes."""
    global _REPOSITORY_INSTANCE  # noqa: PLW0603
    if _REPOSITORY_INSTANCE is None:
        _REPOSITORY_INSTANCE = build_backlink_repository()
    return _REPOSITORY_INSTANCE
