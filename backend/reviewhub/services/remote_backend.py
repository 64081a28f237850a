"""Remote backend client contract and its SQLAlchemy implementation.

Repositories depend only on ``RemoteBackend``; the concrete client is
injected at construction so tests can swap in an offline or failing one.

Filters (``where``) are mappings from column to value. A column may carry
a lookup suffix:

    {"room_id": rid}                      room_id = rid
    {"last_activity__lt": cutoff}         last_activity < cutoff
    {"id__in": ["a", "b"]}                id IN ("a", "b")

Supported lookups: eq (default), lt, lte, gt, gte, in.
"""
import asyncio
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Awaitable, Callable, Generator, Mapping, Optional, TypeVar
from urllib.parse import quote
from uuid import uuid4

from sqlalchemy import Table, case, delete, func, insert, select, update
from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session, sessionmaker

from reviewhub.lib.db import Base
from reviewhub.lib.logging import get_logger
from reviewhub.services.realtime import DELETE, INSERT, UPDATE, RealtimeHub


logger = get_logger(__name__)


ChangeCallback = Callable[[str, dict], Awaitable[None]]
Row = dict[str, Any]
T = TypeVar("T")


class RemoteBackendError(Exception):
    """The remote backend rejected an operation (authorization, constraint, unknown table)."""


class RemoteUnavailableError(RemoteBackendError):
    """The remote backend cannot be reached (offline, connection failure, not initialized)."""


class RemoteBackend(ABC):
    """Abstract hosted data service: tables, realtime changes, object storage."""

    @abstractmethod
    def is_online(self) -> bool:
        """Whether calls are expected to reach the backend."""
        pass

    @abstractmethod
    async def insert(self, table: str, record: Mapping[str, Any]) -> Row:
        pass

    @abstractmethod
    async def select(
        self,
        table: str,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Row]:
        pass

    @abstractmethod
    async def count(self, table: str, where: Optional[Mapping[str, Any]] = None) -> int:
        pass

    @abstractmethod
    async def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> list[Row]:
        """Apply a patch to one row; returns the updated rows ([] when nothing matched)."""
        pass

    @abstractmethod
    async def increment(
        self,
        table: str,
        record_id: str,
        column: str,
        delta: int,
        floor: int = 0,
        patch: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Row]:
        """Atomically add ``delta`` to a numeric column, never going below ``floor``."""
        pass

    @abstractmethod
    async def delete(self, table: str, where: Mapping[str, Any]) -> int:
        """Delete matching rows; returns the number of rows removed."""
        pass

    @abstractmethod
    def subscribe(
        self,
        table: str,
        where: Optional[Mapping[str, Any]],
        on_change: ChangeCallback,
    ) -> Callable[[], None]:
        """Listen for committed changes; returns an unsubscribe function."""
        pass

    @abstractmethod
    def get_public_url(self, bucket: str, path: str) -> str:
        pass

    @abstractmethod
    async def upload(self, bucket: str, path: str, data: bytes) -> None:
        pass


_LOOKUPS = {
    "eq": lambda column, value: column == value,
    "lt": lambda column, value: column < value,
    "lte": lambda column, value: column <= value,
    "gt": lambda column, value: column > value,
    "gte": lambda column, value: column >= value,
    "in": lambda column, value: column.in_(list(value)),
}


def _to_utc(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc)
    return value


class SqlAlchemyBackend(RemoteBackend):
    """RemoteBackend over the relational schema in ``reviewhub.models``.

    Object storage is a directory tree (``storage_root/bucket/path``) served
    under ``public_url_base``. Changes are published to ``hub`` after commit.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        hub: Optional[RealtimeHub] = None,
        storage_root: Optional[str] = None,
        public_url_base: Optional[str] = None,
        online: bool = True,
    ):
        self.session_factory = session_factory
        self.hub = hub
        self.storage_root = Path(storage_root) if storage_root else None
        self.public_url_base = (public_url_base or "").rstrip("/")
        self.online = online

    def is_online(self) -> bool:
        return self.online and self.session_factory is not None

    # ----- helpers -----

    def _ensure_online(self) -> None:
        if not self.is_online():
            raise RemoteUnavailableError("Remote backend is offline")

    def _table(self, name: str) -> Table:
        import reviewhub.models  # noqa: F401  (registers tables)

        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise RemoteBackendError(f"Unknown table '{name}'")

    def _conditions(self, table: Table, where: Optional[Mapping[str, Any]]) -> list:
        conditions = []
        for key, value in (where or {}).items():
            column_name, _, lookup = key.partition("__")
            lookup = lookup or "eq"
            if column_name not in table.c:
                raise RemoteBackendError(f"Unknown column '{column_name}' on '{table.name}'")
            if lookup not in _LOOKUPS:
                raise RemoteBackendError(f"Unsupported lookup '{lookup}'")
            conditions.append(_LOOKUPS[lookup](table.c[column_name], _to_utc(value)))
        return conditions

    def _values(self, table: Table, values: Mapping[str, Any]) -> dict:
        unknown = [key for key in values if key not in table.c]
        if unknown:
            raise RemoteBackendError(f"Unknown column(s) {unknown} on '{table.name}'")
        return {key: _to_utc(value) for key, value in values.items()}

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        self._ensure_online()
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except (OperationalError, InterfaceError, DisconnectionError) as e:
            session.rollback()
            raise RemoteUnavailableError(str(e)) from e
        except SQLAlchemyError as e:
            session.rollback()
            raise RemoteBackendError(str(e)) from e
        finally:
            session.close()

    @staticmethod
    def _fetch_by_id(session: Session, table: Table, record_id: str) -> Optional[Row]:
        row = session.execute(select(table).where(table.c.id == record_id)).first()
        return dict(row._mapping) if row is not None else None

    async def _run(self, work: Callable[[Session], T]) -> T:
        """Run blocking database work in a worker thread, inside one transaction."""
        self._ensure_online()

        def execute() -> T:
            with self._session() as session:
                return work(session)

        return await asyncio.to_thread(execute)

    async def _publish(self, table: str, event: str, rows: list[Row]) -> None:
        if self.hub is None:
            return
        for row in rows:
            await self.hub.publish(table, event, row)

    # ----- data -----

    async def insert(self, table: str, record: Mapping[str, Any]) -> Row:
        target = self._table(table)
        values = self._values(target, record)
        values.setdefault("id", str(uuid4()))

        def work(session: Session) -> Row:
            session.execute(insert(target).values(**values))
            session.flush()
            return self._fetch_by_id(session, target, values["id"])

        row = await self._run(work)
        await self._publish(table, INSERT, [row])
        return row

    async def select(
        self,
        table: str,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Row]:
        target = self._table(table)
        stmt = select(target).where(*self._conditions(target, where))
        if order_by is not None:
            if order_by not in target.c:
                raise RemoteBackendError(f"Unknown column '{order_by}' on '{table}'")
            column = target.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self._run(lambda session: [dict(row._mapping) for row in session.execute(stmt)])

    async def count(self, table: str, where: Optional[Mapping[str, Any]] = None) -> int:
        target = self._table(table)
        stmt = select(func.count()).select_from(target).where(*self._conditions(target, where))
        return await self._run(lambda session: int(session.execute(stmt).scalar_one()))

    async def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> list[Row]:
        target = self._table(table)
        values = self._values(target, patch)
        if not values:
            return []

        def work(session: Session) -> list[Row]:
            result = session.execute(update(target).where(target.c.id == record_id).values(**values))
            if result.rowcount == 0:
                return []
            return [self._fetch_by_id(session, target, record_id)]

        rows = await self._run(work)
        await self._publish(table, UPDATE, rows)
        return rows

    async def increment(
        self,
        table: str,
        record_id: str,
        column: str,
        delta: int,
        floor: int = 0,
        patch: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Row]:
        target = self._table(table)
        if column not in target.c:
            raise RemoteBackendError(f"Unknown column '{column}' on '{table}'")
        counter = target.c[column]
        # Single UPDATE so concurrent joiners cannot lose each other's increments
        new_value = case((counter + delta < floor, floor), else_=counter + delta)
        values = {**self._values(target, patch or {}), column: new_value}

        def work(session: Session) -> Optional[Row]:
            result = session.execute(update(target).where(target.c.id == record_id).values(**values))
            if result.rowcount == 0:
                return None
            return self._fetch_by_id(session, target, record_id)

        row = await self._run(work)
        if row is not None:
            await self._publish(table, UPDATE, [row])
        return row

    async def delete(self, table: str, where: Mapping[str, Any]) -> int:
        if not where:
            raise RemoteBackendError("Refusing to delete without a filter")
        target = self._table(table)
        conditions = self._conditions(target, where)

        def work(session: Session) -> tuple[list[Row], int]:
            doomed = [dict(row._mapping) for row in session.execute(select(target).where(*conditions))]
            result = session.execute(delete(target).where(*conditions))
            return doomed, result.rowcount

        doomed, deleted = await self._run(work)
        await self._publish(table, DELETE, doomed)
        return deleted

    def subscribe(
        self,
        table: str,
        where: Optional[Mapping[str, Any]],
        on_change: ChangeCallback,
    ) -> Callable[[], None]:
        self._ensure_online()
        if self.hub is None:
            raise RemoteUnavailableError("Realtime channel not configured")
        self._table(table)
        return self.hub.subscribe(table, on_change, where=where)

    # ----- object storage -----

    def _object_path(self, bucket: str, path: str) -> Path:
        if self.storage_root is None:
            raise RemoteUnavailableError("Object storage not configured")
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise RemoteBackendError(f"Invalid object path '{path}'")
        return self.storage_root / bucket / Path(*relative.parts)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_url_base}/{quote(bucket)}/{quote(path)}"

    async def upload(self, bucket: str, path: str, data: bytes) -> None:
        self._ensure_online()
        target = self._object_path(bucket, path)
        if target.exists():
            raise RemoteBackendError(f"Object '{bucket}/{path}' already exists")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise RemoteUnavailableError(f"Upload failed: {e}") from e
        logger.info(f"Uploaded {len(data)} bytes to {bucket}/{path}")
