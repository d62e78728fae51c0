from __future__ import annotations

import bisect
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

from sqlalchemy import Column, LargeBinary, create_engine, delete, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .errors import StoreError
from .locking import ReadWriteLock
from .models import KEY_SEPARATOR, StorageEntry

logger = logging.getLogger(__name__)

Base = declarative_base()


class EntryModel(Base):
    __tablename__ = "kv_entries"
    key = Column(LargeBinary, primary_key=True)
    value = Column(LargeBinary, nullable=False)


def prefix_upper_bound(prefix: bytes) -> Optional[bytes]:
    """
    Smallest key greater than every key starting with `prefix`, or None when
    the range is unbounded (empty prefix or all 0xFF bytes).
    """
    limit = bytearray(prefix)
    while limit:
        if limit[-1] < 0xFF:
            limit[-1] += 1
            return bytes(limit)
        limit.pop()
    return None


class NamespacedStore:
    """
    Ordered key-value store guarded by one reader/writer lock per instance.
    put/delete/write_batch take the lock exclusively; get and prefix
    iteration share it. Nothing is retried here.
    """

    def __init__(self):
        self._lock = ReadWriteLock()
        self._closed = False

    def put(self, key: bytes, value: bytes) -> None:
        raise NotImplementedError

    def get(self, key: bytes) -> Optional[bytes]:
        raise NotImplementedError

    def delete(self, key: bytes) -> None:
        raise NotImplementedError

    def write_batch(self, entries: Iterable[StorageEntry]) -> None:
        raise NotImplementedError

    def iterate_prefix(self, prefix: bytes):
        """
        Context manager yielding a lazy iterator of StorageEntry in key order.
        The iterator must be consumed inside the `with` block; the read lock is
        held until the block exits.
        """
        raise NotImplementedError

    def count_prefix(self, prefix: bytes) -> int:
        with self.iterate_prefix(prefix) as entries:
            return sum(1 for _ in entries)

    def close(self) -> None:
        with self._lock.write():
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreError("store is closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class InMemoryNamespacedStore(NamespacedStore):
    """
    Dict-backed store with a sorted key index. Used for tests and local runs.
    """

    def __init__(self):
        super().__init__()
        self.data: Dict[bytes, bytes] = {}
        self._keys: List[bytes] = []

    def _set(self, key: bytes, value: bytes) -> None:
        if key not in self.data:
            bisect.insort(self._keys, key)
        self.data[key] = value

    def put(self, key: bytes, value: bytes) -> None:
        with self._lock.write():
            self._ensure_open()
            self._set(bytes(key), bytes(value))

    def get(self, key: bytes) -> Optional[bytes]:
        with self._lock.read():
            self._ensure_open()
            return self.data.get(bytes(key))

    def delete(self, key: bytes) -> None:
        with self._lock.write():
            self._ensure_open()
            key = bytes(key)
            if key in self.data:
                del self.data[key]
                self._keys.pop(bisect.bisect_left(self._keys, key))

    def write_batch(self, entries: Iterable[StorageEntry]) -> None:
        # Nothing is mutated until every entry has converted.
        pairs = [(bytes(entry.key), bytes(entry.value)) for entry in entries]
        with self._lock.write():
            self._ensure_open()
            for key, value in pairs:
                self._set(key, value)

    @contextmanager
    def iterate_prefix(self, prefix: bytes) -> Iterator[Iterator[StorageEntry]]:
        with self._lock.read():
            self._ensure_open()
            start = bisect.bisect_left(self._keys, prefix)
            upper = prefix_upper_bound(prefix)
            end = len(self._keys) if upper is None else bisect.bisect_left(self._keys, upper)
            yield (StorageEntry(key=k, value=self.data[k]) for k in self._keys[start:end])


class SqlAlchemyNamespacedStore(NamespacedStore):
    """
    SQL-backed store using SQLAlchemy. Keys are BLOB primary keys, so range
    scans come back in byte-lexicographic order on SQLite and Postgres.
    """

    scan_chunk_size = 500

    def __init__(self, database_url: str):
        super().__init__()
        self.database_url = database_url
        try:
            url = make_url(database_url)
            if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(database_url, future=True)
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to open store at {database_url}: {exc}") from exc
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)
        logger.debug("Opened key-value store at %s", database_url)

    @classmethod
    def open(cls, path: Union[str, Path]) -> "SqlAlchemyNamespacedStore":
        return cls(f"sqlite+pysqlite:///{path}")

    def _session(self) -> Session:
        return self.SessionLocal()

    def put(self, key: bytes, value: bytes) -> None:
        with self._lock.write():
            self._ensure_open()
            try:
                with self._session() as session:
                    session.merge(EntryModel(key=bytes(key), value=bytes(value)))
                    session.commit()
            except SQLAlchemyError as exc:
                raise StoreError(f"put({key!r}) failed: {exc}") from exc

    def get(self, key: bytes) -> Optional[bytes]:
        with self._lock.read():
            self._ensure_open()
            try:
                with self._session() as session:
                    model = session.get(EntryModel, bytes(key))
                    return bytes(model.value) if model else None
            except SQLAlchemyError as exc:
                raise StoreError(f"get({key!r}) failed: {exc}") from exc

    def delete(self, key: bytes) -> None:
        with self._lock.write():
            self._ensure_open()
            try:
                with self._session() as session:
                    session.execute(delete(EntryModel).where(EntryModel.key == bytes(key)))
                    session.commit()
            except SQLAlchemyError as exc:
                raise StoreError(f"delete({key!r}) failed: {exc}") from exc

    def write_batch(self, entries: Iterable[StorageEntry]) -> None:
        pairs = [(bytes(entry.key), bytes(entry.value)) for entry in entries]
        with self._lock.write():
            self._ensure_open()
            try:
                with self._session() as session, session.begin():
                    for key, value in pairs:
                        session.merge(EntryModel(key=key, value=value))
            except SQLAlchemyError as exc:
                first = pairs[0][0] if pairs else b""
                raise StoreError(f"write_batch of {len(pairs)} entries starting at {first!r} failed: {exc}") from exc

    def _prefix_query(self, columns, prefix: bytes):
        stmt = select(*columns).select_from(EntryModel).where(EntryModel.key >= prefix)
        upper = prefix_upper_bound(prefix)
        if upper is not None:
            stmt = stmt.where(EntryModel.key < upper)
        return stmt

    @contextmanager
    def iterate_prefix(self, prefix: bytes) -> Iterator[Iterator[StorageEntry]]:
        with self._lock.read():
            self._ensure_open()
            session = self._session()
            try:
                stmt = self._prefix_query((EntryModel.key, EntryModel.value), prefix).order_by(EntryModel.key)
                result = session.execute(stmt.execution_options(yield_per=self.scan_chunk_size))
                yield (StorageEntry(key=bytes(row.key), value=bytes(row.value)) for row in result)
            except SQLAlchemyError as exc:
                raise StoreError(f"iterate_prefix({prefix!r}) failed: {exc}") from exc
            finally:
                session.close()

    def count_prefix(self, prefix: bytes) -> int:
        with self._lock.read():
            self._ensure_open()
            try:
                with self._session() as session:
                    return session.execute(self._prefix_query((func.count(),), prefix)).scalar_one()
            except SQLAlchemyError as exc:
                raise StoreError(f"count_prefix({prefix!r}) failed: {exc}") from exc

    def close(self) -> None:
        with self._lock.write():
            if not self._closed:
                self.engine.dispose()
                self._closed = True


def count_namespaces(store: NamespacedStore) -> Dict[str, int]:
    """
    Entries per namespace. Record ids are numeric, so the namespace is
    everything before the last separator.
    """
    counts: Dict[str, int] = {}
    with store.iterate_prefix(b"") as entries:
        for entry in entries:
            namespace, sep, _ = entry.key.rpartition(KEY_SEPARATOR)
            name = namespace.decode("utf-8", "replace") if sep else ""
            counts[name] = counts.get(name, 0) + 1
    return counts
