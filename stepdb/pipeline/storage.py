from __future__ import annotations

import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Protocol

logger = logging.getLogger(__name__)


@dataclass
class StoragePaths:
    root: Path

    def database_path(self) -> Path:
        return self.root / "stepdb.db"

    def uploads_dir(self) -> Path:
        return self.root / "uploads"

    def exports_dir(self) -> Path:
        return self.root / "exports"

    def upload_path(self, filename: str) -> Path:
        return self.uploads_dir() / Path(filename).name

    def export_path(self, prefix: str) -> Path:
        return self.exports_dir() / f"{prefix}.stp"

    def ensure_base_dirs(self) -> None:
        self.uploads_dir().mkdir(parents=True, exist_ok=True)
        self.exports_dir().mkdir(parents=True, exist_ok=True)


class ExportSink(Protocol):
    def describe(self) -> str:
        ...

    def open_stream(self):
        """Context manager yielding a binary writer; committed only on clean exit."""
        ...


@contextmanager
def atomic_write(path: Path) -> Iterator[BinaryIO]:
    """
    Write to a temp file next to `path` and rename it into place on success.
    The temp file is removed if the block raises.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    committed = False
    try:
        with os.fdopen(fd, "wb") as handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
        committed = True
    finally:
        if not committed:
            tmp_path.unlink(missing_ok=True)


class LocalFileSink:
    def __init__(self, path: Path):
        self.path = Path(path)

    def describe(self) -> str:
        return str(self.path)

    @contextmanager
    def open_stream(self) -> Iterator[BinaryIO]:
        with atomic_write(self.path) as handle:
            yield handle
        logger.debug("Finalized export file %s", self.path)


class ObjectSink:
    """
    Spools the exported stream locally and uploads the completed bytes under
    `object_name` once the export finished cleanly.
    """

    spool_size = 8 * 1024 * 1024

    def __init__(self, object_storage, bucket: str, object_name: str):
        self.object_storage = object_storage
        self.bucket = bucket
        self.object_name = object_name

    def describe(self) -> str:
        return f"s3://{self.bucket}/{self.object_name}"

    @contextmanager
    def open_stream(self) -> Iterator[BinaryIO]:
        with tempfile.SpooledTemporaryFile(max_size=self.spool_size) as spool:
            yield spool
            spool.seek(0)
            self.object_storage.upload_fileobj(self.bucket, self.object_name, spool)
