from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

KEY_SEPARATOR = b"_"


class JobKind(str, Enum):
    INGEST = "ingest"
    EXPORT = "export"
    PUBLISH = "publish"


class JobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobPhase(str, Enum):
    QUEUED = "queued"
    PARSE = "parse"
    STORE = "store"
    EXPORT = "export"
    UPLOAD = "upload"
    DONE = "done"


@dataclass(frozen=True)
class Record:
    """One `#<id>=<definition>;` entity line of a STEP document."""

    id: str
    definition: bytes


@dataclass(frozen=True)
class StorageEntry:
    key: bytes
    value: bytes


@dataclass
class IngestResult:
    namespace: str
    records_written: int
    batches_committed: int


@dataclass
class ExportResult:
    prefix: str
    records_written: int
    destination: str


@dataclass
class PipelineJobRecord:
    id: str
    kind: JobKind
    namespace: str
    state: JobState = JobState.QUEUED
    phase: JobPhase = JobPhase.QUEUED
    records_written: int = 0
    destination: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=datetime.utcnow)
    config_json: Dict[str, Any] = field(default_factory=dict)


def encode_namespace(namespace: str) -> bytes:
    return namespace.encode("utf-8")


def compose_key(namespace: str, record_id: str) -> bytes:
    return encode_namespace(namespace) + KEY_SEPARATOR + record_id.encode("utf-8")


def namespace_from_path(path: Union[str, Path]) -> str:
    """Document namespace: the file name without its directory and extension."""
    return Path(path).stem
