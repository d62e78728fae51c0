"""
Pipeline subsystem exports.
"""

from .engine import RecordParser, StepRecordParser
from .errors import (
    ExportError,
    JobNotFoundError,
    ObjectStorageError,
    PartialIngestError,
    StepDBError,
    StoreError,
)
from .exporter import PrefixExporter
from .ingestor import DEFAULT_BATCH_SIZE, DocumentIngestor
from .job_queue import RQJobQueue, WorkerConfig, build_worker, run_pipeline_job
from .models import (
    ExportResult,
    IngestResult,
    JobKind,
    JobPhase,
    JobState,
    PipelineJobRecord,
    Record,
    StorageEntry,
    compose_key,
    namespace_from_path,
)
from .object_storage import S3ObjectStorage, bucket_name_for
from .repository import InMemoryJobRepository, JobRepository, SqlAlchemyJobRepository
from .storage import LocalFileSink, ObjectSink, StoragePaths
from .store import InMemoryNamespacedStore, NamespacedStore, SqlAlchemyNamespacedStore, count_namespaces
from .worker import PipelineWorker

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DocumentIngestor",
    "ExportError",
    "ExportResult",
    "InMemoryJobRepository",
    "InMemoryNamespacedStore",
    "IngestResult",
    "JobKind",
    "JobNotFoundError",
    "JobPhase",
    "JobRepository",
    "JobState",
    "LocalFileSink",
    "NamespacedStore",
    "ObjectSink",
    "ObjectStorageError",
    "PartialIngestError",
    "PipelineJobRecord",
    "PipelineWorker",
    "PrefixExporter",
    "RQJobQueue",
    "Record",
    "RecordParser",
    "S3ObjectStorage",
    "SqlAlchemyJobRepository",
    "SqlAlchemyNamespacedStore",
    "StepDBError",
    "StepRecordParser",
    "StorageEntry",
    "StoragePaths",
    "StoreError",
    "WorkerConfig",
    "bucket_name_for",
    "build_worker",
    "compose_key",
    "count_namespaces",
    "namespace_from_path",
    "run_pipeline_job",
]
