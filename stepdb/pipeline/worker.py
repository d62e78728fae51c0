from __future__ import annotations

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Union

from .engine import RecordParser
from .errors import JobNotFoundError
from .exporter import PrefixExporter
from .ingestor import DEFAULT_BATCH_SIZE, DocumentIngestor
from .models import (
    ExportResult,
    IngestResult,
    JobKind,
    JobPhase,
    JobState,
    Record,
    namespace_from_path,
)
from .object_storage import S3ObjectStorage, bucket_name_for
from .repository import JobRepository
from .storage import LocalFileSink, ObjectSink, StoragePaths
from .store import NamespacedStore

logger = logging.getLogger(__name__)


class PipelineWorker:
    """
    Drives documents through parse -> store and store -> export/publish.
    The worker holds no document state of its own; ingestion and export only
    share what is persisted in the store. Job bookkeeping goes through the
    optional repository.
    """

    def __init__(
        self,
        store: NamespacedStore,
        parser: RecordParser,
        object_storage: Optional[S3ObjectStorage] = None,
        paths: Optional[StoragePaths] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        repository: Optional[JobRepository] = None,
    ):
        self.store = store
        self.parser = parser
        self.object_storage = object_storage
        self.paths = paths or StoragePaths(Path("./data"))
        self.batch_size = batch_size
        self.repo = repository
        self.exporter = PrefixExporter(store)

    # region Ingestion
    def ingest_records(self, namespace: str, records: Iterable[Record], job_id: Optional[str] = None) -> IngestResult:
        on_batch = None
        if job_id and self.repo:
            def on_batch(batches: int, records_committed: int) -> None:
                self.repo.update_job(job_id, records_written=records_committed)

        ingestor = DocumentIngestor(self.store, batch_size=self.batch_size, on_batch=on_batch)
        return ingestor.ingest(namespace, records)

    def ingest_file(self, path: Union[str, Path], namespace: Optional[str] = None) -> IngestResult:
        namespace = namespace or namespace_from_path(path)
        start = time.perf_counter()
        records = self.parser.parse(path)
        logger.info("Parsed %d records from %s", len(records), path)
        result = self.ingest_records(namespace, records)
        logger.info("Stored %s in %.2fs", namespace, time.perf_counter() - start)
        return result

    # endregion

    # region Export
    def export_file(self, prefix: str, path: Optional[Union[str, Path]] = None) -> ExportResult:
        target = Path(path) if path else self.paths.export_path(prefix)
        return self.exporter.export(prefix, LocalFileSink(target))

    def _require_object_storage(self) -> S3ObjectStorage:
        if self.object_storage is None:
            raise RuntimeError("Object storage is not configured")
        return self.object_storage

    def next_object_name(self, bucket: str, prefix: str) -> str:
        """`<prefix>_v<N+1>.stp`, N being the versions of `prefix` already in `bucket`."""
        existing = self._require_object_storage().list_objects(bucket, prefix=f"{prefix}_v")
        return f"{prefix}_v{len(existing) + 1}.stp"

    def publish(self, prefix: str, bucket: Optional[str] = None) -> ExportResult:
        storage = self._require_object_storage()
        bucket = bucket or bucket_name_for(prefix)
        storage.ensure_bucket(bucket)
        object_name = self.next_object_name(bucket, prefix)
        return self.exporter.export(prefix, ObjectSink(storage, bucket, object_name))

    def download(self, bucket: str, object_name: str, path: Union[str, Path]) -> Path:
        return self._require_object_storage().download_file(bucket, object_name, Path(path))

    # endregion

    # region Jobs
    def run_job(self, job_id: str) -> None:
        if self.repo is None:
            raise RuntimeError("run_job requires a job repository")
        job = self.repo.get_job(job_id)
        if not job:
            raise JobNotFoundError(f"Pipeline job {job_id} not found")

        config = job.config_json or {}
        try:
            self.repo.update_job(job_id, state=JobState.RUNNING, started_at=datetime.utcnow())
            if job.kind == JobKind.INGEST:
                self.repo.update_job(job_id, phase=JobPhase.PARSE)
                records = self.parser.parse(config["source_path"])
                self.repo.update_job(job_id, phase=JobPhase.STORE)
                result = self.ingest_records(job.namespace, records, job_id=job_id)
                written, destination = result.records_written, None
            elif job.kind == JobKind.EXPORT:
                self.repo.update_job(job_id, phase=JobPhase.EXPORT)
                export = self.export_file(job.namespace, config.get("output_path"))
                written, destination = export.records_written, export.destination
            elif job.kind == JobKind.PUBLISH:
                self.repo.update_job(job_id, phase=JobPhase.UPLOAD)
                export = self.publish(job.namespace, config.get("bucket"))
                written, destination = export.records_written, export.destination
            else:
                raise ValueError(f"Unsupported job kind: {job.kind}")

            self.repo.update_job(
                job_id,
                state=JobState.COMPLETED,
                phase=JobPhase.DONE,
                records_written=written,
                destination=destination,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Pipeline job %s failed: %s", job_id, exc)
            self.repo.update_job(job_id, state=JobState.FAILED, error_message=str(exc))
            raise

    # endregion
