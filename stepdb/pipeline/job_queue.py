from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from redis import Redis
from rq import Queue, Worker

from .engine import StepRecordParser
from .ingestor import DEFAULT_BATCH_SIZE
from .object_storage import S3ObjectStorage
from .repository import SqlAlchemyJobRepository
from .storage import StoragePaths
from .store import SqlAlchemyNamespacedStore
from .worker import PipelineWorker

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    database_url: str
    data_root: str
    batch_size: int = DEFAULT_BATCH_SIZE
    s3_endpoint_url: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_region: str = "us-east-1"
    redis_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        return cls(
            database_url=os.getenv("STEPDB_DATABASE_URL", "sqlite+pysqlite:///./data/stepdb.db"),
            data_root=os.getenv("STEPDB_DATA_ROOT", "./data"),
            batch_size=int(os.getenv("STEPDB_BATCH_SIZE", str(DEFAULT_BATCH_SIZE))),
            s3_endpoint_url=os.getenv("STEPDB_S3_ENDPOINT_URL") or None,
            s3_access_key=os.getenv("STEPDB_S3_ACCESS_KEY") or None,
            s3_secret_key=os.getenv("STEPDB_S3_SECRET_KEY") or None,
            s3_region=os.getenv("STEPDB_S3_REGION", "us-east-1"),
            redis_url=os.getenv("STEPDB_REDIS_URL") or None,
        )

    @property
    def object_storage_enabled(self) -> bool:
        return bool(self.s3_endpoint_url or self.s3_access_key)

    @property
    def queue_enabled(self) -> bool:
        return bool(self.redis_url)


def build_object_storage(config: WorkerConfig) -> Optional[S3ObjectStorage]:
    if not config.object_storage_enabled:
        return None
    return S3ObjectStorage.from_config(
        endpoint_url=config.s3_endpoint_url,
        access_key=config.s3_access_key,
        secret_key=config.s3_secret_key,
        region=config.s3_region,
    )


def build_worker(config: WorkerConfig, store: Optional[SqlAlchemyNamespacedStore] = None) -> PipelineWorker:
    paths = StoragePaths(Path(config.data_root))
    return PipelineWorker(
        store=store or SqlAlchemyNamespacedStore(config.database_url),
        parser=StepRecordParser(),
        object_storage=build_object_storage(config),
        paths=paths,
        batch_size=config.batch_size,
        repository=SqlAlchemyJobRepository(config.database_url),
    )


def run_pipeline_job(job_id: str, config: WorkerConfig) -> None:
    """
    RQ task entrypoint. Creates all required components and executes a pipeline job.
    """
    worker = build_worker(config)
    try:
        worker.run_job(job_id)
    finally:
        worker.store.close()


class RQJobQueue:
    """
    Pipeline jobs on a Redis queue. The API enqueues, `stepdb rq-worker`
    consumes. Workers rebuild their components from the WorkerConfig that
    travels with each job, so both sides must point at the same database.
    """

    def __init__(self, redis_url: str, queue_name: str = "stepdb-jobs", job_timeout: int = 3600):
        self.redis = Redis.from_url(redis_url)
        self.queue = Queue(queue_name, connection=self.redis, default_timeout=job_timeout)

    @classmethod
    def from_config(cls, config: WorkerConfig) -> Optional["RQJobQueue"]:
        if not config.queue_enabled:
            return None
        return cls(config.redis_url)

    def enqueue_job(self, job_id: str, config: WorkerConfig):
        """The RQ job id is the pipeline job id, so a job is queued at most once."""
        rq_job = self.queue.enqueue(
            run_pipeline_job,
            job_id,
            config,
            job_id=job_id,
            description=f"stepdb pipeline job {job_id}",
        )
        logger.info("Queued pipeline job %s on %s", job_id, self.queue.name)
        return rq_job

    def work(self) -> None:
        logger.info("Consuming pipeline jobs from %s", self.queue.name)
        Worker([self.queue], connection=self.redis).work(with_scheduler=True)
