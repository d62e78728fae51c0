from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from stepdb.pipeline import (
    JobRepository,
    NamespacedStore,
    PipelineWorker,
    RQJobQueue,
    S3ObjectStorage,
    SqlAlchemyJobRepository,
    SqlAlchemyNamespacedStore,
    StepRecordParser,
    StoragePaths,
    WorkerConfig,
)
from stepdb.pipeline.job_queue import build_object_storage


@lru_cache(maxsize=1)
def get_config() -> WorkerConfig:
    return WorkerConfig.from_env()


@lru_cache(maxsize=1)
def get_store() -> NamespacedStore:
    return SqlAlchemyNamespacedStore(get_config().database_url)


@lru_cache(maxsize=1)
def get_repo() -> JobRepository:
    return SqlAlchemyJobRepository(get_config().database_url)


@lru_cache(maxsize=1)
def get_paths() -> StoragePaths:
    paths = StoragePaths(Path(get_config().data_root))
    paths.ensure_base_dirs()
    return paths


@lru_cache(maxsize=1)
def get_object_storage() -> Optional[S3ObjectStorage]:
    return build_object_storage(get_config())


@lru_cache(maxsize=1)
def get_job_queue() -> Optional[RQJobQueue]:
    return RQJobQueue.from_config(get_config())


def get_worker() -> PipelineWorker:
    return PipelineWorker(
        store=get_store(),
        parser=StepRecordParser(),
        object_storage=get_object_storage(),
        paths=get_paths(),
        batch_size=get_config().batch_size,
        repository=get_repo(),
    )
