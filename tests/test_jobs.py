from datetime import datetime

import pytest

from stepdb.pipeline import (
    InMemoryJobRepository,
    JobKind,
    JobNotFoundError,
    JobPhase,
    JobState,
    PipelineJobRecord,
    PipelineWorker,
    SqlAlchemyJobRepository,
    SqlAlchemyNamespacedStore,
    StepRecordParser,
    StoragePaths,
    WorkerConfig,
    run_pipeline_job,
)


def make_worker(store, repo, tmp_path):
    return PipelineWorker(
        store=store,
        parser=StepRecordParser(),
        paths=StoragePaths(tmp_path / "data"),
        batch_size=2,
        repository=repo,
    )


def test_sqlalchemy_job_repository_roundtrip(tmp_path):
    repo = SqlAlchemyJobRepository(f"sqlite+pysqlite:///{tmp_path / 'jobs.db'}")
    job = PipelineJobRecord(
        id="job-1",
        kind=JobKind.INGEST,
        namespace="DOC",
        config_json={"source_path": "/tmp/DOC.stp"},
    )
    repo.save_job(job)
    repo.update_job(job.id, state=JobState.RUNNING, phase=JobPhase.STORE, records_written=4, started_at=datetime.utcnow())

    fetched = repo.get_job(job.id)
    assert fetched and fetched.state == JobState.RUNNING and fetched.phase == JobPhase.STORE
    assert fetched.records_written == 4
    assert fetched.config_json == {"source_path": "/tmp/DOC.stp"}
    assert [j.id for j in repo.list_jobs(namespace="DOC")] == ["job-1"]
    assert repo.list_jobs(namespace="OTHER") == []
    assert repo.get_job("missing") is None


def test_ingest_job_completes(store, sample_step_file, tmp_path):
    repo = InMemoryJobRepository()
    worker = make_worker(store, repo, tmp_path)
    repo.save_job(
        PipelineJobRecord(
            id="job-ingest",
            kind=JobKind.INGEST,
            namespace="1000410-28L",
            config_json={"source_path": str(sample_step_file)},
        )
    )

    worker.run_job("job-ingest")

    job = repo.get_job("job-ingest")
    assert job.state == JobState.COMPLETED
    assert job.phase == JobPhase.DONE
    assert job.records_written == 5
    assert job.started_at is not None
    assert store.get(b"1000410-28L_12") == b"APPLICATION_CONTEXT('config; control')"


def test_export_job_records_destination(store, tmp_path):
    repo = InMemoryJobRepository()
    worker = make_worker(store, repo, tmp_path)
    store.put(b"DOC_1", b"A")
    repo.save_job(PipelineJobRecord(id="job-export", kind=JobKind.EXPORT, namespace="DOC"))

    worker.run_job("job-export")

    job = repo.get_job("job-export")
    assert job.state == JobState.COMPLETED
    assert job.destination == str(tmp_path / "data" / "exports" / "DOC.stp")
    assert (tmp_path / "data" / "exports" / "DOC.stp").read_bytes() == b"#1=A;\n"


def test_failed_job_is_marked_and_reraised(store, tmp_path):
    repo = InMemoryJobRepository()
    worker = make_worker(store, repo, tmp_path)
    repo.save_job(
        PipelineJobRecord(
            id="job-bad",
            kind=JobKind.INGEST,
            namespace="DOC",
            config_json={"source_path": str(tmp_path / "missing.stp")},
        )
    )

    with pytest.raises(FileNotFoundError):
        worker.run_job("job-bad")

    job = repo.get_job("job-bad")
    assert job.state == JobState.FAILED
    assert job.phase == JobPhase.PARSE
    assert "missing.stp" in job.error_message


def test_unknown_job(store, tmp_path):
    worker = make_worker(store, InMemoryJobRepository(), tmp_path)
    with pytest.raises(JobNotFoundError):
        worker.run_job("nope")


def test_run_pipeline_job_builds_components_from_config(sample_step_file, tmp_path):
    database_url = f"sqlite+pysqlite:///{tmp_path / 'queue' / 'stepdb.db'}"
    config = WorkerConfig(database_url=database_url, data_root=str(tmp_path / "data"), batch_size=2)
    store = SqlAlchemyNamespacedStore(database_url)
    store.close()
    repo = SqlAlchemyJobRepository(database_url)
    repo.save_job(
        PipelineJobRecord(
            id="job-queued",
            kind=JobKind.INGEST,
            namespace="DOC",
            config_json={"source_path": str(sample_step_file)},
        )
    )

    run_pipeline_job("job-queued", config)

    job = repo.get_job("job-queued")
    assert job.state == JobState.COMPLETED
    assert job.records_written == 5
    with SqlAlchemyNamespacedStore(database_url) as store:
        assert store.get(b"DOC_10") == b"PRODUCT('part','part=1','',(#11))"
