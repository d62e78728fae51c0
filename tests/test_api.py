import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from api.app import create_app
from api.dependencies import get_config, get_job_queue, get_repo, get_worker
from stepdb.pipeline import (
    InMemoryJobRepository,
    PipelineWorker,
    S3ObjectStorage,
    SqlAlchemyNamespacedStore,
    StepRecordParser,
    StoragePaths,
    WorkerConfig,
)

from conftest import SAMPLE_STEP, FakeS3Client


class RecordingQueue:
    def __init__(self):
        self.enqueued = []

    def enqueue_job(self, job_id, config):
        self.enqueued.append((job_id, config))


class ForbiddenS3Client(FakeS3Client):
    def head_bucket(self, Bucket):
        raise ClientError({"Error": {"Code": "403", "Message": "Forbidden"}}, "HeadBucket")


@pytest.fixture
def worker(tmp_path):
    store = SqlAlchemyNamespacedStore.open(tmp_path / "api.db")
    worker = PipelineWorker(
        store=store,
        parser=StepRecordParser(),
        paths=StoragePaths(tmp_path / "data"),
        repository=InMemoryJobRepository(),
    )
    yield worker
    store.close()


@pytest.fixture
def app(worker, tmp_path):
    app = create_app()
    config = WorkerConfig(database_url=f"sqlite+pysqlite:///{tmp_path / 'api.db'}", data_root=str(tmp_path / "data"))
    app.dependency_overrides[get_config] = lambda: config
    app.dependency_overrides[get_worker] = lambda: worker
    app.dependency_overrides[get_repo] = lambda: worker.repo
    app.dependency_overrides[get_job_queue] = lambda: None
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_upload_runs_ingest_job(client):
    response = client.post("/documents/upload", files={"file": ("part-7.stp", SAMPLE_STEP)})
    assert response.status_code == 200
    body = response.json()
    assert body["namespace"] == "part-7"

    job = client.get(f"/jobs/{body['job_id']}").json()
    assert job["state"] == "completed"
    assert job["records_written"] == 5

    record = client.get("/documents/part-7/records/10").json()
    assert record == {"key": "part-7_10", "value": "PRODUCT('part','part=1','',(#11))"}
    assert client.get("/documents").json() == [{"namespace": "part-7", "records": 5}]


def test_record_crud_and_export(client):
    assert client.get("/documents/DOC/records/1").status_code == 404
    assert client.get("/documents/DOC/export").status_code == 404

    assert client.put("/documents/DOC/records/2", json={"definition": "B"}).status_code == 200
    assert client.put("/documents/DOC/records/1", json={"definition": "A"}).status_code == 200
    assert client.put("/documents/DOC/records/3", json={"definition": ""}).status_code == 400

    export = client.get("/documents/DOC/export")
    assert export.status_code == 200
    assert export.content == b"#1=A;\n#2=B;\n"

    assert client.delete("/documents/DOC/records/1").status_code == 200
    assert client.get("/documents/DOC/records/1").status_code == 404


def test_publish_requires_object_storage(client):
    assert client.post("/documents/DOC/publish").status_code == 503


def test_publish_to_object_storage(client, worker, fake_s3):
    worker.object_storage = S3ObjectStorage(fake_s3)
    client.put("/documents/DOC/records/1", json={"definition": "A"})

    response = client.post("/documents/DOC/publish")
    assert response.status_code == 200
    assert response.json() == {"bucket": "doc", "object_name": "DOC_v1.stp", "records_written": 1}
    assert fake_s3.buckets["doc"]["DOC_v1.stp"] == b"#1=A;\n"


def test_unknown_job(client):
    assert client.get("/jobs/nope").status_code == 404


def test_upload_is_queued_when_redis_is_configured(app, client):
    queue = RecordingQueue()
    app.dependency_overrides[get_job_queue] = lambda: queue

    response = client.post("/documents/upload", files={"file": ("part-7.stp", SAMPLE_STEP)})
    assert response.status_code == 200
    job_id = response.json()["job_id"]

    assert [queued_id for queued_id, _ in queue.enqueued] == [job_id]
    assert isinstance(queue.enqueued[0][1], WorkerConfig)
    job = client.get(f"/jobs/{job_id}").json()
    assert job["state"] == "queued"
    assert client.get("/documents/part-7/records/10").status_code == 404


def test_put_rejects_records_that_cannot_be_exported(client):
    assert client.put("/documents/DOC/records/abc", json={"definition": "A"}).status_code == 400
    assert client.put("/documents/DOC/records/1_2", json={"definition": "A"}).status_code == 400
    assert client.put("/documents/DOC/records/1", json={"definition": "A\nB"}).status_code == 400
    assert client.put("/documents/DOC/records/1", json={"definition": "A\r"}).status_code == 400
    assert client.get("/documents/DOC/export").status_code == 404


def test_publish_maps_object_storage_failures_to_bad_gateway(client, worker):
    worker.object_storage = S3ObjectStorage(ForbiddenS3Client())
    client.put("/documents/DOC/records/1", json={"definition": "A"})

    response = client.post("/documents/DOC/publish")
    assert response.status_code == 502
    assert "Forbidden" in response.json()["detail"]
