from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel

from stepdb.pipeline import (
    ExportError,
    JobKind,
    PipelineJobRecord,
    PipelineWorker,
    RQJobQueue,
    StepDBError,
    WorkerConfig,
    compose_key,
    count_namespaces,
    namespace_from_path,
)

from api.dependencies import get_config, get_job_queue, get_worker

router = APIRouter(prefix="/documents", tags=["documents"])


class DefinitionUpdate(BaseModel):
    definition: str


@router.get("")
def list_documents(worker: PipelineWorker = Depends(get_worker)):
    counts = count_namespaces(worker.store)
    return [{"namespace": name, "records": count} for name, count in sorted(counts.items())]


@router.post("/upload")
async def upload_document(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    namespace: Optional[str] = Form(None),
    worker: PipelineWorker = Depends(get_worker),
    queue: Optional[RQJobQueue] = Depends(get_job_queue),
    config: WorkerConfig = Depends(get_config),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="Uploaded file has no name")
    payload = await file.read()
    if not payload:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    namespace = namespace or namespace_from_path(file.filename)
    worker.paths.ensure_base_dirs()
    source_path = worker.paths.upload_path(file.filename)
    source_path.write_bytes(payload)

    job_id = f"ingest-{namespace}-{uuid.uuid4().hex[:8]}"
    job = PipelineJobRecord(
        id=job_id,
        kind=JobKind.INGEST,
        namespace=namespace,
        config_json={"source_path": str(source_path)},
    )
    worker.repo.save_job(job)

    if queue is not None:
        queue.enqueue_job(job_id, config)
    else:
        background_tasks.add_task(_run_job, worker, job_id)
    return {"namespace": namespace, "job_id": job_id}


def _run_job(worker: PipelineWorker, job_id: str) -> None:
    worker.run_job(job_id)


@router.get("/{namespace}/records/{record_id}")
def get_record(namespace: str, record_id: str, worker: PipelineWorker = Depends(get_worker)):
    key = compose_key(namespace, record_id)
    value = worker.store.get(key)
    if value is None:
        raise HTTPException(status_code=404, detail=f"Record not found: {namespace}_{record_id}")
    return {"key": key.decode("utf-8"), "value": value.decode("utf-8", "replace")}


@router.put("/{namespace}/records/{record_id}")
def put_record(
    namespace: str,
    record_id: str,
    update: DefinitionUpdate,
    worker: PipelineWorker = Depends(get_worker),
):
    if not record_id.isdigit() or not record_id.isascii():
        raise HTTPException(status_code=400, detail=f"Record id must be numeric: {record_id}")
    if not update.definition:
        raise HTTPException(status_code=400, detail="Definition must not be empty")
    if "\n" in update.definition or "\r" in update.definition:
        raise HTTPException(status_code=400, detail="Definition must fit on one line")
    key = compose_key(namespace, record_id)
    worker.store.put(key, update.definition.encode("utf-8"))
    return {"key": key.decode("utf-8"), "value": update.definition}


@router.delete("/{namespace}/records/{record_id}")
def delete_record(namespace: str, record_id: str, worker: PipelineWorker = Depends(get_worker)):
    worker.store.delete(compose_key(namespace, record_id))
    return {"status": "deleted", "key": f"{namespace}_{record_id}"}


@router.get("/{namespace}/export")
def export_document(namespace: str, worker: PipelineWorker = Depends(get_worker)):
    try:
        result = worker.export_file(namespace)
    except ExportError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    if result.records_written == 0:
        raise HTTPException(status_code=404, detail=f"No records stored for {namespace}")
    return FileResponse(result.destination, media_type="application/step", filename=f"{namespace}.stp")


@router.post("/{namespace}/publish")
def publish_document(
    namespace: str,
    bucket: Optional[str] = None,
    worker: PipelineWorker = Depends(get_worker),
):
    if worker.object_storage is None:
        raise HTTPException(status_code=503, detail="Object storage is not configured")
    try:
        result = worker.publish(namespace, bucket)
    except StepDBError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    bucket_name, _, object_name = result.destination[len("s3://"):].partition("/")
    return {
        "bucket": bucket_name,
        "object_name": object_name,
        "records_written": result.records_written,
    }
