from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from stepdb.pipeline import JobRepository

from api.dependencies import get_repo

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("/{job_id}")
def get_job(job_id: str, repo: JobRepository = Depends(get_repo)):
    job = repo.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return {
        "id": job.id,
        "kind": job.kind,
        "namespace": job.namespace,
        "state": job.state,
        "phase": job.phase,
        "records_written": job.records_written,
        "destination": job.destination,
        "error_message": job.error_message,
    }
