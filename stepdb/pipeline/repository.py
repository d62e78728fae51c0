from __future__ import annotations

import json
from copy import deepcopy
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import Column, DateTime, Enum, Integer, String, create_engine, select, update
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .models import JobKind, JobPhase, JobState, PipelineJobRecord

Base = declarative_base()


class PipelineJobModel(Base):
    __tablename__ = "pipeline_jobs"
    id = Column(String, primary_key=True)
    kind = Column(Enum(JobKind))
    namespace = Column(String, index=True)
    state = Column(Enum(JobState))
    phase = Column(Enum(JobPhase))
    records_written = Column(Integer)
    destination = Column(String)
    error_message = Column(String)
    started_at = Column(DateTime)
    updated_at = Column(DateTime)
    config_json = Column(String)


class JobRepository:
    """
    Persistence for pipeline job bookkeeping (state, phase, progress).
    """

    def get_job(self, job_id: str) -> Optional[PipelineJobRecord]:
        raise NotImplementedError

    def save_job(self, job: PipelineJobRecord) -> None:
        raise NotImplementedError

    def update_job(
        self,
        job_id: str,
        state: Optional[JobState] = None,
        phase: Optional[JobPhase] = None,
        records_written: Optional[int] = None,
        destination: Optional[str] = None,
        error_message: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        raise NotImplementedError

    def list_jobs(self, namespace: Optional[str] = None) -> List[PipelineJobRecord]:
        raise NotImplementedError


def _changes(**kwargs) -> Dict[str, object]:
    values = {k: v for k, v in kwargs.items() if v is not None}
    values["updated_at"] = datetime.utcnow()
    return values


class InMemoryJobRepository(JobRepository):
    """
    In-memory job store for local runs and tests. Keeps copies of records to
    avoid cross-mutation between calls.
    """

    def __init__(self):
        self.jobs: Dict[str, PipelineJobRecord] = {}

    def _clone(self, obj):
        return deepcopy(obj)

    def get_job(self, job_id: str) -> Optional[PipelineJobRecord]:
        job = self.jobs.get(job_id)
        return self._clone(job) if job else None

    def save_job(self, job: PipelineJobRecord) -> None:
        self.jobs[job.id] = self._clone(job)

    def update_job(
        self,
        job_id: str,
        state: Optional[JobState] = None,
        phase: Optional[JobPhase] = None,
        records_written: Optional[int] = None,
        destination: Optional[str] = None,
        error_message: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        job = self.jobs.get(job_id)
        if not job:
            return
        values = _changes(
            state=state,
            phase=phase,
            records_written=records_written,
            destination=destination,
            error_message=error_message,
            started_at=started_at,
        )
        for name, value in values.items():
            setattr(job, name, value)

    def list_jobs(self, namespace: Optional[str] = None) -> List[PipelineJobRecord]:
        return [
            self._clone(job)
            for job in self.jobs.values()
            if namespace is None or job.namespace == namespace
        ]


class SqlAlchemyJobRepository(JobRepository):
    """
    SQL-backed job store using SQLAlchemy. Works with SQLite/Postgres URLs and
    can share the database of the key-value store.
    """

    def __init__(self, database_url: str):
        self.engine = create_engine(database_url, future=True)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def _session(self) -> Session:
        return self.SessionLocal()

    def _to_record(self, model: PipelineJobModel) -> PipelineJobRecord:
        return PipelineJobRecord(
            id=model.id,
            kind=model.kind,
            namespace=model.namespace,
            state=model.state,
            phase=model.phase,
            records_written=int(model.records_written or 0),
            destination=model.destination,
            error_message=model.error_message,
            started_at=model.started_at,
            updated_at=model.updated_at,
            config_json=json.loads(model.config_json or "{}"),
        )

    def get_job(self, job_id: str) -> Optional[PipelineJobRecord]:
        with self._session() as session:
            model = session.get(PipelineJobModel, job_id)
            if not model:
                return None
            return self._to_record(model)

    def save_job(self, job: PipelineJobRecord) -> None:
        with self._session() as session:
            model = PipelineJobModel(
                id=job.id,
                kind=job.kind,
                namespace=job.namespace,
                state=job.state,
                phase=job.phase,
                records_written=job.records_written,
                destination=job.destination,
                error_message=job.error_message,
                started_at=job.started_at,
                updated_at=job.updated_at,
                config_json=json.dumps(job.config_json or {}),
            )
            session.merge(model)
            session.commit()

    def update_job(
        self,
        job_id: str,
        state: Optional[JobState] = None,
        phase: Optional[JobPhase] = None,
        records_written: Optional[int] = None,
        destination: Optional[str] = None,
        error_message: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        values = _changes(
            state=state,
            phase=phase,
            records_written=records_written,
            destination=destination,
            error_message=error_message,
            started_at=started_at,
        )
        with self._session() as session:
            session.execute(update(PipelineJobModel).where(PipelineJobModel.id == job_id).values(**values))
            session.commit()

    def list_jobs(self, namespace: Optional[str] = None) -> List[PipelineJobRecord]:
        with self._session() as session:
            stmt = select(PipelineJobModel).order_by(PipelineJobModel.updated_at)
            if namespace is not None:
                stmt = stmt.where(PipelineJobModel.namespace == namespace)
            return [self._to_record(m) for m in session.execute(stmt).scalars().all()]
