"""Persistence for jobs and their events.

Two stores share one interface: ``SqlJobRepository`` (the default, backed by the
SQLite database) and ``InMemoryJobRepository`` for embedding and tests. Both hand
out detached ``JobOut`` snapshots, never live records, and both refuse writes to
jobs that already reached a terminal state. ``mark_processing`` is the claim: it
moves a job out of ``queued`` atomically, so only one runner ever owns a job.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from compositor.core.constants import TERMINAL_STATES, JobStatus
from compositor.core.errors import JobNotFoundError, JobStateError
from compositor.db.session import SessionLocal, session_scope
from compositor.models.job import Job, JobEvent
from compositor.schemas.job import JobEventOut, JobFailure, JobOut, JobParameters, JobResult

StatusLike = Union[JobStatus, str]

_TERMINAL_VALUES = {state.value for state in TERMINAL_STATES}


def _status_value(status: StatusLike) -> str:
    return status.value if isinstance(status, JobStatus) else status


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRepository(Protocol):
    def create(self, job_id: str, parameters: JobParameters) -> JobOut: ...

    def get(self, job_id: str) -> Optional[JobOut]: ...

    def list(self) -> list[JobOut]: ...

    def list_ids_by_status(self, status: StatusLike, updated_before: Optional[datetime] = None) -> list[str]: ...

    def mark_processing(self, job_id: str, message: str) -> Optional[JobOut]: ...

    def set_progress(self, job_id: str, progress: int, message: Optional[str] = None) -> JobOut: ...

    def complete(self, job_id: str, result: JobResult, message: str) -> JobOut: ...

    def fail(self, job_id: str, failure: JobFailure) -> JobOut: ...

    def append_event(self, job_id: str, status: StatusLike, message: str) -> None: ...

    def list_events(self, job_id: str, after_id: int = 0) -> list[JobEventOut]: ...


def _json_load(value: Optional[str]) -> dict[str, object]:
    if not value:
        return {}
    try:
        loaded = json.loads(value)
    except json.JSONDecodeError:
        return {}
    return loaded if isinstance(loaded, dict) else {}


def to_job_out(job: Job) -> JobOut:
    result = _json_load(job.result_json)
    failure = None
    if job.failure_category:
        failure = JobFailure(category=job.failure_category, detail=job.failure_detail or "")
    return JobOut(
        id=job.id,
        status=job.status,
        progress=job.progress,
        parameters=JobParameters.model_validate(_json_load(job.parameters_json)),
        result=JobResult.model_validate(result) if result else None,
        failure=failure,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


class SqlJobRepository:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self._session_factory = session_factory

    def _require(self, db: Session, job_id: str, *, writable: bool = True) -> Job:
        job = db.get(Job, job_id)
        if not job:
            raise JobNotFoundError(job_id)
        if writable and job.status in _TERMINAL_VALUES:
            raise JobStateError(f"job {job_id} is already {job.status}")
        return job

    def _append(self, db: Session, job_id: str, status: StatusLike, message: str) -> None:
        db.add(JobEvent(job_id=job_id, status=_status_value(status), message=message))

    def _finish(self, db: Session, job: Job) -> JobOut:
        job.updated_at = _utcnow()
        db.flush()
        db.refresh(job)
        return to_job_out(job)

    def create(self, job_id: str, parameters: JobParameters) -> JobOut:
        with session_scope(self._session_factory) as db:
            job = Job(
                id=job_id,
                status=JobStatus.QUEUED.value,
                progress=0,
                parameters_json=parameters.model_dump_json(),
            )
            db.add(job)
            db.flush()
            self._append(db, job_id, JobStatus.QUEUED, "job queued")
            return self._finish(db, job)

    def get(self, job_id: str) -> Optional[JobOut]:
        with session_scope(self._session_factory) as db:
            job = db.get(Job, job_id)
            return to_job_out(job) if job else None

    def list(self) -> list[JobOut]:
        with session_scope(self._session_factory) as db:
            stmt = select(Job).order_by(Job.created_at.desc())
            return [to_job_out(job) for job in db.scalars(stmt)]

    def list_ids_by_status(self, status: StatusLike, updated_before: Optional[datetime] = None) -> list[str]:
        with session_scope(self._session_factory) as db:
            stmt = select(Job.id).where(Job.status == _status_value(status))
            if updated_before is not None:
                stmt = stmt.where(Job.updated_at < updated_before)
            return list(db.scalars(stmt.order_by(Job.created_at.asc())))

    def mark_processing(self, job_id: str, message: str) -> Optional[JobOut]:
        """Claim a queued job. Returns ``None`` when another caller got there first."""
        with session_scope(self._session_factory) as db:
            if not db.get(Job, job_id):
                raise JobNotFoundError(job_id)
            claimed = db.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JobStatus.QUEUED.value)
                .values(status=JobStatus.PROCESSING.value, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            ).rowcount
            if not claimed:
                return None
            self._append(db, job_id, JobStatus.PROCESSING, message)
            db.flush()
            return to_job_out(db.get(Job, job_id, populate_existing=True))

    def set_progress(self, job_id: str, progress: int, message: Optional[str] = None) -> JobOut:
        with session_scope(self._session_factory) as db:
            job = self._require(db, job_id)
            job.progress = max(job.progress, int(progress))
            if message:
                self._append(db, job_id, job.status, message)
            return self._finish(db, job)

    def complete(self, job_id: str, result: JobResult, message: str) -> JobOut:
        with session_scope(self._session_factory) as db:
            job = self._require(db, job_id)
            job.status = JobStatus.COMPLETED.value
            job.progress = 100
            job.result_json = result.model_dump_json()
            self._append(db, job_id, JobStatus.COMPLETED, message)
            return self._finish(db, job)

    def fail(self, job_id: str, failure: JobFailure) -> JobOut:
        with session_scope(self._session_factory) as db:
            job = self._require(db, job_id)
            job.status = JobStatus.FAILED.value
            job.failure_category = failure.category
            job.failure_detail = failure.detail
            self._append(db, job_id, JobStatus.FAILED, f"{failure.category}: {failure.detail}")
            return self._finish(db, job)

    def append_event(self, job_id: str, status: StatusLike, message: str) -> None:
        with session_scope(self._session_factory) as db:
            self._require(db, job_id, writable=False)
            self._append(db, job_id, status, message)

    def list_events(self, job_id: str, after_id: int = 0) -> list[JobEventOut]:
        with session_scope(self._session_factory) as db:
            stmt = (
                select(JobEvent)
                .where(JobEvent.job_id == job_id, JobEvent.id > after_id)
                .order_by(JobEvent.id.asc())
            )
            return [JobEventOut.model_validate(event, from_attributes=True) for event in db.scalars(stmt)]


@dataclass
class _MemoryRecord:
    job: JobOut
    events: list[JobEventOut]


class InMemoryJobRepository:
    def __init__(self) -> None:
        self._records: dict[str, _MemoryRecord] = {}
        self._lock = threading.Lock()
        self._event_seq = 0

    def _require(self, job_id: str, *, writable: bool = True) -> _MemoryRecord:
        record = self._records.get(job_id)
        if not record:
            raise JobNotFoundError(job_id)
        if writable and record.job.status in _TERMINAL_VALUES:
            raise JobStateError(f"job {job_id} is already {record.job.status}")
        return record

    def _append(self, record: _MemoryRecord, status: StatusLike, message: str) -> None:
        self._event_seq += 1
        record.events.append(
            JobEventOut(
                id=self._event_seq,
                job_id=record.job.id,
                status=_status_value(status),
                message=message,
                created_at=_utcnow(),
            )
        )

    def _update(self, record: _MemoryRecord, **changes: object) -> JobOut:
        changes["updated_at"] = _utcnow()
        record.job = record.job.model_copy(update=changes)
        return record.job.model_copy(deep=True)

    def create(self, job_id: str, parameters: JobParameters) -> JobOut:
        now = _utcnow()
        job = JobOut(
            id=job_id,
            status=JobStatus.QUEUED.value,
            progress=0,
            parameters=parameters,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            if job_id in self._records:
                raise JobStateError(f"job {job_id} already exists")
            record = _MemoryRecord(job=job, events=[])
            self._records[job_id] = record
            self._append(record, JobStatus.QUEUED, "job queued")
            return job.model_copy(deep=True)

    def get(self, job_id: str) -> Optional[JobOut]:
        with self._lock:
            record = self._records.get(job_id)
            return record.job.model_copy(deep=True) if record else None

    def list(self) -> list[JobOut]:
        with self._lock:
            jobs = [record.job.model_copy(deep=True) for record in self._records.values()]
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)

    def list_ids_by_status(self, status: StatusLike, updated_before: Optional[datetime] = None) -> list[str]:
        value = _status_value(status)
        with self._lock:
            return [
                job_id
                for job_id, record in self._records.items()
                if record.job.status == value and (updated_before is None or record.job.updated_at < updated_before)
            ]

    def mark_processing(self, job_id: str, message: str) -> Optional[JobOut]:
        with self._lock:
            record = self._require(job_id, writable=False)
            if record.job.status != JobStatus.QUEUED.value:
                return None
            self._append(record, JobStatus.PROCESSING, message)
            return self._update(record, status=JobStatus.PROCESSING.value)

    def set_progress(self, job_id: str, progress: int, message: Optional[str] = None) -> JobOut:
        with self._lock:
            record = self._require(job_id)
            if message:
                self._append(record, record.job.status, message)
            return self._update(record, progress=max(record.job.progress, int(progress)))

    def complete(self, job_id: str, result: JobResult, message: str) -> JobOut:
        with self._lock:
            record = self._require(job_id)
            self._append(record, JobStatus.COMPLETED, message)
            return self._update(record, status=JobStatus.COMPLETED.value, progress=100, result=result)

    def fail(self, job_id: str, failure: JobFailure) -> JobOut:
        with self._lock:
            record = self._require(job_id)
            self._append(record, JobStatus.FAILED, f"{failure.category}: {failure.detail}")
            return self._update(record, status=JobStatus.FAILED.value, failure=failure)

    def append_event(self, job_id: str, status: StatusLike, message: str) -> None:
        with self._lock:
            self._append(self._require(job_id, writable=False), status, message)

    def list_events(self, job_id: str, after_id: int = 0) -> list[JobEventOut]:
        with self._lock:
            record = self._records.get(job_id)
            if not record:
                return []
            return [event.model_copy() for event in record.events if event.id > after_id]
