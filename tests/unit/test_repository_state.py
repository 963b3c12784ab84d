from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from compositor.core.constants import JobStatus
from compositor.core.errors import JobNotFoundError, JobStateError
from compositor.db.base import Base
from compositor.models import Job, JobEvent
from compositor.schemas.job import JobFailure, JobParameters, JobResult
from compositor.services.repository import InMemoryJobRepository, SqlJobRepository


def _sql_repository() -> SqlJobRepository:
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return SqlJobRepository(sessionmaker(bind=engine, class_=Session, expire_on_commit=False))


@pytest.fixture(params=["sql", "memory"])
def repository(request):
    return _sql_repository() if request.param == "sql" else InMemoryJobRepository()


def _params() -> JobParameters:
    return JobParameters(
        primary_asset_ref="https://cdn.example.com/ugc.mp4",
        showcase_asset_ref1="https://cdn.example.com/show1.mp4",
        callback_target="https://hooks.example.com/done",
    )


def _result() -> JobResult:
    return JobResult(
        url="https://cdn.example.com/out.mp4",
        public_id="out",
        duration=20.0,
        schedule=[7.0, 14.0, 17.0],
        elapsed_seconds=4.2,
    )


def test_job_status_flow(repository) -> None:
    created = repository.create("job_1", _params())
    assert created.status == JobStatus.QUEUED.value
    assert created.parameters.interval == 7.0

    repository.mark_processing("job_1", "processing started")
    repository.set_progress("job_1", 30, "scheduled")
    done = repository.complete("job_1", _result(), "composite published")

    assert done.status == JobStatus.COMPLETED.value
    assert done.progress == 100
    assert done.result == _result()
    assert done.failure is None

    snapshot = repository.get("job_1")
    assert snapshot is not None
    assert snapshot.result.schedule == [7.0, 14.0, 17.0]
    assert snapshot.parameters.callback_target == "https://hooks.example.com/done"

    events = repository.list_events("job_1")
    assert [event.status for event in events] == ["queued", "processing", "processing", "completed"]
    assert repository.list_events("job_1", after_id=events[-2].id)[0].message == "composite published"


def test_progress_never_decreases(repository) -> None:
    repository.create("job_1", _params())
    repository.mark_processing("job_1", "processing started")
    repository.set_progress("job_1", 50)
    assert repository.set_progress("job_1", 20).progress == 50


def test_terminal_job_rejects_writes(repository) -> None:
    repository.create("job_1", _params())
    repository.mark_processing("job_1", "processing started")
    failed = repository.fail("job_1", JobFailure(category="RenderFailed", detail="exit 1"))
    assert failed.status == JobStatus.FAILED.value

    with pytest.raises(JobStateError):
        repository.complete("job_1", _result(), "late")
    with pytest.raises(JobStateError):
        repository.set_progress("job_1", 99)
    with pytest.raises(JobStateError):
        repository.fail("job_1", JobFailure(category="UnexpectedFailure", detail="again"))

    snapshot = repository.get("job_1")
    assert snapshot.status == JobStatus.FAILED.value
    assert snapshot.failure == JobFailure(category="RenderFailed", detail="exit 1")
    assert snapshot.result is None


def test_snapshots_are_detached(repository) -> None:
    repository.create("job_1", _params())
    first = repository.get("job_1")
    repository.mark_processing("job_1", "processing started")
    assert first.status == JobStatus.QUEUED.value
    assert repository.get("job_1").status == JobStatus.PROCESSING.value


def test_unknown_job(repository) -> None:
    assert repository.get("missing") is None
    with pytest.raises(JobNotFoundError):
        repository.mark_processing("missing", "x")


def test_list_ids_by_status(repository) -> None:
    repository.create("job_1", _params())
    repository.create("job_2", _params())
    repository.mark_processing("job_2", "processing started")

    assert repository.list_ids_by_status(JobStatus.QUEUED) == ["job_1"]
    assert repository.list_ids_by_status("processing") == ["job_2"]
    assert {job.id for job in repository.list()} == {"job_1", "job_2"}


def test_mark_processing_claims_only_queued_jobs(repository) -> None:
    repository.create("job_1", _params())

    claimed = repository.mark_processing("job_1", "processing started")
    assert claimed.status == JobStatus.PROCESSING.value
    assert repository.mark_processing("job_1", "second claim") is None

    repository.fail("job_1", JobFailure(category="RenderFailed", detail="exit 1"))
    assert repository.mark_processing("job_1", "late claim") is None
    assert [event.message for event in repository.list_events("job_1")].count("processing started") == 1


def test_list_ids_by_status_updated_before(repository) -> None:
    repository.create("job_1", _params())
    repository.mark_processing("job_1", "processing started")

    past = datetime.now(timezone.utc) - timedelta(hours=1)
    future = datetime.now(timezone.utc) + timedelta(hours=1)
    assert repository.list_ids_by_status(JobStatus.PROCESSING, updated_before=past) == []
    assert repository.list_ids_by_status(JobStatus.PROCESSING, updated_before=future) == ["job_1"]


# Keep explicit imports referenced for SQLAlchemy mapper configuration.
_ = (Job, JobEvent)
