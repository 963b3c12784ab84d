"""Huey queue definitions and enqueue helpers."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

from huey import SqliteHuey

from compositor.core.settings import PATHS
from compositor.db.base import Base
from compositor.db.session import engine
from compositor.models import Job, JobEvent  # noqa: F401
from compositor.services.pipeline import build_orchestrator

logger = logging.getLogger(__name__)

huey = SqliteHuey("showcase-compositor", filename=str(PATHS.queue_path))

# Taken at import, before the consumer starts its workers (or forks them), so
# every job a worker of this consumer claims is updated after it.
_LOADED_AT = datetime.now(timezone.utc)
_recovery_lock = threading.Lock()
_recovered = False


@huey.on_startup()
def recover_jobs() -> None:
    """Run once per consumer process; other workers wait until it finishes."""
    global _recovered
    with _recovery_lock:
        if _recovered:
            return
        Base.metadata.create_all(bind=engine)
        logger.info("recovering jobs interrupted before %s", _LOADED_AT.isoformat())
        build_orchestrator(enqueue_job).recover(stale_before=_LOADED_AT)
        _recovered = True


@huey.task(retries=0)
def run_job_task(job_id: str) -> None:
    build_orchestrator(enqueue_job).run(job_id)


def enqueue_job(job_id: str) -> None:
    run_job_task(job_id)
