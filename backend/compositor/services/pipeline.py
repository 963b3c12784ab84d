"""End-to-end job orchestration: download, probe, schedule, render, publish, notify."""

from __future__ import annotations

import logging
import math
import shutil
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from compositor.core.constants import (
    PROGRESS_DOWNLOADED,
    PROGRESS_PROBED,
    PROGRESS_PUBLISHED,
    PROGRESS_RENDERED,
    PROGRESS_RENDERING,
    PROGRESS_SCHEDULED,
    ErrorCategory,
    JobStatus,
)
from compositor.core.errors import (
    CompositorError,
    InvalidConfigError,
    JobNotFoundError,
    JobStateError,
    MissingInputError,
)
from compositor.core.settings import PATHS
from compositor.schemas.config import AppConfig, StorageConfig
from compositor.schemas.job import CallbackPayload, JobFailure, JobOut, JobParameters, JobResult
from compositor.services import media
from compositor.services.asset_store import AssetPublisher
from compositor.services.config_store import load_config
from compositor.services.filter_graph import compile_graph
from compositor.services.notifier import Notifier
from compositor.services.repository import JobRepository, SqlJobRepository
from compositor.services.schedule import compute_schedule

logger = logging.getLogger(__name__)

Dispatch = Callable[[str], None]
Downloader = Callable[..., Path]
Prober = Callable[..., media.VideoMeta]
Renderer = Callable[..., media.RenderResult]
PublisherFactory = Callable[[StorageConfig], AssetPublisher]


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def validate_timing(params: JobParameters) -> None:
    checks = (
        (params.interval, "interval"),
        (params.insert_len, "insert_len"),
        (params.width, "width"),
        (params.height, "height"),
        (params.frame_rate, "frame_rate"),
    )
    for value, name in checks:
        if not math.isfinite(value) or value <= 0:
            raise InvalidConfigError(f"{name} must be > 0, got {value!r}")
    if not math.isfinite(params.fade_sec) or params.fade_sec < 0 or params.fade_sec > params.insert_len:
        raise InvalidConfigError(f"fade_sec must be within [0, insert_len], got {params.fade_sec!r}")


class JobOrchestrator:
    """Owns the job lifecycle ``queued -> processing -> completed | failed``.

    ``dispatch`` hands a freshly created job id to whatever runs jobs in the
    background (the huey queue in production); ``run`` is what that background
    task calls. Stages inside one job are strictly sequential.
    """

    def __init__(
        self,
        repository: JobRepository,
        dispatch: Dispatch,
        *,
        config_loader: Callable[[], AppConfig] = load_config,
        downloader: Downloader = media.download_asset,
        prober: Prober = media.probe_duration,
        renderer: Renderer = media.render,
        publisher_factory: PublisherFactory = AssetPublisher,
        notifier: Optional[Notifier] = None,
        jobs_root: Path = PATHS.jobs_root,
    ) -> None:
        self.repository = repository
        self.dispatch = dispatch
        self.config_loader = config_loader
        self.downloader = downloader
        self.prober = prober
        self.renderer = renderer
        self.publisher_factory = publisher_factory
        self.notifier = notifier
        self.jobs_root = jobs_root

    def submit(self, params: JobParameters) -> str:
        if _is_blank(params.primary_asset_ref):
            raise MissingInputError("primary_asset_ref is required")
        if _is_blank(params.showcase_asset_ref1):
            raise MissingInputError("showcase_asset_ref1 is required")

        if _is_blank(params.folder):
            params = params.model_copy(update={"folder": self.config_loader().storage.default_folder})

        job_id = uuid.uuid4().hex
        self.repository.create(job_id, params)
        logger.info("job %s queued", job_id)
        self.dispatch(job_id)
        return job_id

    def get_status(self, job_id: str) -> JobOut:
        job = self.repository.get(job_id)
        if not job:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self) -> list[JobOut]:
        return self.repository.list()

    def recover(self, stale_before: Optional[datetime] = None) -> None:
        """Fail jobs orphaned mid-run by a restart and re-dispatch jobs that never started.

        Only ``processing`` jobs last touched before ``stale_before`` are failed;
        the worker calls this with its own start time so jobs claimed since then
        are left to their owners. ``None`` treats every ``processing`` job as
        orphaned.
        """
        for job_id in self.repository.list_ids_by_status(JobStatus.PROCESSING, updated_before=stale_before):
            logger.warning("job %s was interrupted by a restart", job_id)
            try:
                job = self.repository.fail(
                    job_id,
                    JobFailure(category=ErrorCategory.UNEXPECTED_FAILURE.value, detail="interrupted by restart"),
                )
            except JobStateError as exc:
                logger.info("job %s finished before recovery reached it: %s", job_id, exc)
                continue
            self._notify(job)
        for job_id in self.repository.list_ids_by_status(JobStatus.QUEUED):
            self.dispatch(job_id)

    @contextmanager
    def _workspace(self, job_id: str) -> Iterator[Path]:
        job_dir = self.jobs_root / job_id
        job_dir.mkdir(parents=True, exist_ok=True)
        try:
            yield job_dir
        finally:
            try:
                shutil.rmtree(job_dir)
            except OSError as exc:
                logger.warning("could not remove working directory for job %s: %s", job_id, exc)

    def _progress(self, job_id: str, progress: int, message: str) -> None:
        logger.info("job %s: %s (%s%%)", job_id, message, progress)
        self.repository.set_progress(job_id, progress, message)

    def _notify(self, job: JobOut) -> None:
        target = job.parameters.callback_target
        if _is_blank(target) or self.notifier is None:
            return
        payload = CallbackPayload(job_id=job.id, status=job.status, result=job.result, error=job.failure)
        self.notifier.send(target, payload)

    def run(self, job_id: str) -> Optional[JobOut]:
        job = self.repository.get(job_id)
        if not job:
            logger.warning("job %s not found, skipping", job_id)
            return None

        started = time.monotonic()
        if self.repository.mark_processing(job_id, "processing started") is None:
            current = self.repository.get(job_id)
            logger.warning("job %s is %s, not queued; skipping", job_id, current.status if current else "gone")
            return current

        outcome: Union[JobResult, JobFailure]
        try:
            with self._workspace(job_id) as job_dir:
                outcome = self._execute(job_id, job.parameters, job_dir, started)
        except JobStateError as exc:
            logger.warning("job %s was finalized elsewhere, abandoning run: %s", job_id, exc)
            return self.repository.get(job_id)
        except CompositorError as exc:
            logger.warning("job %s failed [%s]: %s", job_id, exc.category.value, exc)
            outcome = JobFailure(category=exc.category.value, detail=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("job %s failed unexpectedly", job_id)
            outcome = JobFailure(category=ErrorCategory.UNEXPECTED_FAILURE.value, detail=f"{type(exc).__name__}: {exc}")

        try:
            if isinstance(outcome, JobResult):
                final = self.repository.complete(job_id, outcome, "composite published")
                logger.info("job %s completed in %.1fs", job_id, outcome.elapsed_seconds)
            else:
                final = self.repository.fail(job_id, outcome)
        except JobStateError as exc:
            logger.warning("job %s was finalized elsewhere, dropping its outcome: %s", job_id, exc)
            return self.repository.get(job_id)

        self._notify(final)
        return final

    def _execute(self, job_id: str, params: JobParameters, job_dir: Path, started: float) -> JobResult:
        validate_timing(params)
        cfg = self.config_loader()
        max_bytes = cfg.pipeline.max_download_mb * 1024 * 1024

        primary = self.downloader(
            params.primary_asset_ref, job_dir / "primary.mp4", cfg.pipeline.download_timeout_s, max_bytes
        )
        showcases = [
            self.downloader(ref, job_dir / f"showcase{n}.mp4", cfg.pipeline.download_timeout_s, max_bytes)
            for n, ref in enumerate(params.showcase_refs(), start=1)
        ]
        self._progress(job_id, PROGRESS_DOWNLOADED, f"downloaded {1 + len(showcases)} assets")

        meta = self.prober(primary, cfg.render.ffprobe_bin)
        self._progress(job_id, PROGRESS_PROBED, f"primary duration {meta.duration:.3f}s")

        schedule = compute_schedule(meta.duration, params.interval, params.insert_len, cfg.pipeline.max_overlays)
        self._progress(job_id, PROGRESS_SCHEDULED, f"{len(schedule)} insertion points: {list(schedule)}")

        graph = compile_graph(
            schedule,
            params.fade_sec,
            params.width,
            params.height,
            params.frame_rate,
            params.insert_len,
            len(showcases),
            primary_has_audio=meta.has_audio,
            duration=meta.duration,
        )
        self._progress(job_id, PROGRESS_RENDERING, "rendering composite")
        rendered = self.renderer(primary, showcases, graph, job_dir / "final.mp4", params.frame_rate, cfg.render)
        self._progress(job_id, PROGRESS_RENDERED, f"rendered in {rendered.elapsed_seconds:.1f}s")

        publisher = self.publisher_factory(cfg.storage)
        folder = params.folder or cfg.storage.default_folder
        published = publisher.publish(rendered.output_path, folder, f"{params.public_id_prefix}{job_id}")
        self._progress(job_id, PROGRESS_PUBLISHED, f"published {published.public_id}")

        return JobResult(
            url=published.url,
            public_id=published.public_id,
            duration=meta.duration,
            schedule=list(schedule),
            elapsed_seconds=round(time.monotonic() - started, 3),
        )


def build_orchestrator(dispatch: Dispatch) -> JobOrchestrator:
    cfg = load_config()
    return JobOrchestrator(SqlJobRepository(), dispatch, notifier=Notifier(cfg.notify.timeout_s))
