"""Update coordinator: runs the fetch → unpack → build → publish pipeline.

Lifecycle of one job:
1. Create a job-scoped temporary directory
2. Download the upstream ``nixexprs.tar.xz`` into it
3. If a build expression is configured, unpack the archive, check that it
   has a single top-level entry, and pre-build the expression against it
4. Atomically rename the downloaded archive onto the persistent path
5. Remove the temporary directory, whatever happened above

Only one job runs at a time. Triggers that arrive while a job is in flight
are coalesced into it rather than queued.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from channel_proxy.builder import build
from channel_proxy.commands import CommandRunner, SubprocessRunner
from channel_proxy.config import Settings
from channel_proxy.errors import ChannelProxyError, TempDirError
from channel_proxy.fetcher import fetch
from channel_proxy.logging import get_logger
from channel_proxy.models import JobOutcome, JobStage, JobStatus, UpdateJob
from channel_proxy.publisher import publish
from channel_proxy.unpacker import unpack

log = get_logger("channel_proxy.coordinator")

_TMP_PREFIX = "channel-proxy-"


class UpdateCoordinator:
    """Single-flight runner for channel update jobs."""

    def __init__(self, settings: Settings, runner: CommandRunner | None = None) -> None:
        self._settings = settings
        self._runner: CommandRunner = runner or SubprocessRunner()
        self._task: asyncio.Task[JobOutcome] | None = None
        self._job: UpdateJob | None = None
        self._job_counter = 0
        self._last_outcome: JobOutcome | None = None

    # ------------------------------------------------------------------
    # Public status surface
    # ------------------------------------------------------------------

    @property
    def is_busy(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stage(self) -> JobStage:
        return self._job.stage if self._job is not None else JobStage.IDLE

    @property
    def last_outcome(self) -> JobOutcome | None:
        return self._last_outcome

    def status_snapshot(self) -> dict[str, Any]:
        """Return coordinator state for the status endpoint."""
        return {
            "busy": self.is_busy,
            "stage": self.stage.value,
            "current_job_id": self._job.job_id if self._job is not None else None,
            "last_outcome": self._last_outcome.to_dict() if self._last_outcome else None,
        }

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def trigger(self) -> bool:
        """Start an update job in the background unless one is already running.

        Must be called from the event loop thread. Returns ``True`` if a new
        job was started and ``False`` if the call was coalesced into the job
        already in flight. Never waits for the job.
        """
        if self.is_busy:
            log.info("update_trigger_coalesced", stage=self.stage.value)
            return False

        self._job_counter += 1
        job_id = self._job_counter
        self._task = asyncio.create_task(self._run_job(job_id), name=f"channel-update-{job_id}")
        log.info("update_triggered", job_id=job_id)
        return True

    def start(self) -> None:
        """Start the update job that runs when the server comes up."""
        log.info("initial_update", upstream=self._settings.upstream_channel_url)
        self.trigger()

    async def wait(self) -> JobOutcome | None:
        """Wait for the in-flight job, if any, and return the latest outcome."""
        if self._task is not None:
            await self._task
        return self._last_outcome

    async def run_once(self) -> JobOutcome | None:
        """Trigger a job (or join the running one) and wait for it to finish."""
        self.trigger()
        return await self.wait()

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def _run_job(self, job_id: int) -> JobOutcome:
        start = time.monotonic()
        outcome = JobOutcome(job_id=job_id, status=JobStatus.FAILED)

        with structlog.contextvars.bound_contextvars(job_id=job_id):
            try:
                job = UpdateJob(job_id=job_id, tmp_dir=self._make_tmp_dir())
            except ChannelProxyError as exc:
                outcome.error = str(exc)
                log.error("update_job_failed", error=str(exc), **exc.context())
                return self._finish(outcome, start)

            self._job = job
            try:
                await self._execute(job, outcome)
                outcome.status = JobStatus.SUCCESS
                log.info("update_job_succeeded", steps=outcome.steps_completed)
            except ChannelProxyError as exc:
                outcome.failed_stage = job.stage
                outcome.error = str(exc)
                log.error(
                    "update_job_failed",
                    stage=job.stage.value,
                    error=str(exc),
                    **exc.context(),
                )
            except Exception as exc:
                outcome.failed_stage = job.stage
                outcome.error = f"Unexpected error: {exc}"
                log.exception("update_job_crashed", stage=job.stage.value)
            finally:
                await self._release_tmp_dir(job.tmp_dir)
                self._job = None

        return self._finish(outcome, start)

    async def _execute(self, job: UpdateJob, outcome: JobOutcome) -> None:
        settings = self._settings

        job.stage = JobStage.FETCHING
        await fetch(settings.nixexprs_url, job.archive_path, self._runner, settings.curl_command)
        outcome.steps_completed.append("fetch")

        if settings.build_expression is not None:
            job.stage = JobStage.UNPACKING
            job.nixpkgs_root = await unpack(
                job.archive_path, job.unpack_dir, self._runner, settings.tar_command
            )
            outcome.steps_completed.append("unpack")

            job.stage = JobStage.BUILDING
            await build(
                job.nixpkgs_root,
                settings.build_expression,
                self._runner,
                settings.nix_build_command,
            )
            outcome.steps_completed.append("build")

        job.stage = JobStage.PUBLISHING
        publish(job.archive_path, settings.persistent_nixexprs_path)
        outcome.steps_completed.append("publish")

    def _make_tmp_dir(self) -> Path:
        # Staged next to the artifact by default so publish is a same-volume rename
        staging = self._settings.work_dir
        if staging is None:
            staging = self._settings.persistent_nixexprs_path.parent
        try:
            staging.mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix=_TMP_PREFIX, dir=staging))
        except OSError as exc:
            raise TempDirError(exc) from exc

    @staticmethod
    async def _release_tmp_dir(tmp_dir: Path) -> None:
        # An unpacked nixpkgs tree is tens of thousands of files
        try:
            await asyncio.to_thread(shutil.rmtree, tmp_dir)
        except OSError:
            log.warning("tmp_dir_cleanup_failed", path=str(tmp_dir), exc_info=True)

    def _finish(self, outcome: JobOutcome, start: float) -> JobOutcome:
        outcome.duration_seconds = round(time.monotonic() - start, 2)
        outcome.completed_at = datetime.now(UTC).isoformat()
        self._last_outcome = outcome
        return outcome
