"""
Agent Connector - Job Executor

Runs at most one job at a time against the automation engine, forwards its
telemetry and reports completion exactly once per accepted job.
"""

import asyncio
import logging
import threading
from typing import Any, Callable, Optional, Set

from ...config import JobSettings
from ...errors import JobTimeoutError
from ...models.job import Job, JobStatus
from ...models.protocol import (
    JobProgress,
    MessageKind,
    RunTaskPayload,
    TaskCompletedPayload,
    TaskStatusPayload,
)
from ..engine.base import AutomationEngine
from .telemetry import ChannelTelemetrySink, TelemetryChannel

logger = logging.getLogger(__name__)

DEVICE_BUSY = "device busy"
ENGINE_NOT_INITIALIZED = "automation engine not initialized"

SendFn = Callable[[MessageKind, Any], bool]


class JobExecutor:
    """
    Single-flight task runner.

    The engine call runs on a worker thread; two forwarding tasks drain the
    status and log channels into outbound envelopes while it runs.
    """

    def __init__(
        self,
        engine: Optional[AutomationEngine],
        send: SendFn,
        settings: Optional[JobSettings] = None,
    ):
        """
        Initialize job executor.

        Args:
            engine: Automation engine (None -> every job is rejected)
            send: Non-blocking outbound enqueue ``send(kind, payload) -> bool``
            settings: Buffer sizes and optional watchdog timeout
        """
        self.engine = engine
        self._send = send
        self.settings = settings or JobSettings()
        self._active_job: Optional[Job] = None
        self._job_lock = threading.Lock()
        self._run_task: Optional[asyncio.Task] = None
        # Engine call left running by the watchdog; blocks new jobs until it returns
        self._abandoned: Optional["asyncio.Future[Any]"] = None
        self._tasks: Set[asyncio.Task] = set()

    # ============================================================
    #  Active job slot
    # ============================================================

    @property
    def active_job(self) -> Optional[Job]:
        with self._job_lock:
            return self._active_job

    @property
    def is_busy(self) -> bool:
        return self.active_job is not None or self._engine_occupied()

    def _engine_occupied(self) -> bool:
        return self._abandoned is not None and not self._abandoned.done()

    def _claim(self, job: Job) -> bool:
        with self._job_lock:
            if self._active_job is not None or self._engine_occupied():
                return False
            self._active_job = job
            return True

    def _release(self, job: Job) -> None:
        with self._job_lock:
            if self._active_job is job:
                self._active_job = None

    # ============================================================
    #  Submission
    # ============================================================

    def submit(self, payload: RunTaskPayload) -> Optional[Job]:
        """
        Accept or reject a run request. Never queues.

        Rejections are reported immediately as a failed ``task_completed``
        for the requested job_id.

        Returns:
            The accepted Job, or None if rejected
        """
        logger.info(
            f"Received job {payload.job_id}: controller={payload.controller}, "
            f"resource={payload.resource}, tasks={len(payload.tasks)}"
        )

        if self.engine is None:
            logger.warning(f"Rejecting job {payload.job_id}: {ENGINE_NOT_INITIALIZED}")
            self._send_rejection(payload.job_id, ENGINE_NOT_INITIALIZED)
            return None

        job = Job.from_payload(payload)
        if not self._claim(job):
            active = self.active_job
            if active is not None:
                logger.warning(f"Rejecting job {payload.job_id}: job {active.job_id} is still running")
            else:
                logger.warning(
                    f"Rejecting job {payload.job_id}: abandoned engine call has not returned yet"
                )
            self._send_rejection(payload.job_id, DEVICE_BUSY)
            return None

        self._send(
            MessageKind.TASK_STATUS,
            TaskStatusPayload(
                job_id=job.job_id,
                status=JobStatus.RUNNING.value,
                current_task="",
                progress=JobProgress(completed=0, total=len(job.tasks)),
                message="Job started",
            ),
        )

        task = asyncio.create_task(self._execute(job), name=f"job-{job.job_id}")
        self._run_task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job

    def _send_rejection(self, job_id: str, reason: str) -> None:
        self._send(
            MessageKind.TASK_COMPLETED,
            TaskCompletedPayload(
                job_id=job_id,
                status=JobStatus.FAILED.value,
                error=reason,
                duration_ms=0,
            ),
        )

    # ============================================================
    #  Execution
    # ============================================================

    async def _execute(self, job: Job) -> None:
        status_channel: TelemetryChannel = TelemetryChannel(self.settings.status_buffer, "status")
        log_channel: TelemetryChannel = TelemetryChannel(self.settings.log_buffer, "log")
        sink = ChannelTelemetrySink(job.job_id, status_channel, log_channel)

        forwarders = [
            asyncio.create_task(self._forward(status_channel, MessageKind.TASK_STATUS)),
            asyncio.create_task(self._forward(log_channel, MessageKind.TASK_LOG)),
        ]

        error: Optional[str] = None
        try:
            await self._run_engine(job, sink)
        except asyncio.CancelledError:
            error = "job cancelled"
            raise
        except Exception as e:
            error = str(e) or e.__class__.__name__
        finally:
            # Sinks are cleared before close so the engine never writes into a closed channel
            try:
                self.engine.clear_telemetry_sinks()
            except Exception as e:
                logger.warning(f"Failed to clear engine telemetry sinks: {e}")
            status_channel.close()
            log_channel.close()
            await asyncio.gather(*forwarders, return_exceptions=True)

            if status_channel.dropped or log_channel.dropped:
                logger.warning(
                    f"Job {job.job_id} dropped telemetry: "
                    f"status={status_channel.dropped}, log={log_channel.dropped}"
                )

            duration_ms = job.elapsed_ms
            job.status = JobStatus.FAILED if error else JobStatus.COMPLETED
            self._release(job)
            self._finish(job, error, duration_ms)

    async def _run_engine(self, job: Job, sink: ChannelTelemetrySink) -> None:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self.engine.run_task, job, sink)

        timeout = self.settings.timeout
        if timeout is None:
            await future
            return

        try:
            await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            logger.error(f"Job {job.job_id} exceeded {timeout:g}s, abandoning it")
            self._abandoned = future
            future.add_done_callback(_consume_abandoned)
            await self._request_stop()
            raise JobTimeoutError(f"job timed out after {timeout:g}s")

    async def _forward(self, channel: TelemetryChannel, kind: MessageKind) -> None:
        while True:
            item = await channel.get()
            if item is None:
                return
            self._send(kind, item)

    def _finish(self, job: Job, error: Optional[str], duration_ms: int) -> None:
        if error:
            logger.error(f"Job {job.job_id} failed after {duration_ms}ms: {error}")
        else:
            logger.info(f"Job {job.job_id} completed in {duration_ms}ms")
        self._send(
            MessageKind.TASK_COMPLETED,
            TaskCompletedPayload(
                job_id=job.job_id,
                status=job.status.value,
                error=error,
                duration_ms=duration_ms,
            ),
        )

    # ============================================================
    #  Cancellation
    # ============================================================

    async def stop(self, job_id: str) -> bool:
        """
        Request the active job to stop. Stale job ids are ignored.

        Completion is still reported by the normal run path once the engine
        honours the request.

        Returns:
            True if a stop was requested
        """
        job = self.active_job
        if job is None or job.job_id != job_id:
            logger.info(f"Ignoring stop for {job_id}: not the active job")
            return False

        logger.info(f"Stopping job {job_id}")
        await self._request_stop()
        return True

    async def _request_stop(self) -> None:
        if self.engine is None:
            return
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.engine.stop_task)
        except Exception as e:
            logger.error(f"Engine failed to stop task: {e}")

    async def shutdown(self) -> None:
        """Best-effort stop of the active job on process shutdown. Does not cancel it."""
        if self.active_job is not None:
            await self._request_stop()

    async def join(self) -> None:
        """Wait until the current job (if any) has reported completion."""
        task = self._run_task
        if task is not None and not task.done():
            await asyncio.shield(task)


def _consume_abandoned(future: "asyncio.Future[Any]") -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.info(f"Abandoned job finished with error: {error}")
    else:
        logger.info("Abandoned job finished; engine accepts jobs again")


__all__ = ["DEVICE_BUSY", "ENGINE_NOT_INITIALIZED", "JobExecutor"]
