"""Periodic job scheduler on a single asyncio loop.

Each registered job gets its own ticker coroutine once ``start()`` is called.
A tick fires the job in a separate task (so a slow job never delays its own
ticker) unless the previous invocation is still running, in which case the
tick is skipped. Missed ticks are never caught up.

Lifecycle events go to listeners registered with ``add_listener``; for any
invocation ``start`` is emitted before its ``complete`` / ``error``.

``stop()`` cancels tickers only. Invocations already in flight run to
completion; ``wait_idle()`` awaits them.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set

from musixbot.errors import BusyError, NotFoundError
from musixbot.models.enums import JobEventKind
from musixbot.utils.logger import StructuredLogger, get_logger, log_performance
from musixbot.utils.time import Clock, format_elapsed

JobAction = Callable[[], Awaitable[object]]


@dataclass(slots=True)
class ScheduledJob:
    id: str
    name: str
    interval_seconds: float
    action: JobAction
    is_running: bool = False
    is_paused: bool = False
    last_run_at: Optional[float] = None
    last_error: Optional[str] = None
    run_count: int = 0


@dataclass(slots=True)
class JobEvent:
    kind: JobEventKind
    job_id: str
    name: str
    at: float
    duration_seconds: Optional[float] = None
    error: Optional[BaseException] = None


JobListener = Callable[[JobEvent], None]


class Scheduler:
    def __init__(self, *, clock: Clock = time.time, logger: Optional[StructuredLogger] = None) -> None:
        self._clock = clock
        self.logger = logger or get_logger(__name__)
        self._jobs: Dict[str, ScheduledJob] = {}
        self._tickers: Dict[str, asyncio.Task] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._listeners: List[JobListener] = []
        self._started = False

    # ----------------------------- registration ----------------------------- #
    def register_job(self, job_id: str, name: str, interval_seconds: float, action: JobAction) -> ScheduledJob:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if job_id in self._jobs:
            self.remove_job(job_id)
        job = ScheduledJob(id=job_id, name=name, interval_seconds=float(interval_seconds), action=action)
        self._jobs[job_id] = job
        self.logger.info("Job registered", job_id=job_id, job_name=name, interval_seconds=interval_seconds)
        if self._started:
            self._start_ticker(job)
        return job

    def remove_job(self, job_id: str) -> bool:
        job = self._jobs.pop(job_id, None)
        if job is None:
            return False
        self._cancel_ticker(job_id)
        self.logger.info("Job removed", job_id=job_id)
        return True

    def add_listener(self, listener: JobListener) -> None:
        self._listeners.append(listener)

    # ----------------------------- lifecycle ----------------------------- #
    def start(self) -> None:
        if self._started:
            return
        self._started = True
        for job in self._jobs.values():
            if not job.is_paused:
                self._start_ticker(job)
        self.logger.info("Scheduler started", jobs=len(self._jobs))

    def stop(self) -> None:
        for job_id in list(self._tickers):
            self._cancel_ticker(job_id)
        self._started = False
        self.logger.info("Scheduler stopped", inflight=len(self._inflight))

    async def wait_idle(self) -> None:
        """Await invocations that were in flight when called."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def pause_job(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None:
            return False
        job.is_paused = True
        self._cancel_ticker(job_id)
        self.logger.info("Job paused", job_id=job_id)
        return True

    def resume_job(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None:
            return False
        job.is_paused = False
        if self._started and job_id not in self._tickers:
            self._start_ticker(job)
        self.logger.info("Job resumed", job_id=job_id)
        return True

    # ----------------------------- invocation ----------------------------- #
    async def run_job_now(self, job_id: str) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        if job.is_running:
            raise BusyError(f"Job {job_id} is already running")
        await self._execute(job, reraise=True)

    async def run_all_jobs(self) -> Dict[str, Optional[str]]:
        """Run every idle job once, in registration order. Returns job id -> error text (None on success)."""
        results: Dict[str, Optional[str]] = {}
        for job in list(self._jobs.values()):
            if job.is_running:
                results[job.id] = "busy"
                continue
            await self._execute(job, reraise=False)
            results[job.id] = job.last_error
        return results

    def get_job_status(self, job_id: str) -> Optional[dict]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        return {
            "id": job.id,
            "name": job.name,
            "interval_seconds": job.interval_seconds,
            "is_running": job.is_running,
            "is_paused": job.is_paused,
            "last_run_at": job.last_run_at,
            "last_error": job.last_error,
            "run_count": job.run_count,
        }

    def get_all_jobs(self) -> List[dict]:
        return [status for status in (self.get_job_status(job_id) for job_id in self._jobs) if status]

    # ----------------------------- internals ----------------------------- #
    def _start_ticker(self, job: ScheduledJob) -> None:
        self._tickers[job.id] = asyncio.get_running_loop().create_task(self._tick_loop(job))

    def _cancel_ticker(self, job_id: str) -> None:
        ticker = self._tickers.pop(job_id, None)
        if ticker is not None:
            ticker.cancel()

    async def _tick_loop(self, job: ScheduledJob) -> None:
        while True:
            await asyncio.sleep(job.interval_seconds)
            if job.is_running:
                self.logger.debug("Tick skipped, job still running", job_id=job.id)
                continue
            job.is_running = True
            invocation = asyncio.get_running_loop().create_task(self._execute(job, reraise=False))
            self._inflight.add(invocation)
            invocation.add_done_callback(self._inflight.discard)

    async def _execute(self, job: ScheduledJob, *, reraise: bool) -> None:
        job.is_running = True
        started = self._clock()
        self._emit(JobEvent(kind=JobEventKind.START, job_id=job.id, name=job.name, at=started))
        try:
            await job.action()
        except Exception as e:
            elapsed = self._clock() - started
            job.last_error = str(e)
            self.logger.error(
                "Scheduled job failed",
                job_id=job.id,
                elapsed=format_elapsed(elapsed),
                error=str(e),
                error_type=type(e).__name__,
            )
            self._emit(
                JobEvent(
                    kind=JobEventKind.ERROR, job_id=job.id, name=job.name,
                    at=self._clock(), duration_seconds=elapsed, error=e,
                )
            )
            if reraise:
                raise
        else:
            finished = self._clock()
            job.last_run_at = finished
            job.last_error = None
            job.run_count += 1
            log_performance(
                operation=f"job:{job.id}",
                duration_ms=(finished - started) * 1000,
                additional_data={"job_name": job.name},
                slow_threshold_ms=job.interval_seconds * 1000,
            )
            self._emit(
                JobEvent(
                    kind=JobEventKind.COMPLETE, job_id=job.id, name=job.name,
                    at=finished, duration_seconds=finished - started,
                )
            )
        finally:
            job.is_running = False

    def _emit(self, event: JobEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self.logger.warning("Job listener failed", job_id=event.job_id, error=str(e))


__all__ = ["Scheduler", "ScheduledJob", "JobEvent", "JobListener"]
