"""Durable job scheduler -- drives turn timeouts, reminders and season deadlines.

Jobs are ``ScheduledJob`` rows written in the caller's transaction.  The
in-memory ``asyncio`` timer for a job is armed only after that transaction
commits, so a rolled-back operation never leaves a live timer behind.

On :meth:`DurableScheduler.start` every PENDING row is reconciled: past-due
jobs fire immediately, the rest are armed.  A poll loop also picks up due
rows created by other processes.

Firing a job:

1. ``UPDATE ... SET status='FIRED' WHERE id=? AND status='PENDING'`` is
   committed before the handler runs; whoever loses that race does nothing.
2. The handler runs in its own task.  Failures are retried with bounded
   exponential backoff (tenacity).
3. When the attempt budget is exhausted the job is marked FAILED, logged at
   error level and reported to the operators.
"""
import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import Awaitable, Callable, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_exponential

from turnchain.game import constants as C
from turnchain.game import durations
from turnchain.game.errors import SchedulerFailure
from turnchain.game.repository import conditional_update, on_commit
from turnchain.models.scheduled_job import ScheduledJob

log = logging.getLogger(__name__)

JobHandler = Callable[[ScheduledJob], Awaitable[None]]
FailureHook = Callable[[ScheduledJob, SchedulerFailure], Awaitable[None]]


class DurableScheduler:
    """Persists jobs and fires their handlers once they come due."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        *,
        poll_interval: float = 5.0,
        max_attempts: int = 5,
        backoff_base: float = 2.0,
        backoff_max: float = 300.0,
    ) -> None:
        self._session_factory = session_factory
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

        self._handlers: dict[str, JobHandler] = {}
        self._on_failure: Optional[FailureHook] = None
        self._timers: dict[int, asyncio.TimerHandle] = {}
        self._inflight: dict[int, asyncio.Task] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._running: bool = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, job_type: str, handler: JobHandler) -> None:
        if job_type not in C.JOB_TYPES:
            raise ValueError(f"Unknown job type {job_type!r}")
        self._handlers[job_type] = handler

    def on_failure(self, hook: FailureHook) -> None:
        """Install the escalation hook called when a job ends FAILED."""
        self._on_failure = hook

    # ------------------------------------------------------------------
    # Transactional API (called inside the caller's session)
    # ------------------------------------------------------------------

    async def schedule(
        self,
        db: AsyncSession,
        job_type: str,
        target_id: str,
        due_at: datetime,
    ) -> int:
        """Replace any PENDING job with the same key and return the new job id."""
        if job_type not in C.JOB_TYPES:
            raise ValueError(f"Unknown job type {job_type!r}")
        await self.cancel(db, job_type, target_id)
        job = ScheduledJob(
            job_type=job_type,
            target_id=target_id,
            due_at=due_at,
            status=C.JOB_PENDING,
            attempts=0,
            created_at=durations.utcnow(),
        )
        db.add(job)
        await db.flush()
        on_commit(db, partial(self._arm, job.id, due_at))
        log.debug("Scheduled %s for %s at %s (job %d)", job_type, target_id, due_at, job.id)
        return job.id

    async def cancel(self, db: AsyncSession, job_type: str, target_id: str) -> int:
        """Cancel the PENDING job for ``(job_type, target_id)``; no-op when absent."""
        return await self._cancel_where(
            db,
            ScheduledJob.job_type == job_type,
            ScheduledJob.target_id == target_id,
        )

    async def cancel_for_targets(
        self,
        db: AsyncSession,
        target_ids: Iterable[str],
        job_types: Iterable[str] | None = None,
    ) -> int:
        """Cancel every PENDING job for the given targets (optionally by type)."""
        ids = list(target_ids)
        if not ids:
            return 0
        criteria = [ScheduledJob.target_id.in_(ids)]
        if job_types is not None:
            criteria.append(ScheduledJob.job_type.in_(list(job_types)))
        return await self._cancel_where(db, *criteria)

    async def _cancel_where(self, db: AsyncSession, *criteria) -> int:
        job_ids = (
            await db.execute(
                select(ScheduledJob.id).where(
                    ScheduledJob.status == C.JOB_PENDING, *criteria
                )
            )
        ).scalars().all()
        if not job_ids:
            return 0
        await db.execute(
            update(ScheduledJob)
            .where(ScheduledJob.id.in_(job_ids), ScheduledJob.status == C.JOB_PENDING)
            .values(status=C.JOB_CANCELLED, finished_at=durations.utcnow())
            .execution_options(synchronize_session="evaluate")
        )
        for job_id in job_ids:
            on_commit(db, partial(self._disarm, job_id))
        log.debug("Cancelled jobs %s", list(job_ids))
        return len(job_ids)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Reconcile persisted jobs and start the poll loop."""
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        armed, due = await self._reconcile()
        self._poll_task = asyncio.create_task(self._poll_loop())
        log.info("Scheduler started (%d armed, %d due on start)", armed, due)

    async def stop(self) -> None:
        """Stop the poll loop, drop timers and wait for running handlers."""
        self._running = False
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        await self.drain()
        self._loop = None
        log.info("Scheduler stopped")

    async def drain(self) -> None:
        """Wait until every in-flight handler task has finished."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    async def _reconcile(self) -> tuple[int, int]:
        async with self._session_factory() as db:
            jobs = (
                await db.execute(
                    select(ScheduledJob.id, ScheduledJob.due_at)
                    .where(ScheduledJob.status == C.JOB_PENDING)
                    .order_by(ScheduledJob.due_at, ScheduledJob.id)
                )
            ).all()
        now = durations.utcnow()
        armed = due = 0
        for job_id, due_at in jobs:
            if due_at <= now:
                self._spawn(job_id)
                due += 1
            else:
                self._arm(job_id, due_at)
                armed += 1
        return armed, due

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.fire_due(wait=False)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Unhandled error in scheduler poll")

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _arm(self, job_id: int, due_at: datetime) -> None:
        if self._loop is None or not self._running:
            # Not started; reconcile or the poll loop picks the row up later.
            return
        self._disarm(job_id)
        delay = max(0.0, (due_at - durations.utcnow()).total_seconds())
        self._timers[job_id] = self._loop.call_later(delay, self._spawn, job_id)

    def _disarm(self, job_id: int) -> None:
        handle = self._timers.pop(job_id, None)
        if handle is not None:
            handle.cancel()

    def _spawn(self, job_id: int) -> None:
        self._timers.pop(job_id, None)
        if job_id in self._inflight:
            return
        task = asyncio.get_running_loop().create_task(self._fire(job_id))
        self._inflight[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._inflight.pop(jid, None))

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def fire_due(self, wait: bool = True) -> int:
        """Fire every PENDING job whose due time has passed.

        Returns the number of jobs dispatched.  With ``wait`` the call
        returns once their handlers have finished.
        """
        async with self._session_factory() as db:
            job_ids = (
                await db.execute(
                    select(ScheduledJob.id)
                    .where(
                        ScheduledJob.status == C.JOB_PENDING,
                        ScheduledJob.due_at <= durations.utcnow(),
                    )
                    .order_by(ScheduledJob.due_at, ScheduledJob.id)
                )
            ).scalars().all()
        dispatched = 0
        for job_id in job_ids:
            if job_id in self._inflight:
                continue
            self._disarm(job_id)
            self._spawn(job_id)
            dispatched += 1
        if wait:
            await self.drain()
        return dispatched

    async def _fire(self, job_id: int) -> None:
        async with self._session_factory() as db:
            claimed = await conditional_update(
                db, ScheduledJob, job_id, C.JOB_PENDING,
                status=C.JOB_FIRED, fired_at=durations.utcnow(),
            )
            if not claimed:
                log.debug("Job %d already handled elsewhere", job_id)
                return
            await db.commit()
            job = await db.get(ScheduledJob, job_id)

        handler = self._handlers.get(job.job_type)
        if handler is None:
            failure = SchedulerFailure(
                f"No handler registered for {job.job_type}",
                data={"job_id": job.id, "job_type": job.job_type},
            )
            await self._fail(job, failure)
            return

        log.info("Firing %s for %s (job %d)", job.job_type, job.target_id, job.id)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, exp_base=self.backoff_base, max=self.backoff_max),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    try:
                        await handler(job)
                    except Exception as exc:
                        log.warning(
                            "Job %d (%s) attempt %d failed: %s",
                            job.id, job.job_type, attempt.retry_state.attempt_number, exc,
                        )
                        await self._record_attempt(job.id, error=repr(exc))
                        raise
        except RetryError as exc:
            last = exc.last_attempt.exception()
            failure = SchedulerFailure(
                f"{job.job_type} for {job.target_id} failed after {self.max_attempts} attempts",
                data={"job_id": job.id, "job_type": job.job_type,
                      "target_id": job.target_id, "error": repr(last)},
            )
            await self._fail(job, failure)
            return

        await self._record_attempt(job.id, finished=True)

    async def _record_attempt(self, job_id: int, error: str | None = None, finished: bool = False) -> None:
        values = {"attempts": ScheduledJob.attempts + 1}
        if error is not None:
            values["last_error"] = error[:2048]
        if finished:
            values["finished_at"] = durations.utcnow()
        async with self._session_factory() as db:
            await db.execute(
                update(ScheduledJob).where(ScheduledJob.id == job_id).values(**values)
            )
            await db.commit()

    async def _fail(self, job: ScheduledJob, failure: SchedulerFailure) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(ScheduledJob)
                .where(ScheduledJob.id == job.id)
                .values(
                    status=C.JOB_FAILED,
                    last_error=str(failure.data.get("error") or failure)[:2048],
                    finished_at=durations.utcnow(),
                )
            )
            await db.commit()
        log.error("Scheduler job %d FAILED: %s", job.id, failure)
        if self._on_failure is not None:
            try:
                await self._on_failure(job, failure)
            except Exception:
                log.exception("Failure hook raised for job %d", job.id)
