"""
Background Job Queue
Key-value backed job queue with bounded concurrency, retries and dead-lettering
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from leadsync.core.config import QueueSettings
from leadsync.domain.errors import (
    JobQueueError,
    NonRetryableJobError,
    StoreError,
    StoreLimitExceededError,
)
from leadsync.domain.interfaces.kv_store import KeyValueStore
from leadsync.domain.models.job import DeadLetterRecord, Job
from leadsync.domain.services.circuit_breaker import CircuitBreaker, CircuitState

logger = logging.getLogger(__name__)

JobHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class JobQueue:
    """
    Generic background job queue over a KeyValueStore.

    Keys:
    - queue:{name}:{job_id} - Job body, stored with a TTL
    - queue:{name}:index - List of active job ids
    - queue:{name}:failed:{job_id} - Dead-letter record
    - queue:{name}:failed:index - List of dead-lettered job ids

    A job is done once its body is deleted and its id removed from the index.
    Delivery is at-least-once: a crash between handler success and cleanup
    re-runs the job, so handlers must be idempotent.
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: Optional[QueueSettings] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize queue.

        Args:
            store: Backing key-value store
            settings: Queue tuning (name, concurrency, backoff, delays)
            clock: Epoch-seconds clock, injectable for tests
            sleep: Async sleep used by the dispatch loop
        """
        self.settings = settings or QueueSettings()
        self.name = self.settings.name
        self._store = store
        self._clock = clock or time.time
        self._sleep = sleep or asyncio.sleep

        self.queue_key = f"queue:{self.name}"
        self.index_key = f"{self.queue_key}:index"
        self.failed_index_key = f"{self.queue_key}:failed:index"

        self._handlers: Dict[str, JobHandler] = {}
        self._running = False
        self._halted = False
        self._in_flight: Dict[str, asyncio.Task] = {}
        # Backoff deadlines known in-process, saves a body read per sweep
        self._not_before: Dict[str, float] = {}

        self.breaker = CircuitBreaker(
            name=self.queue_key,
            failure_threshold=self.settings.circuit_failure_threshold,
            recovery_timeout=self.settings.circuit_cooldown_seconds,
            clock=self._clock,
        )

        # Stats
        self._jobs_completed = 0
        self._jobs_retried = 0
        self._jobs_dead_lettered = 0
        self._jobs_dropped = 0

    def job_key(self, job_id: str) -> str:
        return f"{self.queue_key}:{job_id}"

    def dead_letter_key(self, job_id: str) -> str:
        return f"{self.queue_key}:failed:{job_id}"

    @staticmethod
    def _type_name(job_type: Union[str, Enum]) -> str:
        return job_type.value if isinstance(job_type, Enum) else str(job_type)

    def register_handler(self, job_type: Union[str, Enum], handler: JobHandler) -> None:
        """Register the handler for a job type; a later registration replaces it."""
        name = self._type_name(job_type)
        if name in self._handlers:
            logger.warning(f"Replacing handler for job type {name} on queue {self.name}")
        self._handlers[name] = handler
        logger.info(f"Handler registered for job type: {name}")

    def backoff_delay(self, attempts: int) -> float:
        """Seconds to wait before the next attempt: min(base * 2^attempts, cap)."""
        return min(
            self.settings.backoff_base_seconds * (2 ** attempts),
            self.settings.backoff_cap_seconds,
        )

    async def add(
        self,
        job_type: Union[str, Enum],
        payload: Union[Dict[str, Any], BaseModel],
        max_attempts: Optional[int] = None,
        ttl: Optional[int] = None,
    ) -> str:
        """
        Enqueue a job and return its id without waiting for processing.

        Raises:
            StoreError: if the body or the index entry could not be written
        """
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")

        job = Job(
            type=self._type_name(job_type),
            payload=payload,
            max_attempts=max_attempts or self.settings.max_attempts,
            created_at=self._clock(),
            ttl_seconds=ttl or self.settings.job_ttl_seconds,
        )
        if job.max_attempts < 1:
            raise JobQueueError(f"max_attempts must be >= 1, got {job.max_attempts}")

        try:
            await self._store.set(
                self.job_key(job.id),
                job.to_store_dict(),
                job.ttl_seconds,
            )
            await self._store.list_push(self.index_key, job.id, self.settings.index_ttl_seconds)
        except StoreError as e:
            self._on_store_error(e)
            raise

        logger.info(f"Job added to queue {self.name}: {job.type} ({job.id})")
        return job.id

    async def process(self) -> None:
        """
        Run the dispatch loop until stop() is called.

        Calling it while the loop is already running is a logged no-op.
        In-flight jobs are awaited before returning.
        """
        if self._running:
            logger.warning(f"Processing already running for queue: {self.name}")
            return

        self._running = True
        self._halted = False
        logger.info(f"Starting processing for queue: {self.name}")

        try:
            while self._running:
                try:
                    dispatched = await self._dispatch_ready()
                    delay = self._next_delay(dispatched)
                except asyncio.CancelledError:
                    logger.info(f"Queue {self.name} received cancellation signal")
                    raise
                except Exception as e:
                    logger.error(f"Queue {self.name} loop error: {e}", exc_info=True)
                    delay = self.settings.idle_delay_seconds

                if self._running:
                    await self._sleep(delay)
        finally:
            await self._drain()
            self._running = False
            logger.info(f"Processing stopped for queue {self.name}")

    def stop(self) -> None:
        """Signal the loop to exit once in-flight jobs complete."""
        if self._running:
            logger.info(f"Stopping queue {self.name}")
        self._running = False

    async def run_once(self) -> int:
        """
        Dispatch every ready job once and wait for those jobs to finish.

        Returns:
            Number of jobs dispatched
        """
        dispatched = await self._dispatch_ready()
        await self._drain()
        return dispatched or 0

    async def _drain(self) -> None:
        tasks = list(self._in_flight.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _next_delay(self, dispatched: Optional[int]) -> float:
        if dispatched is None:
            # Store unavailable: back off much harder than an empty queue
            return self.settings.unavailable_delay_seconds
        if len(self._in_flight) >= self.settings.max_concurrent:
            return self.settings.busy_delay_seconds
        if dispatched > 0:
            return 0
        return self.settings.idle_delay_seconds

    async def _dispatch_ready(self) -> Optional[int]:
        """
        Start ready jobs up to the concurrency cap.

        Returns:
            Jobs dispatched, or None if the store is unavailable
        """
        if not self.breaker.allow_request():
            logger.info(
                f"Store circuit open for {self.name}, "
                f"waiting {self.settings.unavailable_delay_seconds:.0f}s before retrying"
            )
            return None

        if len(self._in_flight) >= self.settings.max_concurrent:
            return 0

        try:
            job_ids = await self._store.list_items(self.index_key)
        except StoreError as e:
            self._on_store_error(e)
            return None

        self.breaker.record_success()

        now = self._clock()
        dispatched = 0

        for job_id in job_ids:
            if len(self._in_flight) >= self.settings.max_concurrent:
                break
            if job_id in self._in_flight:
                continue
            if self._not_before.get(job_id, 0) > now:
                continue

            try:
                data = await self._store.get(self.job_key(job_id))
                job = Job.from_store_dict(data) if data is not None else None
            except StoreError as e:
                self._on_store_error(e)
                return dispatched if dispatched else None
            except (ValidationError, ValueError, TypeError) as e:
                logger.error(f"Job {job_id} on {self.name} has an undecodable body, dropping it: {e}")
                self._jobs_dropped += 1
                if not await self._prune(job_id):
                    return dispatched if dispatched else None
                continue

            if job is None:
                # Body expired or was deleted; drop the dangling index entry
                logger.warning(f"Job {job_id} body missing from {self.name}, pruning index entry")
                if not await self._prune(job_id):
                    return dispatched if dispatched else None
                continue

            if job.available_at > now:
                self._not_before[job.id] = job.available_at
                continue

            self._dispatch(job)
            dispatched += 1

        return dispatched

    def _dispatch(self, job: Job) -> None:
        self._not_before.pop(job.id, None)
        task = asyncio.create_task(self._run_job(job))
        self._in_flight[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._in_flight.pop(job_id, None))

    async def _run_job(self, job: Job) -> None:
        """Run one job's handler and settle its outcome in the store."""
        handler = self._handlers.get(job.type)

        try:
            if handler is None:
                logger.error(f"No handler registered for job type: {job.type}, dropping job {job.id}")
                self._jobs_dropped += 1
                await self._complete(job)
                return

            logger.info(f"Processing job: {job.type} ({job.id})")

            try:
                await handler(job.payload)
            except NonRetryableJobError as e:
                job.attempts += 1
                job.error = str(e)
                logger.error(f"Job {job.id} rejected without retry: {e}")
                await self._dead_letter(job, reason="non_retryable")
                return
            except Exception as e:
                await self._handle_failure(job, e)
                return

            job.processed_at = self._clock()
            await self._complete(job)
            self._jobs_completed += 1
            logger.info(f"Job completed: {job.type} ({job.id})")

        except StoreError as e:
            # Outcome not recorded; the job stays indexed and is redelivered
            self._on_store_error(e)
            logger.error(f"Could not settle job {job.id} on {self.name}: {e}")

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        job.attempts += 1
        job.error = str(error) or error.__class__.__name__

        logger.error(
            f"Job {job.id} failed (attempt {job.attempts}/{job.max_attempts}): {job.error}",
            exc_info=True,
        )

        if job.exhausted:
            logger.error(f"Job {job.id} failed permanently after {job.attempts} attempts")
            await self._dead_letter(job, reason="max_attempts_reached")
            return

        delay = self.backoff_delay(job.attempts)
        job.available_at = self._clock() + delay
        ttl = job.ttl_seconds or self.settings.job_ttl_seconds
        await self._store.set(self.job_key(job.id), job.to_store_dict(), ttl)
        self._not_before[job.id] = job.available_at
        self._jobs_retried += 1
        logger.info(f"Job {job.id} scheduled for retry in {delay:.1f}s")

    async def _complete(self, job: Job) -> None:
        await self._store.delete(self.job_key(job.id))
        await self._remove_from_index(job.id)

    async def _dead_letter(self, job: Job, reason: str) -> None:
        record = DeadLetterRecord(job=job, failed_at=self._clock(), reason=reason)
        ttl = self.settings.dead_letter_ttl_seconds

        await self._store.set(self.dead_letter_key(job.id), record.model_dump(mode="json"), ttl)
        await self._store.list_push(self.failed_index_key, job.id, ttl)
        await self._remove_from_index(job.id)
        await self._store.delete(self.job_key(job.id))
        self._jobs_dead_lettered += 1

    async def _prune(self, job_id: str) -> bool:
        """Delete a job body and its index entry; False if the store failed."""
        try:
            await self._store.delete(self.job_key(job_id))
            await self._remove_from_index(job_id)
        except StoreError as e:
            self._on_store_error(e)
            return False
        return True

    async def _remove_from_index(self, job_id: str) -> None:
        await self._store.list_remove(self.index_key, job_id)
        self._not_before.pop(job_id, None)

    def _on_store_error(self, error: StoreError) -> None:
        """Open the circuit; halt outright on an exhausted request quota."""
        if isinstance(error, StoreLimitExceededError) or StoreLimitExceededError.matches(error):
            logger.critical(
                f"STORE REQUEST LIMIT EXCEEDED - stopping {self.name} queue processing. "
                f"Provision a new store or raise the plan limit, then restart processing."
            )
            self._halted = True
            self._running = False
            self.breaker.trip()
            return

        logger.error(f"Store error for {self.name}, activating circuit breaker: {error}")
        self.breaker.record_failure()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_halted(self) -> bool:
        return self._halted

    async def get_stats(self) -> dict:
        """Get queue statistics."""
        pending: Optional[int] = None
        failed: Optional[int] = None

        try:
            pending = len(await self._store.list_items(self.index_key))
            failed = len(await self._store.list_items(self.failed_index_key))
        except StoreError as e:
            self._on_store_error(e)

        return {
            "name": self.name,
            "pending": pending,
            "active": len(self._in_flight),
            "failed": failed,
            "processing": self._running,
            "halted": self._halted,
            "circuit_state": self.breaker.state.value,
            "store_available": self.breaker.state != CircuitState.OPEN,
            "total_completed": self._jobs_completed,
            "total_retried": self._jobs_retried,
            "total_dead_lettered": self._jobs_dead_lettered,
            "total_dropped": self._jobs_dropped,
        }

    async def get_job(self, job_id: str) -> Optional[Job]:
        data = await self._store.get(self.job_key(job_id))
        return Job.from_store_dict(data) if data else None

    async def get_dead_letters(self) -> List[DeadLetterRecord]:
        """Dead-letter records still inside their retention window."""
        records = []
        for job_id in await self._store.list_items(self.failed_index_key):
            data = await self._store.get(self.dead_letter_key(job_id))
            if data is None:
                await self._store.list_remove(self.failed_index_key, job_id)
                continue
            records.append(DeadLetterRecord.model_validate(data))
        return records

    async def clear(self) -> int:
        """
        Remove all active and dead-lettered jobs (for testing/debugging).

        Returns:
            Number of jobs cleared
        """
        job_ids = await self._store.list_items(self.index_key)
        failed_ids = await self._store.list_items(self.failed_index_key)

        for job_id in job_ids:
            await self._store.delete(self.job_key(job_id))
        for job_id in failed_ids:
            await self._store.delete(self.dead_letter_key(job_id))

        await self._store.delete(self.index_key)
        await self._store.delete(self.failed_index_key)
        self._not_before.clear()

        count = len(job_ids) + len(failed_ids)
        logger.info(f"Cleared {count} jobs from queue {self.name}")
        return count
