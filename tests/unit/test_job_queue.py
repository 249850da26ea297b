"""
Unit Tests for Background Job Queue
Retries, dead-lettering, concurrency and store-outage handling
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from leadsync.core.config import QueueSettings
from leadsync.domain.errors import NonRetryableJobError, StoreError
from leadsync.domain.models.job import JobType, SyncFormSubmissionPayload
from leadsync.domain.services.circuit_breaker import CircuitState
from leadsync.domain.services.job_queue import JobQueue
from tests.conftest import make_event


class TestJobQueueAdd:
    """Enqueueing"""

    @pytest.mark.asyncio
    async def test_add_stores_body_and_index(self, queue, store):
        job_id = await queue.add("test_job", {"x": 1})

        body = await store.get(queue.job_key(job_id))
        assert body["payload"] == {"x": 1}
        assert body["attempts"] == 0
        assert await store.list_items(queue.index_key) == [job_id]

    @pytest.mark.asyncio
    async def test_key_layout(self, queue):
        assert queue.index_key == "queue:test-queue:index"
        assert queue.job_key("42") == "queue:test-queue:42"
        assert queue.dead_letter_key("42") == "queue:test-queue:failed:42"

    @pytest.mark.asyncio
    async def test_add_accepts_payload_model(self, queue, store):
        payload = SyncFormSubmissionPayload(event=make_event())
        job_id = await queue.add(JobType.SYNC_FORM_SUBMISSION, payload)

        body = await store.get(queue.job_key(job_id))
        assert body["type"] == "sync_form_submission"
        assert body["payload"]["kind"] == "sync_form_submission"
        assert body["payload"]["event"]["id"] == "sub-1"

    @pytest.mark.asyncio
    async def test_add_raises_and_opens_circuit_when_store_down(self, queue, store):
        store.fail_with = StoreError("connection refused")

        with pytest.raises(StoreError):
            await queue.add("test_job", {})

        assert queue.breaker.state == CircuitState.OPEN


class TestJobQueueProcessing:
    """Handler outcomes"""

    @pytest.mark.asyncio
    async def test_success_removes_job(self, queue, store):
        handler = AsyncMock()
        queue.register_handler("test_job", handler)
        job_id = await queue.add("test_job", {"x": 1})

        assert await queue.run_once() == 1

        handler.assert_awaited_once_with({"x": 1})
        assert await store.get(queue.job_key(job_id)) is None
        assert await store.list_items(queue.index_key) == []
        stats = await queue.get_stats()
        assert stats["total_completed"] == 1

    @pytest.mark.asyncio
    async def test_retry_then_dead_letter_after_max_attempts(self, queue, store, clock):
        """A job that always fails is attempted exactly max_attempts times"""
        handler = AsyncMock(side_effect=RuntimeError("boom"))
        queue.register_handler("test_job", handler)
        job_id = await queue.add("test_job", {"x": 1}, max_attempts=3)

        await queue.run_once()
        job = await queue.get_job(job_id)
        assert job.attempts == 1
        assert job.available_at == clock() + 2

        # Still backing off: not picked up again
        assert await queue.run_once() == 0

        clock.advance(2)
        await queue.run_once()
        assert (await queue.get_job(job_id)).attempts == 2

        clock.advance(4)
        await queue.run_once()

        assert handler.await_count == 3
        assert await store.list_items(queue.index_key) == []
        assert await store.get(queue.job_key(job_id)) is None

        dead = await queue.get_dead_letters()
        assert len(dead) == 1
        assert dead[0].job.id == job_id
        assert dead[0].job.attempts == 3
        assert dead[0].job.error == "boom"
        assert dead[0].reason == "max_attempts_reached"

    @pytest.mark.asyncio
    async def test_retry_then_success(self, queue, clock):
        handler = AsyncMock(side_effect=[RuntimeError("flaky"), None])
        queue.register_handler("test_job", handler)
        await queue.add("test_job", {})

        await queue.run_once()
        clock.advance(2)
        await queue.run_once()

        assert handler.await_count == 2
        stats = await queue.get_stats()
        assert stats["pending"] == 0
        assert stats["total_retried"] == 1
        assert stats["total_completed"] == 1

    @pytest.mark.asyncio
    async def test_non_retryable_dead_letters_immediately(self, queue):
        handler = AsyncMock(side_effect=NonRetryableJobError("no phone"))
        queue.register_handler("test_job", handler)
        await queue.add("test_job", {}, max_attempts=3)

        await queue.run_once()

        handler.assert_awaited_once()
        dead = await queue.get_dead_letters()
        assert [d.reason for d in dead] == ["non_retryable"]

    @pytest.mark.asyncio
    async def test_unregistered_type_is_dropped(self, queue, store):
        await queue.add("unknown_job", {})

        await queue.run_once()

        assert await store.list_items(queue.index_key) == []
        assert await queue.get_dead_letters() == []
        assert (await queue.get_stats())["total_dropped"] == 1

    @pytest.mark.asyncio
    async def test_register_handler_last_wins(self, queue):
        first, second = AsyncMock(), AsyncMock()
        queue.register_handler("test_job", first)
        queue.register_handler("test_job", second)
        await queue.add("test_job", {})

        await queue.run_once()

        first.assert_not_awaited()
        second.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expired_body_is_pruned(self, queue, store, clock):
        handler = AsyncMock()
        queue.register_handler("test_job", handler)
        await queue.add("test_job", {}, ttl=10)

        clock.advance(11)
        await queue.run_once()

        handler.assert_not_awaited()
        assert await store.list_items(queue.index_key) == []

    @pytest.mark.asyncio
    async def test_undecodable_body_is_dropped_and_later_jobs_run(self, queue, store):
        handler = AsyncMock()
        queue.register_handler("test_job", handler)
        await store.set(queue.job_key("broken"), {"garbage": True}, 3600)
        await store.list_push(queue.index_key, "broken")
        job_id = await queue.add("test_job", {"x": 1})

        assert await queue.run_once() == 1

        handler.assert_awaited_once_with({"x": 1})
        assert await store.get(queue.job_key("broken")) is None
        assert await store.list_items(queue.index_key) == []
        assert await store.get(queue.job_key(job_id)) is None
        assert (await queue.get_stats())["total_dropped"] == 1

    @pytest.mark.asyncio
    async def test_prune_failure_opens_circuit(self, queue, store, clock):
        queue.register_handler("test_job", AsyncMock())
        await queue.add("test_job", {}, ttl=10)
        clock.advance(11)

        with patch.object(store, "list_remove", AsyncMock(side_effect=StoreError("connection reset"))):
            assert await queue._dispatch_ready() is None

        assert queue.breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_retry_keeps_ttl_given_at_enqueue(self, queue, clock):
        handler = AsyncMock(side_effect=[RuntimeError("boom"), None])
        queue.register_handler("test_job", handler)
        job_id = await queue.add("test_job", {}, ttl=7200)

        await queue.run_once()
        assert (await queue.get_job(job_id)).ttl_seconds == 7200

        # Past the queue's default body TTL, still inside the one given to add()
        clock.advance(3700)
        assert await queue.get_job(job_id) is not None
        assert await queue.run_once() == 1
        assert handler.await_count == 2

    def test_backoff_is_capped(self, queue):
        assert queue.backoff_delay(1) == 2
        assert queue.backoff_delay(3) == 8
        assert queue.backoff_delay(10) == 30


class TestJobQueueConcurrency:
    """Concurrency cap and in-flight tracking"""

    @pytest.mark.asyncio
    async def test_respects_max_concurrent(self, queue):
        queue.register_handler("test_job", AsyncMock())
        for i in range(3):
            await queue.add("test_job", {"i": i})

        assert await queue.run_once() == 2
        assert await queue.run_once() == 1

    @pytest.mark.asyncio
    async def test_in_flight_job_not_dispatched_twice(self, queue):
        gate = asyncio.Event()
        calls = []

        async def slow_handler(payload):
            calls.append(payload)
            await gate.wait()

        queue.register_handler("test_job", slow_handler)
        await queue.add("test_job", {})

        assert await queue._dispatch_ready() == 1
        assert await queue._dispatch_ready() == 0

        gate.set()
        await queue._drain()
        assert len(calls) == 1


class TestJobQueueStoreOutage:
    """Circuit breaker and quota halt"""

    @pytest.mark.asyncio
    async def test_outage_opens_circuit_and_uses_long_delay(self, queue, store, clock):
        handler = AsyncMock()
        queue.register_handler("test_job", handler)
        await queue.add("test_job", {})

        store.fail_with = StoreError("connection reset")
        dispatched = await queue._dispatch_ready()

        assert dispatched is None
        assert queue.breaker.state == CircuitState.OPEN
        assert queue._next_delay(dispatched) == 30.0

        # Store back, but the circuit is still cooling down
        store.fail_with = None
        calls_before = store.calls
        assert await queue.run_once() == 0
        assert store.calls == calls_before

        clock.advance(60)
        assert await queue.run_once() == 1
        handler.assert_awaited_once()
        assert queue.breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_idle_delay_when_empty(self, queue):
        assert queue._next_delay(await queue._dispatch_ready()) == 1.0

    @pytest.mark.asyncio
    async def test_request_limit_halts_queue(self, queue, store):
        store.fail_with = StoreError("ERR max requests limit exceeded. Limit: 500000, Usage: 500000")

        await queue._dispatch_ready()

        assert queue.is_halted
        stats = await queue.get_stats()
        assert stats["halted"] is True
        assert stats["store_available"] is False
        assert stats["pending"] is None


class TestJobQueueLoop:
    """process() / stop()"""

    @pytest.mark.asyncio
    async def test_process_runs_until_stopped(self, store, clock):
        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)
            queue.stop()

        queue = JobQueue(store, QueueSettings(name="loop"), clock=clock, sleep=fake_sleep)
        handler = AsyncMock()
        queue.register_handler("test_job", handler)
        await queue.add("test_job", {})

        await queue.process()

        handler.assert_awaited_once()
        assert sleeps == [0]
        assert not queue.is_running

    @pytest.mark.asyncio
    async def test_process_sleeps_long_when_store_down(self, store, clock):
        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)
            queue.stop()

        queue = JobQueue(store, QueueSettings(name="loop"), clock=clock, sleep=fake_sleep)
        store.fail_with = StoreError("down")

        await queue.process()

        assert sleeps == [30.0]

    @pytest.mark.asyncio
    async def test_process_is_noop_when_running(self, queue, caplog):
        queue._running = True

        await queue.process()

        assert "already running" in caplog.text


class TestJobQueueMaintenance:
    @pytest.mark.asyncio
    async def test_clear(self, queue):
        """Removes pending and dead-lettered jobs"""
        queue.register_handler("bad_job", AsyncMock(side_effect=NonRetryableJobError("x")))
        await queue.add("bad_job", {})
        await queue.run_once()
        await queue.add("test_job", {})

        assert await queue.clear() == 2
        stats = await queue.get_stats()
        assert stats["pending"] == 0
        assert stats["failed"] == 0
