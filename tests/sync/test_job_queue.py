"""
Tests for the durable ingestion job queue.

Time is driven by a fake clock so backoff scheduling is checked exactly.
"""

import asyncio

import pytest

from docsync.errors import (
    EmbeddingError,
    JobNotFoundError,
    JobQueueError,
    UnsupportedFileType,
)
from docsync.models.jobs import (
    BackoffPolicy,
    FilePayload,
    JobResult,
    JobState,
    RetryPolicy,
    TextPayload,
)
from docsync.sync.queue import JobQueue


def text_payload(text: str = "hello world") -> TextPayload:
    return TextPayload(text=text, metadata={"source": "test"})


class TestBackoffPolicy:
    """Test retry delay computation"""

    def test_exponential_delays(self):
        policy = BackoffPolicy(delay_ms=1000)
        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 2.0
        assert policy.delay_for(3) == 4.0

    def test_fixed_delays(self):
        policy = BackoffPolicy(type="fixed", delay_ms=500)
        assert policy.delay_for(1) == policy.delay_for(4) == 0.5

    def test_no_attempts_no_delay(self):
        assert BackoffPolicy().delay_for(0) == 0.0


class TestEnqueue:
    """Test producing and inspecting jobs"""

    @pytest.mark.asyncio
    async def test_enqueue_persists_waiting_job(self, job_queue):
        job = await job_queue.enqueue(text_payload())

        stored = await job_queue.get_job(job.id)
        assert stored.state == JobState.WAITING
        assert stored.attempts == 0
        assert stored.max_attempts == 3
        assert stored.payload == text_payload()

    @pytest.mark.asyncio
    async def test_file_payload_round_trips(self, job_queue):
        payload = FilePayload(
            file_path="/tmp/doc.pdf", file_type=".PDF", filename="doc.pdf",
            delete_after_processing=True, file_id="f1"
        )
        job = await job_queue.enqueue(payload)

        stored = await job_queue.get_job(job.id)
        assert isinstance(stored.payload, FilePayload)
        assert stored.payload.file_type == "pdf"
        assert stored.file_id == "f1"
        assert stored.is_file_job

    @pytest.mark.asyncio
    async def test_policy_override(self, job_queue):
        job = await job_queue.enqueue(text_payload(), RetryPolicy(max_attempts=7))
        assert (await job_queue.get_job(job.id)).max_attempts == 7

    @pytest.mark.asyncio
    async def test_jobs_survive_restart(self, tmp_path, clock):
        db_path = tmp_path / "queue.db"
        async with JobQueue(db_path, clock=clock) as queue:
            job = await queue.enqueue(text_payload())

        async with JobQueue(db_path, clock=clock) as queue:
            claimed = await queue.claim_next()
            assert claimed.id == job.id

    @pytest.mark.asyncio
    async def test_counts(self, job_queue):
        await job_queue.enqueue(text_payload("a"))
        await job_queue.enqueue(text_payload("b"))
        await job_queue.claim_next()

        counts = await job_queue.counts()
        assert counts == {"waiting": 1, "active": 1, "completed": 0, "failed": 0}
        assert await job_queue.has_unfinished()

    @pytest.mark.asyncio
    async def test_unknown_job(self, job_queue):
        assert await job_queue.get_job("missing") is None
        with pytest.raises(JobNotFoundError):
            await job_queue.require_job("missing")


class TestRemove:
    """Test cancelling waiting jobs"""

    @pytest.mark.asyncio
    async def test_remove_waiting_job(self, job_queue):
        job = await job_queue.enqueue(text_payload())

        await job_queue.remove(job.id)

        assert await job_queue.get_job(job.id) is None

    @pytest.mark.asyncio
    async def test_remove_active_job_rejected(self, job_queue):
        job = await job_queue.enqueue(text_payload())
        await job_queue.claim_next()

        with pytest.raises(JobQueueError):
            await job_queue.remove(job.id)

    @pytest.mark.asyncio
    async def test_remove_unknown_job(self, job_queue):
        with pytest.raises(JobNotFoundError):
            await job_queue.remove("missing")


class TestClaim:
    """Test dispatch order and exclusivity"""

    @pytest.mark.asyncio
    async def test_fifo_order(self, job_queue):
        first = await job_queue.enqueue(text_payload("first"))
        second = await job_queue.enqueue(text_payload("second"))

        assert (await job_queue.claim_next()).id == first.id
        assert (await job_queue.claim_next()).id == second.id
        assert await job_queue.claim_next() is None

    @pytest.mark.asyncio
    async def test_claim_increments_attempts(self, job_queue):
        await job_queue.enqueue(text_payload())

        job = await job_queue.claim_next()

        assert job.state == JobState.ACTIVE
        assert job.attempts == 1
        assert job.attempts_left == 2

    @pytest.mark.asyncio
    async def test_concurrent_claims_never_share_a_job(self, job_queue):
        for i in range(5):
            await job_queue.enqueue(text_payload(f"job {i}"))

        claimed = await asyncio.gather(*(job_queue.claim_next() for _ in range(8)))

        ids = [job.id for job in claimed if job is not None]
        assert len(ids) == 5
        assert len(set(ids)) == 5

    @pytest.mark.asyncio
    async def test_wait_for_job_wakes_on_enqueue(self, job_queue):
        waiter = asyncio.create_task(job_queue.wait_for_job(5.0))
        await asyncio.sleep(0)

        await job_queue.enqueue(text_payload())

        await asyncio.wait_for(waiter, timeout=1.0)


class TestCompletion:
    """Test terminal success and progress"""

    @pytest.mark.asyncio
    async def test_complete(self, job_queue):
        await job_queue.enqueue(text_payload())
        job = await job_queue.claim_next()

        completed = await job_queue.complete(job.id, JobResult(id="vec-1"))

        assert completed.state == JobState.COMPLETED
        stored = await job_queue.get_job(job.id)
        assert stored.state == JobState.COMPLETED
        assert stored.result.id == "vec-1"
        assert stored.progress == 100
        assert stored.finished_at is not None
        assert not await job_queue.has_unfinished()

    @pytest.mark.asyncio
    async def test_complete_requires_active(self, job_queue):
        job = await job_queue.enqueue(text_payload())

        with pytest.raises(JobQueueError):
            await job_queue.complete(job.id, JobResult(id="vec-1"))

    @pytest.mark.asyncio
    async def test_progress_is_monotonic(self, job_queue):
        await job_queue.enqueue(text_payload())
        job = await job_queue.claim_next()

        await job_queue.update_progress(job.id, 40)
        await job_queue.update_progress(job.id, 10)
        assert (await job_queue.get_job(job.id)).progress == 40

        await job_queue.update_progress(job.id, 250)
        assert (await job_queue.get_job(job.id)).progress == 100


class TestRetries:
    """Test failure handling with exponential backoff"""

    @pytest.mark.asyncio
    async def test_retry_schedule(self, job_queue, clock):
        """Test attempts 1 and 2 are rescheduled 1s and 2s later, attempt 3 fails the job"""
        job = await job_queue.enqueue(text_payload())

        claimed = await job_queue.claim_next()
        outcome = await job_queue.fail(claimed.id, EmbeddingError("provider down"))
        assert outcome.state == JobState.WAITING
        assert outcome.available_at == clock.now + 1.0
        assert outcome.failed_reason == "provider down"

        # Not available before its backoff expires
        clock.advance(0.5)
        assert await job_queue.claim_next() is None
        assert await job_queue.seconds_until_next() == pytest.approx(0.5)

        clock.advance(0.5)
        claimed = await job_queue.claim_next()
        assert claimed.attempts == 2
        outcome = await job_queue.fail(claimed.id, EmbeddingError("provider down"))
        assert outcome.available_at == clock.now + 2.0

        clock.advance(2.0)
        claimed = await job_queue.claim_next()
        assert claimed.attempts == 3
        outcome = await job_queue.fail(claimed.id, EmbeddingError("provider down"))

        assert outcome.state == JobState.FAILED
        stored = await job_queue.get_job(job.id)
        assert stored.state == JobState.FAILED
        assert stored.attempts == 3
        assert stored.failed_reason == "provider down"
        assert job_queue.get_metrics()["total_retried"] == 2

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self, job_queue):
        await job_queue.enqueue(text_payload())
        claimed = await job_queue.claim_next()

        outcome = await job_queue.fail(claimed.id, UnsupportedFileType("docx"))

        assert outcome.state == JobState.FAILED
        assert outcome.attempts == 1

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self, job_queue):
        await job_queue.enqueue(text_payload(), RetryPolicy(max_attempts=1))
        claimed = await job_queue.claim_next()

        outcome = await job_queue.fail(claimed.id, EmbeddingError("down"))

        assert outcome.state == JobState.FAILED

    @pytest.mark.asyncio
    async def test_fail_requires_active(self, job_queue):
        job = await job_queue.enqueue(text_payload())

        with pytest.raises(JobQueueError):
            await job_queue.fail(job.id, EmbeddingError("down"))

    @pytest.mark.asyncio
    async def test_recover_stalled(self, job_queue):
        job = await job_queue.enqueue(text_payload())
        await job_queue.claim_next()

        assert await job_queue.recover_stalled() == 1

        reclaimed = await job_queue.claim_next()
        assert reclaimed.id == job.id
        assert reclaimed.attempts == 2

    @pytest.mark.asyncio
    async def test_stalled_on_final_attempt_is_failed(self, job_queue):
        """Test crash recovery never grants more than max_attempts claims"""
        job = await job_queue.enqueue(text_payload(), RetryPolicy(max_attempts=1))
        await job_queue.claim_next()

        assert await job_queue.recover_stalled() == 0
        failed = await job_queue.fail_exhausted_stalled()

        assert [j.id for j in failed] == [job.id]
        stored = await job_queue.get_job(job.id)
        assert stored.state == JobState.FAILED
        assert stored.attempts == 1
        assert stored.failed_reason
        assert await job_queue.claim_next() is None

    @pytest.mark.asyncio
    async def test_fail_exhausted_ignores_jobs_with_attempts_left(self, job_queue):
        await job_queue.enqueue(text_payload())
        await job_queue.claim_next()

        assert await job_queue.fail_exhausted_stalled() == []
        assert (await job_queue.counts())["active"] == 1


class TestRetention:
    """Test trimming of terminal jobs"""

    @pytest.mark.asyncio
    async def test_completed_history_is_bounded(self, tmp_path, clock):
        async with JobQueue(tmp_path / "queue.db", remove_on_complete=2, clock=clock) as queue:
            ids = []
            for i in range(4):
                await queue.enqueue(text_payload(f"job {i}"))
                job = await queue.claim_next()
                await queue.complete(job.id, JobResult(id=f"vec-{i}"))
                ids.append(job.id)

            remaining = [job.id for job in await queue.list_jobs(JobState.COMPLETED)]
            assert sorted(remaining) == sorted(ids[-2:])

    @pytest.mark.asyncio
    async def test_failed_history_is_bounded(self, tmp_path, clock):
        policy = RetryPolicy(max_attempts=1)
        async with JobQueue(tmp_path / "queue.db", retry_policy=policy, remove_on_fail=1, clock=clock) as queue:
            for i in range(3):
                await queue.enqueue(text_payload(f"job {i}"))
                job = await queue.claim_next()
                await queue.fail(job.id, EmbeddingError("down"))

            assert (await queue.counts())["failed"] == 1

    @pytest.mark.asyncio
    async def test_waiting_jobs_never_trimmed(self, tmp_path, clock):
        async with JobQueue(tmp_path / "queue.db", remove_on_complete=0, clock=clock) as queue:
            await queue.enqueue(text_payload("done"))
            job = await queue.claim_next()
            await queue.enqueue(text_payload("pending"))
            await queue.complete(job.id, JobResult(id="vec"))

            counts = await queue.counts()
            assert counts["completed"] == 0
            assert counts["waiting"] == 1
