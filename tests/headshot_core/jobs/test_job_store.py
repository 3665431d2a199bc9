"""Tests for the job state machine and InMemoryJobStore."""

import asyncio
from datetime import timedelta

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from pydantic import ValidationError

from headshot_core.jobs.models import (
    TERMINAL_STATUSES,
    Job,
    JobError,
    JobStatus,
    Style,
    can_transition,
)
from headshot_core.jobs.store import InMemoryJobStore, JobStore
from headshot_core.runtime.errors import ErrorKind, JobNotFoundError, TransitionConflictError
from tests.fakes import ManualClock, StatusRecorder

SOURCE_REF = "a" * 64


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store(clock):
    return InMemoryJobStore(clock=clock)


async def create_job(store, clock, client_id="client-1", ttl=3600):
    return await store.create(
        client_id, SOURCE_REF, Style.CORPORATE_CLASSIC, clock() + timedelta(seconds=ttl)
    )


class TestStateMachine:
    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_statuses_have_no_exits(self, terminal):
        assert terminal.is_terminal
        assert not any(can_transition(terminal, target) for target in JobStatus)

    def test_dispatched_cannot_be_cancelled(self):
        assert not can_transition(JobStatus.DISPATCHED, JobStatus.CANCELLED)
        assert can_transition(JobStatus.QUEUED, JobStatus.CANCELLED)
        assert can_transition(JobStatus.RETRYING, JobStatus.CANCELLED)

    def test_completed_requires_result_ref(self, clock):
        with pytest.raises(ValidationError):
            Job(
                id="j",
                client_id="c",
                source_ref=SOURCE_REF,
                style=Style.CORPORATE_CLASSIC,
                status=JobStatus.COMPLETED,
                created_at=clock(),
                updated_at=clock(),
                expires_at=clock(),
            )

    def test_failed_requires_error(self, clock):
        with pytest.raises(ValidationError):
            Job(
                id="j",
                client_id="c",
                source_ref=SOURCE_REF,
                style=Style.CORPORATE_CLASSIC,
                status=JobStatus.FAILED,
                created_at=clock(),
                updated_at=clock(),
                expires_at=clock(),
            )


class TestInMemoryJobStore:
    def test_satisfies_protocol(self, store):
        assert isinstance(store, JobStore)

    @pytest.mark.asyncio
    async def test_create_starts_queued(self, store, clock):
        job = await create_job(store, clock)

        assert job.status == JobStatus.QUEUED
        assert job.attempt == 0
        assert job.result_ref is None and job.error is None
        assert (await store.get(job.id)) == job

    @pytest.mark.asyncio
    async def test_get_unknown_raises(self, store):
        with pytest.raises(JobNotFoundError):
            await store.get("missing")

    @pytest.mark.asyncio
    async def test_snapshots_are_copies(self, store, clock):
        job = await create_job(store, clock)
        job.attempt = 99

        assert (await store.get(job.id)).attempt == 0

    @pytest.mark.asyncio
    async def test_dispatch_increments_attempt(self, store, clock):
        job = await create_job(store, clock)

        dispatched = await store.transition(job.id, JobStatus.DISPATCHED, expected=JobStatus.QUEUED)
        assert dispatched.attempt == 1

        await store.transition(job.id, JobStatus.RETRYING, resume_at=clock())
        again = await store.transition(job.id, JobStatus.DISPATCHED)
        assert again.attempt == 2
        assert again.resume_at is None

    @pytest.mark.asyncio
    async def test_expected_status_mismatch_conflicts(self, store, clock):
        job = await create_job(store, clock)
        await store.transition(job.id, JobStatus.EXPIRED)

        with pytest.raises(TransitionConflictError):
            await store.transition(job.id, JobStatus.DISPATCHED, expected=JobStatus.QUEUED)

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, store, clock):
        job = await create_job(store, clock)

        results = await asyncio.gather(
            *[
                store.transition(job.id, JobStatus.DISPATCHED, expected=JobStatus.QUEUED)
                for _ in range(5)
            ],
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, Job)]
        assert len(winners) == 1
        assert all(isinstance(r, TransitionConflictError) for r in results if r not in winners)

    @pytest.mark.asyncio
    async def test_completed_needs_result_ref(self, store, clock):
        job = await create_job(store, clock)
        await store.transition(job.id, JobStatus.DISPATCHED)

        with pytest.raises(ValidationError):
            await store.transition(job.id, JobStatus.COMPLETED)

        assert (await store.get(job.id)).status == JobStatus.DISPATCHED

    @pytest.mark.asyncio
    async def test_attempt_cannot_decrease(self, store, clock):
        job = await create_job(store, clock)
        await store.transition(job.id, JobStatus.DISPATCHED)

        with pytest.raises(ValueError):
            await store.transition(job.id, JobStatus.RETRYING, attempt=0, resume_at=clock())

    @pytest.mark.asyncio
    async def test_list_eligible_is_fifo_and_respects_resume_at(self, store, clock):
        first = await create_job(store, clock)
        second = await create_job(store, clock)
        third = await create_job(store, clock)
        await store.transition(first.id, JobStatus.DISPATCHED)
        await store.transition(
            first.id, JobStatus.RETRYING, resume_at=clock() + timedelta(seconds=30)
        )

        assert [j.id for j in await store.list_eligible(clock())] == [second.id, third.id]
        assert await store.next_resume_at() == clock() + timedelta(seconds=30)

        clock.advance(30)
        assert [j.id for j in await store.list_eligible(clock())] == [first.id, second.id, third.id]

    @pytest.mark.asyncio
    async def test_list_eligible_skips_jobs_past_expiry(self, store, clock):
        short = await create_job(store, clock, ttl=10)
        retrying = await create_job(store, clock, ttl=10)
        fresh = await create_job(store, clock, ttl=3600)
        await store.transition(retrying.id, JobStatus.DISPATCHED)
        await store.transition(retrying.id, JobStatus.RETRYING, resume_at=clock())
        clock.advance(10)

        assert [j.id for j in await store.list_eligible(clock())] == [fresh.id]
        assert {j.id for j in await store.list_expirable(clock())} == {short.id, retrying.id}

    @pytest.mark.asyncio
    async def test_list_expirable_only_active_jobs(self, store, clock):
        active = await create_job(store, clock, ttl=10)
        done = await create_job(store, clock, ttl=10)
        await store.transition(done.id, JobStatus.DISPATCHED)
        await store.transition(
            done.id,
            JobStatus.FAILED,
            error=JobError(kind=ErrorKind.PROVIDER_PERMANENT, message="no face"),
        )
        clock.advance(10)

        assert [j.id for j in await store.list_expirable(clock())] == [active.id]

    @pytest.mark.asyncio
    async def test_purge_terminal_respects_cutoff(self, store, clock):
        job = await create_job(store, clock, ttl=10)
        await store.transition(job.id, JobStatus.CANCELLED)

        assert await store.purge_terminal(clock()) == 0
        clock.advance(10)
        assert await store.purge_terminal(clock()) == 1

        with pytest.raises(JobNotFoundError):
            await store.get(job.id)

    @pytest.mark.asyncio
    async def test_listeners_see_every_transition(self, store, clock):
        recorder = StatusRecorder()
        store.add_listener(recorder)
        job = await create_job(store, clock)
        await store.transition(job.id, JobStatus.DISPATCHED)
        await store.transition(job.id, JobStatus.COMPLETED, result_ref=SOURCE_REF)

        store.remove_listener(recorder)
        await create_job(store, clock)

        assert recorder.history == {
            job.id: [JobStatus.QUEUED, JobStatus.DISPATCHED, JobStatus.COMPLETED]
        }

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_transition(self, store, clock):
        def broken(job):
            raise RuntimeError("listener bug")

        store.add_listener(broken)
        job = await create_job(store, clock)

        moved = await store.transition(job.id, JobStatus.DISPATCHED)
        assert moved.status == JobStatus.DISPATCHED

    @pytest.mark.asyncio
    async def test_count_by_status(self, store, clock):
        await create_job(store, clock)
        job = await create_job(store, clock)
        await store.transition(job.id, JobStatus.DISPATCHED)

        assert await store.count_by_status() == {"queued": 1, "dispatched": 1}


def _fields_for(status: JobStatus, clock: ManualClock) -> dict:
    if status == JobStatus.COMPLETED:
        return {"result_ref": SOURCE_REF}
    if status == JobStatus.FAILED:
        return {"error": JobError(kind=ErrorKind.PROVIDER_PERMANENT, message="failed")}
    if status == JobStatus.RETRYING:
        return {"resume_at": clock()}
    return {}


class TestTransitionProperties:
    @settings(max_examples=200, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(targets=st.lists(st.sampled_from(list(JobStatus)), min_size=1, max_size=25))
    def test_random_sequences_follow_the_graph(self, targets):
        """Only allowed moves succeed, terminal states are final, attempt never decreases."""

        async def scenario():
            clock = ManualClock()
            store = InMemoryJobStore(clock=clock)
            job = await create_job(store, clock)
            last_attempt = job.attempt

            for target in targets:
                before = await store.get(job.id)
                try:
                    after = await store.transition(job.id, target, **_fields_for(target, clock))
                except TransitionConflictError:
                    assert not can_transition(before.status, target)
                    assert (await store.get(job.id)) == before
                    continue

                assert can_transition(before.status, target)
                assert not before.status.is_terminal
                assert after.attempt >= last_attempt
                if after.status == JobStatus.COMPLETED:
                    assert after.result_ref is not None
                if after.status == JobStatus.FAILED:
                    assert after.error is not None
                last_attempt = after.attempt

        asyncio.run(scenario())
