"""Tests for the durable job queue and the worker that drains it.

Uses an in-memory SQLite database shared through StaticPool.
"""
from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leadscout import jobs, services
from leadscout.cache import ResultCache
from leadscout.config import Settings
from leadscout.errors import FetchError
from leadscout.models import AnalysisJob, Base, Lead
from leadscout.pipeline import Pipeline
from leadscout.schemas import (
    CompanyProfile,
    ContactProfile,
    EmailContact,
    LeadMetadata,
    LeadProfile,
    Subject,
    TechnologyProfile,
)
from leadscout.utils import ensure_aware
from leadscout.worker import Worker, build_workers

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _adapters() -> dict[str, MagicMock]:
    adapters = {name: MagicMock() for name in ("repository", "technology", "contacts", "company")}
    adapters["repository"].fetch = AsyncMock(side_effect=AssertionError("no github subject"))
    adapters["technology"].fetch = AsyncMock(return_value=TechnologyProfile(url="https://acme.io"))
    adapters["contacts"].fetch = AsyncMock(return_value=ContactProfile(
        emails=[EmailContact(email="info@acme.io", type="general", confidence=0.85)], confidence=0.4,
    ))
    adapters["company"].fetch = AsyncMock(return_value=CompanyProfile(
        name="Acme", domain="acme.io", website="https://acme.io",
    ))
    return adapters


def _worker(session_factory, adapters=None, **kwargs) -> Worker:
    pipeline = Pipeline(**(adapters or _adapters()), cache=ResultCache(), sleep=FakeSleep())
    return Worker(pipeline, session_factory, worker_id="w-test", sleep=FakeSleep(), **kwargs)


def _profile() -> LeadProfile:
    return LeadProfile(metadata=LeadMetadata(analyzed_at=T0, source="website", url="https://acme.io"))


def _submit(session_factory, **kwargs) -> str:
    with session_factory() as s:
        return services.submit(s, **kwargs)


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


class TestQueue:
    def test_enqueue_and_claim(self, session):
        job = jobs.enqueue(session, Subject(website="acme.io"), user_id="u1", now=T0)
        assert job.status == jobs.PENDING
        assert job.stage == "Queued"

        claimed = jobs.claim(session, "w1", now=T0)
        assert claimed.id == job.id
        assert claimed.subject == Subject(website="acme.io")
        assert claimed.user_id == "u1"
        assert claimed.attempts == 1

        assert jobs.claim(session, "w2", now=T0) is None
        row = jobs.get_job(session, job.id)
        assert row.status == jobs.PROCESSING
        assert row.worker_id == "w1"

    def test_claims_oldest_first(self, session):
        first = jobs.enqueue(session, Subject(website="a.io"), now=T0)
        second = jobs.enqueue(session, Subject(website="b.io"), now=T0 + timedelta(seconds=1))
        assert jobs.claim(session, "w1", now=T0 + timedelta(seconds=5)).id == first.id
        assert jobs.claim(session, "w2", now=T0 + timedelta(seconds=5)).id == second.id

    def test_future_jobs_not_claimed(self, session):
        jobs.enqueue(session, Subject(website="acme.io"), now=T0)
        assert jobs.claim(session, "w1", now=T0 - timedelta(seconds=1)) is None

    def test_progress_only_from_owner_and_monotonic(self, session):
        job = jobs.enqueue(session, Subject(website="acme.io"), now=T0)
        jobs.claim(session, "w1", now=T0)

        assert jobs.update_progress(session, job.id, "w1", 30, "Detecting website technology", now=T0)
        assert not jobs.update_progress(session, job.id, "w2", 60, "Hijacked", now=T0)
        assert jobs.update_progress(session, job.id, "w1", 10, "Analyzing GitHub repository", now=T0)

        row = jobs.get_job(session, job.id)
        assert row.progress == 30
        assert row.stage == "Analyzing GitHub repository"

    def test_fail_schedules_retry(self, session):
        job = jobs.enqueue(session, Subject(website="acme.io"), now=T0)
        jobs.claim(session, "w1", now=T0)
        jobs.update_progress(session, job.id, "w1", 30, "Detecting website technology", now=T0)

        assert jobs.fail(session, job.id, "w1", "RuntimeError: boom", now=T0) == jobs.PENDING
        row = jobs.get_job(session, job.id)
        assert row.error == "RuntimeError: boom"
        assert row.stage == "Retrying in 2s"
        assert row.worker_id is None
        assert ensure_aware(row.available_at) == T0 + timedelta(seconds=2)

        assert jobs.claim(session, "w2", now=T0 + timedelta(seconds=1)) is None
        again = jobs.claim(session, "w2", now=T0 + timedelta(seconds=2))
        assert again.attempts == 2

        # progress survives the retry
        jobs.update_progress(session, job.id, "w2", 0, "Starting analysis", now=T0)
        assert jobs.get_job(session, job.id).progress == 30

    def test_backoff_doubles(self):
        assert [jobs.retry_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    def test_fail_after_max_attempts(self, session):
        job = jobs.enqueue(session, Subject(website="acme.io"), max_attempts=1, now=T0)
        jobs.claim(session, "w1", now=T0)
        assert jobs.fail(session, job.id, "w1", "RuntimeError: boom", now=T0) == jobs.FAILED
        row = jobs.get_job(session, job.id)
        assert row.stage == "Failed"
        assert row.completed_at is not None

    def test_fail_by_non_owner_ignored(self, session):
        job = jobs.enqueue(session, Subject(website="acme.io"), now=T0)
        jobs.claim(session, "w1", now=T0)
        assert jobs.fail(session, job.id, "w2", "nope", now=T0) is None
        assert jobs.get_job(session, job.id).status == jobs.PROCESSING

    def test_complete(self, session):
        job = jobs.enqueue(session, Subject(website="acme.io"), now=T0)
        jobs.claim(session, "w1", now=T0)
        assert not jobs.complete(session, job.id, "w2", _profile(), now=T0)
        assert jobs.complete(session, job.id, "w1", _profile(), now=T0)

        status = services.get_status(session, job.id)
        assert status["status"] == jobs.COMPLETED
        assert status["progress"] == 100
        assert status["result"].metadata.url == "https://acme.io"

    def test_requeue_stalled(self, session):
        retryable = jobs.enqueue(session, Subject(website="a.io"), now=T0)
        exhausted = jobs.enqueue(session, Subject(website="b.io"), max_attempts=1, now=T0 + timedelta(seconds=1))
        jobs.claim(session, "w1", now=T0 + timedelta(seconds=1))
        jobs.claim(session, "w2", now=T0 + timedelta(seconds=1))

        assert jobs.requeue_stalled(session, timeout=300, now=T0 + timedelta(seconds=100)) == 0
        assert jobs.requeue_stalled(session, timeout=300, now=T0 + timedelta(seconds=400)) == 1

        row = jobs.get_job(session, retryable.id)
        assert row.status == jobs.PENDING
        assert row.stage == "Requeued"
        assert row.worker_id is None
        dead = jobs.get_job(session, exhausted.id)
        assert dead.status == jobs.FAILED
        assert dead.error == "Worker stalled"

    def test_progress_renews_claim(self, session):
        job = jobs.enqueue(session, Subject(website="acme.io"), now=T0)
        jobs.claim(session, "w1", now=T0)
        jobs.update_progress(session, job.id, "w1", 50, "Extracting contact information",
                             now=T0 + timedelta(seconds=250))

        assert jobs.requeue_stalled(session, timeout=300, now=T0 + timedelta(seconds=400)) == 0
        assert jobs.get_job(session, job.id).worker_id == "w1"
        assert jobs.requeue_stalled(session, timeout=300, now=T0 + timedelta(seconds=600)) == 1

    def test_unknown_job(self, session):
        assert services.get_status(session, "missing") is None


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------


class TestWorker:
    @pytest.mark.asyncio
    async def test_processes_job_to_completion(self, session_factory):
        job_id = _submit(session_factory, website="acme.io", user_id="u1")
        assert await _worker(session_factory).drain() == 1

        with session_factory() as s:
            status = services.get_status(s, job_id)
            assert status["status"] == jobs.COMPLETED
            assert status["progress"] == 100
            assert status["stage"] == "Complete"
            assert status["result"].scoring is not None

            lead = s.execute(select(Lead)).scalars().one()
            assert lead.name == "Acme"
            assert lead.domain == "acme.io"
            assert lead.user_id == "u1"
            assert [a.type for a in lead.activities] == ["ANALYZED"]
            assert s.get(AnalysisJob, job_id).lead_id == lead.id

    @pytest.mark.asyncio
    async def test_degraded_stage_still_completes(self, session_factory):
        adapters = _adapters()
        adapters["technology"].fetch = AsyncMock(side_effect=FetchError("timed out"))
        job_id = _submit(session_factory, website="acme.io")
        await _worker(session_factory, adapters).drain()

        with session_factory() as s:
            status = services.get_status(s, job_id)
            assert status["status"] == jobs.COMPLETED
            assert status["result"].technology is None
            assert status["error"] is None

    @pytest.mark.asyncio
    async def test_progress_write_error_does_not_fail_job(self, session_factory):
        job_id = _submit(session_factory, website="acme.io")
        locked = OperationalError("UPDATE analysis_jobs", {}, Exception("database is locked"))
        with patch("leadscout.jobs.update_progress", side_effect=locked) as update_progress:
            assert await _worker(session_factory).drain() == 1

        assert update_progress.called
        with session_factory() as s:
            status = services.get_status(s, job_id)
            assert status["status"] == jobs.COMPLETED
            assert status["error"] is None
            assert s.get(AnalysisJob, job_id).attempts == 1

    @pytest.mark.asyncio
    async def test_pipeline_error_requeues_job(self, session_factory):
        pipeline = MagicMock()
        pipeline.run = AsyncMock(side_effect=RuntimeError("boom"))
        worker = Worker(pipeline, session_factory, worker_id="w-test")
        job_id = _submit(session_factory, website="acme.io")

        assert await worker.drain() == 1
        with session_factory() as s:
            job = s.get(AnalysisJob, job_id)
            assert job.status == jobs.PENDING
            assert job.error == "RuntimeError: boom"
            assert job.attempts == 1
            assert s.execute(select(Lead)).scalars().all() == []

    @pytest.mark.asyncio
    async def test_pipeline_error_on_last_attempt_fails_job(self, session_factory):
        pipeline = MagicMock()
        pipeline.run = AsyncMock(side_effect=RuntimeError("boom"))
        worker = Worker(pipeline, session_factory, worker_id="w-test")
        job_id = _submit(session_factory, website="acme.io", max_attempts=1)

        await worker.drain()
        with session_factory() as s:
            status = services.get_status(s, job_id)
            assert status["status"] == jobs.FAILED
            assert status["error"] == "RuntimeError: boom"
            assert status["result"] is None

    @pytest.mark.asyncio
    async def test_run_forever_stops_when_idle(self, session_factory):
        stop = asyncio.Event()

        async def sleep(delay: float) -> None:
            stop.set()

        job_id = _submit(session_factory, website="acme.io")
        worker = _worker(session_factory)
        worker._sleep = sleep
        await worker.run_forever(stop)

        with session_factory() as s:
            assert services.get_status(s, job_id)["status"] == jobs.COMPLETED

    def test_build_workers_share_pipeline(self, session_factory):
        pipeline = MagicMock()
        workers = build_workers(Settings(job_backoff=5.0), session_factory, 3, pipeline=pipeline)
        assert len(workers) == 3
        assert len({w.worker_id for w in workers}) == 3
        assert all(w.pipeline is pipeline for w in workers)
        assert all(w.job_backoff == 5.0 for w in workers)
