"""Durable job queue on top of the ``analysis_jobs`` table.

Delivery is at-least-once: a job is claimed with a conditional UPDATE, so two
workers can never both own it, and a claim that goes stale is handed out
again by :func:`requeue_stalled`. Every write after the claim is guarded by
the owning ``worker_id``.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from leadscout.models import AnalysisJob
from leadscout.schemas import LeadProfile, Subject
from leadscout.utils import utcnow

log = logging.getLogger(__name__)

PENDING = "PENDING"
PROCESSING = "PROCESSING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF = 2.0


@dataclass(frozen=True)
class ClaimedJob:
    """Snapshot of a job handed to a worker."""
    id: str
    subject: Subject
    user_id: str | None
    attempts: int
    max_attempts: int


def retry_delay(attempts: int, backoff: float = DEFAULT_BACKOFF) -> float:
    """Seconds before a job that failed on attempt *attempts* is retried."""
    return backoff * 2 ** max(0, attempts - 1)


def enqueue(
    session: Session,
    subject: Subject,
    user_id: str | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    now: datetime | None = None,
) -> AnalysisJob:
    now = now or utcnow()
    job = AnalysisJob(
        id=uuid.uuid4().hex,
        github=subject.github,
        website=subject.website,
        user_id=user_id,
        status=PENDING,
        progress=0,
        stage="Queued",
        attempts=0,
        max_attempts=max_attempts,
        available_at=now,
        created_at=now,
        updated_at=now,
    )
    session.add(job)
    session.commit()
    log.info("Enqueued job %s for %s", job.id, subject.identity)
    return job


def claim(session: Session, worker_id: str, now: datetime | None = None) -> ClaimedJob | None:
    """Move the oldest available PENDING job to PROCESSING for *worker_id*."""
    now = now or utcnow()
    while True:
        job_id = session.execute(
            select(AnalysisJob.id)
            .where(AnalysisJob.status == PENDING, AnalysisJob.available_at <= now)
            .order_by(AnalysisJob.available_at, AnalysisJob.created_at)
            .limit(1)
        ).scalar()
        if job_id is None:
            return None
        result = session.execute(
            update(AnalysisJob).execution_options(synchronize_session=False)
            .where(AnalysisJob.id == job_id, AnalysisJob.status == PENDING)
            .values(
                status=PROCESSING,
                worker_id=worker_id,
                claimed_at=now,
                updated_at=now,
                attempts=AnalysisJob.attempts + 1,
            )
        )
        session.commit()
        if result.rowcount != 1:
            # Another worker won the race; look again
            continue
        job = session.get(AnalysisJob, job_id, populate_existing=True)
        log.info("Worker %s claimed job %s (attempt %d/%d)", worker_id, job.id, job.attempts, job.max_attempts)
        return ClaimedJob(
            id=job.id,
            subject=Subject(github=job.github, website=job.website),
            user_id=job.user_id,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
        )


def _owned(job_id: str, worker_id: str):
    return (
        AnalysisJob.id == job_id,
        AnalysisJob.worker_id == worker_id,
        AnalysisJob.status == PROCESSING,
    )


def update_progress(
    session: Session, job_id: str, worker_id: str, progress: int, stage: str,
    now: datetime | None = None,
) -> bool:
    """Record a checkpoint. Progress never moves backwards, even across retries.

    Each checkpoint also renews the claim, so a job that is still making
    progress is not picked up by :func:`requeue_stalled`.
    """
    now = now or utcnow()
    result = session.execute(
        update(AnalysisJob).execution_options(synchronize_session=False)
        .where(*_owned(job_id, worker_id))
        .values(
            progress=case((AnalysisJob.progress < progress, progress), else_=AnalysisJob.progress),
            stage=stage,
            claimed_at=now,
            updated_at=now,
        )
    )
    session.commit()
    return result.rowcount == 1


def complete(
    session: Session, job_id: str, worker_id: str, profile: LeadProfile,
    lead_id: int | None = None, now: datetime | None = None,
) -> bool:
    now = now or utcnow()
    result = session.execute(
        update(AnalysisJob).execution_options(synchronize_session=False)
        .where(*_owned(job_id, worker_id))
        .values(
            status=COMPLETED,
            progress=100,
            stage="Complete",
            result_json=profile.model_dump_json(),
            lead_id=lead_id,
            error=None,
            updated_at=now,
            completed_at=now,
        )
    )
    session.commit()
    if result.rowcount != 1:
        log.warning("Worker %s no longer owns job %s; result dropped", worker_id, job_id)
        return False
    log.info("Job %s completed", job_id)
    return True


def fail(
    session: Session, job_id: str, worker_id: str, reason: str,
    backoff: float = DEFAULT_BACKOFF, now: datetime | None = None,
) -> str | None:
    """Retry the job later if it has attempts left, otherwise mark it FAILED.

    Returns the job's new status, or ``None`` if *worker_id* does not own it.
    """
    now = now or utcnow()
    job = session.execute(
        select(AnalysisJob).where(*_owned(job_id, worker_id)).execution_options(populate_existing=True)
    ).scalars().first()
    if job is None:
        return None
    job.error = reason
    job.updated_at = now
    job.worker_id = None
    if job.attempts < job.max_attempts:
        delay = retry_delay(job.attempts, backoff)
        job.status = PENDING
        job.available_at = now + timedelta(seconds=delay)
        job.stage = f"Retrying in {delay:.0f}s"
        log.warning("Job %s attempt %d failed, retrying in %.1fs: %s", job_id, job.attempts, delay, reason)
    else:
        job.status = FAILED
        job.stage = "Failed"
        job.completed_at = now
        log.error("Job %s failed after %d attempts: %s", job_id, job.attempts, reason)
    session.commit()
    return job.status


def requeue_stalled(session: Session, timeout: float, now: datetime | None = None) -> int:
    """Release PROCESSING jobs not claimed or advanced for *timeout* seconds."""
    now = now or utcnow()
    cutoff = now - timedelta(seconds=timeout)
    stalled = (AnalysisJob.status == PROCESSING, AnalysisJob.claimed_at < cutoff)
    exhausted = session.execute(
        update(AnalysisJob).execution_options(synchronize_session=False)
        .where(*stalled, AnalysisJob.attempts >= AnalysisJob.max_attempts)
        .values(status=FAILED, worker_id=None, error="Worker stalled", stage="Failed",
                updated_at=now, completed_at=now)
    ).rowcount
    requeued = session.execute(
        update(AnalysisJob).execution_options(synchronize_session=False)
        .where(*stalled)
        .values(status=PENDING, worker_id=None, available_at=now, stage="Requeued", updated_at=now)
    ).rowcount
    session.commit()
    if requeued or exhausted:
        log.warning("Requeued %d stalled jobs, failed %d", requeued, exhausted)
    return requeued


def get_job(session: Session, job_id: str) -> AnalysisJob | None:
    return session.get(AnalysisJob, job_id, populate_existing=True)
