"""Queue worker: claim jobs, run the pipeline, persist results.

Run with ``leadscout-worker`` (see ``--help``). Several workers may run in
one process or across processes; they share only the database and, within a
process, the result cache.
"""
from __future__ import annotations

import asyncio
import logging
import os
import socket
import sys
from contextlib import contextmanager
from typing import Generator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from leadscout import jobs, services
from leadscout.config import Settings, load_settings
from leadscout.db import init_db
from leadscout.pipeline import Pipeline, build_pipeline
from leadscout.retry import Sleep
from leadscout.schemas import LeadProfile

log = logging.getLogger(__name__)

USAGE = """\
Usage: leadscout-worker [--workers N] [--once] [-v]

Process queued lead analysis jobs.

Options:
  --workers N   Number of concurrent workers (default: LEADSCOUT_WORKERS or 1)
  --once        Drain the queue and exit instead of polling forever
  -v            Verbose (DEBUG) logging
  --help        Show this help message

Environment variables:
  LEADSCOUT_DB_PATH   SQLite database file
  GITHUB_TOKEN        Optional token for the GitHub API
"""


class Worker:
    """One queue consumer. Owns every job it claims until it completes or fails it."""

    def __init__(
        self,
        pipeline: Pipeline,
        session_factory: sessionmaker[Session],
        worker_id: str | None = None,
        job_backoff: float = jobs.DEFAULT_BACKOFF,
        poll_interval: float = 1.0,
        stall_timeout: float = 300.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.pipeline = pipeline
        self.worker_id = worker_id or f"{socket.gethostname()}-{os.getpid()}"
        self.job_backoff = job_backoff
        self.poll_interval = poll_interval
        self.stall_timeout = stall_timeout
        self._session_factory = session_factory
        self._sleep = sleep

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def run_once(self) -> bool:
        """Claim and process one job. Returns False when nothing was available."""
        with self._session() as session:
            job = jobs.claim(session, self.worker_id)
        if job is None:
            return False
        await self.process(job)
        return True

    async def process(self, job: jobs.ClaimedJob) -> str | None:
        lead_ids: list[int] = []

        async def report(progress: int, stage: str) -> None:
            try:
                with self._session() as session:
                    owned = jobs.update_progress(session, job.id, self.worker_id, progress, stage)
            except SQLAlchemyError as exc:
                log.warning("Could not record progress %d for job %s: %s", progress, job.id, exc)
                return
            if not owned:
                log.debug("Progress for job %s ignored; not owned by %s", job.id, self.worker_id)

        async def persist(profile: LeadProfile) -> None:
            with self._session() as session:
                lead = services.persist_lead(session, profile, job.user_id)
                session.commit()
                lead_ids.append(lead.id)

        log.info("Processing job %s for %s", job.id, job.subject.identity)
        try:
            profile = await self.pipeline.run(job.subject, progress=report, persist=persist)
        except Exception as exc:
            log.exception("Job %s attempt %d raised", job.id, job.attempts)
            with self._session() as session:
                return jobs.fail(
                    session, job.id, self.worker_id, f"{type(exc).__name__}: {exc}",
                    backoff=self.job_backoff,
                )

        with self._session() as session:
            jobs.complete(session, job.id, self.worker_id, profile, lead_ids[-1] if lead_ids else None)
        return jobs.COMPLETED

    async def drain(self) -> int:
        """Process jobs until the queue has nothing available right now."""
        processed = 0
        while await self.run_once():
            processed += 1
        return processed

    async def run_forever(self, stop: asyncio.Event) -> None:
        log.info("Worker %s started", self.worker_id)
        while not stop.is_set():
            if await self.run_once():
                continue
            with self._session() as session:
                jobs.requeue_stalled(session, self.stall_timeout)
            await self._sleep(self.poll_interval)
        log.info("Worker %s stopped", self.worker_id)


def build_workers(
    settings: Settings, session_factory: sessionmaker[Session], count: int,
    pipeline: Pipeline | None = None,
) -> list[Worker]:
    """Workers share one pipeline, hence one result cache."""
    pipeline = pipeline or build_pipeline(settings)
    base = f"{socket.gethostname()}-{os.getpid()}"
    return [
        Worker(
            pipeline, session_factory,
            worker_id=f"{base}-{i}",
            job_backoff=settings.job_backoff,
            poll_interval=settings.poll_interval,
            stall_timeout=settings.stall_timeout,
        )
        for i in range(max(1, count))
    ]


async def run_pool(workers: list[Worker], once: bool = False, stop: asyncio.Event | None = None) -> None:
    if once:
        counts = await asyncio.gather(*(w.drain() for w in workers))
        log.info("Queue drained, %d jobs processed", sum(counts))
        return
    stop = stop or asyncio.Event()
    await asyncio.gather(*(w.run_forever(stop) for w in workers))


def main() -> None:
    args = sys.argv[1:]
    if "--help" in args or "-h" in args:
        print(USAGE)
        sys.exit(0)

    settings = load_settings()
    count = settings.workers
    if "--workers" in args:
        idx = args.index("--workers")
        try:
            count = int(args[idx + 1])
        except (IndexError, ValueError):
            print("--workers requires an integer")
            sys.exit(2)

    logging.basicConfig(
        level=logging.DEBUG if "-v" in args else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    session_factory = init_db(settings.db_path)
    workers = build_workers(settings, session_factory, count)
    try:
        asyncio.run(run_pool(workers, once="--once" in args))
    except KeyboardInterrupt:
        log.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
