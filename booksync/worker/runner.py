from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booksync.db.session import get_sessionmaker
from booksync.models.enums import JobStatus, JobType
from booksync.worker.errors import PermanentJobError
from booksync.worker.handlers import JobContext, handle_job

logger = logging.getLogger("booksync.worker")


@dataclass(frozen=True)
class WorkerConfig:
    poll_interval_seconds: float = 0.5
    max_backoff_seconds: float = 60.0
    worker_id: str = field(default_factory=socket.gethostname)


def run_worker_forever(*, config: WorkerConfig, context: JobContext) -> None:
    logger.info("worker started worker_id=%s", config.worker_id)
    while True:
        ran = run_one_job(config=config, context=context)
        if not ran:
            time.sleep(config.poll_interval_seconds)


def run_one_job(*, config: WorkerConfig, context: JobContext) -> bool:
    session = get_sessionmaker()()
    try:
        job = _claim_next_job(session=session, worker_id=config.worker_id)
        if job is None:
            session.commit()
            return False

        job_id = UUID(str(job["id"]))
        job_type = JobType(job["type"])
        try:
            handle_job(
                session=session,
                job_id=job_id,
                job_type=job_type,
                payload=job["payload"],
                context=context,
            )
        except PermanentJobError as e:
            logger.warning("job failed permanently job_id=%s type=%s error=%s", job_id, job_type.value, e)
            _mark_failed(session=session, config=config, job_id=job_id, error=str(e), permanent=True)
        except SQLAlchemyError as e:
            # The transaction is unusable; drop the handler's writes and record the failure afresh.
            session.rollback()
            logger.exception("job database error job_id=%s type=%s", job_id, job_type.value)
            _mark_failed(session=session, config=config, job_id=job_id, error=str(e), permanent=False)
        except Exception as e:
            logger.warning("job failed job_id=%s type=%s error=%s", job_id, job_type.value, e)
            _mark_failed(session=session, config=config, job_id=job_id, error=str(e), permanent=False)
        else:
            _mark_succeeded(session=session, job_id=job_id)

        session.commit()
        return True
    finally:
        session.close()


def _claim_next_job(*, session: Session, worker_id: str) -> dict | None:
    sql = text(
        """
        WITH next_job AS (
          SELECT id
          FROM bg_jobs
          WHERE status = 'queued'
            AND run_at <= now()
          ORDER BY run_at ASC
          FOR UPDATE SKIP LOCKED
          LIMIT 1
        )
        UPDATE bg_jobs
        SET status = 'running',
            locked_at = now(),
            locked_by = :worker_id,
            updated_at = now()
        WHERE id IN (SELECT id FROM next_job)
        RETURNING id, owner_id, type, payload, attempts, max_attempts
        """
    )
    row = session.execute(sql, {"worker_id": worker_id}).mappings().fetchone()
    if row is None:
        return None
    return dict(row)


def _mark_succeeded(*, session: Session, job_id: UUID) -> None:
    session.execute(
        text(
            """
            UPDATE bg_jobs
            SET status = :status,
                last_error = NULL,
                updated_at = now()
            WHERE id = :id
            """
        ),
        {"id": str(job_id), "status": JobStatus.succeeded.value},
    )


def _mark_failed(
    *,
    session: Session,
    config: WorkerConfig,
    job_id: UUID,
    error: str,
    permanent: bool,
) -> None:
    row = (
        session.execute(
            text("SELECT attempts, max_attempts FROM bg_jobs WHERE id = :id FOR UPDATE"),
            {"id": str(job_id)},
        )
        .mappings()
        .fetchone()
    )
    if row is None:
        return
    attempts = int(row["attempts"]) + 1
    max_attempts = int(row["max_attempts"])

    if permanent or attempts >= max_attempts:
        session.execute(
            text(
                """
                UPDATE bg_jobs
                SET status = :status,
                    attempts = :attempts,
                    last_error = :error,
                    updated_at = now()
                WHERE id = :id
                """
            ),
            {
                "id": str(job_id),
                "status": JobStatus.failed.value,
                "attempts": attempts,
                "error": error,
            },
        )
        return

    backoff_seconds = min(config.max_backoff_seconds, 0.5 * (2 ** min(attempts, 8)))
    session.execute(
        text(
            """
            UPDATE bg_jobs
            SET status = :status,
                attempts = :attempts,
                last_error = :error,
                run_at = now() + (:backoff_seconds || ' seconds')::interval,
                updated_at = now()
            WHERE id = :id
            """
        ),
        {
            "id": str(job_id),
            "status": JobStatus.queued.value,
            "attempts": attempts,
            "error": error,
            "backoff_seconds": backoff_seconds,
        },
    )
