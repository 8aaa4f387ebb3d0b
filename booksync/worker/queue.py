from __future__ import annotations

from datetime import datetime
from uuid import UUID

import orjson
from sqlalchemy import text
from sqlalchemy.orm import Session

from booksync.models.enums import JobType


def enqueue_job(
    *,
    session: Session,
    job_type: JobType,
    owner_id: UUID | None,
    payload: dict,
    dedupe_key: str | None,
    run_at: datetime | None = None,
    max_attempts: int = 25,
) -> UUID | None:
    sql = text(
        """
        INSERT INTO bg_jobs (
          owner_id,
          type,
          status,
          run_at,
          attempts,
          max_attempts,
          dedupe_key,
          payload,
          created_at,
          updated_at
        )
        VALUES (
          :owner_id,
          :type,
          'queued',
          COALESCE(:run_at, now()),
          0,
          :max_attempts,
          :dedupe_key,
          CAST(:payload AS jsonb),
          now(),
          now()
        )
        ON CONFLICT DO NOTHING
        RETURNING id
        """
    )
    res = session.execute(
        sql,
        {
            "owner_id": str(owner_id) if owner_id else None,
            "type": job_type.value,
            "run_at": run_at,
            "max_attempts": max_attempts,
            "dedupe_key": dedupe_key,
            "payload": _json_dumps(payload),
        },
    ).fetchone()
    if res is None:
        return None
    return UUID(str(res[0]))


def _json_dumps(payload: dict) -> str:
    return orjson.dumps(payload, option=orjson.OPT_SORT_KEYS).decode("utf-8")
