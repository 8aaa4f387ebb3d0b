from __future__ import annotations

import logging

import httpx

from booksync.core.config import get_settings
from booksync.core.crypto import Vault
from booksync.db.session import get_sessionmaker
from booksync.services.calendar.sync import CalendarSyncAdapter
from booksync.worker.handlers import JobContext
from booksync.worker.runner import WorkerConfig, run_worker_forever


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    settings = get_settings()
    vault = Vault.from_settings(settings)
    with httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS) as http_client:
        context = JobContext(
            settings=settings,
            calendar=CalendarSyncAdapter(
                vault=vault,
                http_client=http_client,
                session_factory=get_sessionmaker(),
                settings=settings,
            ),
        )
        run_worker_forever(config=WorkerConfig(), context=context)


if __name__ == "__main__":
    main()
