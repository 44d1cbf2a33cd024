"""Run ARQ worker. Usage: python -m app.worker.run_worker"""

import asyncio
from arq import run_worker
from arq.cron import cron
from app.worker.tasks import get_redis_settings, resume_settlements, settle_event_job, startup, shutdown


class WorkerSettings:
    functions = [settle_event_job]
    cron_jobs = [
        cron(resume_settlements, minute={0, 10, 20, 30, 40, 50}, second=0),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()


def main() -> None:
    asyncio.set_event_loop(asyncio.new_event_loop())
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
