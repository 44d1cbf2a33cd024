"""ARQ job definitions."""

import uuid
from typing import Any

from arq import create_pool
from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.logging import get_logger

log = get_logger(__name__)


async def _run_with_dlq(
    job_name: str,
    job_id: str | None,
    args: list[Any],
    kwargs: dict[str, Any],
    coro,
) -> Any:
    """Run coroutine; on exception persist to FailedJob then re-raise."""
    try:
        return await coro
    except Exception as e:
        from app.models.failed_job import FailedJob
        fid = job_id or str(uuid.uuid4())
        await FailedJob(
            job_name=job_name,
            job_id=fid,
            args=args,
            kwargs=kwargs,
            reason=str(e)[:2000],
        ).insert()
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        raise


async def settle_event_job(
    ctx: dict[str, Any], event_id: str, outcome: str, winning_team_id: int | None = None
) -> dict[str, Any]:
    """Settle an event in the background; returns the settlement result as a dict."""
    from beanie import PydanticObjectId
    from app.services.settlement import settle_event

    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None

    async def _run() -> dict[str, Any]:
        log.info("job_start", job="settle_event_job", event_id=event_id)
        result = await settle_event(PydanticObjectId(event_id), outcome, winning_team_id)
        log.info("job_done", job="settle_event_job", event_id=event_id, status=result.status.value)
        return result.model_dump(mode="json")

    return await _run_with_dlq(
        "settle_event_job",
        job_id,
        [event_id, outcome],
        {"winning_team_id": winning_team_id},
        _run(),
    )


async def resume_settlements(ctx: dict[str, Any]) -> None:
    """Cron job: finish bets left Pending on settled events."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    from app.worker.cron import run_resume_settlements
    await _run_with_dlq("resume_settlements", job_id, [], {}, run_resume_settlements())


async def startup(ctx: dict) -> None:
    from app.core.logging import configure_logging
    from app.db.init import init_db
    configure_logging(debug=get_settings().debug)
    await init_db()


async def shutdown(ctx: dict) -> None:
    pass


def get_redis_settings() -> RedisSettings:
    return RedisSettings.from_dsn(get_settings().redis_url)


async def enqueue_settlement(event_id: str, outcome: str, winning_team_id: int | None) -> str:
    """Enqueue settle_event_job (call from API). Returns the job id."""
    redis = await create_pool(get_redis_settings())
    try:
        # One job per event: a second enqueue with the same id is dropped by ARQ.
        job = await redis.enqueue_job(
            "settle_event_job",
            event_id,
            outcome,
            winning_team_id,
            _job_id=f"settle:{event_id}",
        )
    finally:
        await redis.aclose()
    return job.job_id if job else f"settle:{event_id}"
