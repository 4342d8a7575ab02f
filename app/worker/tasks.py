"""ARQ job definitions."""

import uuid
from typing import Any, Awaitable

from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.logging import bind_context, configure_logging, get_logger

log = get_logger(__name__)


async def _run_with_dlq(job_name: str, ctx: dict[str, Any], coro: Awaitable[Any]) -> Any:
    """Run coroutine; on exception persist to FailedJob then re-raise."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else str(uuid.uuid4())
    attempt = ctx.get("job_try") or 1
    bind_context(job=job_name, job_id=job_id)
    try:
        return await coro
    except Exception as e:
        from app.models.failed_job import FailedJob
        await FailedJob(
            job_name=job_name,
            job_id=job_id,
            attempt=attempt,
            error_type=type(e).__name__,
            reason=str(e)[:2000],
        ).insert()
        log.exception("job_failed", attempt=attempt, reason=str(e))
        raise


# Cron: audit_ledgers
async def audit_ledgers(ctx: dict[str, Any]) -> dict:
    """Cron job: replay every account's transactions and report balance drift."""
    from app.worker.cron import run_ledger_audit
    return await _run_with_dlq("audit_ledgers", ctx, run_ledger_audit())


async def startup(ctx: dict) -> None:
    from app.db.init import init_db
    settings = get_settings()
    configure_logging(debug=settings.debug)
    if settings.balance_store_backend == "mongo":
        await init_db()
    log.info("worker_started", store=settings.balance_store_backend)


async def shutdown(ctx: dict) -> None:
    from app.db.init import close_db
    close_db()


def get_redis_settings() -> RedisSettings:
    """Redis connection for the ARQ pool, parsed from REDIS_URL."""
    from urllib.parse import urlparse
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
        ssl=u.scheme == "rediss",
    )
