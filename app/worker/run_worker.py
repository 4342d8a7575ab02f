"""Run ARQ worker. Usage: python -m app.worker.run_worker"""

from arq import run_worker
from arq.cron import cron
from app.core.config import get_settings
from app.worker.tasks import audit_ledgers, get_redis_settings, startup, shutdown


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [audit_ledgers]
    cron_jobs = [
        cron(audit_ledgers, hour=get_settings().ledger_audit_hour, minute=0),  # daily
    ]
    on_startup = startup
    on_shutdown = shutdown


def main():
    run_worker(WorkerSettings, worker_name="verifynumber_worker")


if __name__ == "__main__":
    main()
