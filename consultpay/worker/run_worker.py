"""Run ARQ worker. Usage: python -m consultpay.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from consultpay.core.config import get_settings
from consultpay.core.logging import configure_logging
from consultpay.worker.tasks import get_redis_settings, reconcile_payment_effects, shutdown, startup, sweep_unsynced_payments


class WorkerSettings:
    functions = [reconcile_payment_effects]
    cron_jobs = [
        cron(sweep_unsynced_payments, minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}, second=0),
    ]
    on_startup = startup
    on_shutdown = shutdown
    max_tries = 5


def main() -> None:
    configure_logging(debug=get_settings().debug)
    run_worker(WorkerSettings, redis_settings=get_redis_settings())


if __name__ == "__main__":
    main()
