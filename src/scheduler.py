"""Background scheduler for presale maintenance.

Runs the expiry reaper and the capture sweep on a fixed interval, every
15 minutes by default (PRESALE_SWEEP_INTERVAL_MINUTES). Each job runs inside
the presales domain context; a job that is still running when its next run
comes round is skipped rather than stacked.

Usage:
    python src/scheduler.py
    python src/scheduler.py --once   # run both sweeps once and exit
"""

import argparse

import structlog
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = structlog.get_logger(__name__)


def _domain():
    from presales.domain import presales

    presales.init()
    return presales


def expire_presales(domain) -> int:
    from presales.reaper.expiry import ExpiryReaper

    with domain.domain_context():
        return ExpiryReaper().run()


def process_captures(domain) -> int:
    from presales.capture.sweep import process_due_captures

    with domain.domain_context():
        return process_due_captures()


def build_scheduler(domain, interval_minutes: int) -> BlockingScheduler:
    scheduler = BlockingScheduler(
        jobstores={"default": MemoryJobStore()},
        executors={"default": ThreadPoolExecutor(max_workers=2)},
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 300,
        },
        timezone="UTC",
    )
    scheduler.add_job(
        expire_presales,
        trigger=IntervalTrigger(minutes=interval_minutes),
        args=[domain],
        id="expire_presales",
        name="Fail expired presales",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        process_captures,
        trigger=IntervalTrigger(minutes=interval_minutes),
        args=[domain],
        id="process_captures",
        name="Run due capture attempts",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


def main():
    from presales import config
    from presales.utils.logging import configure_logging

    parser = argparse.ArgumentParser(description="Presales maintenance scheduler")
    parser.add_argument("--once", action="store_true", help="Run both sweeps once and exit")
    args = parser.parse_args()

    configure_logging()
    domain = _domain()

    if args.once:
        expired = expire_presales(domain)
        attempts = process_captures(domain)
        logger.info("Maintenance run complete", expired=expired, capture_attempts=attempts)
        return

    interval = config.sweep_interval_minutes()
    scheduler = build_scheduler(domain, interval)
    logger.info("Starting presales scheduler", interval_minutes=interval)
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Presales scheduler stopped")


if __name__ == "__main__":
    main()
