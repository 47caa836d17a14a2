import logging
import time
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler

from maharat.config import settings
from maharat.store import get_store


scheduler = BackgroundScheduler(timezone=settings.app_timezone)
logger = logging.getLogger(__name__)


def run_timed_job(label: str, fn: Callable[[], object]) -> object:
    start = time.perf_counter()
    logger.info('job_start name=%s', label)
    status = 'ok'
    try:
        return fn()
    except Exception:
        status = 'failed'
        logger.exception('job_failed name=%s duration_ms=%.2f', label, (time.perf_counter() - start) * 1000.0)
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000.0
        logger.info('job_end name=%s status=%s duration_ms=%.2f', label, status, duration_ms)


def refresh_store_indexes_job():
    indexes = get_store().indexes
    if indexes is None:
        return
    run_timed_job('refresh_store_indexes', indexes.refresh)


def start_scheduler():
    scheduler.add_job(
        refresh_store_indexes_job,
        'interval',
        seconds=settings.store_index_poll_seconds,
        id='refresh_store_indexes',
        replace_existing=True,
    )
    if not scheduler.running:
        scheduler.start()


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
