"""
app/scheduler/jobs.py

APScheduler-based background jobs that drive the import pipeline.

Jobs
----
  task_queue        claims and runs due queued tasks (pipeline stages
                      and url-fetch runs) every TASK_QUEUE_INTERVAL_SECONDS.
  schedule_manager  triggers every due scheduled import every
                      SCHEDULE_MANAGER_INTERVAL_SECONDS.

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it on app boot; shut it down gracefully on app shutdown.
The scheduler is wired into FastAPI via the ``lifespan`` context in main.py.
"""

from __future__ import annotations

import logging
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import get_scheduler_settings
from app.services.scheduled_imports import get_scheduled_import_manager
from app.services.stage_orchestrator import get_stage_orchestrator
from app.services.task_queue import TaskQueue, get_task_queue

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Queue wiring
# ---------------------------------------------------------------------------


def build_task_queue() -> TaskQueue:
    """
    Return the shared task queue with every pipeline handler registered.
    """

    get_stage_orchestrator()
    get_scheduled_import_manager()
    return get_task_queue()


# ---------------------------------------------------------------------------
# Job: task queue drain
# ---------------------------------------------------------------------------


def run_task_queue() -> dict[str, Any]:
    """
    Run one round of due queued tasks.
    """

    summary = build_task_queue().run_due()
    if summary.claimed or summary.skipped:
        logger.info(
            "Scheduler: task_queue claimed=%s completed=%s failed=%s skipped=%s",
            summary.claimed,
            summary.completed,
            summary.failed,
            summary.skipped,
        )
    return summary.to_dict()


# ---------------------------------------------------------------------------
# Job: scheduled imports
# ---------------------------------------------------------------------------


def run_schedule_manager() -> dict[str, Any]:
    """
    Trigger every scheduled import that is due.
    """

    build_task_queue()
    try:
        return get_scheduled_import_manager().run_due_schedules()
    except Exception:
        logger.exception("Scheduler: schedule_manager failed")
        raise


# ---------------------------------------------------------------------------
# Scheduler factory
# ---------------------------------------------------------------------------


def build_scheduler() -> BackgroundScheduler:
    """
    Build and register all periodic jobs.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    The caller must call ``.start()`` and ``.shutdown(wait=True)`` at the
    appropriate lifecycle points.
    """

    settings = get_scheduler_settings()
    scheduler = BackgroundScheduler(timezone="UTC")

    scheduler.add_job(
        run_task_queue,
        trigger="interval",
        seconds=settings.task_queue_interval_seconds,
        id="task_queue",
        name="Import task queue",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=settings.task_queue_interval_seconds * 6,
    )
    scheduler.add_job(
        run_schedule_manager,
        trigger="interval",
        seconds=settings.schedule_manager_interval_seconds,
        id="schedule_manager",
        name="Scheduled import manager",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=settings.schedule_manager_interval_seconds * 2,
    )

    return scheduler
