"""
Periodic removal of inactive, empty chat rooms.

The job runs on the scheduler's worker thread, so each run drives the async
repository call on its own event loop.
"""
import asyncio
from datetime import datetime, timezone
from typing import Callable

from reviewhub.jobs.scheduler import SchedulerManager
from reviewhub.lib.logging import correlation_scope, get_logger
from reviewhub.services.chat_repository import ChatRepository

logger = get_logger(__name__)


ROOM_CLEANUP_JOB_ID = "room_cleanup"


def run_room_cleanup(repository_factory: Callable[[], ChatRepository]) -> int:
    """Run one cleanup pass; returns the number of rooms deleted."""
    with correlation_scope(f"job-{ROOM_CLEANUP_JOB_ID}-{datetime.now(timezone.utc):%Y%m%dT%H%M%S}"):
        repository = repository_factory()
        return asyncio.run(repository.cleanup_inactive_rooms())


def register_room_cleanup(
    manager: SchedulerManager,
    repository_factory: Callable[[], ChatRepository],
    interval_minutes: int = 5,
) -> None:
    """Schedule the cleanup every ``interval_minutes``, with the first pass right away."""
    manager.add_interval_job(
        run_room_cleanup,
        job_id=ROOM_CLEANUP_JOB_ID,
        minutes=interval_minutes,
        args=[repository_factory],
        next_run_time=datetime.now(timezone.utc),
    )
