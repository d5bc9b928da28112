import asyncio
import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional, Set

from core.errors import PersistenceError
from core.logging_setup import log_owner, log_step
from models.events import Event
from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

LOG_STEP = "SWEEPER"

GRACE_PERIOD = timedelta(hours=1)
END_OF_DAY = time(23, 59)


class SweepResult(BaseModel):
    deleted: int
    event_ids: List[str]


def effective_end(event_date: date, event_time: Optional[str]) -> datetime:
    """Date + time for timed events, 23:59 local for all-day ones."""
    if event_time:
        hours, minutes = (int(part) for part in event_time.split(":"))
        return datetime.combine(event_date, time(hours, minutes))
    return datetime.combine(event_date, END_OF_DAY)


def is_expired(event_date: date, event_time: Optional[str], now: datetime) -> bool:
    return now >= effective_end(event_date, event_time) + GRACE_PERIOD


class ExpirationSweeper:
    """
    Hard-deletes events past their end time plus the grace period.

    The purge ignores soft-delete state: an expired event in the bin goes too.
    Times are compared as naive local wall-clock values.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self._tasks: Set[asyncio.Task] = set()

    async def sweep(
        self, owner_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> SweepResult:
        """Runs one sweep for an owner, or across every owner when owner_id is None."""
        now = now or self.clock()

        try:
            async with self.session_factory() as session:
                stmt = select(Event.id, Event.date, Event.time).where(Event.date <= now.date())
                if owner_id is not None:
                    stmt = stmt.where(Event.user_id == owner_id)
                rows = (await session.execute(stmt)).all()

                expired_ids = [row.id for row in rows if is_expired(row.date, row.time, now)]
                if not expired_ids:
                    return SweepResult(deleted=0, event_ids=[])

                result = await session.execute(
                    delete(Event)
                    .where(Event.id.in_(expired_ids))
                    .execution_options(synchronize_session=False)
                )
                deleted = result.rowcount
                await session.commit()
        except SQLAlchemyError as e:
            with log_step(LOG_STEP), log_owner(owner_id):
                logger.error(f"Failed to clean up expired events: {e}", exc_info=True)
            raise PersistenceError("Failed to clean up expired events")

        with log_step(LOG_STEP), log_owner(owner_id):
            logger.info(f"Cleaned up {deleted} expired event(s).")
        return SweepResult(deleted=deleted, event_ids=expired_ids)

    def dispatch(self, owner_id: str) -> asyncio.Task:
        """
        Starts a sweep in the background and returns immediately.
        Failures are logged here and never reach the caller.
        """
        task = asyncio.create_task(self.sweep(owner_id))
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, owner_id))
        return task

    def _on_done(self, task: asyncio.Task, owner_id: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            with log_step(LOG_STEP), log_owner(owner_id):
                logger.error(
                    f"Background sweep failed: {error}",
                    exc_info=(type(error), error, error.__traceback__),
                )

    async def drain(self) -> None:
        """Waits for in-flight background sweeps. Used on shutdown."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
