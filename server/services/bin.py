import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List

from core.errors import EventSorterError, NotFoundInBin, PersistenceError
from core.logging_setup import log_owner, log_step
from models.events import Event
from pydantic import BaseModel
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

LOG_STEP = "BIN"


class BulkItemResult(BaseModel):
    id: str
    ok: bool
    error: str | None = None


class BulkResult(BaseModel):
    """Per-id outcome of a bulk bin operation. Partial success is normal."""

    succeeded: List[str]
    failed: List[BulkItemResult]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed


class BinManager:
    """Operates only on events whose deleted_at is set."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list(self, owner_id: str) -> List[Event]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Event)
                    .where(Event.user_id == owner_id, Event.deleted_at.is_not(None))
                    .order_by(Event.deleted_at.desc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            with log_step(LOG_STEP), log_owner(owner_id):
                logger.error(f"Failed to fetch bin: {e}", exc_info=True)
            raise PersistenceError("Failed to fetch bin")

    async def restore(self, owner_id: str, event_id: str) -> Event:
        with log_step(LOG_STEP), log_owner(owner_id, event_id):
            try:
                async with self.session_factory() as session:
                    result = await session.execute(
                        update(Event)
                        .where(
                            Event.id == event_id,
                            Event.user_id == owner_id,
                            Event.deleted_at.is_not(None),
                        )
                        .values(deleted_at=None)
                        .execution_options(synchronize_session=False)
                    )
                    restored = result.rowcount
                    await session.commit()

                    if restored == 0:
                        raise NotFoundInBin()

                    event = await session.get(Event, event_id)
            except SQLAlchemyError as e:
                logger.error(f"Failed to restore event: {e}", exc_info=True)
                raise PersistenceError("Failed to restore event")

            logger.info("Restored event from bin.")
            return event

    async def purge_one(self, owner_id: str, event_id: str) -> None:
        """Irreversible."""
        with log_step(LOG_STEP), log_owner(owner_id, event_id):
            try:
                async with self.session_factory() as session:
                    result = await session.execute(
                        delete(Event)
                        .where(
                            Event.id == event_id,
                            Event.user_id == owner_id,
                            Event.deleted_at.is_not(None),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    purged = result.rowcount
                    await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Failed to purge event: {e}", exc_info=True)
                raise PersistenceError("Failed to delete event")

            if purged == 0:
                raise NotFoundInBin()
            logger.info("Permanently deleted event.")

    async def purge_all(self, owner_id: str) -> int:
        """Empties the bin in a single statement. Irreversible."""
        with log_step(LOG_STEP), log_owner(owner_id):
            try:
                async with self.session_factory() as session:
                    result = await session.execute(
                        delete(Event)
                        .where(Event.user_id == owner_id, Event.deleted_at.is_not(None))
                        .execution_options(synchronize_session=False)
                    )
                    purged = result.rowcount
                    await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Failed to empty bin: {e}", exc_info=True)
                raise PersistenceError("Failed to empty bin")

            logger.info(f"Emptied bin ({purged} event(s)).")
            return purged

    async def restore_many(self, owner_id: str, event_ids: Iterable[str]) -> BulkResult:
        return await self._run_bulk(owner_id, event_ids, self.restore)

    async def purge_many(self, owner_id: str, event_ids: Iterable[str]) -> BulkResult:
        return await self._run_bulk(owner_id, event_ids, self.purge_one)

    async def _run_bulk(
        self,
        owner_id: str,
        event_ids: Iterable[str],
        operation: Callable[[str, str], Awaitable[object]],
    ) -> BulkResult:
        """
        Issues one independent call per id concurrently. There is no
        transaction across ids; each outcome is reported on its own.
        """
        ids = list(dict.fromkeys(event_ids))
        outcomes = await asyncio.gather(
            *(operation(owner_id, event_id) for event_id in ids),
            return_exceptions=True,
        )

        succeeded: List[str] = []
        failed: List[BulkItemResult] = []
        for event_id, outcome in zip(ids, outcomes):
            if isinstance(outcome, EventSorterError):
                failed.append(BulkItemResult(id=event_id, ok=False, error=outcome.message))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                succeeded.append(event_id)

        if failed:
            with log_step(LOG_STEP), log_owner(owner_id):
                logger.warning(
                    f"Bulk operation partially failed: {len(succeeded)} ok, {len(failed)} failed."
                )
        return BulkResult(succeeded=succeeded, failed=failed)
