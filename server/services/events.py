import logging
import re
import uuid
from datetime import date, datetime, timezone
from typing import Any, Callable, List, Mapping

from core.errors import (
    CalendarAlreadySynced,
    NotFound,
    PersistenceError,
    ValidationError,
)
from core.logging_setup import log_owner, log_step
from models.events import Event
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

LOG_STEP = "EVENTS"

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class EventFields(BaseModel):
    """
    The user-editable part of an event. Updates resend every field.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    date: date
    end_date: date | None = Field(default=None, alias="endDate")
    time: str | None = None
    description: str | None = None
    location: str | None = None
    ticket_url: str | None = Field(default=None, alias="ticketUrl")
    price: str | None = None
    image_url: str | None = Field(default=None, alias="imageUrl")

    @field_validator(
        "end_date", "time", "description", "location", "ticket_url", "price", "image_url",
        mode="before",
    )
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("name")
    @classmethod
    def _check_name(cls, value):
        if not value.strip():
            raise ValueError("name must not be blank")
        return value

    @field_validator("time")
    @classmethod
    def _check_time(cls, value):
        if value is not None and not TIME_PATTERN.match(value):
            raise ValueError("time must be 24-hour HH:MM")
        return value

    @model_validator(mode="after")
    def _check_end_date(self):
        if self.end_date is not None and self.end_date < self.date:
            raise ValueError("end date must not be before start date")
        return self


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None
    location: str | None
    date: date
    end_date: date | None
    time: str | None
    ticket_url: str | None
    price: str | None
    image_url: str | None
    google_event_id: str | None
    deleted_at: datetime | None
    created_at: datetime | None


def validate_fields(fields: EventFields | Mapping[str, Any]) -> EventFields:
    """Parses raw input into EventFields, raising the taxonomy ValidationError."""
    if isinstance(fields, EventFields):
        return fields
    try:
        return EventFields.model_validate(fields)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(
            f"{field}: {first.get('msg')}" if field else first.get("msg"), field=field
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventRepository:
    """
    The single authority for event persistence and lifecycle transitions.

    Every statement is scoped by owner id. Mutations are conditional updates on
    id + owner (+ lifecycle state) so ownership is re-checked at write time.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock

    async def create(
        self, owner_id: str, fields: EventFields | Mapping[str, Any]
    ) -> Event:
        data = validate_fields(fields)
        event = Event(
            id=str(uuid.uuid4()),
            user_id=owner_id,
            created_at=self.clock(),
            deleted_at=None,
            **data.model_dump(),
        )
        with log_step(LOG_STEP), log_owner(owner_id, event.id):
            try:
                async with self.session_factory() as session:
                    session.add(event)
                    await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Failed to create event: {e}", exc_info=True)
                raise PersistenceError("Failed to create event")
            logger.info(f"Created event '{data.name}' on {data.date}.")
        return event

    async def get(self, owner_id: str, event_id: str) -> Event:
        """Active-read: soft-deleted events are reported as NotFound."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Event).where(
                        Event.id == event_id,
                        Event.user_id == owner_id,
                        Event.deleted_at.is_(None),
                    )
                )
                event = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            with log_step(LOG_STEP), log_owner(owner_id, event_id):
                logger.error(f"Failed to fetch event: {e}", exc_info=True)
            raise PersistenceError("Failed to fetch event")

        if event is None:
            raise NotFound()
        return event

    async def update(
        self, owner_id: str, event_id: str, fields: EventFields | Mapping[str, Any]
    ) -> Event:
        data = validate_fields(fields)
        with log_step(LOG_STEP), log_owner(owner_id, event_id):
            try:
                async with self.session_factory() as session:
                    result = await session.execute(
                        update(Event)
                        .where(
                            Event.id == event_id,
                            Event.user_id == owner_id,
                            Event.deleted_at.is_(None),
                        )
                        .values(**data.model_dump())
                        .execution_options(synchronize_session=False)
                    )
                    updated = result.rowcount
                    await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Failed to update event: {e}", exc_info=True)
                raise PersistenceError("Failed to update event")

            if updated == 0:
                logger.warning("Update rejected: event missing, not owned, or in bin.")
                raise NotFound()
            logger.info("Updated event.")
        return await self.get(owner_id, event_id)

    async def soft_delete(self, owner_id: str, event_id: str) -> None:
        """Moves an active event to the bin. A binned event is NotFound here."""
        with log_step(LOG_STEP), log_owner(owner_id, event_id):
            try:
                async with self.session_factory() as session:
                    result = await session.execute(
                        update(Event)
                        .where(
                            Event.id == event_id,
                            Event.user_id == owner_id,
                            Event.deleted_at.is_(None),
                        )
                        .values(deleted_at=self.clock())
                        .execution_options(synchronize_session=False)
                    )
                    updated = result.rowcount
                    await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Failed to delete event: {e}", exc_info=True)
                raise PersistenceError("Failed to delete event")

            if updated == 0:
                raise NotFound()
            logger.info("Moved event to bin.")

    async def list_active(self, owner_id: str) -> List[Event]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Event)
                    .where(Event.user_id == owner_id, Event.deleted_at.is_(None))
                    .order_by(Event.date.asc(), Event.created_at.asc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            with log_step(LOG_STEP), log_owner(owner_id):
                logger.error(f"Failed to list events: {e}", exc_info=True)
            raise PersistenceError("Failed to fetch events")

    async def set_google_event_id(
        self, owner_id: str, event_id: str, google_event_id: str
    ) -> None:
        """
        Records the external calendar id once a sync has succeeded.
        Only an active event with no id yet is written; an event linked in the
        meantime raises CalendarAlreadySynced.
        """
        with log_step(LOG_STEP), log_owner(owner_id, event_id):
            try:
                async with self.session_factory() as session:
                    result = await session.execute(
                        update(Event)
                        .where(
                            Event.id == event_id,
                            Event.user_id == owner_id,
                            Event.deleted_at.is_(None),
                            Event.google_event_id.is_(None),
                        )
                        .values(google_event_id=google_event_id)
                        .execution_options(synchronize_session=False)
                    )
                    updated = result.rowcount
                    await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Failed to record calendar id: {e}", exc_info=True)
                raise PersistenceError("Failed to save calendar link")

            if updated == 0:
                current = await self.get(owner_id, event_id)
                logger.warning(f"Event already linked to {current.google_event_id}.")
                raise CalendarAlreadySynced()
