import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional, Set

import httpx
from core.errors import (
    CalendarAlreadySynced,
    CalendarCreateFailed,
    CredentialMissing,
    CredentialRefreshFailed,
    PersistenceError,
    ProviderTimeoutError,
)
from core.logging_setup import log_owner, log_step
from integrations.google import PLATFORM, GoogleAPIError, GoogleCalendarClient
from models.events import Event
from models.integrations import Integration
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .events import EventRepository

logger = logging.getLogger(__name__)

LOG_STEP = "CALENDAR-SYNC"

REFRESH_MARGIN_SECONDS = 300
TIMED_EVENT_DURATION = timedelta(hours=1)

REAUTH_SUFFIX = "Please sign out and sign in again."


class SyncResult(BaseModel):
    google_event_id: str
    html_link: str


def needs_refresh(credential: Integration, now: int) -> bool:
    """True when the access token is missing or expires within the safety margin."""
    if not credential.access_token or not credential.expires_at:
        return True
    return credential.expires_at - now < REFRESH_MARGIN_SECONDS


def describe_sync_error(message: str, status_code: Optional[int] = None) -> str:
    """Maps a provider failure onto the message shown to the user."""
    if "invalid_grant" in message:
        return f"Session expired. {REAUTH_SUFFIX}"
    if "insufficient" in message.lower():
        return f"Calendar permission not granted. {REAUTH_SUFFIX}"
    if status_code in (401, 403) or "401" in message or "403" in message:
        return f"Not authorized. {REAUTH_SUFFIX}"
    return message


def build_calendar_payload(event: Event, timezone_name: str) -> dict:
    """
    Timed events run for one hour from date + time in the given zone.
    All-day events use bare dates with start equal to end.
    """
    body = {"summary": event.name}
    if event.description:
        body["description"] = event.description
    if event.location:
        body["location"] = event.location

    if event.time:
        hours, minutes = (int(part) for part in event.time.split(":"))
        start = datetime(event.date.year, event.date.month, event.date.day, hours, minutes)
        end = start + TIMED_EVENT_DURATION
        body["start"] = {"dateTime": start.isoformat(), "timeZone": timezone_name}
        body["end"] = {"dateTime": end.isoformat(), "timeZone": timezone_name}
    else:
        day = (event.end_date or event.date).isoformat()
        body["start"] = {"date": event.date.isoformat()}
        body["end"] = {"date": day}
    return body


class CalendarSyncService:
    """
    Projects one stored event into the owner's Google Calendar.

    A second sync of an event while one is in flight is refused, and the
    calendar id is only written to an event that has none yet.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: EventRepository,
        google: GoogleCalendarClient,
        timezone_name: str = "UTC",
        clock: Callable[[], float] = time.time,
    ):
        self.session_factory = session_factory
        self.repository = repository
        self.google = google
        self.timezone_name = timezone_name
        self.clock = clock
        self._in_flight: Set[str] = set()

    async def _load_credential(self, owner_id: str) -> Integration:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Integration).where(
                        Integration.user_id == owner_id,
                        Integration.platform == PLATFORM,
                    )
                )
                credential = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load calendar credential: {e}", exc_info=True)
            raise PersistenceError("Failed to load calendar credential")

        if credential is None or not (credential.access_token or credential.refresh_token):
            raise CredentialMissing()
        return credential

    async def ensure_fresh_credential(self, owner_id: str) -> str:
        """
        Returns a usable access token, refreshing and persisting it first when
        the stored one is missing or about to expire. Never retries.
        """
        credential = await self._load_credential(owner_id)
        now = int(self.clock())

        if not needs_refresh(credential, now):
            return credential.access_token

        if not credential.refresh_token:
            raise CredentialRefreshFailed(f"No refresh token available. {REAUTH_SUFFIX}")

        logger.info("Access token expired or expiring soon; refreshing.")
        try:
            grant = await self.google.refresh_access_token(credential.refresh_token)
        except httpx.TimeoutException:
            raise ProviderTimeoutError()
        except httpx.RequestError as e:
            logger.error(f"Token refresh request failed: {type(e).__name__}")
            raise CredentialRefreshFailed()
        except GoogleAPIError as e:
            described = describe_sync_error(e.message)
            if described == e.message:
                described = f"{e.message}. {REAUTH_SUFFIX}"
            raise CredentialRefreshFailed(described)

        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(Integration)
                    .where(Integration.id == credential.id)
                    .values(
                        access_token=grant.access_token,
                        expires_at=now + grant.expires_in,
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to store refreshed token: {e}", exc_info=True)
            raise PersistenceError("Failed to store refreshed credential")

        return grant.access_token

    async def sync(self, owner_id: str, event_id: str) -> SyncResult:
        with log_step(LOG_STEP), log_owner(owner_id, event_id):
            if event_id in self._in_flight:
                logger.warning("Sync already in progress.")
                raise CalendarAlreadySynced()
            self._in_flight.add(event_id)
            try:
                return await self._sync(owner_id, event_id)
            finally:
                self._in_flight.discard(event_id)

    async def _sync(self, owner_id: str, event_id: str) -> SyncResult:
        event = await self.repository.get(owner_id, event_id)
        if event.google_event_id:
            raise CalendarAlreadySynced()

        access_token = await self.ensure_fresh_credential(owner_id)
        payload = build_calendar_payload(event, self.timezone_name)

        try:
            created = await self.google.create_event(access_token, payload)
        except httpx.TimeoutException:
            logger.error("Calendar provider timed out.")
            raise ProviderTimeoutError()
        except httpx.RequestError as e:
            logger.error(f"Calendar request failed: {type(e).__name__}")
            raise CalendarCreateFailed()
        except GoogleAPIError as e:
            logger.error(f"Calendar rejected event: {e.status_code}")
            raise CalendarCreateFailed(describe_sync_error(e.message, e.status_code))

        try:
            await self.repository.set_google_event_id(owner_id, event_id, created.id)
        except CalendarAlreadySynced:
            await self._remove_duplicate(access_token, created.id)
            raise

        logger.info("Event added to Google Calendar.")
        return SyncResult(google_event_id=created.id, html_link=created.html_link)

    async def _remove_duplicate(self, access_token: str, google_event_id: str) -> None:
        try:
            await self.google.delete_event(access_token, google_event_id)
            logger.info(f"Removed duplicate calendar entry {google_event_id}.")
        except (httpx.HTTPError, GoogleAPIError) as e:
            logger.error(f"Failed to remove duplicate calendar entry {google_event_id}: {e}")
