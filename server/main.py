import logging

from core.logging_setup import setup_logging

setup_logging()

from core.config import settings

logger = logging.getLogger(__name__)

logger.info(f"Configuration loaded. Log level set to: {settings.LOGGING_LEVEL}")

import os

from api.auth import create_auth_router
from api.bin import create_bin_router
from api.calendar import create_calendar_router
from api.chat import create_chat_router
from api.events import create_events_router
from api.extract import create_extract_router
from api.reminder import create_reminder_router
from api.upload import create_upload_router
from core.orm import AsyncSessionLocal, init_orm
from core.errors import register_exception_handlers
from core.http_client import close_http_client, get_http_client
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from integrations.google import GoogleCalendarClient
from openai import AsyncOpenAI
from services.assets import LocalAssetStore
from services.bin import BinManager
from services.calendar_sync import CalendarSyncService
from services.conversation import ConversationService
from services.email import EmailService
from services.events import EventRepository
from services.extraction import ExtractionService
from services.sweeper import ExpirationSweeper

app = FastAPI(
    title="Event Sorter API",
    description="Turns posters, web pages and conversations into organized events.",
)

register_exception_handlers(app)

http_client = get_http_client()

ai_client = AsyncOpenAI(
    api_key=settings.OPENAI_API_KEY,
    timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    max_retries=0,
)

google_client = GoogleCalendarClient(
    http_client,
    client_id=settings.GOOGLE_CLIENT_ID,
    client_secret=settings.GOOGLE_CLIENT_SECRET,
)

repository = EventRepository(AsyncSessionLocal)
sweeper = ExpirationSweeper(AsyncSessionLocal)
bin_manager = BinManager(AsyncSessionLocal)
assets = LocalAssetStore(settings.UPLOAD_DIR)

extraction = ExtractionService(
    ai_client,
    http_client,
    model=settings.OPENAI_MODEL,
    fetch_timeout=settings.URL_FETCH_TIMEOUT_SECONDS,
    min_text_length=settings.MIN_PAGE_TEXT_LENGTH,
)
conversations = ConversationService(ai_client, repository, model=settings.OPENAI_MODEL)
calendar_sync = CalendarSyncService(
    AsyncSessionLocal,
    repository,
    google_client,
    timezone_name=settings.CALENDAR_TIMEZONE,
)
email = EmailService(
    http_client,
    client_id=settings.MAILER_CLIENT_ID,
    client_secret=settings.MAILER_CLIENT_SECRET,
    tenant_id=settings.MAILER_TENANT_ID,
    sender_email=settings.MAILER_SENDER_EMAIL,
)


@app.on_event("startup")
async def startup_event():
    """
    On application startup, initialize the database.
    This ensures the schema is ready before handling requests.
    """
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    await init_orm()


@app.on_event("shutdown")
async def shutdown_event():
    await sweeper.drain()
    await email.drain()
    await close_http_client()


app.include_router(create_auth_router(google_client, AsyncSessionLocal))
app.include_router(create_events_router(repository, sweeper))
app.include_router(create_extract_router(extraction, assets))
app.include_router(create_chat_router(conversations))
app.include_router(create_calendar_router(calendar_sync))
app.include_router(create_bin_router(bin_manager))
app.include_router(create_upload_router(assets))
app.include_router(create_reminder_router(email, AsyncSessionLocal))

app.mount(
    "/uploads",
    StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False),
    name="uploads",
)
