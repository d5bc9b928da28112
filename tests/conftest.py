import os

os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-google-client")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-google-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_event_sorter.db")

from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio
from core.orm import init_orm
from services.bin import BinManager
from services.events import EventRepository
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

OWNER = "owner-1"
OTHER_OWNER = "owner-2"


def completion(content):
    """Shapes a string like an OpenAI chat completion response."""
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    )


class FakeCompletions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if not self.replies:
            raise AssertionError("Unexpected AI call")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = await reply()
        return completion(reply)


class FakeAIClient:
    """Stands in for AsyncOpenAI: only chat.completions.create is used."""

    def __init__(self, *replies):
        self.completions = FakeCompletions(replies)
        self.chat = SimpleNamespace(completions=self.completions)

    @property
    def calls(self):
        return self.completions.calls

    def queue(self, *replies):
        self.completions.replies.extend(replies)


def mock_http_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'events.db'}")
    await init_orm(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def repository(session_factory):
    return EventRepository(session_factory)


@pytest.fixture
def bin_manager(session_factory):
    return BinManager(session_factory)
