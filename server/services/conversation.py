import asyncio
import json
import logging
import re
import time
import uuid
from datetime import date
from enum import Enum
from typing import Callable, Dict, List, Optional

from core.errors import (
    ConversationBusy,
    ConversationNotFound,
    EventSorterError,
    ExtractionEmptyError,
    ExtractionProviderError,
    ProviderTimeoutError,
)
from core.logging_setup import log_owner, log_step
from openai import APIError, APITimeoutError
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .events import EventFields, EventRepository

logger = logging.getLogger(__name__)

LOG_STEP = "CHAT"

NONE_SENTINEL = "none"

OPENING_TURN = "Hi! I'd like to create a new event."

IDLE_TIMEOUT_SECONDS = 30 * 60

FAILED_CREATE_TURN = (
    "Sorry, I couldn't save that event ({reason}). "
    "You can confirm again to retry, or tell me what to change."
)

COMPLETION_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")
CONFIRM_RE = re.compile(r"\b(confirm|correct|look right|sound right|shall i create)\b", re.IGNORECASE)


def build_system_prompt(today: date) -> str:
    return f"""You are a friendly event creation assistant for Event Sorter. Your job is to help the user create an event or reminder through a natural conversation.

You need to collect the following information:
1. EVENT NAME - What is the event called?
2. DATE - When is it? (get a specific date)
3. TIME - What time? If the user doesn't know or doesn't have a set time, that's fine; accept "none".
4. LOCATION - Where is it happening? If the user doesn't know, accept "none".
5. WITH WHO - Who are they going with? This will be added to the event description. If the user doesn't know or is going alone, accept "none".

Rules:
- Be conversational, friendly, and concise. Keep responses short (1-3 sentences).
- Ask for one or two pieces of information at a time, don't overwhelm the user.
- Start by asking what event or reminder they want to create.
- If the user gives multiple pieces of info at once, acknowledge them and ask for whatever is still missing.
- When the user says they don't have a time, location, or companions, accept that and move on.
- Today's date is {today.isoformat()}. Use this to interpret relative dates like "tomorrow", "next Friday", etc.

IMPORTANT: Once you have ALL the required information, you MUST respond with ONLY a JSON block in this exact format (no other text before or after):
```json
{{
  "eventReady": true,
  "name": "Event Name",
  "date": "YYYY-MM-DD",
  "time": "HH:MM or none",
  "location": "Location or none",
  "withWho": "Person names or none",
  "description": "A brief description including who they are going with if applicable"
}}
```

Do NOT output the JSON until you have confirmed all details with the user. Before outputting the JSON, summarize the event details and ask the user to confirm. Only after they confirm, output the JSON block."""


class ConversationState(str, Enum):
    GREETING = "greeting"
    COLLECTING = "collecting"
    CONFIRM_CREATE = "confirm_create"
    DONE = "done"


class CompletionPayload(BaseModel):
    """The fenced JSON the assistant emits once the user has confirmed."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_ready: bool = Field(alias="eventReady")
    name: str = Field(min_length=1)
    date: str = Field(min_length=1)
    time: str | None = None
    location: str | None = None
    with_who: str | None = Field(default=None, alias="withWho")
    description: str | None = None

    @field_validator("time", "location", "with_who", "description", mode="before")
    @classmethod
    def _sentinel_is_none(cls, value):
        if isinstance(value, str) and value.strip().lower() in ("", NONE_SENTINEL):
            return None
        return value


class ConversationDraft(BaseModel):
    name: str
    date: str
    time: str | None = None
    location: str | None = None
    description: str | None = None

    def to_event_fields(self) -> EventFields:
        return EventFields.model_validate(
            {
                "name": self.name,
                "date": self.date,
                "time": self.time,
                "location": self.location,
                "description": self.description,
            }
        )


class ChatTurn(BaseModel):
    conversation_id: str
    state: ConversationState
    message: str
    event_data: ConversationDraft | None = None
    event_id: str | None = None


def parse_completion(content: str) -> Optional[ConversationDraft]:
    """
    Returns a draft when the reply carries a well-formed completion block,
    otherwise None and the reply is treated as an ordinary message.
    """
    match = COMPLETION_RE.search(content)
    if not match:
        return None
    try:
        payload = CompletionPayload.model_validate(json.loads(match.group(1)))
    except (json.JSONDecodeError, PydanticValidationError):
        return None
    if not payload.event_ready:
        return None

    description = payload.description
    if payload.with_who and payload.with_who.lower() not in (description or "").lower():
        companion = f"With {payload.with_who}."
        description = f"{description} {companion}" if description else companion

    return ConversationDraft(
        name=payload.name,
        date=payload.date,
        time=payload.time,
        location=payload.location,
        description=description,
    )


class Conversation:
    """
    One dialogue with the provider. The transcript is append-only and at most
    one provider call is in flight at a time.
    """

    def __init__(self, owner_id: str, conversation_id: str | None = None, now: float = 0.0):
        self.id = conversation_id or str(uuid.uuid4())
        self.owner_id = owner_id
        self.state = ConversationState.GREETING
        self.transcript: List[Dict[str, str]] = []
        self.draft: ConversationDraft | None = None
        self.event_id: str | None = None
        self.last_active = now
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def append(self, role: str, content: str) -> None:
        self.transcript.append({"role": role, "content": content})

    def turn(self, message: str) -> ChatTurn:
        return ChatTurn(
            conversation_id=self.id,
            state=self.state,
            message=message,
            event_data=self.draft,
            event_id=self.event_id,
        )


class ConversationService:
    """Drives Conversation objects through Greeting → Collecting → ConfirmCreate → Done."""

    def __init__(
        self,
        ai_client,
        repository: EventRepository,
        model: str = "gpt-4o",
        today: Callable[[], date] = date.today,
        clock: Callable[[], float] = time.monotonic,
        idle_timeout: float = IDLE_TIMEOUT_SECONDS,
    ):
        self.ai_client = ai_client
        self.repository = repository
        self.model = model
        self.today = today
        self.clock = clock
        self.idle_timeout = idle_timeout
        self.conversations: Dict[str, Conversation] = {}

    def evict_idle(self) -> int:
        """Drops conversations with no activity within the idle timeout."""
        cutoff = self.clock() - self.idle_timeout
        stale = [
            c.id for c in self.conversations.values() if not c.busy and c.last_active < cutoff
        ]
        for conversation_id in stale:
            self.conversations.pop(conversation_id, None)
        if stale:
            with log_step(LOG_STEP):
                logger.info(f"Evicted {len(stale)} idle conversation(s).")
        return len(stale)

    def get(self, owner_id: str, conversation_id: str) -> Conversation:
        self.evict_idle()
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.owner_id != owner_id:
            raise ConversationNotFound()
        return conversation

    def discard(self, owner_id: str, conversation_id: str) -> None:
        self.get(owner_id, conversation_id)
        self.conversations.pop(conversation_id, None)

    async def start(self, owner_id: str) -> ChatTurn:
        """The conversation is only kept once its greeting has been received."""
        self.evict_idle()
        conversation = Conversation(owner_id, now=self.clock())
        turn = await self._exchange(conversation, OPENING_TURN)
        self.conversations[conversation.id] = conversation
        with log_step(LOG_STEP), log_owner(owner_id):
            logger.info(f"Started conversation {conversation.id}.")
        return turn

    async def send(self, owner_id: str, conversation_id: str, text: str) -> ChatTurn:
        conversation = self.get(owner_id, conversation_id)
        return await self._exchange(conversation, text)

    async def _exchange(self, conversation: Conversation, user_text: str) -> ChatTurn:
        if conversation.busy:
            raise ConversationBusy()

        async with conversation._lock:
            conversation.last_active = self.clock()
            conversation.append("user", user_text)
            reply = await self._complete(conversation)
            conversation.append("assistant", reply)

            draft = parse_completion(reply)
            conversation.draft = draft
            if draft is not None:
                conversation.state = ConversationState.DONE
            elif CONFIRM_RE.search(reply) and reply.rstrip().endswith("?"):
                conversation.state = ConversationState.CONFIRM_CREATE
            else:
                conversation.state = ConversationState.COLLECTING

            with log_step(LOG_STEP), log_owner(conversation.owner_id):
                logger.debug(
                    f"Conversation {conversation.id} now {conversation.state.value} "
                    f"after {len(conversation.transcript)} turns."
                )
            return conversation.turn(reply)

    async def _complete(self, conversation: Conversation) -> str:
        messages = [{"role": "system", "content": build_system_prompt(self.today())}]
        messages.extend(conversation.transcript)
        try:
            response = await self.ai_client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=500,
            )
        except APITimeoutError:
            raise ProviderTimeoutError()
        except APIError as e:
            with log_step(LOG_STEP):
                logger.error(f"AI provider error: {e.message}")
            raise ExtractionProviderError("Failed to get response")

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ExtractionEmptyError()
        return content

    async def confirm(self, owner_id: str, conversation_id: str) -> ChatTurn:
        """
        Creates the event from a completed draft. On failure the dialogue keeps
        its state and gains an error turn, so the user can confirm again.
        """
        conversation = self.get(owner_id, conversation_id)
        if conversation.state != ConversationState.DONE or conversation.draft is None:
            raise ConversationNotFound("Conversation has no completed event to create")
        if conversation.busy:
            raise ConversationBusy()

        async with conversation._lock:
            conversation.last_active = self.clock()
            with log_step(LOG_STEP), log_owner(owner_id):
                try:
                    fields = conversation.draft.to_event_fields()
                    event = await self.repository.create(owner_id, fields)
                except PydanticValidationError as e:
                    reason = e.errors()[0].get("msg", "invalid details")
                    return self._failed_turn(conversation, reason)
                except EventSorterError as e:
                    return self._failed_turn(conversation, e.message)

                conversation.event_id = event.id
                self.conversations.pop(conversation.id, None)
                logger.info(f"Conversation {conversation.id} created event {event.id}.")
                message = f"Done! \"{event.name}\" has been added to your events."
                conversation.append("assistant", message)
                return conversation.turn(message)

    def _failed_turn(self, conversation: Conversation, reason: str) -> ChatTurn:
        logger.warning(f"Conversation {conversation.id} failed to create event: {reason}")
        message = FAILED_CREATE_TURN.format(reason=reason)
        conversation.append("assistant", message)
        return conversation.turn(message)
