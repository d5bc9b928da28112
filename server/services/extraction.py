import base64
import html
import json
import logging
import re
from urllib.parse import urlparse

import httpx
from core.errors import (
    ExtractionEmptyError,
    ExtractionParseError,
    ExtractionProviderError,
    InsufficientContentError,
    InvalidSourceError,
    ProviderTimeoutError,
    SourceFetchError,
    SourceTimeoutError,
)
from core.logging_setup import log_step
from openai import APIError, APITimeoutError
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

LOG_STEP = "EXTRACTION"

SYSTEM_PROMPT = "You are an event information extractor. Always respond with valid JSON only."

FIELDS_PROMPT = """Return a JSON object with these exact fields:
{
  "name": "The name/title of the event",
  "date": "The date in YYYY-MM-DD format",
  "time": "The time in HH:MM format (24-hour)",
  "location": "The venue or location",
  "ticketUrl": "Any URL for tickets or more info",
  "description": "A brief description of the event"
}

If any field cannot be determined, set its value to null."""

IMAGE_PROMPT = (
    "Analyze this event poster image and extract the following information. "
    + FIELDS_PROMPT
)

TEXT_PROMPT = (
    "Analyze the following web page content and extract the event information. "
    + FIELDS_PROMPT
)

FETCH_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; EventSorter/1.0)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

SCRIPT_RE = re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE)
STYLE_RE = re.compile(r"<style[^>]*>[\s\S]*?</style>", re.IGNORECASE)
TAG_RE = re.compile(r"<[^>]+>")
WHITESPACE_RE = re.compile(r"\s+")
FENCE_OPEN_RE = re.compile(r"^```[a-zA-Z]*\s*")
FENCE_CLOSE_RE = re.compile(r"\s*```$")


class ExtractedEventData(BaseModel):
    """
    A best-effort draft. Every field may be null; nothing here is persisted
    until the user confirms it.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str | None = None
    date: str | None = None
    time: str | None = None
    location: str | None = None
    ticket_url: str | None = Field(default=None, alias="ticketUrl")
    description: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _empty_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


def strip_code_fence(content: str) -> str:
    """Removes a leading ```/```json marker and a trailing ``` if present."""
    cleaned = content.strip()
    cleaned = FENCE_OPEN_RE.sub("", cleaned, count=1)
    cleaned = FENCE_CLOSE_RE.sub("", cleaned, count=1)
    return cleaned.strip()


def parse_extraction_response(content: str | None) -> ExtractedEventData:
    if content is None or not content.strip():
        raise ExtractionEmptyError()

    try:
        parsed = json.loads(strip_code_fence(content))
    except json.JSONDecodeError as e:
        raise ExtractionParseError(f"Failed to parse AI response as JSON: {e.msg}")

    if not isinstance(parsed, dict):
        raise ExtractionParseError("AI response was not a JSON object")

    try:
        return ExtractedEventData.model_validate(parsed)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ExtractionParseError(f"AI response had unexpected field types: {fields}")


def sanitize_html(raw_html: str) -> str:
    text = SCRIPT_RE.sub("", raw_html)
    text = STYLE_RE.sub("", text)
    text = TAG_RE.sub(" ", text)
    text = html.unescape(text)
    return WHITESPACE_RE.sub(" ", text).strip()


def validate_source_url(url: str) -> str:
    if not url or not isinstance(url, str):
        raise InvalidSourceError("No URL provided")
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidSourceError()
    return parsed.geturl()


class ExtractionService:
    """
    Turns a poster image or an event web page into an ExtractedEventData draft
    with a single completion call. Failures are never retried here.
    """

    def __init__(
        self,
        ai_client,
        http_client: httpx.AsyncClient,
        model: str = "gpt-4o",
        fetch_timeout: float = 10.0,
        min_text_length: int = 50,
    ):
        self.ai_client = ai_client
        self.http_client = http_client
        self.model = model
        self.fetch_timeout = fetch_timeout
        self.min_text_length = min_text_length

    async def _complete(self, user_content) -> str | None:
        try:
            response = await self.ai_client.chat.completions.create(
                model=self.model,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_content},
                ],
                max_tokens=1000,
            )
        except APITimeoutError:
            logger.error("AI provider timed out.")
            raise ProviderTimeoutError()
        except APIError as e:
            logger.error(f"AI provider error: {e.message}")
            raise ExtractionProviderError()

        if not response.choices:
            return None
        return response.choices[0].message.content

    async def extract_from_image(
        self, image_bytes: bytes, mime_type: str
    ) -> ExtractedEventData:
        with log_step(LOG_STEP):
            encoded = base64.b64encode(image_bytes).decode("ascii")
            data_url = f"data:{mime_type};base64,{encoded}"
            logger.info(f"Extracting event from {mime_type} image ({len(image_bytes)} bytes).")

            content = await self._complete(
                [
                    {"type": "text", "text": IMAGE_PROMPT},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ]
            )
            extracted = parse_extraction_response(content)
            logger.info(f"Extracted event name: {extracted.name!r}")
            return extracted

    async def extract_from_text(self, text: str, source_url: str) -> ExtractedEventData:
        with log_step(LOG_STEP):
            content = await self._complete(
                f"{TEXT_PROMPT}\n\nSource URL: {source_url}\n\n{text}"
            )
            extracted = parse_extraction_response(content)
            if not extracted.ticket_url:
                extracted.ticket_url = source_url
            return extracted

    async def fetch_page_text(self, url: str) -> str:
        with log_step(LOG_STEP):
            try:
                response = await self.http_client.get(
                    url,
                    headers=FETCH_HEADERS,
                    follow_redirects=True,
                    timeout=self.fetch_timeout,
                )
            except httpx.TimeoutException:
                logger.warning(f"Page fetch timed out after {self.fetch_timeout}s.")
                raise SourceTimeoutError()
            except httpx.RequestError as e:
                logger.warning(f"Page fetch failed: {type(e).__name__}")
                raise SourceFetchError()

            if response.status_code >= 400:
                raise SourceFetchError(
                    f"Failed to fetch the URL (status {response.status_code}). "
                    "Make sure the URL is accessible."
                )
            return sanitize_html(response.text)

    async def extract_from_url(self, url: str) -> ExtractedEventData:
        source_url = validate_source_url(url)
        text = await self.fetch_page_text(source_url)

        if len(text) < self.min_text_length:
            with log_step(LOG_STEP):
                logger.info(f"Page text too short ({len(text)} chars); skipping AI call.")
            raise InsufficientContentError()

        return await self.extract_from_text(text, source_url)
