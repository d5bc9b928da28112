import base64
import json

import httpx
import pytest
from conftest import FakeAIClient, mock_http_client
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
from openai import APIError, APITimeoutError
from services.extraction import (
    ExtractionService,
    parse_extraction_response,
    sanitize_html,
    strip_code_fence,
)

PAYLOAD = {
    "name": "Summer Jazz",
    "date": "2025-06-01",
    "time": "20:00",
    "location": "Riverside Park",
    "ticketUrl": None,
    "description": "An evening of jazz by the river.",
}

EVENT_PAGE = """
<html><head><title>Summer Jazz</title>
<style>body { color: red; }</style>
<script>window.tracking = "ignore me";</script></head>
<body><h1>Summer Jazz &amp; Blues</h1>
<p>Join us on June 1st at Riverside Park for an evening of live jazz by the river.</p>
</body></html>
"""


def page_client(status=200, body=EVENT_PAGE, error=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if error is not None:
            raise error
        return httpx.Response(status, text=body)

    return mock_http_client(handler)


def service(ai_client, http_client=None):
    return ExtractionService(ai_client, http_client or page_client())


# Purpose: verify a fenced provider reply parses identically to the bare JSON.
@pytest.mark.parametrize("fence", ["```json\n{}\n```", "```\n{}\n```", "{}"])
def test_fenced_and_bare_responses_parse_identically(fence):
    raw = json.dumps(PAYLOAD)

    parsed = parse_extraction_response(fence.replace("{}", raw))

    assert parsed == parse_extraction_response(raw)
    assert parsed.name == "Summer Jazz"
    assert parsed.ticket_url is None


# Purpose: verify empty strings from the provider normalize to null.
def test_empty_fields_become_null():
    parsed = parse_extraction_response(json.dumps({"name": "Gig", "time": "", "location": " "}))

    assert parsed.time is None
    assert parsed.location is None
    assert parsed.date is None


# Purpose: verify malformed or mistyped replies raise a parse error and blank replies an empty error.
def test_bad_responses_raise():
    with pytest.raises(ExtractionParseError):
        parse_extraction_response("```json\nnot json\n```")
    with pytest.raises(ExtractionParseError):
        parse_extraction_response("[1, 2, 3]")
    with pytest.raises(ExtractionParseError):
        parse_extraction_response(json.dumps({"name": {"nested": True}}))
    with pytest.raises(ExtractionEmptyError):
        parse_extraction_response("   ")
    with pytest.raises(ExtractionEmptyError):
        parse_extraction_response(None)


# Purpose: verify fence stripping leaves unfenced content untouched.
def test_strip_code_fence():
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('{"a": 1}') == '{"a": 1}'


# Purpose: verify scripts, styles and tags are stripped and entities decoded.
def test_sanitize_html():
    text = sanitize_html(EVENT_PAGE)

    assert "tracking" not in text
    assert "color: red" not in text
    assert "<" not in text
    assert "Summer Jazz & Blues" in text
    assert "  " not in text


# Purpose: verify the image is sent inline as a base64 data URL with the JSON response format.
@pytest.mark.asyncio
async def test_extract_from_image_sends_data_url():
    ai = FakeAIClient(json.dumps(PAYLOAD))

    result = await service(ai).extract_from_image(b"\x89PNG-bytes", "image/png")

    assert result.name == "Summer Jazz"
    call = ai.calls[0]
    assert call["response_format"] == {"type": "json_object"}
    parts = call["messages"][1]["content"]
    image_url = parts[1]["image_url"]["url"]
    assert image_url == "data:image/png;base64," + base64.b64encode(b"\x89PNG-bytes").decode()


# Purpose: verify provider timeouts and rejections map to dedicated error kinds.
@pytest.mark.asyncio
async def test_provider_failures_are_mapped():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    ai = FakeAIClient(APITimeoutError(request=request))

    with pytest.raises(ProviderTimeoutError):
        await service(ai).extract_from_image(b"img", "image/jpeg")

    ai = FakeAIClient(APIError("bad request", request=request, body=None))
    with pytest.raises(ExtractionProviderError):
        await service(ai).extract_from_image(b"img", "image/jpeg")


# Purpose: verify the URL path sends sanitized page text and falls back to the source URL for tickets.
@pytest.mark.asyncio
async def test_extract_from_url_uses_page_text_and_ticket_fallback():
    ai = FakeAIClient(json.dumps(PAYLOAD))

    result = await service(ai).extract_from_url("https://example.com/jazz")

    assert result.ticket_url == "https://example.com/jazz"
    prompt = ai.calls[0]["messages"][1]["content"]
    assert "Source URL: https://example.com/jazz" in prompt
    assert "Riverside Park" in prompt
    assert "<h1>" not in prompt


# Purpose: verify a ticket URL supplied by the provider is kept.
@pytest.mark.asyncio
async def test_extract_from_url_keeps_provider_ticket_url():
    ai = FakeAIClient(json.dumps({**PAYLOAD, "ticketUrl": "https://tickets.example.com"}))

    result = await service(ai).extract_from_url("https://example.com/jazz")

    assert result.ticket_url == "https://tickets.example.com"


# Purpose: verify pages with too little text fail without calling the provider.
@pytest.mark.asyncio
async def test_short_page_skips_provider():
    ai = FakeAIClient()

    with pytest.raises(InsufficientContentError):
        await service(ai, page_client(body="<html><body>Loading...</body></html>")).extract_from_url(
            "https://example.com/spa"
        )

    assert ai.calls == []


# Purpose: verify invalid URLs, fetch timeouts and error statuses each raise their own kind.
@pytest.mark.asyncio
async def test_url_failures():
    ai = FakeAIClient()

    with pytest.raises(InvalidSourceError):
        await service(ai).extract_from_url("ftp://example.com/file")
    with pytest.raises(InvalidSourceError):
        await service(ai).extract_from_url("not a url")
    with pytest.raises(SourceTimeoutError):
        await service(ai, page_client(error=httpx.ReadTimeout("slow"))).extract_from_url(
            "https://example.com/slow"
        )
    with pytest.raises(SourceFetchError):
        await service(ai, page_client(error=httpx.ConnectError("down"))).extract_from_url(
            "https://example.com/down"
        )
    with pytest.raises(SourceFetchError):
        await service(ai, page_client(status=404)).extract_from_url("https://example.com/gone")

    assert ai.calls == []
