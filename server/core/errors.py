import logging

from core.logging_setup import log_step
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class EventSorterError(Exception):
    """
    Base class for every failure the core reports to its caller.

    Each subclass carries the HTTP status it maps to and a default
    user-facing message. The message never contains credentials or raw
    provider payloads.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def kind(self) -> str:
        return type(self).__name__


# --- Identity ---


class Unauthorized(EventSorterError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


# --- Lookup ---


class NotFound(EventSorterError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Event not found"


class NotFoundInBin(NotFound):
    default_message = "Event not found in bin"


class AssetNotFound(NotFound):
    default_message = "Image not found"


class ConversationNotFound(NotFound):
    default_message = "Conversation not found"


# --- Validation ---


class ValidationError(EventSorterError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid event data"

    def __init__(self, message: str | None = None, field: str | None = None):
        self.field = field
        super().__init__(message)


# --- Extraction ---


class ExtractionError(EventSorterError):
    """Common parent for the extraction path. None of these are retried."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Failed to extract event data"


class ExtractionParseError(ExtractionError):
    default_message = "Failed to parse AI response as event data"


class ExtractionEmptyError(ExtractionError):
    default_message = "No response from AI"


class ExtractionProviderError(ExtractionError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "The AI provider rejected the request"


class InvalidSourceError(ExtractionError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid URL. Please provide a valid http or https URL."


class SourceFetchError(ExtractionError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Failed to fetch the URL. Make sure the URL is accessible."


class SourceTimeoutError(ExtractionError):
    status_code = status.HTTP_408_REQUEST_TIMEOUT
    default_message = "The URL took too long to respond. Please try again."


class InsufficientContentError(ExtractionError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = (
        "Could not extract enough content from this URL. "
        "The page might be empty or require JavaScript to load."
    )


class ProviderTimeoutError(EventSorterError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    default_message = "The upstream provider took too long to respond. Please try again."


# --- Conversation ---


class ConversationBusy(EventSorterError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Please wait for the assistant to reply before sending another message."


# --- Calendar sync ---


class CalendarSyncError(EventSorterError):
    default_message = "Failed to create calendar event"


class CredentialMissing(CalendarSyncError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Google account not connected. Please sign out and sign in again."


class CredentialRefreshFailed(CalendarSyncError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Token refresh failed. Please sign out and sign in again."


class CalendarCreateFailed(CalendarSyncError):
    status_code = status.HTTP_502_BAD_GATEWAY


class CalendarAlreadySynced(CalendarSyncError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Event is already in your Google Calendar."


# --- Infrastructure ---


class PersistenceError(EventSorterError):
    default_message = "Failed to save changes. Please try again."


class EmailNotConfigured(EventSorterError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Email reminders are not configured."


def error_response(error: EventSorterError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"error": error.message, "kind": error.kind},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Renders taxonomy errors and body validation failures as JSON."""

    @app.exception_handler(EventSorterError)
    async def handle_event_sorter_error(request: Request, exc: EventSorterError):
        with log_step("API"):
            if exc.status_code >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
            else:
                logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}")
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(
        request: Request, exc: RequestValidationError
    ):
        errors = exc.errors()
        field = None
        message = ValidationError.default_message
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ())[1:]) or None
            message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
        return error_response(ValidationError(message, field=field))
