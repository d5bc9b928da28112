import json
import logging
import time
import urllib.parse
import uuid
from dataclasses import dataclass

import httpx
from core.authentication import AUTH_COOKIE, generate_jwt_token
from core.config import settings
from core.logging_setup import log_step
from fastapi import HTTPException, Request, Response
from fastapi.responses import RedirectResponse
from models.integrations import Integration
from models.users import User
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

LOG_STEP = "INT-GOOGLE"

PLATFORM = "google"

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
GOOGLE_CALENDAR_EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"
SCOPE = "openid email profile https://www.googleapis.com/auth/calendar.events"
REDIRECT_PATH = "/api/auth/google/callback"
STATE_COOKIE = "google_auth_state"
SESSION_DAYS = 30


class GoogleAPIError(Exception):
    """A non-success answer from a Google endpoint, with its readable message."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code} {message}")


@dataclass
class TokenGrant:
    access_token: str
    expires_in: int
    refresh_token: str | None = None


@dataclass
class CreatedCalendarEvent:
    id: str
    html_link: str


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or "Unknown error"

    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message") or error.get("status") or "Unknown error"
    if error:
        description = body.get("error_description")
        return f"{error}: {description}" if description else str(error)
    return "Unknown error"


class GoogleCalendarClient:
    """Thin wrapper over the OAuth token endpoint and the Calendar v3 insert call."""

    def __init__(self, http_client: httpx.AsyncClient, client_id: str, client_secret: str):
        self.http_client = http_client
        self.client_id = client_id
        self.client_secret = client_secret

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        resp = await self.http_client.post(GOOGLE_TOKEN_URL, data=data)

        if resp.status_code != 200:
            message = _error_message(resp)
            with log_step(LOG_STEP):
                logger.error(f"Failed to refresh Google token: {message}")
            raise GoogleAPIError(resp.status_code, message)

        token_data = resp.json()
        return TokenGrant(
            access_token=token_data["access_token"],
            expires_in=int(token_data.get("expires_in", 3600)),
            refresh_token=token_data.get("refresh_token"),
        )

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        resp = await self.http_client.post(GOOGLE_TOKEN_URL, data=data)
        if resp.status_code != 200:
            raise GoogleAPIError(resp.status_code, _error_message(resp))

        tokens = resp.json()
        return TokenGrant(
            access_token=tokens["access_token"],
            expires_in=int(tokens.get("expires_in", 3600)),
            refresh_token=tokens.get("refresh_token"),
        )

    async def get_user_info(self, access_token: str) -> dict:
        resp = await self.http_client.get(
            GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}
        )
        if resp.status_code != 200:
            raise GoogleAPIError(resp.status_code, _error_message(resp))
        return resp.json()

    async def create_event(self, access_token: str, body: dict) -> CreatedCalendarEvent:
        resp = await self.http_client.post(
            GOOGLE_CALENDAR_EVENTS_URL,
            json=body,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if resp.status_code not in (200, 201):
            raise GoogleAPIError(resp.status_code, _error_message(resp))

        data = resp.json()
        if not data.get("id") or not data.get("htmlLink"):
            raise GoogleAPIError(resp.status_code, "Failed to create calendar event")
        return CreatedCalendarEvent(id=data["id"], html_link=data["htmlLink"])

    async def delete_event(self, access_token: str, google_event_id: str) -> None:
        resp = await self.http_client.delete(
            f"{GOOGLE_CALENDAR_EVENTS_URL}/{urllib.parse.quote(google_event_id, safe='')}",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        # 410: already gone
        if resp.status_code not in (200, 204, 410):
            raise GoogleAPIError(resp.status_code, _error_message(resp))


class GoogleLoginResponse(BaseModel):
    login_url: str


def _redirect_uri() -> str:
    return f"{settings.APP_BASE_URL}{REDIRECT_PATH}"


async def handle_login(response: Response) -> GoogleLoginResponse:
    with log_step(LOG_STEP):
        state = str(uuid.uuid4())
        response.set_cookie(
            key=STATE_COOKIE,
            value=json.dumps({"state": state}),
            max_age=600,
            httponly=True,
            secure=settings.APP_BASE_URL.startswith("https"),
            samesite="lax",
        )

        params = {
            "client_id": settings.GOOGLE_CLIENT_ID,
            "redirect_uri": _redirect_uri(),
            "response_type": "code",
            "scope": SCOPE,
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return GoogleLoginResponse(
            login_url=f"{GOOGLE_AUTH_URL}?{urllib.parse.urlencode(params)}"
        )


async def _store_login(
    session_factory: async_sessionmaker[AsyncSession],
    user_info: dict,
    grant: TokenGrant,
) -> str:
    user_id = user_info["sub"]
    expires_at = int(time.time()) + grant.expires_in

    async with session_factory() as session:
        await session.merge(
            User(id=user_id, name=user_info.get("name"), email=user_info.get("email"))
        )

        result = await session.execute(
            select(Integration).where(
                Integration.user_id == user_id, Integration.platform == PLATFORM
            )
        )
        integration = result.scalar_one_or_none()
        if integration is None:
            integration = Integration(user_id=user_id, platform=PLATFORM)
            session.add(integration)

        integration.platform_user_id = user_id
        integration.access_token = grant.access_token
        # Google only re-sends the refresh token on a fresh consent
        if grant.refresh_token:
            integration.refresh_token = grant.refresh_token
        integration.expires_at = expires_at

        await session.commit()
    return user_id


async def handle_callback(
    request: Request,
    client: GoogleCalendarClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> RedirectResponse:
    with log_step(LOG_STEP):
        url_state = request.query_params.get("state")
        code = request.query_params.get("code")
        error = request.query_params.get("error")
        cookie_data_str = request.cookies.get(STATE_COOKIE)

        if error:
            raise HTTPException(status_code=400, detail=f"Google Auth Error: {error}")
        if not url_state or not code or not cookie_data_str:
            raise HTTPException(status_code=400, detail="Missing auth data.")

        try:
            cookie_data = json.loads(cookie_data_str)
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Invalid auth state.")

        if cookie_data.get("state") != url_state:
            raise HTTPException(status_code=400, detail="Auth state mismatch.")

        try:
            grant = await client.exchange_code(code, _redirect_uri())
            user_info = await client.get_user_info(grant.access_token)
        except GoogleAPIError as e:
            logger.error(f"Google sign-in failed: {e.message}")
            raise HTTPException(status_code=400, detail="Failed to sign in with Google.")

        if not user_info.get("sub"):
            raise HTTPException(status_code=400, detail="Failed to retrieve user profile.")

        user_id = await _store_login(session_factory, user_info, grant)

        app_token = generate_jwt_token(user_id=user_id)
        redirect_response = RedirectResponse(url="/")
        redirect_response.set_cookie(
            key=AUTH_COOKIE,
            value=app_token,
            max_age=SESSION_DAYS * 24 * 60 * 60,
            httponly=True,
            secure=settings.APP_BASE_URL.startswith("https"),
            samesite="lax",
        )
        redirect_response.delete_cookie(STATE_COOKIE)
        logger.info(f"Successfully authenticated Google user {user_id}")
        return redirect_response


async def handle_logout(response: Response) -> dict:
    with log_step(LOG_STEP):
        response.delete_cookie(AUTH_COOKIE)
        return {"logout_url": "/"}
