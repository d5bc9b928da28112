import logging
from datetime import datetime, timedelta, timezone

import jwt
from core.config import settings
from core.errors import Unauthorized
from core.logging_setup import log_step
from fastapi import Depends, Request
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

AUTH_COOKIE = "app_auth_token"
TOKEN_ISSUER = "event-sorter"
TOKEN_AUDIENCE = "event-sorter-web"


class TokenPayload(BaseModel):
    """Pydantic model for the JWT payload"""

    iss: str
    iat: int
    exp: int
    sub: str
    aud: str


def generate_jwt_token(
    user_id: str, expires_delta: timedelta = timedelta(days=30)
) -> str:
    """
    Generates the HS256 session token stored in the auth cookie.
    """
    now = datetime.now(timezone.utc)

    payload = {
        "iss": TOKEN_ISSUER,
        "iat": now,
        "exp": now + expires_delta,
        "sub": user_id,
        "aud": TOKEN_AUDIENCE,
    }

    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm="HS256")


async def get_token_from_cookie(request: Request) -> str:
    """Extracts the auth token from the 'app_auth_token' cookie."""
    token = request.cookies.get(AUTH_COOKIE)
    if not token:
        with log_step("SESSION"):
            logger.warning(f"Auth failed: No '{AUTH_COOKIE}' cookie.")
        raise Unauthorized("Not authenticated")
    return token


def get_current_user_payload(
    token: str = Depends(get_token_from_cookie),
) -> dict:
    """
    Validates the session token from the browser cookie.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=["HS256"],
            issuer=TOKEN_ISSUER,
            audience=TOKEN_AUDIENCE,
        )
        TokenPayload(**payload)
        return payload
    except jwt.ExpiredSignatureError:
        with log_step("SESSION"):
            logger.warning("Auth failed: Token has expired.")
        raise Unauthorized("Token has expired")
    except (jwt.InvalidTokenError, ValidationError) as e:
        with log_step("SESSION"):
            logger.warning(f"Auth failed: Invalid token. {e}")
        raise Unauthorized("Invalid token")


def get_current_owner_id(payload: dict = Depends(get_current_user_payload)) -> str:
    """
    Resolves the owner id every core operation is scoped to.
    A token without a subject is rejected outright.
    """
    owner_id = payload.get("sub")
    if not owner_id:
        with log_step("SESSION"):
            logger.warning("Auth token missing 'sub' (user_id) claim.")
        raise Unauthorized("Invalid user session.")
    return owner_id
