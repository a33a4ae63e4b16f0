import logging
from typing import Optional

import jwt
from fastapi import Request
from pydantic import BaseModel

from judge_gateway.config import get_settings
from judge_gateway.exceptions import AuthRequired, InvalidToken

logger = logging.getLogger(__name__)


class CurrentUser(BaseModel):
    id: str
    email: Optional[str] = None


def _bearer_token(auth_header: Optional[str]) -> Optional[str]:
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def decode_token(token: str) -> CurrentUser:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise InvalidToken("Token has expired")
    except jwt.PyJWTError:
        raise InvalidToken("Could not validate token")

    user_id = payload.get("id", payload.get("user_id"))
    if user_id is None:
        raise InvalidToken("Invalid authentication token")
    return CurrentUser(id=str(user_id), email=payload.get("email"))


async def optional_user(request: Request) -> Optional[CurrentUser]:
    """Resolve the caller from a bearer token; anonymous when absent or invalid."""
    if hasattr(request.state, "user"):
        return request.state.user
    user = None
    token = _bearer_token(request.headers.get("authorization"))
    if token:
        try:
            user = decode_token(token)
        except InvalidToken as e:
            logger.debug("Ignoring invalid token: %s", e.message)
    request.state.user = user
    return user


async def require_user(request: Request) -> CurrentUser:
    token = _bearer_token(request.headers.get("authorization"))
    if not token:
        raise AuthRequired("Please log in to access this resource")
    user = decode_token(token)
    request.state.user = user
    return user
