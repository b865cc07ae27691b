"""Authentication for upload endpoints."""

import hmac
from typing import Optional

from fastapi import Header, Request

from server.config import ApiKeyEntry
from server.exceptions import InvalidAPIKeyError

LOCAL_USER = ApiKeyEntry(username="local", is_admin=True)


def lookup_api_key(api_key: str, api_keys: dict) -> Optional[ApiKeyEntry]:
    """
    Find the user bound to an API key using constant-time comparison.

    Args:
        api_key: Key presented by the client
        api_keys: Configured key to user mapping

    Returns:
        The matching ApiKeyEntry, or None
    """
    match = None
    for known_key, entry in api_keys.items():
        if hmac.compare_digest(known_key.encode('utf-8'), api_key.encode('utf-8')):
            match = entry
    return match


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> ApiKeyEntry:
    """
    FastAPI dependency to validate the API Key and return its user.

    When no keys are configured the server runs single-user and every
    request acts as the local admin.

    Args:
        request: Incoming request (settings are read from app state)
        authorization: Authorization header value (format: "Bearer <api_key>")

    Returns:
        The authenticated user

    Raises:
        InvalidAPIKeyError: If the header is missing, malformed or the key is unknown
    """
    api_keys = request.app.state.settings.api_keys
    if not api_keys:
        request.state.user_id = LOCAL_USER.username
        return LOCAL_USER

    if not authorization or not authorization.startswith("Bearer "):
        raise InvalidAPIKeyError("Invalid authorization header format")

    api_key = authorization[len("Bearer "):].strip()
    user = lookup_api_key(api_key, api_keys)
    if user is None:
        raise InvalidAPIKeyError("Invalid API Key")

    request.state.user_id = user.username
    return user
