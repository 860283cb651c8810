from typing import Any, Dict

import jwt

from ..config import settings
from ..utils.security import hash_api_key


class InvalidTokenError(Exception):
    """Raised when a token cannot be parsed or is malformed."""


class ExpiredTokenError(Exception):
    """Raised when a token has expired."""


def _parse_token_payload(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise ExpiredTokenError from exc
    except jwt.InvalidTokenError as exc:
        raise InvalidTokenError from exc


def validate_access_token(token: str, server_name: str | None = None) -> Dict[str, Any]:
    """Decode a panel access token.

    When the token carries a ``server`` claim it must match the tenant the
    request is addressed to.
    """
    payload = _parse_token_payload(token)

    subject = payload.get("sub")
    if not isinstance(subject, str):
        raise InvalidTokenError()

    token_server = payload.get("server")
    if token_server is not None and server_name is not None and token_server != server_name:
        raise InvalidTokenError()

    return payload


def validate_api_key(api_key: str | None) -> str:
    if not api_key or not isinstance(api_key, str):
        raise InvalidTokenError()
    return hash_api_key(api_key.strip())
