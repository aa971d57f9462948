import time
from dataclasses import dataclass
from typing import Optional

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings
from errors import UnauthorizedError

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenPair:
    token: str
    refresh_token: str


def _serializer(token_type: str) -> URLSafeSerializer:
    settings = get_settings()
    if token_type == REFRESH:
        secret = settings.jwt_refresh_secret
    else:
        secret = settings.jwt_secret
    return URLSafeSerializer(secret, salt="auth-token")


def _lifetime_secs(token_type: str) -> int:
    settings = get_settings()
    if token_type == REFRESH:
        ttl = settings.refresh_token_ttl
    else:
        ttl = settings.access_token_ttl
    return int(ttl.total_seconds())


def issue_token(
    user_id: int, token_type: str = ACCESS, now: Optional[int] = None
) -> str:
    serializer = _serializer(token_type)
    timestamp = int(time.time()) if now is None else now
    expiry = timestamp + _lifetime_secs(token_type)

    token_data = {"id": user_id, "type": token_type, "iat": timestamp, "exp": expiry}

    return serializer.dumps(token_data)


def issue_token_pair(user_id: int, now: Optional[int] = None) -> TokenPair:
    return TokenPair(
        token=issue_token(user_id, ACCESS, now=now),
        refresh_token=issue_token(user_id, REFRESH, now=now),
    )


def verify_token(
    token: str, token_type: str = ACCESS, now: Optional[int] = None
) -> int:
    """Return the user id carried by ``token``.

    Raises ``UnauthorizedError`` when the signature is bad, the token has
    expired, or its ``type`` claim is not ``token_type``.
    """
    label = "refresh token" if token_type == REFRESH else "token"
    serializer = _serializer(token_type)
    try:
        data = serializer.loads(token)
    except BadSignature as exc:
        raise UnauthorizedError(f"Invalid {label}") from exc

    if not isinstance(data, dict) or not isinstance(data.get("id"), int):
        raise UnauthorizedError(f"Invalid {label}")

    current_time = int(time.time()) if now is None else now
    if current_time > int(data.get("exp", 0)):
        raise UnauthorizedError(f"{label.capitalize()} expired")

    claimed_type = data.get("type", ACCESS)
    if claimed_type != token_type:
        raise UnauthorizedError("Invalid token type")

    return data["id"]
