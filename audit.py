import logging
from typing import Optional

logger = logging.getLogger(__name__)


def log_auth_event(
    event: str, user_id: Optional[int], ip: Optional[str], success: bool
) -> None:
    logger.info(
        f"auth_event: event={event} user_id={user_id} ip={ip} success={success}"
    )


def log_security_event(event: str, **details: object) -> None:
    extra = " ".join(f"{key}={value}" for key, value in details.items())
    logger.warning(f"security_event: event={event} {extra}".rstrip())
