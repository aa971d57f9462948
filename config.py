import os
import re
from datetime import timedelta
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        environment: str,
        log_level: str,
        jwt_secret: str,
        jwt_refresh_secret: str,
        access_token_ttl: timedelta,
        refresh_token_ttl: timedelta,
        frontend_url: str,
        port: int,
        rate_limit_window_secs: int,
        auth_rate_limit: int,
        transaction_rate_limit: int,
        api_rate_limit: int,
        bcrypt_rounds: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.environment = environment
        self.log_level = log_level
        self.jwt_secret = jwt_secret
        self.jwt_refresh_secret = jwt_refresh_secret
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.frontend_url = frontend_url
        self.port = port
        self.rate_limit_window_secs = rate_limit_window_secs
        self.auth_rate_limit = auth_rate_limit
        self.transaction_rate_limit = transaction_rate_limit
        self.api_rate_limit = api_rate_limit
        self.bcrypt_rounds = bcrypt_rounds


_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str) -> timedelta:
    """Parse lifetimes such as ``900``, ``15m``, ``24h`` or ``7d``."""
    match = _DURATION_RE.match(value.lower())
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _DURATION_UNITS[unit])


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("TRACKIT_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "trackit.db"
    database_url = os.getenv("TRACKIT_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("TRACKIT_TIMEZONE", "UTC")
    environment = os.getenv("TRACKIT_ENV", "development")
    log_level = os.getenv("TRACKIT_LOG_LEVEL", "INFO").upper()
    jwt_secret = os.getenv(
        "TRACKIT_JWT_SECRET",
        "5d0c7f3b1e0a4f0e9a51c2d8b6e4a7f19c3d2e1f0a9b8c7d6e5f4a3b2c1d0e9f",
    )
    jwt_refresh_secret = os.getenv("TRACKIT_JWT_REFRESH_SECRET", jwt_secret)
    access_token_ttl = parse_duration(os.getenv("TRACKIT_JWT_EXPIRES_IN", "24h"))
    refresh_token_ttl = parse_duration(os.getenv("TRACKIT_REFRESH_EXPIRES_IN", "7d"))
    frontend_url = os.getenv("TRACKIT_FRONTEND_URL", "http://localhost:3000")
    port = int(os.getenv("TRACKIT_PORT", "5000"))
    rate_limit_window_secs = int(os.getenv("TRACKIT_RATE_LIMIT_WINDOW_SECS", "900"))
    auth_rate_limit = int(os.getenv("TRACKIT_AUTH_RATE_LIMIT", "5"))
    transaction_rate_limit = int(os.getenv("TRACKIT_TRANSACTION_RATE_LIMIT", "50"))
    api_rate_limit = int(os.getenv("TRACKIT_API_RATE_LIMIT", "100"))
    bcrypt_rounds = int(os.getenv("TRACKIT_BCRYPT_ROUNDS", "12"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        environment=environment,
        log_level=log_level,
        jwt_secret=jwt_secret,
        jwt_refresh_secret=jwt_refresh_secret,
        access_token_ttl=access_token_ttl,
        refresh_token_ttl=refresh_token_ttl,
        frontend_url=frontend_url,
        port=port,
        rate_limit_window_secs=rate_limit_window_secs,
        auth_rate_limit=auth_rate_limit,
        transaction_rate_limit=transaction_rate_limit,
        api_rate_limit=api_rate_limit,
        bcrypt_rounds=bcrypt_rounds,
    )
