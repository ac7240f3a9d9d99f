import os
import re
from datetime import timedelta
from typing import List, Optional

from dotenv import load_dotenv

# Pick up a local .env when present; real environment variables win.
load_dotenv(override=False)

DEFAULT_SHOPIFY_API_VERSION = "2024-10"
DEFAULT_TOKEN_EXPIRY = "24h"

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|sec|secs|m|min|mins|h|hr|hrs|d|day|days|w|y)?\s*$", re.IGNORECASE)
_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1, "sec": 1, "secs": 1,
    "m": 60, "min": 60, "mins": 60,
    "h": 3600, "hr": 3600, "hrs": 3600,
    "d": 86400, "day": 86400, "days": 86400,
    "w": 604800,
    "y": 31557600,
}


def _env(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def parse_duration(raw: Optional[str]) -> timedelta:
    """Parse an `ms`-style duration such as "90s", "30m", "24h" or "7d".

    A bare number is read as milliseconds.
    """
    m = _DURATION_RE.match(raw or "")
    if not m:
        raise ValueError(f"invalid duration: {raw!r}")
    amount = float(m.group(1))
    unit = (m.group(2) or "ms").lower()
    return timedelta(seconds=amount * _UNIT_SECONDS[unit])


def port() -> int:
    return int(_env("PORT", "3000") or 3000)


def jwt_secret() -> str:
    secret = _env("JWT_SECRET")
    if not secret:
        raise RuntimeError("JWT_SECRET not configured")
    return secret


def token_expiry() -> timedelta:
    return parse_duration(_env("TOKEN_EXPIRY", DEFAULT_TOKEN_EXPIRY) or DEFAULT_TOKEN_EXPIRY)


def store_domain() -> str:
    return _env("STORE_DOMAIN").lower()


def access_token() -> str:
    return _env("ACCESS_TOKEN")


def shopify_api_version() -> str:
    return _env("SHOPIFY_API_VERSION", DEFAULT_SHOPIFY_API_VERSION) or DEFAULT_SHOPIFY_API_VERSION


def shopify_timeout_seconds() -> float:
    return float(_env("SHOPIFY_TIMEOUT_SECONDS", "30") or 30)


def users_file() -> str:
    return os.path.abspath(_env("USERS_FILE", "users.json") or "users.json")


def static_dir() -> str:
    return os.path.abspath(_env("STATIC_DIR", "public") or "public")


def allowed_origins() -> List[str]:
    raw = _env("ALLOWED_ORIGINS")
    if not raw:
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]
