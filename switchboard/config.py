import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env from current directory so PROVIDER, API keys and DB settings are set automatically.
load_dotenv()


class Settings(BaseModel):
    """Runtime configuration loaded from environment variables."""

    provider_name: str
    model_id: Optional[str]
    router_model_id: Optional[str]
    auth_token: Optional[str]
    jwt_secret: Optional[str]
    jwt_issuer: Optional[str]
    jwt_audience: Optional[str]
    db_path: str = "./data/switchboard.db"
    cors_origins: str = "*"

    default_agent_slug: str = "tuqui"
    max_tool_rounds: int = 5
    request_timeout_seconds: float = 120.0
    router_margin: int = 1
    router_history_window: int = 3
    usage_tokens_per_user: int = 500_000
    timezone: str = "America/Argentina/Buenos_Aires"
    chat_rate_limit: int = 30
    chat_rate_window_seconds: int = 60

    service_name: str = "switchboard"
    http_port: int = 4280
    allowed_origins: List[str] = []


@lru_cache(maxsize=1)
def _base_settings() -> Settings:
    """
    Base settings lookup.

    Environment values are *not* cached here: `get_settings` below re-creates
    Settings on every call from the current environment. This helper only
    stores defaults.
    """

    return Settings(
        provider_name="stub",
        model_id=None,
        router_model_id=None,
        auth_token=None,
        jwt_secret=None,
        jwt_issuer=None,
        jwt_audience=None,
        db_path="./data/switchboard.db",
        cors_origins="*",
    )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def get_settings() -> Settings:
    """
    Return Settings built from the *current* environment.

    Tests mutate os.environ at runtime via the `env_vars` helper, so we read
    directly from the environment on each call instead of caching.
    """

    base = _base_settings()
    provider_name = (os.getenv("PROVIDER") or base.provider_name).lower()
    if provider_name == "openrouter":
        model_id = os.getenv("OPENROUTER_MODEL") or "openai/gpt-4o-mini"
    elif provider_name == "openai":
        model_id = os.getenv("OPENAI_MODEL") or "gpt-4o-mini"
    else:
        model_id = None
    router_model_id = os.getenv("ROUTER_MODEL") or model_id

    db_path = os.getenv("DB_PATH") or base.db_path
    cors_origins = os.getenv("CORS_ORIGINS") or base.cors_origins

    return Settings(
        provider_name=provider_name,
        model_id=model_id,
        router_model_id=router_model_id,
        auth_token=os.getenv("AUTH_TOKEN") or None,
        jwt_secret=os.getenv("JWT_SECRET") or None,
        jwt_issuer=os.getenv("JWT_ISSUER") or None,
        jwt_audience=os.getenv("JWT_AUDIENCE") or None,
        db_path=db_path,
        cors_origins=cors_origins,
        default_agent_slug=os.getenv("DEFAULT_AGENT_SLUG") or base.default_agent_slug,
        max_tool_rounds=max(1, _int_env("MAX_TOOL_ROUNDS", base.max_tool_rounds)),
        request_timeout_seconds=_float_env("REQUEST_TIMEOUT_SECONDS", base.request_timeout_seconds),
        router_margin=max(1, _int_env("ROUTER_MARGIN", base.router_margin)),
        router_history_window=max(0, _int_env("ROUTER_HISTORY_WINDOW", base.router_history_window)),
        usage_tokens_per_user=_int_env("USAGE_TOKENS_PER_USER", base.usage_tokens_per_user),
        timezone=os.getenv("TIMEZONE") or base.timezone,
        chat_rate_limit=_int_env("CHAT_RATE_LIMIT", base.chat_rate_limit),
        chat_rate_window_seconds=_int_env("CHAT_RATE_WINDOW_SECONDS", base.chat_rate_window_seconds),
        service_name=base.service_name,
        http_port=_int_env("PORT", base.http_port),
        allowed_origins=[o.strip() for o in cors_origins.split(",") if o.strip()],
    )
