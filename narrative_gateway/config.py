"""
Runtime configuration for the Narrative Gateway.

All settings come from environment variables (optionally loaded from a .env
file at startup) and are read once into a frozen GatewaySettings instance.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

PROVIDER_GEMINI = "gemini"
PROVIDER_OPENAI = "openai"

# Hard-coded model defaults used when AI_MODEL is not set
DEFAULT_MODELS = {
    PROVIDER_GEMINI: "gemini-2.5-flash",
    PROVIDER_OPENAI: "gpt-4o-mini",
}

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MAX_TOKENS = 2000
DEFAULT_TIMEOUT_SECONDS = 45.0


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={value!r}; using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid number for {name}={value!r}; using default {default}")
        return default


def _env_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclass(frozen=True)
class QuotaConfig:
    """Daily request/token limits for the whole service and for each caller."""
    global_daily_requests: int = 2000
    global_daily_tokens: int = 2_000_000
    per_client_daily_requests: int = 200
    per_client_daily_tokens: int = 200_000

    def __post_init__(self):
        for name in (
            "global_daily_requests",
            "global_daily_tokens",
            "per_client_daily_requests",
            "per_client_daily_tokens",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")

    def to_dict(self) -> dict:
        return {
            "global": {
                "requests": self.global_daily_requests,
                "tokens": self.global_daily_tokens,
            },
            "perClient": {
                "requests": self.per_client_daily_requests,
                "tokens": self.per_client_daily_tokens,
            },
        }


@dataclass(frozen=True)
class GatewaySettings:
    """Complete gateway configuration."""
    provider: str = PROVIDER_GEMINI
    api_key: Optional[str] = None
    base_url: str = DEFAULT_OPENAI_BASE_URL
    standard_model: Optional[str] = None
    premium_model: Optional[str] = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    request_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    cache_max_entries: int = 200
    cache_ttl_seconds: int = 300
    log_json: bool = True
    log_level: str = "INFO"
    cors_origins: tuple = ("http://localhost:3000",)

    def __post_init__(self):
        if self.provider not in DEFAULT_MODELS:
            valid = sorted(DEFAULT_MODELS)
            raise ValueError(f"AI_PROVIDER must be one of: {valid}")
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be > 0")
        if self.cache_max_entries <= 0:
            raise ValueError("cache_max_entries must be > 0")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        provider = (os.getenv("AI_PROVIDER") or PROVIDER_GEMINI).strip().lower()
        if provider == PROVIDER_OPENAI:
            api_key = _env_str("OPENAI_API_KEY")
        else:
            api_key = _env_str("GEMINI_API_KEY") or _env_str("GOOGLE_API_KEY")

        quota = QuotaConfig(
            global_daily_requests=_env_int("AI_GLOBAL_DAILY_REQUESTS", 2000),
            global_daily_tokens=_env_int("AI_GLOBAL_DAILY_TOKENS", 2_000_000),
            per_client_daily_requests=_env_int("AI_CLIENT_DAILY_REQUESTS", 200),
            per_client_daily_tokens=_env_int("AI_CLIENT_DAILY_TOKENS", 200_000),
        )
        origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")

        return cls(
            provider=provider,
            api_key=api_key,
            base_url=_env_str("OPENAI_BASE_URL") or DEFAULT_OPENAI_BASE_URL,
            standard_model=_env_str("AI_MODEL"),
            premium_model=_env_str("AI_MODEL_PREMIUM"),
            max_tokens=_env_int("AI_MAX_TOKENS", DEFAULT_MAX_TOKENS),
            request_timeout_seconds=_env_float("AI_REQUEST_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            quota=quota,
            cache_max_entries=_env_int("AI_CACHE_MAX_ENTRIES", 200),
            cache_ttl_seconds=_env_int("AI_CACHE_TTL_SECONDS", 300),
            log_json=_env_bool("LOG_JSON", True),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )
