from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    iothub_connection_string: str

    # Event Hubs-compatible values, when already known from the portal or az CLI
    eventhub_connection_string: str
    eventhub_compatible_endpoint: str
    eventhub_compatible_path: str
    eventhub_shared_access_key: str
    eventhub_shared_access_key_name: str

    consumer_group: str
    sas_token_ttl_mins: int
    redirect_timeout_secs: Optional[float]
    use_websockets: bool

    log_level: str


_settings: Settings | None = None


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


def _env_bool(name: str, default: bool = False) -> bool:
    value = _env(name).strip().lower()
    if not value:
        return default
    return value in ("1", "true", "yes", "on")


def _env_optional_float(name: str) -> Optional[float]:
    value = _env(name).strip()
    return float(value) if value else None


def load_settings() -> Settings:
    """Build settings from the current environment, bypassing the cache."""
    return Settings(
        iothub_connection_string=_env("IOTHUB_CONNECTION_STRING"),
        eventhub_connection_string=_env("EVENTHUB_CONNECTION_STRING"),
        eventhub_compatible_endpoint=_env("EVENTHUB_COMPATIBLE_ENDPOINT"),
        eventhub_compatible_path=_env("EVENTHUB_COMPATIBLE_PATH"),
        eventhub_shared_access_key=_env("EVENTHUB_SHARED_ACCESS_KEY"),
        eventhub_shared_access_key_name=_env("EVENTHUB_SHARED_ACCESS_KEY_NAME", "service"),
        consumer_group=_env("CONSUMER_GROUP", "$Default"),
        sas_token_ttl_mins=int(_env("SAS_TOKEN_TTL_MINS", "5")),
        redirect_timeout_secs=_env_optional_float("REDIRECT_TIMEOUT_SECS"),
        use_websockets=_env_bool("USE_WEBSOCKETS"),
        log_level=_env("LOG_LEVEL", "INFO").upper(),
    )


def get_settings() -> Settings:
    global _settings
    if _settings is not None:
        return _settings

    _settings = load_settings()
    return _settings
