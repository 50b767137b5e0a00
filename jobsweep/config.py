from datetime import timedelta
from typing import Optional

from pydantic import ValidationError

from .errors import ConfigError
from .models import CleanupConfig
from .utils import parse_duration

DEFAULTS = {
    "max_retention": "30 days",
    "per_call": "1000",
}

ALLOWED_CONFIG_KEYS = set(DEFAULTS.keys())

# Not user-configurable.
STALE_THRESHOLD = timedelta(minutes=5)
BATCH_SIZE = 100


def parse_per_call(value) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"per_call must be an integer, got {value!r}")
    if limit <= 0:
        raise ConfigError(f"per_call must be > 0, got {limit}")
    return limit


def validate_config_value(key: str, value: str) -> str:
    if key not in ALLOWED_CONFIG_KEYS:
        raise ConfigError(f"Allowed keys: {', '.join(sorted(ALLOWED_CONFIG_KEYS))}")
    if key == "max_retention":
        parse_duration(value)
    elif key == "per_call":
        parse_per_call(value)
    return value


def load_cleanup_config(
    store,
    max_retention: Optional[str] = None,
    per_call: Optional[int] = None,
) -> CleanupConfig:
    """
    Resolve the clean-up settings: explicit option > stored config > DEFAULTS.
    Everything is validated here so a bad value fails before any scan starts.
    """
    retention_str = max_retention if max_retention is not None else store.config_get("max_retention", DEFAULTS["max_retention"])
    per_call_raw = per_call if per_call is not None else store.config_get("per_call", DEFAULTS["per_call"])

    try:
        return CleanupConfig(
            stale_threshold=STALE_THRESHOLD,
            max_retention=parse_duration(retention_str),
            per_call_limit=parse_per_call(per_call_raw),
        )
    except ValidationError as e:
        raise ConfigError(str(e)) from e
