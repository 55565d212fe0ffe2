"""Configuration stored in the settings table.

Every value is JSON-encoded.  Reads never fail: a missing key, a corrupt
value or a value of the wrong type falls back to the default for that key.

>>> from autoaccept.database import Database
>>> db = Database(":memory:")
>>> load_config(db).poll_interval_ms
300
>>> db.set_setting(SAFE_MODE_KEY, "true")
>>> load_config(db).safe_mode
True
"""

import json
import logging
from typing import Any

from pydantic import ValidationError

from autoaccept.cdp.discovery import BASE_PORT
from autoaccept.database import Database
from autoaccept.models import Configuration
from autoaccept.rules import BUILTIN_BANNED_COMMANDS

logger = logging.getLogger(__name__)

ENABLED_KEY = "autoaccept.enabled"
POLL_INTERVAL_KEY = "autoaccept.poll_interval_ms"
CUSTOM_BLACKLIST_KEY = "autoaccept.custom_blacklist"
WHITELIST_KEY = "autoaccept.whitelist"
SAFE_MODE_KEY = "autoaccept.safe_mode"
DANGER_THRESHOLD_KEY = "autoaccept.danger_threshold"
BASE_PORT_KEY = "autoaccept.base_port"

DEFAULTS: dict[str, Any] = {
    ENABLED_KEY: True,
    POLL_INTERVAL_KEY: 300,
    CUSTOM_BLACKLIST_KEY: [],
    WHITELIST_KEY: [],
    SAFE_MODE_KEY: False,
    DANGER_THRESHOLD_KEY: 70,
    BASE_PORT_KEY: BASE_PORT,
}


def _type_ok(key: str, value: Any) -> bool:
    default = DEFAULTS[key]
    if isinstance(default, bool):
        return isinstance(value, bool)
    if isinstance(default, int):
        return isinstance(value, int) and not isinstance(value, bool)
    if isinstance(default, list):
        return isinstance(value, list) and all(isinstance(v, str) for v in value)
    return True


def validate_setting(key: str, value: Any) -> Any:
    """Check ``value`` against the key's type and range; raise ValueError if wrong.

    >>> validate_setting(DANGER_THRESHOLD_KEY, 85)
    85
    >>> validate_setting(DANGER_THRESHOLD_KEY, 150)
    Traceback (most recent call last):
    ...
    ValueError: autoaccept.danger_threshold must be between 0 and 100
    """
    if key not in DEFAULTS:
        raise ValueError(f"Unknown setting: {key}")
    if not _type_ok(key, value):
        raise ValueError(f"{key} expects {type(DEFAULTS[key]).__name__}, got {value!r}")
    if key == DANGER_THRESHOLD_KEY and not 0 <= value <= 100:
        raise ValueError(f"{key} must be between 0 and 100")
    if key == POLL_INTERVAL_KEY and value <= 0:
        raise ValueError(f"{key} must be positive")
    if key == BASE_PORT_KEY and not 1 <= value <= 65535:
        raise ValueError(f"{key} must be a TCP port")
    return value


def parse_value(raw: str) -> Any:
    """Decode a CLI value as JSON, falling back to the plain string.

    >>> parse_value("true"), parse_value("80"), parse_value('["a", "b"]'), parse_value("npm test")
    (True, 80, ['a', 'b'], 'npm test')
    """
    try:
        return json.loads(raw)
    except (ValueError, TypeError):
        return raw


def read_setting(db: Database, key: str) -> Any:
    """Decoded value for ``key``, or its default."""
    default = DEFAULTS[key]
    raw = db.get_setting(key)
    if raw is None:
        return default
    try:
        value = json.loads(raw)
    except (ValueError, TypeError):
        logger.warning("Setting %s is not valid JSON, using default", key)
        return default
    try:
        return validate_setting(key, value)
    except ValueError as e:
        logger.warning("Ignoring setting: %s", e)
        return default


def write_setting(db: Database, key: str, value: Any) -> None:
    db.set_setting(key, json.dumps(validate_setting(key, value)))


def is_enabled(db: Database) -> bool:
    return read_setting(db, ENABLED_KEY)


def base_port(db: Database) -> int:
    return read_setting(db, BASE_PORT_KEY)


def merge_banned(custom: list[str]) -> tuple[str, ...]:
    """Built-in banned commands followed by the user's, without duplicates.

    >>> merge_banned(["rm -rf /", "git push --force"])[-1]
    'git push --force'
    """
    merged = []
    for entry in list(BUILTIN_BANNED_COMMANDS) + list(custom):
        if entry not in merged:
            merged.append(entry)
    return tuple(merged)


def load_config(db: Database) -> Configuration:
    """Configuration snapshot from the settings table."""
    try:
        return Configuration(
            poll_interval_ms=read_setting(db, POLL_INTERVAL_KEY),
            banned_commands=merge_banned(read_setting(db, CUSTOM_BLACKLIST_KEY)),
            whitelist=read_setting(db, WHITELIST_KEY),
            safe_mode=read_setting(db, SAFE_MODE_KEY),
            danger_threshold=read_setting(db, DANGER_THRESHOLD_KEY),
        )
    except ValidationError as e:
        logger.warning("Invalid stored configuration, using defaults: %s", e)
        return Configuration(banned_commands=BUILTIN_BANNED_COMMANDS)


def effective_settings(db: Database) -> dict[str, Any]:
    """Every known key with its decoded (or default) value.

    >>> from autoaccept.database import Database
    >>> effective_settings(Database(":memory:"))[ENABLED_KEY]
    True
    """
    return {key: read_setting(db, key) for key in DEFAULTS}
