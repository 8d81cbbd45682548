"""Config persistence for fpreader.

Device constants (VID/PID, sensor size, timings, SET_PARAMS payload) vary
between reader firmware revisions, so they can be overridden from
~/.config/fpreader/config.json (XDG-compliant) under the ``reader`` key::

    {
      "reader": {
        "pid": "0x000a",
        "width": 384,
        "height": 290,
        "params": [1, 2, 3]
      }
    }

Usage:
    from fpreader.conf import get_reader_config, save_reader_setting

    cfg = get_reader_config()      # ReaderConfig with overrides applied
    save_reader_setting('width', 355)
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import fields
from typing import Any

from .core.models import ReaderConfig

log = logging.getLogger(__name__)

# =========================================================================
# Config file location (XDG-compliant)
# =========================================================================

_XDG_CONFIG = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
CONFIG_DIR = os.path.join(_XDG_CONFIG, 'fpreader')
CONFIG_PATH = os.path.join(CONFIG_DIR, 'config.json')

READER_KEYS = tuple(f.name for f in fields(ReaderConfig))


# =========================================================================
# Low-level config persistence
# =========================================================================

def load_config() -> dict:
    """Load user config from disk. Returns empty dict on missing/corrupt file."""
    try:
        with open(CONFIG_PATH, 'r') as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def save_config(config: dict):
    """Save user config to disk."""
    os.makedirs(CONFIG_DIR, exist_ok=True)
    with open(CONFIG_PATH, 'w') as f:
        json.dump(config, f, indent=2)


# =========================================================================
# Value coercion
# =========================================================================

def _to_int(value: Any) -> int:
    """Accept ints and decimal/hex strings ('0x05ba')."""
    if isinstance(value, bool):
        raise ValueError(f"expected integer, got {value!r}")
    if isinstance(value, int):
        return value
    return int(str(value).strip(), 0)


def coerce_setting(key: str, value: Any) -> Any:
    """Convert *value* to the type of ReaderConfig field *key*.

    Raises:
        KeyError: Unknown setting.
        ValueError: Value cannot be converted.
    """
    if key not in READER_KEYS:
        raise KeyError(key)
    if key == 'params':
        if isinstance(value, str):
            value = [v for v in value.replace(',', ' ').split() if v]
        params = tuple(_to_int(v) for v in value)
        if any(not 0 <= p <= 0xFF for p in params):
            raise ValueError(f"params must be bytes (0-255), got {params}")
        return params
    number = _to_int(value)
    if key == 'interface':
        if number < 0:
            raise ValueError(f"interface must not be negative, got {number}")
    elif number <= 0:
        raise ValueError(f"{key} must be positive, got {number}")
    return number


# =========================================================================
# Reader settings
# =========================================================================

def get_reader_config() -> ReaderConfig:
    """Build a ReaderConfig from defaults plus saved overrides.

    Unknown keys and unconvertible values are logged and skipped.
    """
    overrides = load_config().get('reader', {})
    kwargs = {}
    if isinstance(overrides, dict):
        for key, value in overrides.items():
            try:
                kwargs[key] = coerce_setting(key, value)
            except KeyError:
                log.warning("Ignoring unknown reader setting %r", key)
            except (TypeError, ValueError) as e:
                log.warning("Ignoring invalid reader setting %s=%r: %s", key, value, e)
    return ReaderConfig(**kwargs)


def save_reader_setting(key: str, value: Any) -> Any:
    """Validate and persist a single reader setting. Returns the stored value."""
    coerced = coerce_setting(key, value)
    config = load_config()
    reader = config.setdefault('reader', {})
    reader[key] = list(coerced) if isinstance(coerced, tuple) else coerced
    save_config(config)
    return coerced


def reset_reader_settings():
    """Drop all reader overrides (back to built-in defaults)."""
    config = load_config()
    config.pop('reader', None)
    save_config(config)
