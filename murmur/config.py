"""Persisted settings and API credential management."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .exceptions import ConfigError
from .models import Settings

SETTINGS_PATH = (Path.home() / ".murmur" / "settings.json").expanduser()
KEYRING_SERVICE = "murmur"
KEYRING_USER = "api_key"
CREDENTIAL_ENV_VAR = "MURMUR_API_KEY"

_DEFAULTS = asdict(Settings())


def load_settings() -> Settings:
    if not SETTINGS_PATH.exists():
        return Settings()
    try:
        payload = json.loads(SETTINGS_PATH.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        logging.warning("Ignoring unreadable settings file %s: %s", SETTINGS_PATH, exc)
        return Settings()
    if not isinstance(payload, dict):
        logging.warning("Ignoring malformed settings file %s", SETTINGS_PATH)
        return Settings()
    settings = Settings()
    for key, value in payload.items():
        _assign(settings, key, value)
    return settings


def save_settings(settings: Settings) -> None:
    try:
        SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
        SETTINGS_PATH.write_text(json.dumps(asdict(settings), indent=2))
    except OSError as exc:
        raise ConfigError(f"Failed to write settings file {SETTINGS_PATH}: {exc}") from exc


def get_setting(key: str) -> Optional[Any]:
    """Return the value stored under ``key``, or ``None`` for an unknown key."""

    if key not in _DEFAULTS:
        return None
    return getattr(load_settings(), key)


def set_setting(key: str, value: Any) -> Settings:
    """Store ``value`` under ``key``.

    Unknown keys and values of the wrong type are ignored; the settings file
    is rewritten either way.
    """

    settings = load_settings()
    _assign(settings, key, value)
    save_settings(settings)
    return settings


def _assign(settings: Settings, key: str, value: Any) -> bool:
    if key not in _DEFAULTS:
        logging.debug("Ignoring unknown setting %s", key)
        return False
    if not isinstance(value, type(_DEFAULTS[key])):
        logging.debug("Ignoring setting %s with unexpected value %r", key, value)
        return False
    setattr(settings, key, value)
    return True


def is_first_launch() -> bool:
    return not load_settings().first_launch_complete


def complete_setup() -> Settings:
    return set_setting("first_launch_complete", True)


def reset_settings() -> Settings:
    settings = Settings()
    save_settings(settings)
    clear_credential()
    return settings


def get_credential() -> Optional[str]:
    env_value = os.getenv(CREDENTIAL_ENV_VAR)
    if env_value:
        return env_value
    try:
        return keyring.get_password(KEYRING_SERVICE, KEYRING_USER)
    except KeyringError as exc:
        raise ConfigError(f"Failed to read the API key from the credential store: {exc}") from exc


def set_credential(key: str) -> None:
    if not key:
        raise ConfigError("Refusing to store an empty API key.")
    try:
        keyring.set_password(KEYRING_SERVICE, KEYRING_USER, key)
    except KeyringError as exc:
        raise ConfigError(f"Failed to store the API key in the credential store: {exc}") from exc


def clear_credential() -> None:
    try:
        keyring.delete_password(KEYRING_SERVICE, KEYRING_USER)
    except PasswordDeleteError:
        logging.debug("No stored API key to clear")
    except KeyringError as exc:
        raise ConfigError(f"Failed to remove the API key from the credential store: {exc}") from exc
