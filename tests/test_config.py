import json

import keyring
import pytest
from keyring.errors import KeyringError

from murmur import config
from murmur.exceptions import ConfigError
from murmur.models import Settings


def test_load_default_settings_when_missing():
    settings = config.load_settings()
    assert isinstance(settings, Settings)
    assert settings.theme == "light"
    assert settings.sound_enabled is True
    assert settings.hotkey == "Super+J"


def test_save_and_load_settings():
    config.save_settings(Settings(theme="dark", hotkey="Ctrl+Alt+J"))

    loaded = config.load_settings()
    assert loaded.theme == "dark"
    assert loaded.hotkey == "Ctrl+Alt+J"
    assert json.loads(config.SETTINGS_PATH.read_text())["theme"] == "dark"


def test_unknown_keys_are_ignored():
    config.set_setting("theme", "dark")
    config.set_setting("volume", 11)

    assert config.get_setting("theme") == "dark"
    assert config.get_setting("volume") is None
    assert "volume" not in json.loads(config.SETTINGS_PATH.read_text())


def test_values_of_the_wrong_type_are_ignored():
    config.set_setting("sound_enabled", "nope")
    config.set_setting("hotkey", 5)

    assert config.get_setting("sound_enabled") is True
    assert config.get_setting("hotkey") == "Super+J"


def test_corrupt_settings_file_falls_back_to_defaults():
    config.SETTINGS_PATH.write_text("{not json")

    assert config.load_settings() == Settings()


def test_first_launch_flag():
    assert config.is_first_launch() is True

    config.complete_setup()
    assert config.is_first_launch() is False


def test_credential_round_trip(isolated_config):
    assert config.get_credential() is None

    config.set_credential("secret-key")
    assert config.get_credential() == "secret-key"
    assert isolated_config.passwords[(config.KEYRING_SERVICE, config.KEYRING_USER)] == "secret-key"

    config.clear_credential()
    assert config.get_credential() is None
    config.clear_credential()


def test_environment_credential_takes_precedence(monkeypatch):
    config.set_credential("stored-key")
    monkeypatch.setenv(config.CREDENTIAL_ENV_VAR, "env-key")

    assert config.get_credential() == "env-key"


def test_empty_credential_is_rejected():
    with pytest.raises(ConfigError):
        config.set_credential("")


def test_reset_restores_defaults_and_clears_credential():
    config.set_setting("theme", "dark")
    config.complete_setup()
    config.set_credential("secret-key")

    settings = config.reset_settings()

    assert settings == Settings()
    assert config.load_settings() == Settings()
    assert config.get_credential() is None


def test_credential_store_failure_raises_config_error(monkeypatch):
    def broken(*_args):
        raise KeyringError("vault locked")

    monkeypatch.setattr(keyring, "get_password", broken)

    try:
        config.get_credential()
    except ConfigError as exc:
        assert "vault locked" in str(exc)
    else:
        raise AssertionError("Expected ConfigError when the credential store fails")
