from typing import Callable, Dict, List, Tuple

import httpx
import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from murmur import config
from murmur.service import DictationService
from murmur.storage import Storage
from murmur.transcriber import GeminiTranscriber


class MemoryKeyring(KeyringBackend):
    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.passwords: Dict[Tuple[str, str], str] = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.passwords[(service, username)]
        except KeyError:
            raise PasswordDeleteError("No such password") from None


class RecordingResponder:
    """httpx.MockTransport handler that remembers every request it served."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: List[httpx.Request] = []
        self._respond = respond

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._respond(request)


def gemini_reply(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "SETTINGS_PATH", tmp_path / "settings.json")
    monkeypatch.delenv(config.CREDENTIAL_ENV_VAR, raising=False)
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture
def storage(tmp_path):
    return Storage(db_path=tmp_path / "history.db")


@pytest.fixture
def fake_gemini():
    """Build a transcriber whose HTTP traffic goes to ``respond``."""

    def build(respond, api_key="test-key"):
        responder = RecordingResponder(respond)
        client = httpx.Client(transport=httpx.MockTransport(responder))
        return GeminiTranscriber(api_key=api_key, http_client=client), responder

    return build


@pytest.fixture
def service_factory(storage, fake_gemini):
    def build(respond=lambda request: gemini_reply("hello world"), api_key="test-key"):
        transcriber, responder = fake_gemini(respond, api_key=api_key)
        return DictationService(storage=storage, transcriber=transcriber), responder

    return build
