"""Pipeline facade tying the transcription client to the archive.

Transcribing and saving are separate steps: a successful transcription is
only archived when the caller asks for it. The ``history_*``, ``send_audio``
and settings methods form the command surface used by front ends; they never
raise and always hand back a :class:`~murmur.models.CommandResult`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict
from typing import Any, Callable, Dict, Optional, Tuple

from . import config
from .exceptions import ConfigError, MurmurError
from .models import (
    CommandResult,
    ConnectionOutcome,
    HistoryPage,
    TranscriptionOutcome,
)
from .storage import Storage
from .transcriber import GeminiTranscriber

_WORD_RE = re.compile(r"[^\W_]")


def _stored_credential() -> Optional[str]:
    try:
        return config.get_credential()
    except ConfigError as exc:
        logging.warning("Starting without an API key: %s", exc)
        return None


class DictationService:
    def __init__(
        self,
        storage: Optional[Storage] = None,
        transcriber: Optional[GeminiTranscriber] = None,
    ) -> None:
        self.storage = storage or Storage()
        self.transcriber = transcriber or GeminiTranscriber(api_key=_stored_credential())

    def transcribe(self, audio: bytes, mime_type: str = "audio/wav") -> TranscriptionOutcome:
        return self.transcriber.transcribe(audio, mime_type=mime_type)

    def save(self, text: str, duration_seconds: Optional[float] = None) -> int:
        return self.storage.save_transcription(text, duration_seconds)

    def transcribe_and_save(
        self,
        audio: bytes,
        duration_seconds: Optional[float] = None,
        mime_type: str = "audio/wav",
    ) -> Tuple[TranscriptionOutcome, Optional[int]]:
        """Transcribe ``audio`` and archive the text if transcription succeeded."""

        outcome = self.transcribe(audio, mime_type=mime_type)
        if not outcome.success or outcome.text is None:
            return outcome, None
        return outcome, self.save(outcome.text, duration_seconds)

    def search(self, query: str, page: int = 1, limit: int = 20) -> HistoryPage:
        # A query without a letter or digit tokenizes to nothing in the
        # index (underscores are separators), so it lists everything instead.
        if not _WORD_RE.search(query):
            return self.storage.list_transcriptions(page, limit)
        return self.storage.search_transcriptions(query, page, limit)

    def close(self) -> None:
        self.transcriber.close()

    # Command surface

    def send_audio(self, audio: bytes, mime_type: str = "audio/wav") -> CommandResult[TranscriptionOutcome]:
        return self._run("transcribe audio", self.transcribe, audio, mime_type)

    def history_get(self, page: int = 1, limit: int = 20) -> CommandResult[HistoryPage]:
        return self._run("load history", self.storage.list_transcriptions, page, limit)

    def history_search(self, query: str, page: int = 1, limit: int = 20) -> CommandResult[HistoryPage]:
        return self._run("search history", self.search, query, page, limit)

    def history_save(self, text: str, duration_seconds: Optional[float] = None) -> CommandResult[int]:
        return self._run("save transcription", self.save, text, duration_seconds)

    def history_delete(self, transcription_id: int) -> CommandResult[bool]:
        return self._run("delete transcription", self.storage.delete_transcription, transcription_id)

    def history_clear(self) -> CommandResult[None]:
        return self._run("clear history", self.storage.clear_history)

    def history_toggle_favorite(self, transcription_id: int) -> CommandResult[bool]:
        return self._run("toggle favorite", self.storage.toggle_favorite, transcription_id)

    def test_api(self, api_key: Optional[str] = None) -> CommandResult[ConnectionOutcome]:
        return self._run("test API key", self.transcriber.test_connection, api_key)

    def get_api_key(self) -> CommandResult[Optional[str]]:
        return self._run("read API key", config.get_credential)

    def set_api_key(self, api_key: str) -> CommandResult[None]:
        def store() -> None:
            config.set_credential(api_key)
            self.transcriber.update_credential(api_key)

        return self._run("store API key", store)

    def clear_api_key(self) -> CommandResult[None]:
        def clear() -> None:
            config.clear_credential()
            self.transcriber.update_credential(None)

        return self._run("clear API key", clear)

    def settings_get(self) -> CommandResult[Dict[str, Any]]:
        return self._run("load settings", lambda: asdict(config.load_settings()))

    def settings_set(self, key: str, value: Any) -> CommandResult[Dict[str, Any]]:
        return self._run("update settings", lambda: asdict(config.set_setting(key, value)))

    def is_first_launch(self) -> CommandResult[bool]:
        return self._run("read setup state", config.is_first_launch)

    def complete_setup(self) -> CommandResult[Dict[str, Any]]:
        return self._run("complete setup", lambda: asdict(config.complete_setup()))

    def _run(self, action: str, func: Callable[..., Any], *args: Any) -> CommandResult[Any]:
        try:
            return CommandResult.success(func(*args))
        except (MurmurError, ValueError) as exc:
            logging.error("Failed to %s: %s", action, exc)
            return CommandResult.failure(str(exc))
