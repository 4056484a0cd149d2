"""Remote transcription through the Gemini ``generateContent`` API."""

from __future__ import annotations

import base64
import logging
import threading
from typing import Any, Dict, Optional, Tuple, Type

import httpx

from .exceptions import (
    ApiError,
    InvalidCredentialError,
    NetworkError,
    QuotaExceededError,
    RateLimitedError,
    TranscriptionError,
    ValidationError,
)
from .models import INAUDIBLE, ConnectionOutcome, TranscriptionOutcome

GEMINI_MODEL = "gemini-3.0-flash"
API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
REQUEST_TIMEOUT = 60.0
API_KEY_HEADER = "x-goog-api-key"

TRANSCRIPTION_PROMPT = """You transcribe dictated audio. Follow these rules:
1. Drop filler words such as "um", "uh", "er", "ah", "like" used as filler, "you know", "basically", verbal pauses and stuttered repeats.
2. Keep exactly what the speaker meant to say.
3. Fix obvious grammatical slips of speech without changing the speaker's voice.
4. Reply with the transcription text only: no quotes, labels or commentary.
5. If the audio is silent or cannot be understood, reply with "[inaudible]".

Transcribe the audio now:"""

NO_CREDENTIAL_MESSAGE = "No API key available. Please set your Gemini API key in Settings."

# Substrings in an error body mapped to the error raised for them. First match wins.
_ERROR_MARKERS: Tuple[Tuple[Tuple[str, ...], Type[ApiError], str], ...] = (
    (
        ("API key invalid", "API_KEY_INVALID"),
        InvalidCredentialError,
        "Invalid API key. Please check your Gemini API key in Settings.",
    ),
    (
        ("quota", "RESOURCE_EXHAUSTED"),
        QuotaExceededError,
        "API quota exceeded. Please try again later.",
    ),
    (
        ("rate limit", "RATE_LIMIT"),
        RateLimitedError,
        "Rate limit reached. Please wait a moment and try again.",
    ),
)

_PING_REQUEST: Dict[str, Any] = {
    "contents": [{"parts": [{"text": "Say 'OK' if you can hear me."}]}],
    "systemInstruction": {"parts": [{"text": "You are a test assistant. Respond briefly."}]},
}


def classify_api_error(status_code: int, body: str) -> ApiError:
    """Turn a non-2xx response into the matching :class:`ApiError`."""

    for markers, error_cls, message in _ERROR_MARKERS:
        if any(marker in body for marker in markers):
            return error_cls(message, status_code)
    return ApiError(f"API error ({status_code}): {body}", status_code)


def build_transcription_request(audio: bytes, mime_type: str = "audio/wav") -> Dict[str, Any]:
    return {
        "contents": [
            {
                "parts": [
                    {
                        "inlineData": {
                            "mimeType": mime_type,
                            "data": base64.b64encode(audio).decode("ascii"),
                        }
                    },
                    {"text": "Transcribe this audio."},
                ]
            }
        ],
        "systemInstruction": {"parts": [{"text": TRANSCRIPTION_PROMPT}]},
    }


def extract_text(response: httpx.Response) -> str:
    """Pull the transcription out of a 2xx ``generateContent`` response."""

    try:
        payload = response.json()
    except ValueError as exc:
        raise ApiError(f"Failed to parse response: {exc}", response.status_code) from exc
    if not isinstance(payload, dict):
        raise ApiError("Failed to parse response: expected a JSON object", response.status_code)

    error = payload.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else None
        raise ApiError(message or str(error), response.status_code)

    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        text = ""
    if not isinstance(text, str):
        text = ""
    return text.strip() or INAUDIBLE


def _redact(message: str, api_key: Optional[str]) -> str:
    if api_key:
        return message.replace(api_key, "***")
    return message


class GeminiTranscriber:
    """Cloud transcription using the Gemini API.

    Neither :meth:`transcribe` nor :meth:`test_connection` raises for an
    expected failure; both return an outcome carrying a readable error.
    Calls are serialised by a lock private to this client.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = GEMINI_MODEL,
        base_url: str = API_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.model = model
        self._api_key = api_key or None
        self._url = f"{base_url.rstrip('/')}/models/{model}:generateContent"
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=timeout)
        self._lock = threading.Lock()

    @property
    def has_credential(self) -> bool:
        return self._api_key is not None

    def update_credential(self, api_key: Optional[str]) -> None:
        """Use ``api_key`` for subsequent calls. Nothing is persisted here."""

        with self._lock:
            self._api_key = api_key or None

    def transcribe(self, audio: bytes, mime_type: str = "audio/wav") -> TranscriptionOutcome:
        with self._lock:
            api_key = self._api_key
            try:
                if api_key is None:
                    raise ValidationError(NO_CREDENTIAL_MESSAGE)
                response = self._post(api_key, build_transcription_request(audio, mime_type))
                if not response.is_success:
                    raise classify_api_error(response.status_code, response.text)
                text = extract_text(response)
            except TranscriptionError as exc:
                message = _redact(str(exc), api_key)
                logging.warning("Transcription failed: %s", message)
                return TranscriptionOutcome.failed(message)
        logging.debug("Transcribed %d bytes of audio into %d chars", len(audio), len(text))
        return TranscriptionOutcome.ok(text)

    def test_connection(self, api_key: Optional[str] = None) -> ConnectionOutcome:
        """Check that ``api_key`` (or the configured key) is accepted.

        Only the status code matters; the reply itself is not inspected.
        """

        with self._lock:
            key = api_key or self._api_key
            if not key:
                return ConnectionOutcome(success=False, error="No API key provided")
            try:
                response = self._post(key, _PING_REQUEST)
            except NetworkError as exc:
                return ConnectionOutcome(success=False, error=_redact(str(exc), key))

        if response.is_success:
            return ConnectionOutcome(success=True)
        error = classify_api_error(response.status_code, response.text)
        logging.info("API key check failed with status %d", response.status_code)
        if isinstance(error, InvalidCredentialError):
            return ConnectionOutcome(success=False, error="Invalid API key")
        return ConnectionOutcome(success=False, error="API validation failed")

    def _post(self, api_key: str, payload: Dict[str, Any]) -> httpx.Response:
        try:
            return self._client.post(self._url, headers={API_KEY_HEADER: api_key}, json=payload)
        except httpx.HTTPError as exc:
            raise NetworkError(f"Network error: {exc}") from exc

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "GeminiTranscriber":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
