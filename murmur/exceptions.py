"""Exception hierarchy shared by the murmur components."""

from __future__ import annotations


class MurmurError(RuntimeError):
    """Base class for every error raised by murmur."""


class StorageError(MurmurError):
    """Raised when something goes wrong while accessing the archive."""


class TranscriptionNotFoundError(StorageError):
    """Raised when a transcription id does not exist in the archive."""

    def __init__(self, transcription_id: int) -> None:
        super().__init__(f"Transcription with id {transcription_id} not found")
        self.transcription_id = transcription_id


class ConfigError(MurmurError):
    """Raised when settings or the stored credential cannot be read or written."""


class TranscriptionError(MurmurError):
    """Base class for failures talking to the transcription API.

    The client never lets these escape; they only carry the user facing
    message into the returned outcome.
    """


class ValidationError(TranscriptionError):
    """Raised before any network attempt when no credential is configured."""


class NetworkError(TranscriptionError):
    """Transport level failure: DNS, connection refused, timeout."""


class ApiError(TranscriptionError):
    """The remote service rejected the request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidCredentialError(ApiError):
    """The API key was rejected."""


class QuotaExceededError(ApiError):
    """The account quota is exhausted."""


class RateLimitedError(ApiError):
    """Too many requests in a short period."""
