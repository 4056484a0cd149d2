"""Dataclasses describing persistent objects and call outcomes for murmur."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, List, Optional, TypeVar

INAUDIBLE = "[inaudible]"

T = TypeVar("T")


@dataclass(slots=True)
class TranscriptionRecord:
    """Represents a stored transcription entry."""

    id: int
    text: str
    duration_seconds: Optional[float]
    tokens_used: Optional[int]
    created_at: datetime
    is_favorite: bool = False


@dataclass(slots=True)
class HistoryPage:
    """One page of archive results plus the size of the full result set."""

    items: List[TranscriptionRecord] = field(default_factory=list)
    total: int = 0


@dataclass(slots=True)
class TranscriptionOutcome:
    success: bool
    text: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, text: str) -> "TranscriptionOutcome":
        return cls(success=True, text=text)

    @classmethod
    def failed(cls, error: str) -> "TranscriptionOutcome":
        return cls(success=False, error=error)


@dataclass(slots=True)
class ConnectionOutcome:
    success: bool
    error: Optional[str] = None


@dataclass
class CommandResult(Generic[T]):
    """Value handed back across the command surface instead of raising.

    ``ok`` is true when ``value`` holds the typed payload; otherwise ``error``
    carries a message fit to show the user.
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> "CommandResult[Any]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "CommandResult[Any]":
        return cls(ok=False, error=error)


@dataclass(slots=True)
class Settings:
    """User settings stored on disk."""

    theme: str = "light"
    sound_enabled: bool = True
    first_launch_complete: bool = False
    hotkey: str = "Super+J"
