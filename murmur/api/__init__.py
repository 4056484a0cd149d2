"""FastAPI application exposing the murmur command surface to a local front end."""

from __future__ import annotations

import threading
from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable, List, Optional, TypeVar

from fastapi import (
    Depends,
    FastAPI,
    File,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from .. import __version__, config
from ..exceptions import ConfigError, StorageError, TranscriptionNotFoundError
from ..models import HistoryPage, Settings, TranscriptionRecord
from ..service import DictationService

T = TypeVar("T")

app = FastAPI(
    title="murmur API",
    description="Dictation transcription and searchable history for the murmur desktop client.",
    version=__version__,
)

_service_lock = threading.Lock()
_service: Optional[DictationService] = None


def get_service() -> DictationService:
    global _service
    if _service is not None:
        return _service
    with _service_lock:
        if _service is None:
            _service = DictationService()
    return _service


class HealthResponse(BaseModel):
    status: str = "ok"
    model: str
    credential_configured: bool


class TranscriptionPayload(BaseModel):
    id: int
    text: str
    duration_seconds: Optional[float]
    tokens_used: Optional[int]
    created_at: datetime
    is_favorite: bool


class HistoryResponse(BaseModel):
    items: List[TranscriptionPayload]
    total: int


class SaveRequest(BaseModel):
    text: str
    duration_seconds: Optional[float] = Field(None, ge=0)


class SaveResponse(BaseModel):
    id: int


class FavoriteResponse(BaseModel):
    id: int
    is_favorite: bool


class TranscribeResponse(BaseModel):
    success: bool
    text: Optional[str] = None
    error: Optional[str] = None


class ConnectionTestRequest(BaseModel):
    api_key: Optional[str] = None


class ConnectionTestResponse(BaseModel):
    success: bool
    error: Optional[str] = None


class CredentialRequest(BaseModel):
    api_key: str = Field(..., min_length=1)


class CredentialState(BaseModel):
    configured: bool


class SettingsPayload(BaseModel):
    theme: str
    sound_enabled: bool
    first_launch_complete: bool
    hotkey: str


class SettingValue(BaseModel):
    value: Any


class SetupState(BaseModel):
    first_launch: bool


def _record_to_payload(record: TranscriptionRecord) -> TranscriptionPayload:
    return TranscriptionPayload(
        id=record.id,
        text=record.text,
        duration_seconds=record.duration_seconds,
        tokens_used=record.tokens_used,
        created_at=record.created_at,
        is_favorite=record.is_favorite,
    )


def _settings_payload(settings: Settings) -> SettingsPayload:
    return SettingsPayload(**asdict(settings))


def _page_to_response(page: HistoryPage) -> HistoryResponse:
    return HistoryResponse(items=[_record_to_payload(record) for record in page.items], total=page.total)


async def _call(func: Callable[..., T], *args: Any) -> T:
    try:
        return await run_in_threadpool(func, *args)
    except TranscriptionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (StorageError, ConfigError) as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


@app.get("/health", response_model=HealthResponse)
async def healthcheck(service: DictationService = Depends(get_service)) -> HealthResponse:
    return HealthResponse(
        model=service.transcriber.model,
        credential_configured=service.transcriber.has_credential,
    )


@app.get("/transcriptions", response_model=HistoryResponse)
async def list_transcriptions(
    page: int = Query(1, description="1-based page number; values below 1 read the first page."),
    limit: int = Query(20, ge=1, le=500),
    q: Optional[str] = Query(None, description="Phrase to search for."),
    service: DictationService = Depends(get_service),
) -> HistoryResponse:
    if q is None:
        result = await _call(service.storage.list_transcriptions, page, limit)
    else:
        result = await _call(service.search, q, page, limit)
    return _page_to_response(result)


@app.get("/transcriptions/{transcription_id}", response_model=TranscriptionPayload)
async def get_transcription(
    transcription_id: int, service: DictationService = Depends(get_service)
) -> TranscriptionPayload:
    record = await _call(service.storage.get_transcription, transcription_id)
    return _record_to_payload(record)


@app.post("/transcriptions", response_model=SaveResponse, status_code=status.HTTP_201_CREATED)
async def save_transcription(
    request: SaveRequest, service: DictationService = Depends(get_service)
) -> SaveResponse:
    transcription_id = await _call(service.save, request.text, request.duration_seconds)
    return SaveResponse(id=transcription_id)


@app.delete("/transcriptions/{transcription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transcription(
    transcription_id: int, service: DictationService = Depends(get_service)
) -> Response:
    removed = await _call(service.storage.delete_transcription, transcription_id)
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Transcription with id {transcription_id} not found",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.delete("/transcriptions", status_code=status.HTTP_204_NO_CONTENT)
async def clear_transcriptions(service: DictationService = Depends(get_service)) -> Response:
    await _call(service.storage.clear_history)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/transcriptions/{transcription_id}/favorite", response_model=FavoriteResponse)
async def toggle_favorite(
    transcription_id: int, service: DictationService = Depends(get_service)
) -> FavoriteResponse:
    is_favorite = await _call(service.storage.toggle_favorite, transcription_id)
    return FavoriteResponse(id=transcription_id, is_favorite=is_favorite)


@app.post("/transcribe", response_model=TranscribeResponse)
async def transcribe(
    file: UploadFile = File(...), service: DictationService = Depends(get_service)
) -> TranscribeResponse:
    """Transcribe an uploaded clip. The result is not archived; POST it to /transcriptions."""

    audio = await file.read()
    mime_type = file.content_type or "audio/wav"
    outcome = await run_in_threadpool(service.transcribe, audio, mime_type)
    return TranscribeResponse(success=outcome.success, text=outcome.text, error=outcome.error)


@app.get("/credential", response_model=CredentialState)
async def credential_state(service: DictationService = Depends(get_service)) -> CredentialState:
    return CredentialState(configured=service.transcriber.has_credential)


@app.put("/credential", response_model=CredentialState)
async def store_credential(
    request: CredentialRequest, service: DictationService = Depends(get_service)
) -> CredentialState:
    result = await run_in_threadpool(service.set_api_key, request.api_key)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.error)
    return CredentialState(configured=True)


@app.delete("/credential", response_model=CredentialState)
async def remove_credential(service: DictationService = Depends(get_service)) -> CredentialState:
    result = await run_in_threadpool(service.clear_api_key)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.error)
    return CredentialState(configured=False)


@app.post("/credential/test", response_model=ConnectionTestResponse)
async def test_credential(
    request: ConnectionTestRequest, service: DictationService = Depends(get_service)
) -> ConnectionTestResponse:
    outcome = await run_in_threadpool(service.transcriber.test_connection, request.api_key)
    return ConnectionTestResponse(success=outcome.success, error=outcome.error)


@app.get("/settings", response_model=SettingsPayload)
async def read_settings() -> SettingsPayload:
    settings = await _call(config.load_settings)
    return _settings_payload(settings)


@app.put("/settings/{key}", response_model=SettingsPayload)
async def update_setting(key: str, request: SettingValue) -> SettingsPayload:
    settings = await _call(config.set_setting, key, request.value)
    return _settings_payload(settings)


@app.get("/setup", response_model=SetupState)
async def setup_state() -> SetupState:
    first_launch = await _call(config.is_first_launch)
    return SetupState(first_launch=first_launch)


@app.post("/setup/complete", response_model=SetupState)
async def finish_setup() -> SetupState:
    await _call(config.complete_setup)
    return SetupState(first_launch=False)
