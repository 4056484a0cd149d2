import base64
import json

import httpx
import pytest

from murmur.exceptions import (
    ApiError,
    InvalidCredentialError,
    QuotaExceededError,
    RateLimitedError,
)
from murmur.models import INAUDIBLE
from murmur.transcriber import API_KEY_HEADER, GEMINI_MODEL, classify_api_error

from .conftest import gemini_reply

AUDIO = b"RIFF\x24\x00\x00\x00WAVEfmt "


def test_missing_credential_skips_network(fake_gemini):
    transcriber, responder = fake_gemini(lambda request: gemini_reply("unused"), api_key=None)

    outcome = transcriber.transcribe(AUDIO)

    assert outcome.success is False
    assert "API key" in outcome.error
    assert responder.requests == []


def test_request_carries_audio_and_instruction(fake_gemini):
    transcriber, responder = fake_gemini(lambda request: gemini_reply("Hello there."))

    transcriber.transcribe(AUDIO, mime_type="audio/webm")

    (request,) = responder.requests
    assert request.method == "POST"
    assert request.url.path.endswith(f"/models/{GEMINI_MODEL}:generateContent")
    assert request.headers[API_KEY_HEADER] == "test-key"
    body = json.loads(request.content)
    inline = body["contents"][0]["parts"][0]["inlineData"]
    assert inline["mimeType"] == "audio/webm"
    assert base64.b64decode(inline["data"]) == AUDIO
    assert "[inaudible]" in body["systemInstruction"]["parts"][0]["text"]


def test_successful_transcription_is_trimmed(fake_gemini):
    transcriber, _ = fake_gemini(lambda request: gemini_reply("  Buy milk and eggs.\n"))

    outcome = transcriber.transcribe(AUDIO)

    assert outcome.success is True
    assert outcome.text == "Buy milk and eggs."
    assert outcome.error is None


@pytest.mark.parametrize(
    "response",
    [
        gemini_reply("   \n\t"),
        gemini_reply(""),
        httpx.Response(200, json={"candidates": []}),
        httpx.Response(200, json={}),
    ],
)
def test_empty_transcription_becomes_inaudible(fake_gemini, response):
    transcriber, _ = fake_gemini(lambda request: response)

    outcome = transcriber.transcribe(AUDIO)

    assert outcome.success is True
    assert outcome.text == INAUDIBLE


def test_embedded_error_is_a_failure(fake_gemini):
    transcriber, _ = fake_gemini(lambda request: httpx.Response(200, json={"error": {"message": "Model overloaded"}}))

    outcome = transcriber.transcribe(AUDIO)

    assert outcome.success is False
    assert outcome.error == "Model overloaded"


def test_unparseable_body_is_a_failure(fake_gemini):
    transcriber, _ = fake_gemini(lambda request: httpx.Response(200, text="<html>"))

    outcome = transcriber.transcribe(AUDIO)

    assert outcome.success is False
    assert outcome.error.startswith("Failed to parse response")


@pytest.mark.parametrize(
    "status_code, body, expected",
    [
        (400, '{"error": {"status": "INVALID_ARGUMENT", "details": [{"reason": "API_KEY_INVALID"}]}}', "Invalid API key"),
        (429, '{"error": {"status": "RESOURCE_EXHAUSTED"}}', "API quota exceeded"),
        (429, '{"error": {"message": "RATE_LIMIT_EXCEEDED"}}', "Rate limit reached"),
        (503, "upstream unavailable", "API error (503): upstream unavailable"),
    ],
)
def test_http_errors_are_classified(fake_gemini, status_code, body, expected):
    transcriber, _ = fake_gemini(lambda request: httpx.Response(status_code, text=body))

    outcome = transcriber.transcribe(AUDIO)

    assert outcome.success is False
    assert outcome.error.startswith(expected)


def test_classify_api_error_types():
    assert isinstance(classify_api_error(400, "API key invalid"), InvalidCredentialError)
    assert isinstance(classify_api_error(429, "quota exceeded"), QuotaExceededError)
    assert isinstance(classify_api_error(429, "rate limit hit"), RateLimitedError)
    generic = classify_api_error(500, "boom")
    assert type(generic) is ApiError
    assert generic.status_code == 500


def test_network_error_is_reported_without_credential(fake_gemini):
    def refuse(request):
        raise httpx.ConnectError(f"connection refused for {request.headers[API_KEY_HEADER]}", request=request)

    transcriber, _ = fake_gemini(refuse, api_key="super-secret")

    outcome = transcriber.transcribe(AUDIO)

    assert outcome.success is False
    assert outcome.error.startswith("Network error:")
    assert "super-secret" not in outcome.error


def test_timeout_is_a_network_error(fake_gemini):
    def slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    transcriber, _ = fake_gemini(slow)

    assert transcriber.transcribe(AUDIO).error == "Network error: timed out"


def test_update_credential_applies_to_next_call(fake_gemini):
    transcriber, responder = fake_gemini(lambda request: gemini_reply("ok"), api_key=None)

    transcriber.update_credential("fresh-key")
    assert transcriber.transcribe(AUDIO).success is True
    assert responder.requests[0].headers[API_KEY_HEADER] == "fresh-key"

    transcriber.update_credential(None)
    assert transcriber.transcribe(AUDIO).success is False
    assert len(responder.requests) == 1


def test_connection_check_prefers_override_key(fake_gemini):
    transcriber, responder = fake_gemini(lambda request: httpx.Response(200, json={"candidates": []}))

    outcome = transcriber.test_connection("override-key")

    assert outcome.success is True
    assert responder.requests[0].headers[API_KEY_HEADER] == "override-key"


def test_connection_check_without_any_key(fake_gemini):
    transcriber, responder = fake_gemini(lambda request: httpx.Response(200), api_key=None)

    outcome = transcriber.test_connection()

    assert outcome.success is False
    assert responder.requests == []


@pytest.mark.parametrize(
    "status_code, body, expected",
    [
        (400, "API_KEY_INVALID", "Invalid API key"),
        (429, "RESOURCE_EXHAUSTED", "API validation failed"),
        (500, "boom", "API validation failed"),
    ],
)
def test_connection_check_failures(fake_gemini, status_code, body, expected):
    transcriber, _ = fake_gemini(lambda request: httpx.Response(status_code, text=body))

    outcome = transcriber.test_connection()

    assert outcome.success is False
    assert outcome.error == expected
