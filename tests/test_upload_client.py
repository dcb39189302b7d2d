# tests/test_upload_client.py

from __future__ import annotations

import httpx
import pytest

from homework_dock.core.errors import MalformedResponseError, UploadError, friendly_upload_error_message
from homework_dock.pipeline.artifacts import Artifact
from homework_dock.pipeline.upload_client import HttpUploader, parse_scan_response, strip_answers

from .fakes import scan_payload

URL = "http://upload.test/api/ai/upload"


def _uploader(handler, *, token: str | None = "secret") -> HttpUploader:
    return HttpUploader(URL, api_token=token, transport=httpx.MockTransport(handler))


def _artifact() -> Artifact:
    return Artifact(name="blatt.jpg", content=b"\xff\xd8jpegbytes", content_type="image/jpeg")


@pytest.mark.asyncio
async def test_upload_sends_multipart_with_bearer_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=scan_payload())

    data = await _uploader(handler).upload(_artifact())

    assert data["scan"]["id"] == "scan-1"
    [request] = seen
    assert request.method == "POST"
    assert str(request.url) == URL
    assert request.headers["Authorization"] == "Bearer secret"
    assert request.headers["Content-Type"].startswith("multipart/form-data")
    body = request.read()
    assert b'name="file"' in body
    assert b'filename="blatt.jpg"' in body
    assert b"jpegbytes" in body


@pytest.mark.asyncio
async def test_upload_without_token_sends_no_authorization() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=scan_payload())

    await _uploader(handler, token=None).upload(_artifact())
    assert "Authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_http_error_status_carries_server_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(413, json={"message": "Datei zu groß"})

    with pytest.raises(UploadError) as exc:
        await _uploader(handler).upload(_artifact())

    assert exc.value.status == 413
    assert friendly_upload_error_message(exc.value) == "Analyse fehlgeschlagen (413). Datei zu groß"


@pytest.mark.asyncio
async def test_http_error_without_json_uses_reason_phrase() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="<html>down</html>")

    with pytest.raises(UploadError) as exc:
        await _uploader(handler).upload(_artifact())

    assert exc.value.status == 503
    assert exc.value.detail == "Service Unavailable"


@pytest.mark.asyncio
async def test_transport_error_becomes_upload_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UploadError) as exc:
        await _uploader(handler).upload(_artifact())

    assert exc.value.status is None
    assert "connection refused" in exc.value.detail


@pytest.mark.asyncio
async def test_non_json_success_is_malformed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="ok")

    with pytest.raises(MalformedResponseError):
        await _uploader(handler).upload(_artifact())


def test_blank_url_is_rejected() -> None:
    with pytest.raises(ValueError):
        HttpUploader("  ")


def test_parse_nested_payload() -> None:
    scan = parse_scan_response(scan_payload("scan-7", subject="Englisch", conversation_id="c-9"))

    assert scan.scan_id == "scan-7"
    assert scan.extracted_text == "Rechne: 2 + 3 = ?"
    assert scan.subject == "Englisch"
    assert scan.conversation_id == "c-9"
    assert scan.questions == [{"text": "2 + 3", "id": "q1"}]


def test_parse_flat_payload_fallbacks() -> None:
    scan = parse_scan_response(
        {
            "scanId": 42,
            "extractedText": "Schreibe drei Sätze.",
            "qa": [{"question": "Satz 1", "answer": "Ich gehe."}],
            "scan": {"detected_subject": "Deutsch"},
        }
    )

    assert scan.scan_id == "42"
    assert scan.extracted_text == "Schreibe drei Sätze."
    assert scan.subject == "Deutsch"
    assert scan.questions == [{"question": "Satz 1"}]
    assert scan.conversation_id is None


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"success": False, "error": "nope"},
        {"success": True, "scan": {"raw_text": "no id"}},
    ],
)
def test_parse_rejects_unusable_payloads(payload) -> None:
    with pytest.raises(MalformedResponseError):
        parse_scan_response(payload)


def test_strip_answers_drops_everything_answer_like() -> None:
    questions = [
        {"text": "1 + 1", "answer": "2", "explanation": "count", "id": "a"},
        {"answer": "only an answer"},
        "not a dict",
    ]
    assert strip_answers(questions) == [{"text": "1 + 1", "id": "a"}]
    assert strip_answers(None) == []
