# src/homework_dock/pipeline/upload_client.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..core.errors import MalformedResponseError, UploadError
from .artifacts import Artifact

logger = logging.getLogger(__name__)

# Only these keys survive from a parsed question; anything answer-like is dropped.
_QUESTION_KEYS = ("text", "question", "id", "type")


@dataclass(frozen=True, slots=True)
class ScanResult:
    """Parsed upload/analyze response."""

    scan_id: str
    extracted_text: str
    subject: str | None
    questions: list[dict[str, Any]] = field(default_factory=list)
    conversation_id: str | None = None


def strip_answers(questions: Any) -> list[dict[str, Any]]:
    if not isinstance(questions, list):
        return []
    out: list[dict[str, Any]] = []
    for item in questions:
        if not isinstance(item, dict):
            continue
        sanitized = {k: item[k] for k in _QUESTION_KEYS if item.get(k) not in (None, "")}
        if sanitized:
            out.append(sanitized)
    return out


def _dig(data: Any, *path: str) -> Any:
    cur = data
    for key in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def parse_scan_response(data: Any) -> ScanResult:
    """
    Turn the endpoint JSON into a ScanResult.

    Raises MalformedResponseError if the payload reports failure or has no scan id.
    """
    if not isinstance(data, dict):
        raise MalformedResponseError("Upload response is not a JSON object")
    if data.get("success") is False:
        detail = data.get("message") or data.get("error") or "success=false"
        raise MalformedResponseError(f"Upload reported failure: {detail}")

    scan_id = data.get("scanId") or _dig(data, "scan", "id")
    if scan_id in (None, ""):
        raise MalformedResponseError("Upload succeeded but no scan ID returned")

    extracted = _dig(data, "scan", "raw_text")
    if extracted is None:
        extracted = data.get("extractedText")

    questions = _dig(data, "parsed", "questions")
    if not isinstance(questions, list):
        questions = data.get("qa")

    subject = _dig(data, "parsed", "subject") or _dig(data, "scan", "detected_subject")
    conversation_id = data.get("conversationId")

    return ScanResult(
        scan_id=str(scan_id),
        extracted_text=str(extracted or ""),
        subject=str(subject).strip() if subject else None,
        questions=strip_answers(questions),
        conversation_id=str(conversation_id) if conversation_id not in (None, "") else None,
    )


def _server_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        msg = body.get("message") or body.get("error")
        if msg:
            return str(msg)
    return resp.reason_phrase or f"HTTP {resp.status_code}"


class HttpUploader:
    """
    Multipart upload to the analyze endpoint (one round trip: store + OCR + parse).

    The server identifies the learner from the bearer token; no user id is sent.
    """

    def __init__(
        self,
        url: str,
        *,
        api_token: str | None = None,
        timeout_seconds: float = 90.0,
        connect_timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url or not url.strip():
            raise ValueError("upload url is required")
        self._url = url.strip()
        self._api_token = api_token
        self._timeout = httpx.Timeout(
            timeout_seconds,
            connect=connect_timeout_seconds,
        )
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    async def upload(self, artifact: Artifact) -> dict[str, Any]:
        files = {"file": (artifact.name or "upload", artifact.content, artifact.content_type)}
        logger.info("Uploading name=%s size=%s type=%s", artifact.name, artifact.size, artifact.content_type)

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._url, files=files, headers=self._headers())
        except httpx.HTTPError as e:
            raise UploadError(str(e) or e.__class__.__name__) from e

        if not resp.is_success:
            raise UploadError(_server_message(resp), status=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError("Upload response is not valid JSON") from e
        if not isinstance(data, dict):
            raise MalformedResponseError("Upload response is not a JSON object")
        return data
