"""Client utilities for the OpenAI Files and Batches APIs."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from beacon.core.config import get_settings

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_TIMEOUT = (10, 60)

RESPONSES_ENDPOINT = "/v1/responses"
COMPLETED = "completed"
UNSUCCESSFUL_STATUSES = frozenset({"failed", "expired", "cancelled"})


class OpenAIBatchError(RuntimeError):
    """Raised when the provider returns an error payload or an unexpected shape."""


@dataclass(frozen=True)
class BatchStatus:
    batch_id: str
    status: str
    output_file_id: Optional[str] = None
    error_file_id: Optional[str] = None
    request_counts: Dict[str, Any] = field(default_factory=dict)
    total_tokens: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        return self.status == COMPLETED

    @property
    def is_unsuccessful(self) -> bool:
        return self.status in UNSUCCESSFUL_STATUSES


def _url(path: str) -> str:
    return f"{get_settings().openai_base_url}{path}"


def _headers(api_key: str) -> Dict[str, str]:
    if not api_key:
        raise OpenAIBatchError("OPENAI_API_KEY is required")
    return {"Authorization": f"Bearer {api_key}"}


def _json_or_raise(response: requests.Response, action: str) -> Dict[str, Any]:
    response.raise_for_status()
    payload = response.json()
    if not isinstance(payload, dict):
        raise OpenAIBatchError(f"{action} returned a non-object payload")
    error = payload.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        logger.error("%s failed: %s", action, message)
        raise OpenAIBatchError(message or f"{action} failed")
    if not payload.get("id"):
        raise OpenAIBatchError(f"{action} returned no id")
    return payload


def upload_file(document: str, api_key: str, filename: str = "batch.jsonl") -> str:
    """Upload a JSONL document with purpose=batch and return the file id."""
    files = {"file": (filename, document.encode("utf-8"), "application/jsonl")}
    response = _SESSION.post(
        _url("/files"),
        headers=_headers(api_key),
        data={"purpose": "batch"},
        files=files,
        timeout=_TIMEOUT,
    )
    payload = _json_or_raise(response, "upload_file")
    logger.info("Uploaded batch file %s (%d bytes)", payload["id"], len(files["file"][1]))
    return payload["id"]


def create_batch(file_id: str, api_key: str, endpoint: str = RESPONSES_ENDPOINT, completion_window: str = "24h") -> str:
    body = {
        "input_file_id": file_id,
        "endpoint": endpoint,
        "completion_window": completion_window,
    }
    response = _SESSION.post(_url("/batches"), headers=_headers(api_key), json=body, timeout=_TIMEOUT)
    payload = _json_or_raise(response, "create_batch")
    logger.info("Created batch %s from file %s", payload["id"], file_id)
    return payload["id"]


def get_batch(batch_id: str, api_key: str) -> BatchStatus:
    response = _SESSION.get(_url(f"/batches/{batch_id}"), headers=_headers(api_key), timeout=_TIMEOUT)
    payload = _json_or_raise(response, "get_batch")
    usage = payload.get("usage") or {}
    total_tokens = usage.get("total_tokens") if isinstance(usage, dict) else None
    return BatchStatus(
        batch_id=payload["id"],
        status=str(payload.get("status") or ""),
        output_file_id=payload.get("output_file_id"),
        error_file_id=payload.get("error_file_id"),
        request_counts=payload.get("request_counts") or {},
        total_tokens=int(total_tokens) if total_tokens is not None else None,
    )


def download_file(file_id: str, api_key: str) -> str:
    """Return the raw text content of a provider file."""
    if not file_id:
        raise OpenAIBatchError("no output file to download")
    response = _SESSION.get(_url(f"/files/{file_id}/content"), headers=_headers(api_key), timeout=_TIMEOUT)
    response.raise_for_status()
    return response.text
