"""Turn one line of a batch output file into a validated score record."""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from beacon.core.models import ScoreRecord
from beacon.core.schema import schema_errors
from beacon.etl.request_builder import CUSTOM_ID_PREFIX
from beacon.etl.transform import to_score_record

logger = logging.getLogger(__name__)


class FailureKind(str, Enum):
    MALFORMED_LINE = "malformed_line"
    PROVIDER_ERROR = "provider_error"
    MISSING_PAYLOAD = "missing_payload"
    INVALID_JSON = "invalid_json"
    SCHEMA_VIOLATION = "schema_violation"
    UNKNOWN_TARGET = "unknown_target"


class ItemFailure(Exception):
    """A single result line that cannot become a score. Never aborts the batch."""

    def __init__(self, kind: FailureKind, message: str, target_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.target_id = target_id


def _output_text_shortcut(body: Dict[str, Any]) -> Optional[str]:
    return body.get("output_text")


def _first_output_content(body: Dict[str, Any]) -> Optional[str]:
    try:
        return body["output"][0]["content"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None


def _first_message_text(body: Dict[str, Any]) -> Optional[str]:
    # web_search_call items come before the assistant message
    for item in body.get("output") or []:
        if not isinstance(item, dict) or item.get("type") != "message":
            continue
        for content in item.get("content") or []:
            if isinstance(content, dict) and content.get("type") == "output_text" and content.get("text"):
                return content["text"]
    return None


EXTRACTION_STRATEGIES: List[Tuple[str, Callable[[Dict[str, Any]], Optional[str]]]] = [
    ("output_text", _output_text_shortcut),
    ("output[0].content[0].text", _first_output_content),
    ("first message output_text", _first_message_text),
]


def target_id_from_custom_id(custom_id: Any) -> str:
    custom_id = str(custom_id or "")
    if custom_id.startswith(CUSTOM_ID_PREFIX):
        custom_id = custom_id[len(CUSTOM_ID_PREFIX):]
    if not custom_id:
        raise ItemFailure(FailureKind.MALFORMED_LINE, "line has no custom_id")
    return custom_id


def extract_structured_text(body: Dict[str, Any]) -> Tuple[str, str]:
    """Return ``(strategy_name, text)`` for the first strategy that yields text."""
    for name, strategy in EXTRACTION_STRATEGIES:
        text = strategy(body)
        if isinstance(text, str) and text.strip():
            return name, text
    raise ItemFailure(FailureKind.MISSING_PAYLOAD, "no structured output text in response body")


def _decode_line(line: str) -> Dict[str, Any]:
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ItemFailure(FailureKind.MALFORMED_LINE, f"line is not JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise ItemFailure(FailureKind.MALFORMED_LINE, "line is not a JSON object")
    return obj


def parse_result_line(line: str) -> Tuple[ScoreRecord, Optional[str]]:
    """Parse one output line.

    Returns the validated record together with the model named in the
    response body (``None`` when absent). Raises :class:`ItemFailure` with
    the target id attached whenever it could be recovered.
    """
    obj = _decode_line(line)
    target_id = target_id_from_custom_id(obj.get("custom_id"))

    try:
        response = obj.get("response") or {}
        if not isinstance(response, dict):
            raise ItemFailure(FailureKind.MALFORMED_LINE, "response is not a JSON object")
        if obj.get("error") or response.get("status_code") != 200:
            detail = obj.get("error") or response.get("body")
            raise ItemFailure(
                FailureKind.PROVIDER_ERROR,
                f"provider reported status {response.get('status_code')}: {detail}",
            )

        body = response.get("body")
        if not isinstance(body, dict):
            raise ItemFailure(FailureKind.MISSING_PAYLOAD, "response has no body")

        strategy, text = extract_structured_text(body)
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ItemFailure(FailureKind.INVALID_JSON, f"structured output is not JSON ({strategy}): {exc}") from exc

        errors = schema_errors(payload)
        if errors:
            raise ItemFailure(FailureKind.SCHEMA_VIOLATION, "; ".join(errors))
    except ItemFailure as failure:
        failure.target_id = target_id
        raise

    return to_score_record(target_id, payload), body.get("model")
