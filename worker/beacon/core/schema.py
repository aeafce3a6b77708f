"""Structured-output contract shared by the request builder and the result parser.

The same dict is embedded in every batch request and used to validate every
result line, so the prompt contract and the validator cannot drift apart.
"""

from typing import Any, Dict, List

from jsonschema import Draft7Validator

PARKING_OPTIONS = ("free", "paid", "street", "none", "unknown")
MAX_EVIDENCE = 3
MAX_SOURCES = 8

SCORE_SCHEMA_NAME = "CoffeeShopPerspective"

SCORE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "decoration": {"type": "integer", "minimum": 1, "maximum": 5},
        "coffee": {"type": "integer", "minimum": 1, "maximum": 5},
        "studySuitable": {"type": "integer", "minimum": 1, "maximum": 5},
        "parking": {"type": "string", "enum": list(PARKING_OPTIONS)},
        "evidence": {"type": "array", "items": {"type": "string"}, "maxItems": MAX_EVIDENCE},
        "sources_used": {"type": "array", "items": {"type": "string"}, "maxItems": MAX_SOURCES},
    },
    "required": ["decoration", "coffee", "studySuitable", "parking", "evidence", "sources_used"],
}

Draft7Validator.check_schema(SCORE_SCHEMA)
_VALIDATOR = Draft7Validator(SCORE_SCHEMA)


def response_format() -> Dict[str, Any]:
    """Structured-output block for a Responses API request body."""
    return {
        "type": "json_schema",
        "name": SCORE_SCHEMA_NAME,
        "strict": True,
        "schema": SCORE_SCHEMA,
    }


def schema_errors(payload: Any) -> List[str]:
    """Return human readable violations, empty when ``payload`` conforms."""
    errors = sorted(_VALIDATOR.iter_errors(payload), key=lambda error: [str(part) for part in error.path])
    messages = []
    for error in errors:
        location = ".".join(str(part) for part in error.path)
        messages.append(f"{location}: {error.message}" if location else error.message)
    return messages
