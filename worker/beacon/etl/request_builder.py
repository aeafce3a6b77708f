"""Build the JSONL request document submitted as one provider batch."""

import json
from typing import Any, Dict, Iterable, List

from beacon.core.models import Target
from beacon.core.schema import response_format
from beacon.vendors.openai_batch import RESPONSES_ENDPOINT

CUSTOM_ID_PREFIX = "shop_"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_OUTPUT_TOKENS = 400

SYSTEM_PROMPT = " ".join(
    [
        "Use the web_search tool to find credible pages (official site, local press, blogs, Reddit).",
        "If parking, study-friendliness, or other aspects are unclear, answer 'unknown'.",
        "Do NOT scrape or summarize Google Maps/Yelp review pages; skip those sources.",
        "Return ONLY JSON matching the provided schema.",
    ]
)


def custom_id_for(target_id: str) -> str:
    return f"{CUSTOM_ID_PREFIX}{target_id}"


def user_prompt(target: Target) -> str:
    address = target.address
    if target.city:
        address = f"{address}, {target.city}"
    return (
        "Analyze this coffee shop:\n"
        f"Name: {target.name}\n"
        f"Address: {address}\n"
        "Perspectives: decoration, coffee, studySuitable, parking. "
        "Provide 2-3 short quotes in evidence and list source URLs."
    )


def build_request(
    target: Target,
    *,
    model: str = DEFAULT_MODEL,
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
) -> Dict[str, Any]:
    body = {
        "model": model,
        "tools": [{"type": "web_search"}],
        "input": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt(target)},
        ],
        "text": {"format": response_format()},
        "max_output_tokens": max_output_tokens,
    }
    return {
        "custom_id": custom_id_for(target.target_id),
        "method": "POST",
        "url": RESPONSES_ENDPOINT,
        "body": body,
    }


def build_batch_jsonl(
    targets: Iterable[Target],
    *,
    model: str = DEFAULT_MODEL,
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
) -> str:
    """One JSON request per line, newline terminated."""
    lines: List[str] = [
        json.dumps(build_request(target, model=model, max_output_tokens=max_output_tokens), ensure_ascii=False)
        for target in targets
    ]
    if not lines:
        raise ValueError("at least one target is required to build a batch")
    return "\n".join(lines) + "\n"
