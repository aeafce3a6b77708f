import json

import pytest

from beacon.core.models import Target
from beacon.core.schema import SCORE_SCHEMA
from beacon.etl import request_builder


def make_targets():
    return [
        Target("octane_coffee_30318", "Octane Coffee", "1009 Marietta St NW", "atlanta", "30318"),
        Target("no_city_1", "No City Cafe", "1 Loop Rd", None, "1"),
    ]


def test_build_batch_jsonl_one_line_per_target():
    document = request_builder.build_batch_jsonl(make_targets())

    assert document.endswith("\n")
    lines = document.strip().split("\n")
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["custom_id"] == "shop_octane_coffee_30318"
    assert first["method"] == "POST"
    assert first["url"] == "/v1/responses"


def test_request_body_embeds_shared_schema_and_caps():
    request = request_builder.build_request(make_targets()[0], model="gpt-4o-mini", max_output_tokens=300)
    body = request["body"]

    assert body["model"] == "gpt-4o-mini"
    assert body["tools"] == [{"type": "web_search"}]
    assert body["max_output_tokens"] == 300
    fmt = body["text"]["format"]
    assert fmt["type"] == "json_schema"
    assert fmt["strict"] is True
    assert fmt["schema"] is SCORE_SCHEMA
    assert fmt["schema"]["additionalProperties"] is False


def test_prompts_name_target_and_rules():
    body = request_builder.build_request(make_targets()[0])["body"]
    system, user = body["input"]

    assert system["role"] == "system"
    assert "unknown" in system["content"]
    assert "Yelp" in system["content"]
    assert "ONLY JSON" in system["content"]
    assert user["role"] == "user"
    assert "Name: Octane Coffee" in user["content"]
    assert "Address: 1009 Marietta St NW, atlanta" in user["content"]
    assert "studySuitable" in user["content"]


def test_user_prompt_without_city():
    prompt = request_builder.user_prompt(make_targets()[1])
    assert "Address: 1 Loop Rd\n" in prompt


def test_build_batch_jsonl_rejects_empty():
    with pytest.raises(ValueError):
        request_builder.build_batch_jsonl([])
