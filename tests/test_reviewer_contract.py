"""
Tests for the reviewer contract: response validation, the OpenAI adapter
and the reviewer pool configuration.
"""
import asyncio
import json
from unittest.mock import AsyncMock, Mock

import httpx
import openai
import pytest
from tenacity import wait_none

from intake.consensus.models import Abstain, Vote
from intake.consensus.reviewers.base import parse_reviewer_response
from intake.consensus.reviewers.openai_reviewer import JSONParser, OpenAIReviewer
from intake.consensus.reviewers.registry import build_reviewer_pool, load_reviewer_pool
from intake.errors import ConfigError, ReviewerOutputError

from conftest import mapping_payload


class MockMessage:
    def __init__(self, content):
        self.content = content


class MockChoice:
    def __init__(self, content):
        self.message = MockMessage(content)


class MockResponse:
    def __init__(self, content):
        self.choices = [MockChoice(content)]


def connection_error():
    return openai.APIConnectionError(request=httpx.Request("POST", "http://reviewer.test/v1/chat/completions"))


def reviewer_with(create):
    client = Mock()
    client.chat.completions.create = create
    return OpenAIReviewer("r1", "test-model", client=client, timeout_seconds=5)


@pytest.fixture
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(OpenAIReviewer._create.retry, "wait", wait_none())


class TestParseReviewerResponse:
    def test_valid_payload(self, sample_pack):
        vote = parse_reviewer_response(mapping_payload({"sku": "A", "quantity": "C"}), sample_pack, "r1", 42)
        assert vote.selections == {"sku": "A", "quantity": "C"}
        assert vote.confidences["sku"] == 0.9
        assert vote.latency_ms == 42

    def test_null_selection_is_an_answer(self, sample_pack):
        vote = parse_reviewer_response(mapping_payload({"sku": None}), sample_pack, "r1")
        assert vote.selections == {"sku": None}

    def test_out_of_range_column(self, sample_pack):
        with pytest.raises(ReviewerOutputError) as exc_info:
            parse_reviewer_response(mapping_payload({"sku": "A", "quantity": "Q"}), sample_pack, "r1")
        assert exc_info.value.reason == "out_of_range_column"

    @pytest.mark.parametrize("payload", [
        "just text",
        {"mappings": [{"field": "sku", "selected_column_id": "A", "confidence": 1.7}], "overall_confidence": 0.5},
        {"mappings": [], "overall_confidence": 0.5, "notes": "extra key"},
        {"mappings": [], "issues": [{"code": "lowercase", "severity": "info"}], "overall_confidence": 0.5},
        {"error": "json_parse_error", "parse_error": "unable_to_parse_json"},
    ])
    def test_malformed(self, sample_pack, payload):
        with pytest.raises(ReviewerOutputError) as exc_info:
            parse_reviewer_response(payload, sample_pack, "r1")
        assert exc_info.value.reason == "malformed_output"

    def test_duplicate_field_is_malformed(self, sample_pack):
        payload = mapping_payload({"sku": "A"})
        payload["mappings"].append(dict(payload["mappings"][0], selected_column_id="B"))
        with pytest.raises(ReviewerOutputError):
            parse_reviewer_response(payload, sample_pack, "r1")

    def test_fields_outside_pack_are_dropped(self, sample_pack):
        vote = parse_reviewer_response(mapping_payload({"sku": "A", "unit_price": "B"}), sample_pack, "r1")
        assert vote.selections == {"sku": "A"}

    def test_issue_codes_become_flags(self, sample_pack):
        payload = mapping_payload({"sku": "A"})
        payload["issues"] = [{"code": "HEADER_UNCLEAR", "severity": "warning", "evidence": "B"}]
        assert parse_reviewer_response(payload, sample_pack, "r1").flags == ["HEADER_UNCLEAR"]


class TestJSONParser:
    def test_plain_json(self):
        assert JSONParser.parse('{"a": 1}') == {"a": 1}

    def test_fenced_block(self):
        assert JSONParser.parse('Here you go:\n```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_balanced_slice(self):
        assert JSONParser.parse('answer: {"a": {"b": 2}} done') == {"a": {"b": 2}}

    def test_failure_is_tagged(self):
        assert JSONParser.parse("no json here")["error"] == "json_parse_error"
        assert JSONParser.parse("")["parse_error"] == "empty_output"


class TestOpenAIReviewer:
    def test_vote_from_json_response(self, sample_pack):
        create = AsyncMock(return_value=MockResponse(json.dumps(mapping_payload({"sku": "B"}))))
        outcome = asyncio.run(reviewer_with(create).invoke(sample_pack))
        assert isinstance(outcome, Vote)
        assert outcome.selections == {"sku": "B"}
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "Fields to map" in kwargs["messages"][1]["content"]
        assert "Order!" not in kwargs["messages"][1]["content"]

    def test_garbage_output_abstains(self, sample_pack):
        create = AsyncMock(return_value=MockResponse("I think column B"))
        outcome = asyncio.run(reviewer_with(create).invoke(sample_pack))
        assert isinstance(outcome, Abstain)
        assert outcome.reason == "malformed_output"

    def test_out_of_range_abstains(self, sample_pack):
        create = AsyncMock(return_value=MockResponse(json.dumps(mapping_payload({"sku": "Z"}))))
        outcome = asyncio.run(reviewer_with(create).invoke(sample_pack))
        assert (outcome.kind, outcome.reason) == ("abstain", "out_of_range_column")

    def test_backend_exception_abstains(self, sample_pack):
        create = AsyncMock(side_effect=RuntimeError("socket closed"))
        outcome = asyncio.run(reviewer_with(create).invoke(sample_pack))
        assert outcome.reason == "backend_error"
        assert "socket closed" in outcome.detail
        assert create.call_count == 1

    def test_transient_error_is_retried(self, sample_pack, no_retry_wait):
        ok = MockResponse(json.dumps(mapping_payload({"quantity": "C"})))
        create = AsyncMock(side_effect=[connection_error(), ok])
        outcome = asyncio.run(reviewer_with(create).invoke(sample_pack))
        assert isinstance(outcome, Vote)
        assert create.call_count == 2

    def test_retries_stop_after_three_attempts(self, sample_pack, no_retry_wait):
        create = AsyncMock(side_effect=connection_error())
        outcome = asyncio.run(reviewer_with(create).invoke(sample_pack))
        assert outcome.reason == "backend_error"
        assert create.call_count == 3


POOL_YAML = """
reviewers:
  - id: hosted
    model: gpt-4o-mini
    api_key_env: TEST_REVIEWER_KEY
    family: openai
  - id: local
    model: qwen
    endpoint: http://localhost:8000/v1
    timeout_seconds: 45
  - id: off
    model: gpt-4o
    enabled: false
"""


class TestReviewerPool:
    def write(self, tmp_path, text):
        path = tmp_path / "reviewers.yaml"
        path.write_text(text, encoding="utf-8")
        return path

    def test_load_and_build(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_REVIEWER_KEY", "sk-test")
        configs = load_reviewer_pool(self.write(tmp_path, POOL_YAML))
        assert [c.id for c in configs] == ["hosted", "local", "off"]
        reviewers = build_reviewer_pool(configs, settings=Mock(REVIEWER_TIMEOUT_SECONDS=12.0))
        assert [r.reviewer_id for r in reviewers] == ["hosted", "local"]
        assert reviewers[0].timeout_seconds == 12.0
        assert reviewers[0].family == "openai"
        assert reviewers[1].timeout_seconds == 45.0
        assert reviewers[1].family == "local"

    def test_missing_key_is_config_error(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TEST_REVIEWER_KEY", raising=False)
        configs = load_reviewer_pool(self.write(tmp_path, POOL_YAML))
        with pytest.raises(ConfigError, match="TEST_REVIEWER_KEY"):
            build_reviewer_pool(configs, settings=Mock(REVIEWER_TIMEOUT_SECONDS=12.0))

    @pytest.mark.parametrize("text, message", [
        ("reviewers: {}", "must contain a 'reviewers' list"),
        ("reviewers:\n  - id: a\n    model: m\n    kind: grpc\n", "unknown kind"),
        ("reviewers:\n  - id: a\n    model: m\n  - id: a\n    model: n\n", "more than once"),
        ("reviewers:\n  - id: a\n    model: m\n    colour: red\n", "is invalid"),
        ("reviewers: [", "not valid YAML"),
    ])
    def test_invalid_pool(self, tmp_path, text, message):
        with pytest.raises(ConfigError, match=message):
            load_reviewer_pool(self.write(tmp_path, text))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_reviewer_pool(tmp_path / "absent.yaml")
