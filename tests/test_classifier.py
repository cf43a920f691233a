"""Tests for the Gemini classification client and its response parser."""

from __future__ import annotations

import base64
import json
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from ecosnap.errors import InvalidResponseError
from ecosnap.models import FailureKind, TransportImage, WasteCategory
from ecosnap.services.classifier import (
    ClassificationClient,
    build_instruction,
    parse_classifier_response,
    strip_code_fence,
)

if TYPE_CHECKING:
    from collections.abc import Callable

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_IMAGE = TransportImage(mime_type="image/jpeg", data=b"\xff\xd8\xff\xe0fake-jpeg")


def _gemini_reply(text: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def _make_client(
    handler: Callable[[httpx.Request], httpx.Response], api_key: str | None = "test-key"
) -> ClassificationClient:
    return ClassificationClient(api_key=api_key, transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestStripCodeFence:
    def test_json_fence_removed(self) -> None:
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence_removed(self) -> None:
        assert strip_code_fence('  ```\n{"a": 1}```  ') == '{"a": 1}'

    def test_unfenced_text_only_trimmed(self) -> None:
        assert strip_code_fence('  {"a": 1}\n') == '{"a": 1}'


class TestParseClassifierResponse:
    def test_confidence_above_one_is_clamped(self) -> None:
        parsed = parse_classifier_response('{"wasteType":"PLASTIC","confidence":1.4,"reasoning":"bottle"}')

        assert parsed.category is WasteCategory.PLASTIC
        assert parsed.confidence == 1.0
        assert parsed.reasoning == "bottle"

    def test_negative_confidence_is_clamped(self) -> None:
        parsed = parse_classifier_response('{"wasteType":"GLASS","confidence":-0.3}')
        assert parsed.confidence == 0.0

    @pytest.mark.parametrize(
        "confidence_json",
        ['"high"', "null", "true", "NaN", "[0.9]"],
    )
    def test_unusable_confidence_defaults_to_half(self, confidence_json: str) -> None:
        parsed = parse_classifier_response(f'{{"wasteType":"PAPER","confidence":{confidence_json}}}')
        assert parsed.confidence == 0.5

    def test_missing_confidence_defaults_to_half(self) -> None:
        assert parse_classifier_response('{"wasteType":"METAL"}').confidence == 0.5

    def test_fenced_response_is_accepted(self) -> None:
        parsed = parse_classifier_response('```json\n{"wasteType":"BATTERY","confidence":0.8}\n```')
        assert parsed.category is WasteCategory.BATTERY

    def test_unrecognized_category_collapses_to_unknown(self) -> None:
        parsed = parse_classifier_response('{"wasteType":"STYROFOAM","confidence":0.9}')
        assert parsed.category is WasteCategory.UNKNOWN
        assert parsed.confidence == 0.9

    def test_category_case_is_normalized(self) -> None:
        assert parse_classifier_response('{"wasteType":"general_waste"}').category is WasteCategory.GENERAL_WASTE

    def test_prose_wrapper_is_rejected(self) -> None:
        with pytest.raises(InvalidResponseError):
            parse_classifier_response('Here you go: {"wasteType":"PLASTIC"}')

    @pytest.mark.parametrize(
        "payload",
        ['{"confidence": 0.9}', '{"wasteType": 3}', '["PLASTIC"]', '"PLASTIC"'],
    )
    def test_missing_string_category_is_rejected(self, payload: str) -> None:
        with pytest.raises(InvalidResponseError):
            parse_classifier_response(payload)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class TestClassificationClient:
    async def test_successful_classification(self) -> None:
        captured: dict[str, Any] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["key"] = request.headers.get("x-goog-api-key")
            captured["body"] = json.loads(request.content)
            return _gemini_reply('{"wasteType":"PLASTIC","confidence":1.4,"reasoning":"bottle"}')

        client = _make_client(handler)
        outcome = await client.classify(_IMAGE)
        await client.aclose()

        assert outcome.category is WasteCategory.PLASTIC
        assert outcome.confidence == 1.0
        assert outcome.reasoning == "bottle"
        assert outcome.failure is None
        assert captured["url"].endswith("/v1beta/models/gemini-2.5-flash:generateContent")
        assert captured["key"] == "test-key"

        parts = captured["body"]["contents"][0]["parts"]
        assert parts[0]["inline_data"]["mime_type"] == "image/jpeg"
        assert base64.b64decode(parts[0]["inline_data"]["data"]) == _IMAGE.data
        assert parts[1]["text"] == build_instruction()
        assert captured["body"]["generationConfig"]["responseMimeType"] == "application/json"

    async def test_missing_key_returns_configuration_outcome_without_calling(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return _gemini_reply("{}")

        client = _make_client(handler, api_key=None)
        outcome = await client.classify(_IMAGE)
        await client.aclose()

        assert calls == []
        assert client.configured is False
        assert outcome.category is WasteCategory.UNKNOWN
        assert outcome.confidence == 0
        assert "API Key" in (outcome.reasoning or "")
        assert outcome.failure is FailureKind.CONFIGURATION
        assert outcome.is_configuration_failure is True

    async def test_rejected_key_is_configuration_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "API key not valid. Please pass a valid API key."}})

        client = _make_client(handler)
        outcome = await client.classify(_IMAGE)
        await client.aclose()

        assert outcome.is_configuration_failure is True
        assert outcome.reasoning == "Invalid Gemini API Key. Please check your configuration."

    async def test_server_error_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="overloaded")

        client = _make_client(handler)
        outcome = await client.classify(_IMAGE)
        await client.aclose()

        assert outcome.category is WasteCategory.UNKNOWN
        assert outcome.confidence == 0
        assert outcome.failure is FailureKind.TRANSIENT
        assert outcome.is_configuration_failure is False
        assert (outcome.reasoning or "").startswith("Error: Gemini HTTP 503")

    async def test_network_error_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _make_client(handler)
        outcome = await client.classify(_IMAGE)
        await client.aclose()

        assert outcome.failure is FailureKind.TRANSIENT
        assert "API Key" not in (outcome.reasoning or "")

    async def test_envelope_without_candidates_is_invalid(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})

        client = _make_client(handler)
        outcome = await client.classify(_IMAGE)
        await client.aclose()

        assert outcome.category is WasteCategory.UNKNOWN
        assert outcome.failure is FailureKind.INVALID_RESPONSE

    async def test_malformed_answer_is_invalid(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return _gemini_reply("I think this is plastic.")

        client = _make_client(handler)
        outcome = await client.classify(_IMAGE)
        await client.aclose()

        assert outcome.failure is FailureKind.INVALID_RESPONSE
        assert outcome.confidence == 0


class TestInstruction:
    def test_instruction_lists_every_category(self) -> None:
        instruction = build_instruction()
        for category in WasteCategory:
            assert category.value in instruction
        assert '"wasteType"' in instruction
        assert "Do not use markdown code fences" in instruction
