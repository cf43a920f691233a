"""Gemini-backed waste classifier client.

The remote model receives the image plus an instruction that enumerates the
taxonomy and demands bare JSON. Its answer goes through an explicit
parse-then-validate step; transport and credential problems are folded into a
well-formed UNKNOWN outcome instead of raising.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from ecosnap.errors import ConfigurationError, InvalidResponseError, TransientServiceError
from ecosnap.models import ClassificationOutcome, FailureKind, WasteCategory, clamp_confidence

if TYPE_CHECKING:
    from ecosnap.config import Settings
    from ecosnap.models import TransportImage

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE: float = 0.5

MISSING_KEY_MESSAGE = "API Key for Gemini is not configured. Please contact support or check setup."
INVALID_KEY_MESSAGE = "Invalid Gemini API Key. Please check your configuration."

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)


def build_instruction() -> str:
    categories = ", ".join(category.value for category in WasteCategory)
    return f"""You are an expert waste classification system. Analyze the provided image and identify the primary type of waste visible.
Respond ONLY with a JSON object matching this exact structure:
{{
  "wasteType": "CATEGORY_NAME",
  "confidence": 0.0,
  "reasoning": "Brief explanation of why this category was chosen, or why it's uncertain."
}}
- "wasteType" MUST be one of these exact values: {categories}.
- "confidence" MUST be a float between 0.0 (uncertain) and 1.0 (very certain).
- "reasoning" should be a concise explanation.

If the image does not clearly show waste, is ambiguous, or features multiple distinct waste types that are hard to separate, use "{WasteCategory.UNKNOWN.value}" for wasteType, set confidence appropriately low (e.g., < 0.5), and explain the ambiguity in reasoning. Focus on the most prominent single piece of waste if multiple are present.
Do not include any text outside of the JSON object. Do not use markdown code fences like ```json or ```.
"""  # noqa: E501


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParsedClassification:
    """A validated classifier answer."""

    category: WasteCategory
    confidence: float
    reasoning: str | None


def strip_code_fence(text: str) -> str:
    text = text.strip()
    match = _FENCE_RE.match(text)
    if match and match.group(1):
        return match.group(1).strip()
    return text


def _normalize_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float) or math.isnan(value):
        return DEFAULT_CONFIDENCE
    return clamp_confidence(float(value))


def parse_classifier_response(text: str) -> ParsedClassification:
    """Parse the classifier's JSON answer.

    Raises:
        InvalidResponseError: If the text is not a JSON object with a string ``wasteType``.
    """
    try:
        data = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as exc:
        raise InvalidResponseError(f"Classifier returned malformed JSON: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("wasteType"), str):
        raise InvalidResponseError("Invalid JSON structure received from Gemini.")

    reasoning = data.get("reasoning")
    return ParsedClassification(
        category=WasteCategory.coerce(data["wasteType"]),
        confidence=_normalize_confidence(data.get("confidence")),
        reasoning=reasoning if isinstance(reasoning, str) else None,
    )


def _extract_text(payload: Any) -> str:
    try:
        parts = payload["candidates"][0]["content"]["parts"]
        text = "".join(part.get("text", "") for part in parts)
    except (KeyError, IndexError, TypeError, AttributeError) as exc:
        raise InvalidResponseError("Gemini response did not contain any candidates.") from exc
    if not text.strip():
        raise InvalidResponseError("Gemini response was empty.")
    return text


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class ClassificationClient:
    """Submits images to Gemini ``generateContent`` and normalizes the answer."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            logger.warning("Gemini API key is not set. Classification requests will fail until it is configured.")
        self._api_key = api_key
        self._model = model
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> ClassificationClient:
        return cls(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout=settings.classifier_timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def classify(self, image: TransportImage) -> ClassificationOutcome:
        """Classify an image. Never raises; failures become an UNKNOWN outcome."""
        try:
            text = await self._generate(image)
            parsed = parse_classifier_response(text)
        except ConfigurationError as exc:
            logger.error("Gemini classification not configured: %s", exc)
            return ClassificationOutcome.failed(str(exc), FailureKind.CONFIGURATION)
        except TransientServiceError as exc:
            logger.error("Error classifying waste with Gemini: %s", exc)
            return ClassificationOutcome.failed(f"Error: {exc}", FailureKind.TRANSIENT)
        except InvalidResponseError as exc:
            logger.error("Gemini returned an unusable answer: %s", exc)
            return ClassificationOutcome.failed(f"Error: {exc}", FailureKind.INVALID_RESPONSE)

        return ClassificationOutcome(
            category=parsed.category,
            confidence=parsed.confidence,
            reasoning=parsed.reasoning,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _generate(self, image: TransportImage) -> str:
        if not self._api_key:
            raise ConfigurationError(MISSING_KEY_MESSAGE)

        body = {
            "contents": [
                {
                    "parts": [
                        {"inline_data": {"mime_type": image.mime_type, "data": image.to_base64()}},
                        {"text": build_instruction()},
                    ]
                }
            ],
            "generationConfig": {"responseMimeType": "application/json"},
        }
        try:
            response = await self._client.post(
                f"/models/{self._model}:generateContent",
                json=body,
                headers={"x-goog-api-key": self._api_key},
            )
        except httpx.HTTPError as exc:
            raise TransientServiceError(f"Gemini request failed: {exc}") from exc

        if response.is_error:
            detail = response.text
            if response.status_code in (401, 403) or "API key not valid" in detail:
                raise ConfigurationError(INVALID_KEY_MESSAGE)
            raise TransientServiceError(f"Gemini HTTP {response.status_code}: {detail}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidResponseError("Gemini response envelope was not JSON.") from exc
        return _extract_text(payload)
