from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from groq import Groq

from civicwatch.config import settings

INFRASTRUCTURE_CATEGORIES = [
    "roads",
    "bridges",
    "public_buildings",
    "water_supply",
    "electricity",
    "drainage",
    "parks",
    "transportation",
]
MISCONDUCT_CATEGORIES = ["bribery", "negligence", "abuse_of_power", "fraud", "harassment", "other"]
SENTIMENTS = ["positive", "negative", "neutral", "urgent"]


class OracleError(RuntimeError):
    pass


@dataclass(frozen=True)
class Suggestion:
    category: str | None
    sentiment: str | None


class TextOracle:
    """Text-classification collaborator; every failure surfaces as OracleError."""

    @property
    def enabled(self) -> bool:
        return False

    def suggest_report_labels(self, description: str, report_type: str) -> Suggestion:
        raise OracleError("AI oracle not configured")

    def parse_transparency_query(self, query: str) -> dict[str, Any]:
        raise OracleError("AI oracle not configured")


class GroqOracle(TextOracle):
    def __init__(self, api_key: str | None = None, model: str | None = None, timeout: float | None = None) -> None:
        key = api_key if api_key is not None else settings.groq_api_key
        self.model = model or settings.groq_model
        self.timeout = timeout if timeout is not None else settings.groq_timeout_seconds
        self.client = Groq(api_key=key, timeout=self.timeout, max_retries=0) if key else None

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def suggest_report_labels(self, description: str, report_type: str) -> Suggestion:
        categories = INFRASTRUCTURE_CATEGORIES if report_type == "infrastructure" else MISCONDUCT_CATEGORIES
        prompt = (
            "You triage citizen reports for a government accountability portal. "
            f"Pick the single best category from: {', '.join(categories)}. "
            f"Pick the sentiment from: {', '.join(SENTIMENTS)}. "
            "Return strict JSON with keys: category, sentiment."
        )
        data = self._chat_json(prompt, f"Report type: {report_type}\n\n{description}")
        category = str(data.get("category") or "").strip().lower() or None
        sentiment = str(data.get("sentiment") or "").strip().lower() or None
        if category not in categories:
            category = None
        if sentiment not in SENTIMENTS:
            sentiment = None
        if category is None and sentiment is None:
            raise OracleError("AI oracle returned no usable labels")
        return Suggestion(category=category, sentiment=sentiment)

    def parse_transparency_query(self, query: str) -> dict[str, Any]:
        prompt = (
            "Convert a question about government projects into structured filters. "
            "Return strict JSON with any of these optional keys: "
            "department (string), status (planned|ongoing|completed|on_hold), "
            "min_budget (number), max_budget (number), location (string), "
            "date_from (YYYY-MM-DD), date_to (YYYY-MM-DD), "
            "sort_by (budget|date|name), sort_order (asc|desc). "
            "Omit keys the question does not mention."
        )
        return self._chat_json(prompt, query)

    def _chat_json(self, system_prompt: str, user_text: str) -> dict[str, Any]:
        if not self.client:
            raise OracleError("AI oracle not configured")
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                temperature=0,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_text[:6000]},
                ],
            )
            content = completion.choices[0].message.content
        except Exception as exc:
            raise OracleError(f"AI request failed: {exc}") from exc
        return _parse_json_object(content)


def _parse_json_object(content: str | None) -> dict[str, Any]:
    if not content:
        raise OracleError("AI oracle returned an empty response")
    cleaned = re.sub(r"```(?:json)?\s*|\s*```", "", content).strip()
    try:
        data = json.loads(cleaned)
    except ValueError as exc:
        raise OracleError("AI oracle returned malformed JSON") from exc
    if not isinstance(data, dict):
        raise OracleError("AI oracle returned a non-object payload")
    return data


def build_oracle() -> TextOracle:
    oracle = GroqOracle()
    return oracle if oracle.enabled else TextOracle()
