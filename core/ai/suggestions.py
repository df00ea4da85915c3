"""Rule-based and AI mapping suggestions for placeholder tokens.

AI output is a lower-trust source: it never blocks and only overrides a
rule-based suggestion with strictly higher confidence and a valid field.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterable
from typing import Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.schema.registry import SchemaRegistry

logger = logging.getLogger("trustdocs.ai")

SuggestionSource = Literal["rule-based", "ai", "ai-enhanced"]

MISTRAL_CHAT_URL = "https://api.mistral.ai/v1/chat/completions"
DEFAULT_MODEL = "mistral-large-latest"

_RULES: tuple[tuple[re.Pattern[str], str, float], ...] = (
    (re.compile(r"^(client_?name|full_?name|name)$", re.I), "full_name", 0.9),
    (re.compile(r"^(first_?name|fname)$", re.I), "first_name", 0.95),
    (re.compile(r"^(last_?name|surname|lname)$", re.I), "last_name", 0.95),
    (re.compile(r"^(email|email_?address|e_?mail)$", re.I), "email", 0.95),
    (re.compile(r"^(phone|telephone|tel|phone_?number)$", re.I), "phone", 0.9),
    (re.compile(r"^(address|client_?address)$", re.I), "address_line_1", 0.8),
    (re.compile(r"^(city|client_?city)$", re.I), "city", 0.9),
    (re.compile(r"^(postal_?code|zip|zipcode)$", re.I), "postal_code", 0.9),
    (re.compile(r"^(occupation|job|profession|work)$", re.I), "occupation", 0.85),
    (re.compile(r"^(company|employer|organization)$", re.I), "company", 0.85),
    (re.compile(r"^(current_?date|today|date)$", re.I), "current_date", 0.9),
    (re.compile(r"^(current_?year|year)$", re.I), "current_year", 0.9),
    (re.compile(r"client.*name", re.I), "full_name", 0.8),
    (re.compile(r"beneficiary.*name", re.I), "full_name", 0.8),
    (re.compile(r"contact.*email", re.I), "email", 0.8),
    (re.compile(r"contact.*phone", re.I), "phone", 0.8),
)


class MappingSuggestion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    placeholder: str
    suggested_field: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    source: SuggestionSource = "ai"


class RuleBasedSuggester:
    """First-matching pattern wins for each token."""

    def suggest(self, tokens: Iterable[str]) -> list[MappingSuggestion]:
        suggestions: list[MappingSuggestion] = []
        for token in tokens:
            for pattern, field_name, confidence in _RULES:
                if pattern.search(token):
                    suggestions.append(
                        MappingSuggestion(
                            placeholder=token,
                            suggested_field=field_name,
                            confidence=confidence,
                            reasoning=f'Rule-based match: "{token}" matches pattern for {field_name}',
                            source="rule-based",
                        )
                    )
                    break
        return suggestions


class MistralSuggestionClient:
    """Ask a chat-completion model for ``token -> field`` suggestions."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    def suggest(
        self,
        document_text: str,
        tokens: Iterable[str],
        field_names: Iterable[str],
    ) -> list[MappingSuggestion]:
        """Return suggestions, or an empty list on any transport or parse failure."""

        token_list = list(tokens)
        if not token_list:
            return []

        payload = {
            "model": self._model,
            "temperature": 0.1,
            "max_tokens": 2000,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": _system_prompt(field_names)},
                {"role": "user", "content": _user_prompt(document_text, token_list)},
            ],
        }

        try:
            with httpx.Client(timeout=self._timeout_seconds, transport=self._transport) as client:
                response = client.post(
                    MISTRAL_CHAT_URL,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json=payload,
                )
                response.raise_for_status()
                content = response.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
            logger.warning("AI suggestion request failed: %s", exc)
            return []

        return _parse_suggestions(content)


def merge_suggestions(
    rule_based: Iterable[MappingSuggestion],
    ai: Iterable[MappingSuggestion],
    is_valid_field: Callable[[str], bool],
) -> list[MappingSuggestion]:
    """Combine both sources, highest confidence first."""

    combined: dict[str, MappingSuggestion] = {}
    for suggestion in rule_based:
        combined[suggestion.placeholder] = suggestion.model_copy(update={"source": "rule-based"})

    for suggestion in ai:
        if not is_valid_field(suggestion.suggested_field):
            continue
        existing = combined.get(suggestion.placeholder)
        if existing is None:
            combined[suggestion.placeholder] = suggestion.model_copy(update={"source": "ai"})
        elif suggestion.confidence > existing.confidence:
            combined[suggestion.placeholder] = suggestion.model_copy(
                update={"source": "ai-enhanced"}
            )

    return sorted(combined.values(), key=lambda item: item.confidence, reverse=True)


def _parse_suggestions(content: object) -> list[MappingSuggestion]:
    if not isinstance(content, str):
        return []
    text = content.strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\[[\s\S]*\]", text)
        if match is None:
            logger.warning("AI response contained no JSON")
            return []
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            logger.warning("AI response JSON could not be parsed")
            return []

    if isinstance(parsed, dict):
        parsed = parsed.get("mappings") or parsed.get("suggestions") or []
    if not isinstance(parsed, list):
        return []

    suggestions: list[MappingSuggestion] = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        try:
            suggestions.append(
                MappingSuggestion(
                    placeholder=item["placeholder"],
                    suggested_field=item.get("suggestedField") or item["suggested_field"],
                    confidence=item["confidence"],
                    reasoning=str(item.get("reasoning") or ""),
                    source="ai",
                )
            )
        except (KeyError, ValidationError):
            continue
    return suggestions


def _system_prompt(field_names: Iterable[str]) -> str:
    fields = "\n".join(f"- {name}" for name in field_names)
    return (
        "You map placeholder tokens in legal and business documents to data fields.\n\n"
        f"Available fields:\n{fields}\n\n"
        'Respond with a JSON object {"mappings": [{"placeholder": "...", '
        '"suggestedField": "...", "confidence": 0.0, "reasoning": "..."}]}. '
        "Only use the available fields."
    )


def _user_prompt(document_text: str, tokens: list[str]) -> str:
    listed = "\n".join(f"- {token}" for token in tokens)
    return (
        f"Placeholders found:\n{listed}\n\n"
        f"Document text (truncated):\n{document_text[:4000]}"
    )


def suggest_mappings(
    document_text: str,
    tokens: Iterable[str],
    registry: SchemaRegistry,
    ai_client: MistralSuggestionClient | None = None,
) -> list[MappingSuggestion]:
    """Rule-based suggestions for ``tokens``, enhanced by the AI client when configured."""

    token_list = sorted(set(tokens))
    rule_based = [
        item
        for item in RuleBasedSuggester().suggest(token_list)
        if registry.is_valid_field(item.suggested_field)
    ]
    ai: list[MappingSuggestion] = []
    if ai_client is not None:
        ai = ai_client.suggest(document_text, token_list, registry.field_names())
    return merge_suggestions(rule_based, ai, registry.is_valid_field)
