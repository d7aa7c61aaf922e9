"""OpenAI-compatible chat completion adapter used for issue content and titles."""

from __future__ import annotations

from functools import lru_cache
import json
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from issue_relay.core.config import get_settings
from issue_relay.schemas.jobs import GeneratedContent
from issue_relay.services.titles import TitleSuggestion, truncate_title

logger = logging.getLogger(__name__)

ISSUE_SYSTEM_PROMPT = """You are an expert at creating comprehensive GitHub issues optimized for AI-assisted development.
Create a detailed issue based on the user's prompt.
Include all sections: Overview, Context, Requirements, Technical Specifications, Implementation Guide, Acceptance Criteria, Additional Notes, and Definition of Done.
Return ONLY valid JSON with the structure: { "markdown": "...", "summary": { "type": "feature|bug|epic|technical-debt", "priority": "high|medium|low", "complexity": "small|medium|large" } }"""

TITLE_SYSTEM_PROMPT = """You are an expert at creating concise, descriptive GitHub issue titles.
Start with an action verb, keep it specific and short (5-50 characters), use the imperative mood.
Respond in JSON with keys "title" (string) and "alternatives" (array of 2-3 strings)."""


class LLMError(Exception):
    """Raised when the language model call fails or returns unusable content."""


class LLMNotConfiguredError(LLMError):
    """Raised when no API key is configured."""


class LLMClient:
    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        content_model: str = "gpt-4o-mini",
        title_model: str = "gpt-4o-mini",
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.content_model = content_model
        self.title_model = title_model
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def generate_issue_content(self, prompt: str) -> GeneratedContent:
        data = await self._complete_json(
            model=self.content_model,
            messages=[
                {"role": "system", "content": ISSUE_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.7,
        )
        try:
            return GeneratedContent.model_validate(data)
        except ValidationError as exc:
            raise LLMError("generated issue content did not match the expected shape") from exc

    async def suggest_title(self, prompt: str) -> TitleSuggestion:
        data = await self._complete_json(
            model=self.title_model,
            messages=[
                {"role": "system", "content": TITLE_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": f"Please create a GitHub issue title for this description:\n\n{prompt}",
                },
            ],
            temperature=0.3,
            max_tokens=200,
        )
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            raise LLMError("no title in model response")
        raw_alternatives = data.get("alternatives")
        alternatives = (
            [item.strip() for item in raw_alternatives if isinstance(item, str) and item.strip()]
            if isinstance(raw_alternatives, list)
            else []
        )
        return TitleSuggestion(title=truncate_title(title), is_generated=True, alternatives=alternatives)

    async def _complete_json(
        self,
        *,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        if not self.api_key:
            raise LLMNotConfiguredError("OpenAI API key not found")

        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as exc:
            raise LLMError(f"chat completion failed status={exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise LLMError(f"chat completion request failed: {exc.__class__.__name__}") from exc
        except ValueError as exc:
            raise LLMError("chat completion returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise LLMError("chat completion body was not a JSON object")

        content = _first_message_content(body)
        if not content:
            raise LLMError("No content generated from AI")

        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise LLMError("model response was not valid JSON") from exc
        if not isinstance(parsed, dict):
            raise LLMError("model response was not a JSON object")

        usage = body.get("usage")
        total_tokens = usage.get("total_tokens") if isinstance(usage, dict) else None
        logger.info("chat completion model=%s total_tokens=%s", model, total_tokens)
        return parsed


def _first_message_content(body: dict[str, Any]) -> str | None:
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None


@lru_cache
def get_llm_client() -> LLMClient:
    settings = get_settings()
    return LLMClient(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        content_model=settings.openai_content_model,
        title_model=settings.openai_title_model,
        timeout_seconds=settings.openai_timeout_seconds,
    )
