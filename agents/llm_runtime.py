from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

import httpx

from errors import GenerationFailure
from settings import SETTINGS


@dataclass
class LLMResult:
    text: str
    provider: str
    model: str
    raw: Dict[str, Any]


class LLMRuntime:
    """Single request/response generation call. Raises GenerationFailure instead of guessing."""

    def __init__(self, provider: str | None = None, model: str | None = None, timeout_seconds: float | None = None) -> None:
        self.provider = (provider or SETTINGS.llm_provider or "openai").lower()
        self.model = model or SETTINGS.llm_model
        self.timeout_seconds = timeout_seconds or SETTINGS.llm_timeout_seconds

    def available(self) -> bool:
        if self.provider == "anthropic":
            return bool(SETTINGS.anthropic_api_key)
        if self.provider == "openai":
            return bool(SETTINGS.openai_api_key)
        return False

    async def generate(
        self,
        system_prompt: str,
        history: Sequence[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 450,
        model: str | None = None,
        response_format: str = "text",
    ) -> LLMResult:
        if not self.available():
            raise GenerationFailure(f"llm provider {self.provider!r} is not configured")
        try:
            if self.provider == "anthropic":
                result = await self._generate_anthropic(system_prompt, history, temperature, max_tokens, model or self.model)
            else:
                result = await self._generate_openai(system_prompt, history, temperature, max_tokens, model or self.model, response_format)
        except httpx.HTTPError as exc:
            raise GenerationFailure(f"{self.provider} request failed: {exc!r}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise GenerationFailure(f"{self.provider} returned a malformed response: {exc!r}") from exc
        if not result.text:
            raise GenerationFailure(f"{self.provider} returned an empty completion")
        return result

    async def _generate_openai(
        self,
        system_prompt: str,
        history: Sequence[Dict[str, str]],
        temperature: float,
        max_tokens: int,
        model: str,
        response_format: str,
    ) -> LLMResult:
        body: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "system", "content": system_prompt}, *[dict(turn) for turn in history]],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if response_format == "json":
            body["response_format"] = {"type": "json_object"}
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            resp = await client.post(
                f"{SETTINGS.openai_base_url.rstrip('/')}/chat/completions",
                headers={"Authorization": f"Bearer {SETTINGS.openai_api_key}"},
                json=body,
            )
            resp.raise_for_status()
            data = resp.json()
        return LLMResult(text=self._extract_chat_completion_text(data), provider="openai", model=model, raw=data)

    async def _generate_anthropic(
        self,
        system_prompt: str,
        history: Sequence[Dict[str, str]],
        temperature: float,
        max_tokens: int,
        model: str,
    ) -> LLMResult:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            resp = await client.post(
                f"{SETTINGS.anthropic_base_url.rstrip('/')}/messages",
                headers={
                    "x-api-key": SETTINGS.anthropic_api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json={
                    "model": model,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                    "system": system_prompt,
                    "messages": [dict(turn) for turn in history],
                },
            )
            resp.raise_for_status()
            data = resp.json()
        text_parts: List[str] = []
        for block in data.get("content", []):
            if isinstance(block, dict) and block.get("type") == "text":
                text_parts.append(str(block.get("text", "")))
        return LLMResult(text="\n".join(t for t in text_parts if t).strip(), provider="anthropic", model=model, raw=data)

    def _extract_chat_completion_text(self, data: Dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        message = choices[0].get("message") if isinstance(choices[0], dict) else {}
        content = message.get("content", "") if isinstance(message, dict) else ""
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, list):
            out = [str(part.get("text", "")) for part in content if isinstance(part, dict) and "text" in part]
            return "\n".join(t for t in out if t).strip()
        return str(content or "").strip()
