from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from ul_core.llm.policy import OPENAI_SECRET_NAME, TASK_TRANSLATOR, get_secret
from ul_core.llm.provider_base import LLMProvider

CHAT_COMPLETIONS_PATH = "/chat/completions"
SYSTEM_PROMPT = (
    "You translate UI strings for software localization. "
    "Answer with a single JSON object and nothing else."
)


class OpenAIProviderError(RuntimeError):
    """The OpenAI call failed or returned something unusable."""


class OpenAIKeyMissingError(OpenAIProviderError):
    """No OpenAI API key is stored in the keyring."""


@dataclass(slots=True)
class OpenAIProvider(LLMProvider):
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: float = 60.0
    transport: httpx.BaseTransport | None = None

    def _api_key(self) -> str:
        api_key = get_secret(OPENAI_SECRET_NAME)
        if not api_key:
            raise OpenAIKeyMissingError(
                "OpenAI API key is not configured. Store it with `unlingo set-secret openai_api_key`."
            )
        return api_key

    def _payload(self, *, task: str, prompt: str, temperature: float, max_tokens: int) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        # Batch replies are parsed as one JSON object of key -> value.
        if task == TASK_TRANSLATOR:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def generate(
        self,
        *,
        task: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        payload = self._payload(task=task, prompt=prompt, temperature=temperature, max_tokens=max_tokens)

        with httpx.Client(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self._api_key()}"},
            timeout=self.timeout_seconds,
            transport=self.transport,
        ) as client:
            try:
                response = client.post(CHAT_COMPLETIONS_PATH, json=payload)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                detail = exc.response.text.strip()[:300] or "no response body"
                raise OpenAIProviderError(
                    f"OpenAI request failed with HTTP {exc.response.status_code}: {detail}"
                ) from exc
            except httpx.HTTPError as exc:
                raise OpenAIProviderError(f"OpenAI request failed: {exc}") from exc

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise OpenAIProviderError("OpenAI response parsing failed.") from exc

        if not isinstance(content, str) or not content.strip():
            raise OpenAIProviderError("OpenAI response did not include text content.")
        return content.strip()
