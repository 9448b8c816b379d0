from __future__ import annotations

import json
import re

from ul_core.llm.prompts import CONTENT_MARKER, TARGET_MARKER
from ul_core.llm.provider_base import LLMProvider

_TARGET_PATTERN = re.compile(rf"^{re.escape(TARGET_MARKER)}\s*(.+)$", re.MULTILINE)


class MockProvider(LLMProvider):
    """Offline provider that echoes batch content tagged with the target language.

    Strings become ``"[<lang>] <source>"``; non-batch prompts are echoed.
    """

    def __init__(self, *, model: str = "mock-v1") -> None:
        self.model = model

    def generate(
        self,
        *,
        task: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        del temperature
        del max_tokens

        payload = _extract_payload(prompt)
        if payload is None:
            return f"[{task}] {prompt[:200]}"

        target_match = _TARGET_PATTERN.search(prompt)
        target = target_match.group(1).strip() if target_match else "xx"
        translated = {
            key: f"[{target}] {value}" if isinstance(value, str) else value
            for key, value in payload.items()
        }
        return "```json\n" + json.dumps(translated, ensure_ascii=False, indent=2) + "\n```"


def _extract_payload(prompt: str) -> dict[str, object] | None:
    start = prompt.find(CONTENT_MARKER)
    if start < 0:
        return None
    body = prompt[start + len(CONTENT_MARKER):]
    end = body.find(TARGET_MARKER)
    if end >= 0:
        body = body[:end]
    try:
        parsed = json.loads(body.strip())
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None
