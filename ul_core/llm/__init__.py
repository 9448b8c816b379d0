from __future__ import annotations

from ul_core.llm.policy import (
    ModelPolicy,
    TaskPolicy,
    get_secret,
    load_policy,
    save_policy,
    set_secret,
)
from ul_core.llm.prompts import build_batch_translation_prompt
from ul_core.llm.provider_base import LLMProvider
from ul_core.llm.provider_mock import MockProvider
from ul_core.llm.provider_openai import (
    OpenAIKeyMissingError,
    OpenAIProvider,
    OpenAIProviderError,
)

__all__ = [
    "LLMProvider",
    "MockProvider",
    "ModelPolicy",
    "OpenAIKeyMissingError",
    "OpenAIProvider",
    "OpenAIProviderError",
    "TaskPolicy",
    "build_batch_translation_prompt",
    "get_secret",
    "load_policy",
    "save_policy",
    "set_secret",
]
