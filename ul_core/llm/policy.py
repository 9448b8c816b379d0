from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import keyring
from keyring.errors import KeyringError

from ul_core.project.config import read_config, write_config
from ul_core.project.paths import project_config_path

KEYRING_SERVICE_NAME = "unlingo"
OPENAI_SECRET_NAME = "openai_api_key"
SECRET_LABELS = {
    OPENAI_SECRET_NAME: "OpenAI API Key",
}

TASK_TRANSLATOR = "translator"
PROVIDERS = ("mock", "openai")

DEFAULT_MODEL_BY_PROVIDER = {
    "mock": "mock-v1",
    "openai": "gpt-4o-mini",
}


@dataclass(slots=True, frozen=True)
class TaskPolicy:
    provider: str
    model: str


@dataclass(slots=True, frozen=True)
class ModelPolicy:
    translator: TaskPolicy

    def for_task(self, task: str) -> TaskPolicy:
        if task == TASK_TRANSLATOR:
            return self.translator
        raise ValueError(f"Unsupported model policy task: {task}")

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {
            TASK_TRANSLATOR: {
                "provider": self.translator.provider,
                "model": self.translator.model,
            },
        }


def set_secret(name: str, value: str) -> None:
    normalized = value.strip()
    if not normalized:
        raise ValueError("Secret value must not be empty.")
    try:
        keyring.set_password(KEYRING_SERVICE_NAME, name, normalized)
    except KeyringError as exc:
        raise RuntimeError(f"Secret storage failed: {exc}") from exc


def get_secret(name: str) -> str | None:
    try:
        value = keyring.get_password(KEYRING_SERVICE_NAME, name)
    except KeyringError:
        return None
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _coerce_provider(value: Any, *, fallback: str) -> str:
    normalized = str(value or "").strip().lower()
    return normalized if normalized in PROVIDERS else fallback


def _coerce_model(value: Any, *, provider: str) -> str:
    model = str(value or "").strip()
    if model:
        return model
    return DEFAULT_MODEL_BY_PROVIDER[provider]


def _default_policy() -> ModelPolicy:
    provider = "openai" if get_secret(OPENAI_SECRET_NAME) else "mock"
    return ModelPolicy(
        translator=TaskPolicy(provider=provider, model=DEFAULT_MODEL_BY_PROVIDER[provider]),
    )


def _normalize_policy(raw_policy: Any) -> ModelPolicy:
    raw = raw_policy.get(TASK_TRANSLATOR) if isinstance(raw_policy, dict) else None
    if not isinstance(raw, dict):
        return _default_policy()

    provider = _coerce_provider(raw.get("provider"), fallback="")
    if not provider:
        provider = _default_policy().translator.provider
    model = _coerce_model(raw.get("model"), provider=provider)
    return ModelPolicy(translator=TaskPolicy(provider=provider, model=model))


def load_policy(project_path: Path) -> ModelPolicy:
    config = read_config(project_config_path(Path(project_path)))
    return _normalize_policy(config.model_policy)


def save_policy(project_path: Path, policy: ModelPolicy) -> None:
    if policy.translator.provider not in PROVIDERS:
        raise ValueError(f"Unsupported provider: {policy.translator.provider}")
    config_path = project_config_path(Path(project_path))
    config = read_config(config_path)
    config.model_policy = policy.to_dict()
    write_config(config_path, config)
