from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field

from ul_core.constants import DEFAULT_REQUEST_LIMIT, DEFAULT_TRANSLATION_KEY_LIMIT


class UsageLimits(BaseModel):
    model_config = ConfigDict(extra="forbid")

    requests: int = Field(default=DEFAULT_REQUEST_LIMIT, ge=0)
    translation_keys: int = Field(default=DEFAULT_TRANSLATION_KEY_LIMIT, ge=0)


class ProjectConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    project_name: str
    slug: str
    primary_language: str | None = None
    languages: list[str] = Field(default_factory=list)
    limits: UsageLimits = Field(default_factory=UsageLimits)
    default_release: str | None = None
    model_policy: dict[str, dict[str, str]] = Field(
        default_factory=lambda: {
            "translator": {"provider": "mock", "model": "mock-v1"},
        }
    )


def write_config(config_path: Path, config: ProjectConfig) -> None:
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config.model_dump(mode="python"), handle, sort_keys=False)


def read_config(config_path: Path) -> ProjectConfig:
    with config_path.open("r", encoding="utf-8") as handle:
        content = yaml.safe_load(handle) or {}
    return ProjectConfig.model_validate(content)
