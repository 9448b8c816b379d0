from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection

from ul_core.constants import STATUS_ACTIVE, STATUS_DELETING
from ul_core.db.schema import connection_scope
from ul_core.glossary.glossary_store import glossary_context
from ul_core.keys.key_store import set_translation_value
from ul_core.languages.language_service import Language, get_primary_language, list_languages
from ul_core.llm.policy import (
    DEFAULT_MODEL_BY_PROVIDER,
    OPENAI_SECRET_NAME,
    TASK_TRANSLATOR,
    TaskPolicy,
    get_secret,
    load_policy,
)
from ul_core.llm.prompts import build_batch_translation_prompt
from ul_core.llm.provider_base import LLMProvider
from ul_core.llm.provider_mock import MockProvider
from ul_core.llm.provider_openai import OpenAIProvider
from ul_core.namespaces.namespace_service import get_namespace

logger = logging.getLogger(__name__)

TRANSLATION_TEMPERATURE = 0.2
TRANSLATION_MAX_TOKENS = 4000
_CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\n?|\n?```")


@dataclass(slots=True)
class TranslationRunSummary:
    namespace: str
    provider_name: str
    model: str
    fallback_from: str | None = None
    translated: dict[str, int] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def total_translated(self) -> int:
        return sum(self.translated.values())


@dataclass(slots=True)
class _ResolvedProvider:
    provider_name: str
    model: str
    provider: LLMProvider
    fallback_from: str | None = None


def _default_provider_factory(provider_name: str, model: str) -> LLMProvider:
    if provider_name == "mock":
        return MockProvider(model=model)
    if provider_name == "openai":
        return OpenAIProvider(model=model)
    raise ValueError(f"Unsupported LLM provider '{provider_name}'")


def _resolve_provider(
    *,
    task_policy: TaskPolicy,
    provider_factory: Callable[[str, str], LLMProvider],
    strict_provider_selection: bool,
) -> _ResolvedProvider:
    provider_name = task_policy.provider
    model = task_policy.model
    fallback_from: str | None = None

    if provider_name == "openai" and not get_secret(OPENAI_SECRET_NAME):
        if strict_provider_selection:
            raise RuntimeError(
                "OpenAI provider was selected, but openai_api_key is not configured in keyring."
            )
        logger.warning("No OpenAI key configured; falling back to the mock provider")
        provider_name = "mock"
        model = DEFAULT_MODEL_BY_PROVIDER[provider_name]
        fallback_from = "openai"

    return _ResolvedProvider(
        provider_name=provider_name,
        model=model,
        provider=provider_factory(provider_name, model),
        fallback_from=fallback_from,
    )


def parse_translation_reply(reply: str) -> dict[str, object]:
    """Parse a provider reply into a JSON object, tolerating markdown code fences."""

    cleaned = _CODE_FENCE_PATTERN.sub("", reply or "").strip()
    try:
        parsed = json.loads(cleaned)
    except ValueError as exc:
        raise ValueError("Translation service returned invalid JSON") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Translation service returned a non-object JSON value")
    return parsed


def _source_values(
    connection: Connection,
    *,
    project_id: str,
    namespace_id: str,
    primary_language_id: str,
    target_language_id: str,
    key_ids: list[str] | None,
    overwrite: bool,
) -> dict[str, tuple[str, str]]:
    """Map flat key -> (key id, primary value) for keys to translate.

    Without ``overwrite`` only keys whose target value is missing or empty
    are returned.
    """

    statement = text(
        f"""
        SELECT k.id, k.key, pv.value
        FROM translation_keys k
        JOIN translation_values pv
          ON pv.translation_key_id = k.id AND pv.language_id = :primary_language_id
        LEFT JOIN translation_values tv
          ON tv.translation_key_id = k.id AND tv.language_id = :target_language_id
        WHERE k.project_id = :project_id
          AND k.namespace_id = :namespace_id
          AND k.status = :active
          {"" if overwrite else "AND (tv.id IS NULL OR tv.value = '')"}
          AND pv.value != ''
          {"AND k.id IN :key_ids" if key_ids is not None else ""}
        ORDER BY k.key
        """
    )
    params: dict[str, object] = {
        "project_id": project_id,
        "namespace_id": namespace_id,
        "primary_language_id": primary_language_id,
        "target_language_id": target_language_id,
        "active": STATUS_ACTIVE,
    }
    if key_ids is not None:
        statement = statement.bindparams(bindparam("key_ids", expanding=True))
        params["key_ids"] = list(key_ids)

    rows = connection.execute(statement, params).all()
    return {str(key): (str(key_id), str(value)) for key_id, key, value in rows}


def _translate_language(
    *,
    db_path: Path,
    project_id: str,
    namespace_id: str,
    primary: Language,
    target: Language,
    key_ids: list[str] | None,
    overwrite: bool,
    resolved: _ResolvedProvider,
) -> int:
    with connection_scope(db_path=db_path) as connection:
        pending = _source_values(
            connection,
            project_id=project_id,
            namespace_id=namespace_id,
            primary_language_id=primary.id,
            target_language_id=target.id,
            key_ids=key_ids,
            overwrite=overwrite,
        )
        if not pending:
            return 0
        rules = glossary_context(
            connection=connection,
            project_id=project_id,
            language_code=target.language_code,
        )

    prompt = build_batch_translation_prompt(
        source_values={key: value for key, (_, value) in pending.items()},
        target_language=target.language_code,
        glossary_rules=rules,
        language_rules=target.rules,
    )
    reply = resolved.provider.generate(
        task=TASK_TRANSLATOR,
        prompt=prompt,
        temperature=TRANSLATION_TEMPERATURE,
        max_tokens=TRANSLATION_MAX_TOKENS,
    )
    translated = parse_translation_reply(reply)

    stored = 0
    with connection_scope(db_path=db_path) as connection:
        for key, (key_id, _) in pending.items():
            value = translated.get(key)
            if value is None:
                continue
            set_translation_value(
                connection=connection,
                project_id=project_id,
                key_id=key_id,
                language_code=target.language_code,
                value=value if isinstance(value, str) else json.dumps(value, ensure_ascii=False),
            )
            stored += 1
    return stored


def translate_missing_values(
    *,
    db_path: Path,
    project_id: str,
    namespace_id: str,
    target_language_codes: list[str] | None = None,
    key_ids: list[str] | None = None,
    overwrite: bool = False,
    provider_factory: Callable[[str, str], LLMProvider] | None = None,
    strict_provider_selection: bool = False,
) -> TranslationRunSummary:
    """Machine-translate the values of a namespace, one batch per language.

    By default only missing values are filled; ``overwrite`` replaces the
    existing values of the selected keys too.
    """

    with connection_scope(db_path=db_path) as connection:
        namespace = get_namespace(connection=connection, project_id=project_id, namespace_id=namespace_id)
        primary = get_primary_language(connection=connection, project_id=project_id)
        if primary is None:
            raise ValueError("Project has no primary language")
        languages = list_languages(connection=connection, project_id=project_id)

    by_code = {language.language_code: language for language in languages}
    if target_language_codes is None:
        targets = [language for language in languages if language.id != primary.id]
    else:
        targets = []
        for code in target_language_codes:
            language = by_code.get(code)
            if language is None or language.status == STATUS_DELETING:
                raise ValueError(f"Language not found: {code}")
            if language.id == primary.id:
                raise ValueError("Cannot translate into the primary language")
            targets.append(language)

    policy = load_policy(Path(db_path).parent)
    resolved = _resolve_provider(
        task_policy=policy.for_task(TASK_TRANSLATOR),
        provider_factory=provider_factory or _default_provider_factory,
        strict_provider_selection=strict_provider_selection,
    )

    summary = TranslationRunSummary(
        namespace=namespace.name,
        provider_name=resolved.provider_name,
        model=resolved.model,
        fallback_from=resolved.fallback_from,
    )

    for target in targets:
        try:
            count = _translate_language(
                db_path=db_path,
                project_id=project_id,
                namespace_id=namespace_id,
                primary=primary,
                target=target,
                key_ids=key_ids,
                overwrite=overwrite,
                resolved=resolved,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Translation into %s failed: %s", target.language_code, exc)
            summary.failed[target.language_code] = str(exc)
            continue
        summary.translated[target.language_code] = count
        logger.info("Translated %d values into %s", count, target.language_code)

    return summary


def retranslate_keys(
    *,
    db_path: Path,
    project_id: str,
    namespace_id: str,
    key_ids: list[str],
    provider_factory: Callable[[str, str], LLMProvider] | None = None,
    strict_provider_selection: bool = False,
) -> TranslationRunSummary:
    """Translate ``key_ids`` again into every target language after a primary value changed."""

    if not key_ids:
        raise ValueError("No translation keys to retranslate")
    return translate_missing_values(
        db_path=db_path,
        project_id=project_id,
        namespace_id=namespace_id,
        key_ids=key_ids,
        overwrite=True,
        provider_factory=provider_factory,
        strict_provider_selection=strict_provider_selection,
    )
