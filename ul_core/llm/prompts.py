from __future__ import annotations

import json
from collections.abc import Iterable, Mapping

from ul_core.glossary.glossary_store import GlossaryRule

CONTENT_MARKER = "Content to translate:"
TARGET_MARKER = "Target language:"


def _glossary_line(rule: GlossaryRule) -> str | None:
    sensitivity = "[Case Sensitive] " if rule.is_case_sensitive else ""
    if rule.is_forbidden:
        return f'- {sensitivity}FORBIDDEN WORD: "{rule.term}". Do not use this word in the output.'
    if rule.is_non_translatable:
        return f'- {sensitivity}DO NOT TRANSLATE: "{rule.term}". Keep exactly as is.'
    if rule.forced_translation:
        return f'- {sensitivity}MANDATORY TRANSLATION: "{rule.term}" -> "{rule.forced_translation}"'
    if rule.description:
        return f'- CONTEXT for "{rule.term}": {rule.description}'
    return None


def build_glossary_section(glossary_rules: Iterable[GlossaryRule]) -> str:
    lines = [line for line in (_glossary_line(rule) for rule in glossary_rules) if line]
    if not lines:
        return ""
    return (
        "GLOSSARY ADHERENCE IS MANDATORY. Follow these specific term rules:\n"
        + "\n".join(lines)
        + "\n"
    )


def build_language_rules_section(language_rules: Mapping[str, str] | None) -> str:
    values = [value for value in (language_rules or {}).values() if str(value).strip()]
    if not values:
        return ""
    return (
        "ADDITIONAL STYLE & GRAMMAR INSTRUCTIONS:\n"
        "The following rules must be applied to the translation style:\n"
        + "\n".join(f"- {value}" for value in values)
        + "\n"
    )


def build_batch_translation_prompt(
    *,
    source_values: Mapping[str, object],
    target_language: str,
    glossary_rules: Iterable[GlossaryRule] = (),
    language_rules: Mapping[str, str] | None = None,
) -> str:
    return (
        f"You are a professional translator. Translate the following content to {target_language}.\n"
        "IMPORTANT TECHNICAL RULES:\n"
        "1. Return a JSON object with exactly the same keys as the input.\n"
        "2. Only translate string values that contain actual text content.\n"
        "3. Do not translate object keys, URLs, code snippets or variables (e.g., {{name}}).\n"
        "4. Return valid JSON only, no explanation.\n"
        f"{build_language_rules_section(language_rules)}"
        f"{build_glossary_section(glossary_rules)}"
        "\n"
        f"{CONTENT_MARKER}\n"
        f"{json.dumps(dict(source_values), ensure_ascii=False, indent=2)}\n"
        "\n"
        f"{TARGET_MARKER} {target_language}"
    )
