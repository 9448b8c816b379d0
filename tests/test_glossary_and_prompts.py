from __future__ import annotations

import json
from pathlib import Path

import pytest

from ul_core.glossary.glossary_store import (
    GlossaryRule,
    create_term,
    delete_term,
    glossary_context,
    list_terms,
    update_term,
)
from ul_core.llm.prompts import (
    CONTENT_MARKER,
    TARGET_MARKER,
    build_batch_translation_prompt,
    build_glossary_section,
    build_language_rules_section,
)
from ul_core.llm.provider_mock import MockProvider
from ul_core.project.create_project import create_project, load_project_info


def _setup_project(tmp_path: Path):
    projects_root = tmp_path / "projects"
    created = create_project("Glossary Demo", languages=["de", "fr"], root=projects_root)
    return load_project_info(created.slug, root=projects_root)


def test_terms_are_unique_and_searchable(tmp_path: Path) -> None:
    project = _setup_project(tmp_path)
    create_term(db_path=project.db_path, project_id=project.project_id, term="Dashboard")
    create_term(db_path=project.db_path, project_id=project.project_id, term="Checkout")

    with pytest.raises(ValueError, match="already exists"):
        create_term(db_path=project.db_path, project_id=project.project_id, term="Dashboard")

    found = list_terms(db_path=project.db_path, project_id=project.project_id, search="dash")
    assert [term.term for term in found] == ["Dashboard"]


def test_update_and_delete_term(tmp_path: Path) -> None:
    project = _setup_project(tmp_path)
    term = create_term(
        db_path=project.db_path,
        project_id=project.project_id,
        term="Cart",
        translations={"de": "Warenkorb", "fr": " "},
    )
    assert term.translations == {"de": "Warenkorb"}

    updated = update_term(
        db_path=project.db_path,
        project_id=project.project_id,
        term_id=term.id,
        description="The shopping cart",
        is_case_sensitive=True,
    )
    assert updated.description == "The shopping cart"
    assert updated.is_case_sensitive
    assert updated.translations == {"de": "Warenkorb"}

    delete_term(db_path=project.db_path, project_id=project.project_id, term_id=term.id)
    assert list_terms(db_path=project.db_path, project_id=project.project_id) == []


def test_glossary_context_skips_terms_without_guidance(tmp_path: Path) -> None:
    project = _setup_project(tmp_path)
    create_term(db_path=project.db_path, project_id=project.project_id, term="Plain")
    create_term(
        db_path=project.db_path,
        project_id=project.project_id,
        term="Unlingo",
        is_non_translatable=True,
    )
    create_term(
        db_path=project.db_path,
        project_id=project.project_id,
        term="Cart",
        translations={"de": "Warenkorb"},
    )

    german = glossary_context(db_path=project.db_path, project_id=project.project_id, language_code="de")
    french = glossary_context(db_path=project.db_path, project_id=project.project_id, language_code="fr")

    assert [(rule.term, rule.forced_translation) for rule in german] == [
        ("Cart", "Warenkorb"),
        ("Unlingo", None),
    ]
    assert [rule.term for rule in french] == ["Unlingo"]


def test_glossary_section_lines() -> None:
    rules = [
        GlossaryRule(
            term="damn",
            description=None,
            is_non_translatable=False,
            is_forbidden=True,
            is_case_sensitive=False,
            forced_translation=None,
        ),
        GlossaryRule(
            term="Unlingo",
            description=None,
            is_non_translatable=True,
            is_forbidden=False,
            is_case_sensitive=True,
            forced_translation=None,
        ),
        GlossaryRule(
            term="Cart",
            description=None,
            is_non_translatable=False,
            is_forbidden=False,
            is_case_sensitive=False,
            forced_translation="Warenkorb",
        ),
        GlossaryRule(
            term="Plan",
            description="Subscription tier",
            is_non_translatable=False,
            is_forbidden=False,
            is_case_sensitive=False,
            forced_translation=None,
        ),
    ]

    section = build_glossary_section(rules)

    assert section.startswith("GLOSSARY ADHERENCE IS MANDATORY")
    assert '- FORBIDDEN WORD: "damn". Do not use this word in the output.' in section
    assert '- [Case Sensitive] DO NOT TRANSLATE: "Unlingo". Keep exactly as is.' in section
    assert '- MANDATORY TRANSLATION: "Cart" -> "Warenkorb"' in section
    assert '- CONTEXT for "Plan": Subscription tier' in section
    assert build_glossary_section([]) == ""


def test_batch_prompt_embeds_content_and_rules() -> None:
    prompt = build_batch_translation_prompt(
        source_values={"greeting.hello": "Hello"},
        target_language="de",
        language_rules={"tone": "Use the informal du.", "empty": " "},
    )

    assert "ADDITIONAL STYLE & GRAMMAR INSTRUCTIONS" in prompt
    assert "- Use the informal du." in prompt
    assert build_language_rules_section({"empty": ""}) == ""
    body = prompt.split(CONTENT_MARKER, 1)[1].split(TARGET_MARKER, 1)[0]
    assert json.loads(body) == {"greeting.hello": "Hello"}
    assert prompt.rstrip().endswith(f"{TARGET_MARKER} de")


def test_mock_provider_tags_batch_values_with_target_language() -> None:
    prompt = build_batch_translation_prompt(
        source_values={"greeting.hello": "Hello", "count": 3},
        target_language="fr",
    )

    reply = MockProvider().generate(task="translator", prompt=prompt, temperature=0.0, max_tokens=100)

    assert reply.startswith("```json")
    parsed = json.loads(reply.strip("`").removeprefix("json"))
    assert parsed == {"greeting.hello": "[fr] Hello", "count": 3}


def test_mock_provider_echoes_free_prompts() -> None:
    reply = MockProvider().generate(task="translator", prompt="Say hi", temperature=0.0, max_tokens=10)

    assert reply == "[translator] Say hi"
