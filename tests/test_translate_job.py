from __future__ import annotations

from pathlib import Path

import pytest

import ul_core.llm.policy as policy_module
from ul_core.glossary.glossary_store import create_term
from ul_core.jobs.translate_job import parse_translation_reply, retranslate_keys, translate_missing_values
from ul_core.keys.key_store import create_translation_key, list_translation_keys, set_translation_value
from ul_core.llm.policy import ModelPolicy, TaskPolicy, load_policy, save_policy, set_secret
from ul_core.llm.provider_base import LLMProvider
from ul_core.llm.provider_mock import MockProvider
from ul_core.namespaces.namespace_service import create_namespace
from ul_core.project.create_project import create_project, load_project_info


class _FakeKeyring:
    def __init__(self) -> None:
        self._store: dict[tuple[str, str], str] = {}

    def set_password(self, service: str, name: str, value: str) -> None:
        self._store[(service, name)] = value

    def get_password(self, service: str, name: str) -> str | None:
        return self._store.get((service, name))

    def delete_password(self, service: str, name: str) -> None:
        self._store.pop((service, name), None)


class _RecordingProvider(LLMProvider):
    def __init__(self) -> None:
        self.prompts: list[str] = []
        self._mock = MockProvider()

    def generate(self, *, task: str, prompt: str, temperature: float, max_tokens: int) -> str:
        self.prompts.append(prompt)
        return self._mock.generate(task=task, prompt=prompt, temperature=temperature, max_tokens=max_tokens)


class _BrokenProvider(LLMProvider):
    def generate(self, *, task: str, prompt: str, temperature: float, max_tokens: int) -> str:
        return "I cannot translate that."


@pytest.fixture
def fake_keyring(monkeypatch: pytest.MonkeyPatch) -> _FakeKeyring:
    fake = _FakeKeyring()
    monkeypatch.setattr(policy_module, "keyring", fake)
    return fake


def _setup(tmp_path: Path):
    projects_root = tmp_path / "projects"
    created = create_project("Translate Demo", languages=["de", "fr"], root=projects_root)
    project = load_project_info(created.slug, root=projects_root)
    namespace = create_namespace(db_path=project.db_path, project_id=project.project_id, name="common")
    keys = {}
    for key, value in (("greeting.hello", "Hello"), ("greeting.bye", "Bye"), ("cart.title", "Cart")):
        keys[key] = create_translation_key(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace.id,
            key=key,
            primary_value=value,
        )
    return project, namespace, keys


def _values(project, namespace) -> dict[str, dict[str, str]]:
    return {
        record.key: record.values
        for record in list_translation_keys(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace.id,
        )
    }


def test_parse_translation_reply_strips_code_fences() -> None:
    assert parse_translation_reply('```json\n{"a": "b"}\n```') == {"a": "b"}
    assert parse_translation_reply('{"a": "b"}') == {"a": "b"}
    with pytest.raises(ValueError, match="invalid JSON"):
        parse_translation_reply("nope")
    with pytest.raises(ValueError, match="non-object"):
        parse_translation_reply("[1, 2]")


def test_translate_fills_only_missing_values(tmp_path: Path, fake_keyring: _FakeKeyring) -> None:
    project, namespace, keys = _setup(tmp_path)
    set_translation_value(
        db_path=project.db_path,
        project_id=project.project_id,
        key_id=keys["greeting.hello"].id,
        language_code="de",
        value="Hallo",
    )
    provider = _RecordingProvider()

    summary = translate_missing_values(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        provider_factory=lambda name, model: provider,
    )

    assert summary.provider_name == "mock"
    assert summary.translated == {"de": 2, "fr": 3}
    assert summary.total_translated == 5
    assert summary.failed == {}

    values = _values(project, namespace)
    assert values["greeting.hello"]["de"] == "Hallo"
    assert values["greeting.bye"]["de"] == "[de] Bye"
    assert values["cart.title"]["fr"] == "[fr] Cart"
    assert len(provider.prompts) == 2


def test_retranslate_keys_overwrites_existing_values(tmp_path: Path, fake_keyring: _FakeKeyring) -> None:
    project, namespace, keys = _setup(tmp_path)
    translate_missing_values(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
    )
    set_translation_value(
        db_path=project.db_path,
        project_id=project.project_id,
        key_id=keys["greeting.hello"].id,
        language_code="en",
        value="Hi there",
    )
    provider = _RecordingProvider()

    summary = retranslate_keys(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        key_ids=[keys["greeting.hello"].id],
        provider_factory=lambda name, model: provider,
    )

    assert summary.translated == {"de": 1, "fr": 1}
    values = _values(project, namespace)
    assert values["greeting.hello"]["de"] == "[de] Hi there"
    assert values["greeting.hello"]["fr"] == "[fr] Hi there"
    assert values["greeting.bye"]["de"] == "[de] Bye"
    assert all("greeting.bye" not in prompt for prompt in provider.prompts)

    # Filling missing values leaves the fresh translations alone.
    assert translate_missing_values(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
    ).translated == {"de": 0, "fr": 0}

    with pytest.raises(ValueError, match="No translation keys"):
        retranslate_keys(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace.id,
            key_ids=[],
        )


def test_translate_includes_glossary_rules_for_target(tmp_path: Path, fake_keyring: _FakeKeyring) -> None:
    project, namespace, _ = _setup(tmp_path)
    create_term(
        db_path=project.db_path,
        project_id=project.project_id,
        term="Cart",
        translations={"de": "Warenkorb"},
    )
    provider = _RecordingProvider()

    translate_missing_values(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        target_language_codes=["de"],
        provider_factory=lambda name, model: provider,
    )

    assert len(provider.prompts) == 1
    assert 'MANDATORY TRANSLATION: "Cart" -> "Warenkorb"' in provider.prompts[0]


def test_translate_rejects_primary_and_unknown_targets(tmp_path: Path, fake_keyring: _FakeKeyring) -> None:
    project, namespace, _ = _setup(tmp_path)

    with pytest.raises(ValueError, match="primary language"):
        translate_missing_values(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace.id,
            target_language_codes=["en"],
        )
    with pytest.raises(ValueError, match="Language not found"):
        translate_missing_values(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace.id,
            target_language_codes=["ja"],
        )


def test_invalid_provider_reply_is_reported_per_language(tmp_path: Path, fake_keyring: _FakeKeyring) -> None:
    project, namespace, _ = _setup(tmp_path)

    summary = translate_missing_values(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        provider_factory=lambda name, model: _BrokenProvider(),
    )

    assert summary.translated == {}
    assert set(summary.failed) == {"de", "fr"}
    assert "invalid JSON" in summary.failed["de"]


def test_openai_without_key_falls_back_to_mock(tmp_path: Path, fake_keyring: _FakeKeyring) -> None:
    project, namespace, _ = _setup(tmp_path)
    save_policy(
        project.project_path,
        ModelPolicy(translator=TaskPolicy(provider="openai", model="gpt-4o-mini")),
    )

    summary = translate_missing_values(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        target_language_codes=["de"],
    )

    assert summary.provider_name == "mock"
    assert summary.fallback_from == "openai"
    assert summary.translated == {"de": 3}

    with pytest.raises(RuntimeError, match="openai_api_key"):
        translate_missing_values(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace.id,
            target_language_codes=["fr"],
            strict_provider_selection=True,
        )


def test_stored_secret_does_not_override_configured_provider(tmp_path: Path, fake_keyring: _FakeKeyring) -> None:
    project, _, _ = _setup(tmp_path)
    set_secret("openai_api_key", "  sk-test-123  ")

    assert fake_keyring.get_password("unlingo", "openai_api_key") == "sk-test-123"
    # The project config pins the mock provider explicitly.
    assert load_policy(project.project_path).translator.provider == "mock"
