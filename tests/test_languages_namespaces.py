from __future__ import annotations

from pathlib import Path

import pytest

from ul_core.glossary.glossary_store import create_term, list_terms
from ul_core.keys.key_store import create_translation_key, list_translation_keys, set_translation_value
from ul_core.languages.language_service import (
    create_language,
    delete_language,
    get_language_by_code,
    get_primary_language,
    list_languages,
    update_language,
)
from ul_core.namespaces.namespace_service import (
    create_namespace,
    delete_namespace,
    get_namespace_by_name,
    list_namespaces,
    update_namespace,
    validate_namespace_name,
)
from ul_core.namespaces.version_service import create_namespace_version
from ul_core.project.create_project import create_project, load_project_info


def _setup_project(tmp_path: Path, *, languages: list[str] | None = None):
    projects_root = tmp_path / "projects"
    created = create_project("Lang Demo", languages=languages or ["de"], root=projects_root)
    return load_project_info(created.slug, root=projects_root)


def test_language_codes_are_validated(tmp_path: Path) -> None:
    project = _setup_project(tmp_path)

    with pytest.raises(ValueError, match="Invalid language code"):
        create_language(db_path=project.db_path, project_id=project.project_id, language_code="not a code")

    with pytest.raises(ValueError, match="already exists"):
        create_language(db_path=project.db_path, project_id=project.project_id, language_code="de")

    created = create_language(db_path=project.db_path, project_id=project.project_id, language_code="pt-BR")
    assert created.language_code == "pt-BR"
    assert not created.is_primary


def test_primary_language_switch_and_rules(tmp_path: Path) -> None:
    project = _setup_project(tmp_path)
    german = get_language_by_code(db_path=project.db_path, project_id=project.project_id, language_code="de")
    assert german is not None

    updated = update_language(
        db_path=project.db_path,
        project_id=project.project_id,
        language_id=german.id,
        is_primary=True,
        rules={"tone": "Use the informal du."},
    )

    assert updated.is_primary
    assert updated.rules == {"tone": "Use the informal du."}
    primary = get_primary_language(db_path=project.db_path, project_id=project.project_id)
    assert primary is not None and primary.language_code == "de"


def test_primary_language_cannot_be_deleted_while_others_exist(tmp_path: Path) -> None:
    project = _setup_project(tmp_path)
    primary = get_primary_language(db_path=project.db_path, project_id=project.project_id)
    assert primary is not None

    with pytest.raises(ValueError, match="Cannot delete primary language"):
        delete_language(db_path=project.db_path, project_id=project.project_id, language_id=primary.id)


def test_deleting_language_removes_values_and_glossary_translations(tmp_path: Path) -> None:
    project = _setup_project(tmp_path)
    namespace = create_namespace(db_path=project.db_path, project_id=project.project_id, name="common")
    record = create_translation_key(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        key="greeting.hello",
        primary_value="Hello",
    )
    set_translation_value(
        db_path=project.db_path,
        project_id=project.project_id,
        key_id=record.id,
        language_code="de",
        value="Hallo",
    )
    create_term(
        db_path=project.db_path,
        project_id=project.project_id,
        term="Dashboard",
        translations={"de": "Übersicht"},
    )

    german = get_language_by_code(db_path=project.db_path, project_id=project.project_id, language_code="de")
    assert german is not None
    delete_language(db_path=project.db_path, project_id=project.project_id, language_id=german.id)

    codes = [item.language_code for item in list_languages(db_path=project.db_path, project_id=project.project_id)]
    assert codes == ["en"]
    keys = list_translation_keys(db_path=project.db_path, project_id=project.project_id, namespace_id=namespace.id)
    assert keys[0].values == {"en": "Hello"}
    terms = list_terms(db_path=project.db_path, project_id=project.project_id)
    assert terms[0].translations == {}


@pytest.mark.parametrize(
    ("name", "message"),
    [
        ("", "cannot be empty"),
        ("has space", "letters, numbers, hyphens, and underscores"),
        ("x" * 101, "cannot exceed 100 characters"),
    ],
)
def test_namespace_name_validation(name: str, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        validate_namespace_name(name)


def test_namespace_names_are_unique_per_project(tmp_path: Path) -> None:
    project = _setup_project(tmp_path)
    common = create_namespace(db_path=project.db_path, project_id=project.project_id, name="common")
    create_namespace(db_path=project.db_path, project_id=project.project_id, name="checkout")

    with pytest.raises(ValueError, match="already exists"):
        create_namespace(db_path=project.db_path, project_id=project.project_id, name="common")
    with pytest.raises(ValueError, match="already exists"):
        update_namespace(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=common.id,
            name="checkout",
        )

    renamed = update_namespace(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=common.id,
        name="shared",
    )
    assert renamed.name == "shared"
    names = [item.name for item in list_namespaces(db_path=project.db_path, project_id=project.project_id)]
    assert sorted(names) == ["checkout", "shared"]


def test_delete_namespace_removes_keys_versions_and_files(tmp_path: Path) -> None:
    project = _setup_project(tmp_path)
    namespace = create_namespace(db_path=project.db_path, project_id=project.project_id, name="common")
    create_translation_key(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        key="title",
        primary_value="Title",
    )
    create_namespace_version(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="development",
    )
    files_dir = project.project_path / "files"
    assert len(list(files_dir.glob("*.json"))) == 2

    delete_namespace(db_path=project.db_path, project_id=project.project_id, namespace_id=namespace.id)

    assert get_namespace_by_name(db_path=project.db_path, project_id=project.project_id, name="common") is None
    assert list(files_dir.glob("*.json")) == []
