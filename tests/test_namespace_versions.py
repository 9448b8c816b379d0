from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import text

import ul_core.namespaces.version_service as version_service
from ul_core.db.schema import connection_scope
from ul_core.keys.key_store import create_translation_key, set_translation_value
from ul_core.namespaces.changes import (
    ChangeItem,
    LanguageChanges,
    LanguageItem,
    apply_language_changes,
    content_from_document,
    document_from_content,
)
from ul_core.namespaces.namespace_service import create_namespace
from ul_core.namespaces.version_service import (
    create_namespace_version,
    delete_namespace_version,
    get_namespace_version,
    get_version_content,
    list_namespace_versions,
    list_version_languages,
    merge_namespace_versions,
    rename_namespace_version,
    update_version_language,
)
from ul_core.project.create_project import create_project, load_project_info


def _setup(tmp_path: Path):
    projects_root = tmp_path / "projects"
    created = create_project("Version Demo", languages=["de", "fr"], root=projects_root)
    project = load_project_info(created.slug, root=projects_root)
    namespace = create_namespace(db_path=project.db_path, project_id=project.project_id, name="common")
    hello = create_translation_key(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        key="greeting.hello",
        primary_value="Hello",
    )
    set_translation_value(
        db_path=project.db_path,
        project_id=project.project_id,
        key_id=hello.id,
        language_code="de",
        value="Hallo",
    )
    return project, namespace


def _set_status(project, version_id: str, status: str | None) -> None:
    with connection_scope(db_path=project.db_path) as connection:
        connection.execute(
            text("UPDATE namespace_versions SET status = :status WHERE id = :id"),
            {"status": status, "id": version_id},
        )


def test_apply_language_changes_order() -> None:
    content = content_from_document(
        {"a": "A", "b": "B", "c": {"d": "D"}},
        {"a": "A-primary"},
    )
    assert content["a"].primary_value == "A-primary"

    changes = LanguageChanges(
        delete=[ChangeItem(key="b", item=content["b"]), ChangeItem(key="x", item=LanguageItem(key="x", value=""))],
        add=[ChangeItem(key="e", item=LanguageItem(key="e", value="E"))],
        modify=[ChangeItem(key="c.d", item=content["c.d"], new_value="D2")],
    )
    updated = apply_language_changes(content, changes)

    assert document_from_content(updated) == {"a": "A", "c": {"d": "D2"}, "e": "E"}
    # The input mapping is left untouched.
    assert "b" in content
    assert LanguageChanges().is_empty()
    assert not changes.is_empty()


def test_create_version_snapshots_languages(tmp_path: Path) -> None:
    project, namespace = _setup(tmp_path)

    version = create_namespace_version(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="main",
    )

    assert version.status is None
    assert version.language_count == 3
    languages = list_version_languages(db_path=project.db_path, version_id=version.id)
    assert [item.language_code for item in languages] == ["de", "en", "fr"]
    assert get_version_content(
        db_path=project.db_path,
        namespace_id=namespace.id,
        version="main",
        language_code="de",
    ) == {"greeting": {"hello": "Hallo"}}
    assert get_version_content(
        db_path=project.db_path,
        namespace_id=namespace.id,
        version="main",
        language_code="fr",
    ) == {}

    with pytest.raises(ValueError, match="already exists"):
        create_namespace_version(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace.id,
            version=" main ",
        )


def test_rename_and_delete_version(tmp_path: Path) -> None:
    project, namespace = _setup(tmp_path)
    create_namespace_version(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="draft",
    )
    create_namespace_version(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="main",
        snapshot=False,
    )

    with pytest.raises(ValueError, match="already exists"):
        rename_namespace_version(
            db_path=project.db_path,
            namespace_id=namespace.id,
            version="draft",
            new_version="main",
        )
    renamed = rename_namespace_version(
        db_path=project.db_path,
        namespace_id=namespace.id,
        version="draft",
        new_version="feature/login",
    )
    assert renamed.version == "feature/login"

    files_before = set((project.project_path / "files").glob("*.json"))
    delete_namespace_version(db_path=project.db_path, namespace_id=namespace.id, version="feature/login")

    assert [item.version for item in list_namespace_versions(db_path=project.db_path, namespace_id=namespace.id)] == [
        "main"
    ]
    assert len(files_before) - len(set((project.project_path / "files").glob("*.json"))) == 3


def test_update_version_language_starts_from_primary(tmp_path: Path) -> None:
    project, namespace = _setup(tmp_path)
    create_namespace_version(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="main",
    )
    version = get_namespace_version(db_path=project.db_path, namespace_id=namespace.id, version="main")
    assert version is not None
    with connection_scope(db_path=project.db_path) as connection:
        connection.execute(
            text("DELETE FROM version_languages WHERE version_id = :id AND language_code = 'fr'"),
            {"id": version.id},
        )

    entry = update_version_language(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="main",
        language_code="fr",
        changes=LanguageChanges(
            modify=[
                ChangeItem(
                    key="greeting.hello",
                    item=LanguageItem(key="greeting.hello", value="Hello"),
                    new_value="Bonjour",
                )
            ],
            add=[ChangeItem(key="greeting.bye", item=LanguageItem(key="greeting.bye", value="Au revoir"))],
        ),
    )

    assert entry.language_code == "fr"
    assert get_version_content(
        db_path=project.db_path,
        namespace_id=namespace.id,
        version="main",
        language_code="fr",
    ) == {"greeting": {"hello": "Bonjour", "bye": "Au revoir"}}
    refreshed = get_namespace_version(db_path=project.db_path, namespace_id=namespace.id, version="main")
    assert refreshed is not None
    assert refreshed.language_count == 3


def test_update_version_language_replaces_existing_file(tmp_path: Path) -> None:
    project, namespace = _setup(tmp_path)
    version = create_namespace_version(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="main",
    )
    old_file = next(
        item.file_id
        for item in list_version_languages(db_path=project.db_path, version_id=version.id)
        if item.language_code == "de"
    )

    entry = update_version_language(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="main",
        language_code="de",
        changes=LanguageChanges(
            delete=[ChangeItem(key="greeting.hello", item=LanguageItem(key="greeting.hello", value="Hallo"))]
        ),
    )

    assert entry.file_id != old_file
    assert not (project.project_path / "files" / f"{old_file}.json").exists()
    assert get_version_content(
        db_path=project.db_path,
        namespace_id=namespace.id,
        version="main",
        language_code="de",
    ) == {}


def test_merge_copies_source_languages_into_target(tmp_path: Path) -> None:
    project, namespace = _setup(tmp_path)
    create_namespace_version(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="main",
    )
    create_namespace_version(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="feature",
        snapshot=False,
    )
    for code, value in (("en", "Hi"), ("es", "Hola")):
        update_version_language(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace.id,
            version="feature",
            language_code=code,
            changes=LanguageChanges(
                add=[ChangeItem(key="greeting.hello", item=LanguageItem(key="greeting.hello", value=value))]
            ),
        )

    result = merge_namespace_versions(
        db_path=project.db_path,
        namespace_id=namespace.id,
        source_version="main",
        target_version="feature",
    )

    assert result.updated == ["en"]
    assert sorted(result.created) == ["de", "fr"]
    assert result.deleted == ["es"]
    assert result.skipped == []
    assert get_version_content(
        db_path=project.db_path,
        namespace_id=namespace.id,
        version="feature",
        language_code="en",
    ) == {"greeting": {"hello": "Hello"}}

    feature = get_namespace_version(db_path=project.db_path, namespace_id=namespace.id, version="feature")
    assert feature is not None
    assert feature.status is None
    assert feature.language_count == 3


def test_merge_guards(tmp_path: Path) -> None:
    project, namespace = _setup(tmp_path)
    main = create_namespace_version(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="main",
    )
    create_namespace_version(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="feature",
    )

    with pytest.raises(ValueError, match="must be different"):
        merge_namespace_versions(
            db_path=project.db_path,
            namespace_id=namespace.id,
            source_version="main",
            target_version=" main",
        )
    with pytest.raises(ValueError, match="Source or target version not found"):
        merge_namespace_versions(
            db_path=project.db_path,
            namespace_id=namespace.id,
            source_version="main",
            target_version="release",
        )

    _set_status(project, main.id, "merging")
    with pytest.raises(ValueError, match="already being merged"):
        merge_namespace_versions(
            db_path=project.db_path,
            namespace_id=namespace.id,
            source_version="feature",
            target_version="main",
        )
    with pytest.raises(ValueError, match="is being merged"):
        update_version_language(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace.id,
            version="main",
            language_code="de",
            changes=LanguageChanges(),
        )
    with pytest.raises(ValueError, match="is being merged"):
        delete_namespace_version(db_path=project.db_path, namespace_id=namespace.id, version="main")


def _main_and_feature(project, namespace, *, feature_snapshot: bool):
    main = create_namespace_version(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="main",
    )
    feature = create_namespace_version(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="feature",
        snapshot=feature_snapshot,
    )
    return main, feature


def test_merge_skips_source_language_without_stored_file(tmp_path: Path) -> None:
    project, namespace = _setup(tmp_path)
    main, _ = _main_and_feature(project, namespace, feature_snapshot=False)
    update_version_language(
        db_path=project.db_path,
        project_id=project.project_id,
        namespace_id=namespace.id,
        version="feature",
        language_code="fr",
        changes=LanguageChanges(
            add=[ChangeItem(key="greeting.hello", item=LanguageItem(key="greeting.hello", value="Salut"))]
        ),
    )
    french = next(
        item
        for item in list_version_languages(db_path=project.db_path, version_id=main.id)
        if item.language_code == "fr"
    )
    (project.project_path / "files" / f"{french.file_id}.json").unlink()

    result = merge_namespace_versions(
        db_path=project.db_path,
        namespace_id=namespace.id,
        source_version="main",
        target_version="feature",
    )

    assert result.skipped == ["fr"]
    assert sorted(result.created) == ["de", "en"]
    assert result.deleted == []
    assert get_version_content(
        db_path=project.db_path,
        namespace_id=namespace.id,
        version="feature",
        language_code="fr",
    ) == {"greeting": {"hello": "Salut"}}


def test_failed_merge_clears_status_and_removes_new_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    project, namespace = _setup(tmp_path)
    _main_and_feature(project, namespace, feature_snapshot=True)
    files_dir = project.project_path / "files"
    files_before = sorted(path.name for path in files_dir.iterdir())

    real_store_json = version_service.store_json
    calls: list[int] = []

    def flaky_store_json(directory, payload):
        calls.append(1)
        if len(calls) > 1:
            raise OSError("disk full")
        return real_store_json(directory, payload)

    monkeypatch.setattr(version_service, "store_json", flaky_store_json)

    with pytest.raises(OSError, match="disk full"):
        merge_namespace_versions(
            db_path=project.db_path,
            namespace_id=namespace.id,
            source_version="main",
            target_version="feature",
        )

    assert len(calls) == 2
    for version in ("main", "feature"):
        current = get_namespace_version(db_path=project.db_path, namespace_id=namespace.id, version=version)
        assert current is not None
        assert current.status is None
    assert sorted(path.name for path in files_dir.iterdir()) == files_before
    assert get_version_content(
        db_path=project.db_path,
        namespace_id=namespace.id,
        version="feature",
        language_code="de",
    ) == {"greeting": {"hello": "Hallo"}}
