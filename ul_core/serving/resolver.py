from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from pathlib import Path

from sqlmodel import Session, select

from ul_core.builds.build_service import Build as BuildSnapshot
from ul_core.builds.build_service import create_build
from ul_core.constants import STATUS_ACTIVE
from ul_core.db.models import (
    Build,
    BuildFile,
    Language,
    Namespace,
    Release,
    ReleaseBuildConnection,
    TranslationKey,
    TranslationValue,
)
from ul_core.db.session import session_for_db
from ul_core.releases.selection import pick_weighted
from ul_core.storage.file_store import StoredFile

logger = logging.getLogger(__name__)

RELEASE_NOT_FOUND = "release_not_found"
NAMESPACE_NOT_FOUND = "namespace_not_found"
LANGUAGE_NOT_FOUND = "language_not_found"
KEY_NOT_FOUND = "key_not_found"
VALUE_NOT_FOUND = "value_not_found"
BUILD_NOT_FOUND = "build_not_found"
BUILD_NOT_READY = "build_not_ready"
BUILD_TAG_EXISTS = "build_tag_exists"


class ResolutionError(LookupError):
    """A serving lookup failed; ``code`` names the missing piece."""

    def __init__(self, code: str, message: str | None = None, *, status_description: str | None = None) -> None:
        super().__init__(message or code)
        self.code = code
        self.status_description = status_description


@dataclass(slots=True, frozen=True)
class ResolvedTranslation:
    release_tag: str
    build_tag: str
    namespace: str
    language_code: str
    file_id: str
    file_size: int


@dataclass(slots=True, frozen=True)
class ResolvedKey:
    key: str
    value: str
    namespace: str
    language: str


@dataclass(slots=True, frozen=True)
class ResolvedBuild:
    tag: str
    namespace: str
    language_files: dict[str, StoredFile] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class _Candidate:
    build: Build
    selection_chance: float


def _build_files(session: Session, build_id: str) -> dict[str, StoredFile]:
    rows = session.exec(select(BuildFile).where(BuildFile.build_id == build_id)).all()
    return {row.language_code: StoredFile(file_id=row.file_id, file_size=row.file_size) for row in rows}


def _resolve_in_session(
    session: Session,
    *,
    project_id: str,
    release_tag: str,
    namespace_name: str,
    language_code: str,
    rng: random.Random | None,
) -> ResolvedTranslation:
    release = session.exec(
        select(Release).where(Release.project_id == project_id, Release.tag == release_tag)
    ).first()
    if release is None:
        raise ResolutionError(RELEASE_NOT_FOUND)

    connections = session.exec(
        select(ReleaseBuildConnection)
        .where(ReleaseBuildConnection.release_id == release.id)
        .order_by(ReleaseBuildConnection.position, ReleaseBuildConnection.id)
    ).all()

    candidates: list[_Candidate] = []
    for connection in connections:
        build = session.get(Build, connection.build_id)
        if build is None or build.status != STATUS_ACTIVE or build.namespace != namespace_name:
            continue
        candidates.append(_Candidate(build=build, selection_chance=connection.selection_chance))

    if not candidates:
        raise ResolutionError(NAMESPACE_NOT_FOUND)

    selected = pick_weighted(candidates, lambda candidate: candidate.selection_chance, rng).build

    stored = _build_files(session, selected.id).get(language_code)
    if stored is None:
        raise ResolutionError(LANGUAGE_NOT_FOUND)

    return ResolvedTranslation(
        release_tag=release.tag,
        build_tag=selected.tag,
        namespace=selected.namespace,
        language_code=language_code,
        file_id=stored.file_id,
        file_size=stored.file_size,
    )


def resolve_translation_file(
    *,
    db_path: Path,
    project_id: str,
    release_tag: str,
    namespace_name: str,
    language_code: str,
    rng: random.Random | None = None,
) -> ResolvedTranslation:
    """Pick the build serving ``namespace_name`` in a release and return its language file.

    Several candidate builds are chosen between by their selection chances.
    """

    with session_for_db(Path(db_path)) as session:
        resolved = _resolve_in_session(
            session,
            project_id=project_id,
            release_tag=release_tag,
            namespace_name=namespace_name,
            language_code=language_code,
            rng=rng,
        )
    logger.debug(
        "Resolved %s/%s/%s to build %s",
        release_tag,
        namespace_name,
        language_code,
        resolved.build_tag,
    )
    return resolved


def resolve_single_key(
    *,
    db_path: Path,
    project_id: str,
    key: str,
    namespace_name: str,
    language_code: str,
) -> ResolvedKey:
    with session_for_db(Path(db_path)) as session:
        namespace = session.exec(
            select(Namespace).where(Namespace.project_id == project_id, Namespace.name == namespace_name)
        ).first()
        if namespace is None or namespace.status != STATUS_ACTIVE:
            raise ResolutionError(NAMESPACE_NOT_FOUND)

        language = session.exec(
            select(Language).where(Language.project_id == project_id, Language.language_code == language_code)
        ).first()
        if language is None or language.status != STATUS_ACTIVE:
            raise ResolutionError(LANGUAGE_NOT_FOUND)

        translation_key = session.exec(
            select(TranslationKey).where(
                TranslationKey.project_id == project_id,
                TranslationKey.namespace_id == namespace.id,
                TranslationKey.key == key,
            )
        ).first()
        if translation_key is None or translation_key.status != STATUS_ACTIVE:
            raise ResolutionError(KEY_NOT_FOUND)

        value = session.exec(
            select(TranslationValue).where(
                TranslationValue.translation_key_id == translation_key.id,
                TranslationValue.language_id == language.id,
            )
        ).first()
        if value is None:
            raise ResolutionError(VALUE_NOT_FOUND)

        return ResolvedKey(
            key=translation_key.key,
            value=value.value,
            namespace=namespace_name,
            language=language_code,
        )


def resolve_build(
    *,
    db_path: Path,
    project_id: str,
    build_tag: str,
    language_code: str | None = None,
) -> ResolvedBuild:
    """Return an active build's files, all of them or only ``language_code``'s."""

    with session_for_db(Path(db_path)) as session:
        build = session.exec(
            select(Build).where(Build.project_id == project_id, Build.tag == build_tag)
        ).first()
        if build is None:
            raise ResolutionError(BUILD_NOT_FOUND)
        if build.status != STATUS_ACTIVE:
            raise ResolutionError(BUILD_NOT_READY, status_description=build.status_description)

        files = _build_files(session, build.id)
        tag = build.tag
        namespace = build.namespace

    if language_code is not None:
        stored = files.get(language_code)
        if stored is None:
            raise ResolutionError(LANGUAGE_NOT_FOUND)
        files = {language_code: stored}

    return ResolvedBuild(tag=tag, namespace=namespace, language_files=files)


def create_build_via_api(
    *,
    db_path: Path,
    project_id: str,
    namespace_name: str,
    build_tag: str,
) -> BuildSnapshot:
    with session_for_db(Path(db_path)) as session:
        namespace = session.exec(
            select(Namespace).where(Namespace.project_id == project_id, Namespace.name == namespace_name)
        ).first()
        if namespace is None or namespace.status != STATUS_ACTIVE:
            raise ResolutionError(NAMESPACE_NOT_FOUND)
        namespace_id = namespace.id

        existing = session.exec(
            select(Build).where(Build.project_id == project_id, Build.tag == build_tag)
        ).first()
        if existing is not None:
            raise ResolutionError(BUILD_TAG_EXISTS)

    return create_build(
        db_path=Path(db_path),
        project_id=project_id,
        namespace_id=namespace_id,
        tag=build_tag,
    )
