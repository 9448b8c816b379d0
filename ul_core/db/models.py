from __future__ import annotations

from sqlmodel import Field, SQLModel
from sqlalchemy import Index


class SchemaMeta(SQLModel, table=True):
    __tablename__ = "schema_meta"

    key: str = Field(primary_key=True)
    value: str


class Project(SQLModel, table=True):
    __tablename__ = "projects"

    id: str = Field(primary_key=True)
    name: str
    slug: str = Field(unique=True)
    primary_language_id: str | None = None
    status: int = Field(default=1)
    created_at: str
    updated_at: str


class Language(SQLModel, table=True):
    __tablename__ = "languages"
    __table_args__ = (
        Index(
            "idx_languages_project_language",
            "project_id",
            "language_code",
            unique=True,
        ),
    )

    id: str = Field(primary_key=True)
    project_id: str
    language_code: str
    status: int = Field(default=1)
    rules_json: str = Field(default="{}")
    created_at: str


class Namespace(SQLModel, table=True):
    __tablename__ = "namespaces"
    __table_args__ = (
        Index("idx_namespaces_project_name", "project_id", "name", unique=True),
    )

    id: str = Field(primary_key=True)
    project_id: str
    name: str
    status: int = Field(default=1)
    created_at: str
    updated_at: str


class TranslationKey(SQLModel, table=True):
    __tablename__ = "translation_keys"
    __table_args__ = (
        Index(
            "idx_translation_keys_namespace_key",
            "project_id",
            "namespace_id",
            "key",
            unique=True,
        ),
    )

    id: str = Field(primary_key=True)
    project_id: str
    namespace_id: str
    key: str
    status: int = Field(default=1)
    created_at: str
    updated_at: str


class TranslationValue(SQLModel, table=True):
    __tablename__ = "translation_values"
    __table_args__ = (
        Index(
            "idx_translation_values_key_language",
            "translation_key_id",
            "language_id",
            unique=True,
        ),
    )

    id: str = Field(primary_key=True)
    translation_key_id: str
    namespace_id: str
    language_id: str
    value: str
    updated_at: str


class Build(SQLModel, table=True):
    __tablename__ = "builds"
    __table_args__ = (Index("idx_builds_project_tag", "project_id", "tag", unique=True),)

    id: str = Field(primary_key=True)
    project_id: str
    namespace: str
    tag: str
    status: int
    status_description: str | None = None
    created_at: str


class BuildFile(SQLModel, table=True):
    __tablename__ = "build_files"

    build_id: str = Field(primary_key=True)
    language_code: str = Field(primary_key=True)
    file_id: str
    file_size: int


class Release(SQLModel, table=True):
    __tablename__ = "releases"
    __table_args__ = (Index("idx_releases_project_tag", "project_id", "tag", unique=True),)

    id: str = Field(primary_key=True)
    project_id: str
    tag: str
    created_at: str


class ReleaseBuildConnection(SQLModel, table=True):
    __tablename__ = "release_build_connections"
    __table_args__ = (
        Index("idx_release_build_connections_release", "release_id", "position"),
    )

    id: str = Field(primary_key=True)
    release_id: str
    build_id: str
    selection_chance: float
    position: int = Field(default=0)
