from __future__ import annotations

import json
import os
import random
from pathlib import Path

import typer
import uvicorn

from ul_core.access.api_keys import ALL_PERMISSIONS, create_api_key, revoke_api_key
from ul_core.access.usage import list_request_events
from ul_core.builds.build_service import create_build, delete_build, get_build_by_tag, list_builds
from ul_core.constants import LOG_LEVEL_ENV, PROJECTS_ROOT_ENV, STATUS_ACTIVE
from ul_core.db.schema import connection_scope
from ul_core.jobs.translate_job import TranslationRunSummary, retranslate_keys, translate_missing_values
from ul_core.keys.key_store import (
    create_translation_key,
    export_namespace_json,
    import_namespace_json,
    list_translation_keys,
    set_translation_value,
)
from ul_core.languages.language_service import create_language, delete_language, get_language_by_code
from ul_core.llm.policy import SECRET_LABELS, set_secret
from ul_core.log import setup_logging
from ul_core.namespaces.namespace_service import create_namespace, get_namespace_by_name
from ul_core.namespaces.version_service import create_namespace_version, merge_namespace_versions
from ul_core.project.create_project import ProjectInfo, create_project, load_project_info
from ul_core.releases.release_service import (
    BuildSelection,
    create_release,
    get_release_by_tag,
    get_release_configuration,
    repair_release_configuration,
)
from ul_core.releases.selection import even_split
from ul_core.serving.resolver import ResolutionError, resolve_translation_file

app = typer.Typer(help="unlingo local translation management CLI")


def _root_option() -> Path | None:
    return typer.Option(
        None,
        "--root",
        help="Projects root path. Defaults to $UNLINGO_PROJECTS_ROOT or ./projects.",
        file_okay=False,
        resolve_path=False,
    )


def _fail(exc: Exception) -> typer.Exit:
    typer.secho(str(exc), fg=typer.colors.RED, err=True)
    return typer.Exit(code=1)


def _load(slug: str, root: Path | None) -> ProjectInfo:
    try:
        return load_project_info(slug, root=root)
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc


def _namespace_id(project: ProjectInfo, name: str) -> str:
    namespace = get_namespace_by_name(db_path=project.db_path, project_id=project.project_id, name=name)
    if namespace is None:
        raise _fail(ValueError(f"Namespace not found: {name}"))
    return namespace.id


def _split_codes(value: str | None) -> list[str]:
    if not value:
        return []
    return [chunk.strip() for chunk in value.split(",") if chunk.strip()]


@app.callback()
def main(
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        envvar=LOG_LEVEL_ENV,
        help="Logging level for library output (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    """Manage unlingo projects, builds and releases."""

    setup_logging(log_level)


@app.command("create-project")
def create_project_command(
    name: str = typer.Argument(..., help="Human-readable project name."),
    slug: str | None = typer.Option(None, "--slug", help="Slug override."),
    primary: str = typer.Option("en", "--primary", help="Primary language code."),
    languages: str | None = typer.Option(
        None,
        "--languages",
        help="Comma-separated additional language codes.",
    ),
    root: Path | None = _root_option(),
) -> None:
    """Create a project folder with its SQLite database."""

    try:
        created = create_project(
            name,
            slug=slug,
            primary_language=primary,
            languages=_split_codes(languages),
            root=root,
        )
    except (FileExistsError, ValueError) as exc:
        raise _fail(exc) from exc

    typer.echo(f"Project created: {created.slug}")
    typer.echo(f"Path: {created.project_path}")
    typer.echo(f"Database: {created.db_path}")
    typer.echo("Next steps:")
    typer.echo(f"  unlingo project-info {created.slug} --root {created.root}")


@app.command("project-info")
def project_info_command(
    slug: str = typer.Argument(..., help="Project slug."),
    root: Path | None = _root_option(),
) -> None:
    """Show project configuration and DB schema details."""

    project = _load(slug, root)
    typer.echo(f"Project: {project.name} ({project.slug})")
    typer.echo(f"Path: {project.project_path}")
    typer.echo(f"Primary language: {project.primary_language or '-'}")
    typer.echo(f"Languages: {', '.join(project.languages)}")
    typer.echo(f"Monthly request limit: {project.limits.requests}")
    typer.echo(f"Translation key limit: {project.limits.translation_keys}")
    typer.echo(f"Schema version: {project.schema_version}")


@app.command("add-language")
def add_language_command(
    slug: str = typer.Argument(..., help="Project slug."),
    code: str = typer.Argument(..., help="Language code, e.g. de or pt-BR."),
    primary: bool = typer.Option(False, "--primary", help="Make it the primary language."),
    root: Path | None = _root_option(),
) -> None:
    project = _load(slug, root)
    try:
        language = create_language(
            db_path=project.db_path,
            project_id=project.project_id,
            language_code=code,
            is_primary=primary,
        )
    except ValueError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Language added: {language.language_code}")


@app.command("remove-language")
def remove_language_command(
    slug: str = typer.Argument(..., help="Project slug."),
    code: str = typer.Argument(..., help="Language code."),
    root: Path | None = _root_option(),
) -> None:
    project = _load(slug, root)
    try:
        with connection_scope(db_path=project.db_path) as connection:
            language = get_language_by_code(
                connection=connection,
                project_id=project.project_id,
                language_code=code,
            )
            if language is None:
                raise ValueError(f"Language not found: {code}")
            delete_language(connection=connection, project_id=project.project_id, language_id=language.id)
    except ValueError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Language removed: {code}")


@app.command("add-namespace")
def add_namespace_command(
    slug: str = typer.Argument(..., help="Project slug."),
    name: str = typer.Argument(..., help="Namespace name."),
    root: Path | None = _root_option(),
) -> None:
    project = _load(slug, root)
    try:
        namespace = create_namespace(db_path=project.db_path, project_id=project.project_id, name=name)
    except ValueError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Namespace added: {namespace.name}")


def _echo_translation_summary(summary: TranslationRunSummary) -> None:
    provider = f"{summary.provider_name}/{summary.model}"
    if summary.fallback_from:
        provider += f" (fallback from {summary.fallback_from})"
    typer.echo(f"Provider: {provider}")
    for code, count in summary.translated.items():
        typer.echo(f"  {code}: {count} translated")
    for code, message in summary.failed.items():
        typer.secho(f"  {code}: failed ({message})", fg=typer.colors.YELLOW)


def _retranslate(project: ProjectInfo, namespace_id: str, key_ids: list[str]) -> None:
    try:
        summary = retranslate_keys(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace_id,
            key_ids=key_ids,
        )
    except (RuntimeError, ValueError) as exc:
        typer.secho(f"Translation skipped: {exc}", fg=typer.colors.YELLOW, err=True)
        return
    _echo_translation_summary(summary)


@app.command("add-key")
def add_key_command(
    slug: str = typer.Argument(..., help="Project slug."),
    namespace: str = typer.Argument(..., help="Namespace name."),
    key: str = typer.Argument(..., help="Dotted key, e.g. greeting.hello."),
    value: str = typer.Argument(..., help="Value in the primary language."),
    translate: bool = typer.Option(
        True,
        "--translate/--no-translate",
        help="Translate the new key into the other languages.",
    ),
    root: Path | None = _root_option(),
) -> None:
    """Create a key with its primary-language value."""

    project = _load(slug, root)
    namespace_id = _namespace_id(project, namespace)
    try:
        record = create_translation_key(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace_id,
            key=key,
            primary_value=value,
            key_limit=project.limits.translation_keys,
        )
    except ValueError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Key added: {record.key}")
    if translate:
        _retranslate(project, namespace_id, [record.id])


@app.command("set-value")
def set_value_command(
    slug: str = typer.Argument(..., help="Project slug."),
    namespace: str = typer.Argument(..., help="Namespace name."),
    key: str = typer.Argument(..., help="Dotted key."),
    lang: str = typer.Argument(..., help="Language code."),
    value: str = typer.Argument(..., help="Value to store."),
    translate: bool = typer.Option(
        True,
        "--translate/--no-translate",
        help="Retranslate the other languages when the primary value changes.",
    ),
    root: Path | None = _root_option(),
) -> None:
    project = _load(slug, root)
    namespace_id = _namespace_id(project, namespace)
    try:
        matches = [
            record
            for record in list_translation_keys(
                db_path=project.db_path,
                project_id=project.project_id,
                namespace_id=namespace_id,
                search=key,
            )
            if record.key == key
        ]
        if not matches:
            raise ValueError(f"Key not found: {key}")
        previous = matches[0].values.get(lang)
        set_translation_value(
            db_path=project.db_path,
            project_id=project.project_id,
            key_id=matches[0].id,
            language_code=lang,
            value=value,
        )
    except ValueError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Value set: {key} [{lang}]")
    if translate and lang == project.primary_language and previous != value:
        _retranslate(project, namespace_id, [matches[0].id])


@app.command("import-json")
def import_json_command(
    slug: str = typer.Argument(..., help="Project slug."),
    namespace: str = typer.Argument(..., help="Namespace name."),
    lang: str = typer.Argument(..., help="Language of the file."),
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Nested JSON file."),
    root: Path | None = _root_option(),
) -> None:
    """Import a nested i18n JSON file into a namespace."""

    project = _load(slug, root)
    namespace_id = _namespace_id(project, namespace)
    try:
        payload = json.loads(file.read_text(encoding="utf-8"))
        summary = import_namespace_json(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace_id,
            language_code=lang,
            payload=payload,
            key_limit=project.limits.translation_keys,
        )
    except ValueError as exc:
        raise _fail(exc) from exc

    typer.echo(f"Imported {summary.namespace} [{summary.language_code}]")
    typer.echo(f"  created:   {summary.created}")
    typer.echo(f"  updated:   {summary.updated}")
    typer.echo(f"  unchanged: {summary.unchanged}")
    typer.echo(f"  skipped:   {summary.skipped}")


@app.command("export-json")
def export_json_command(
    slug: str = typer.Argument(..., help="Project slug."),
    namespace: str = typer.Argument(..., help="Namespace name."),
    lang: str = typer.Argument(..., help="Language code."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Defaults to exports/<namespace>.<lang>.json."),
    root: Path | None = _root_option(),
) -> None:
    project = _load(slug, root)
    namespace_id = _namespace_id(project, namespace)
    try:
        document = export_namespace_json(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace_id,
            language_code=lang,
        )
    except ValueError as exc:
        raise _fail(exc) from exc

    target = output or project.project_path / "exports" / f"{namespace}.{lang}.json"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(document, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    typer.echo(f"Exported: {target}")


@app.command("translate")
def translate_command(
    slug: str = typer.Argument(..., help="Project slug."),
    namespace: str = typer.Argument(..., help="Namespace name."),
    langs: str | None = typer.Option(None, "--langs", help="Comma-separated target languages. Defaults to all."),
    strict: bool = typer.Option(False, "--strict", help="Fail instead of falling back to the mock provider."),
    root: Path | None = _root_option(),
) -> None:
    """Fill missing values with machine translations."""

    project = _load(slug, root)
    namespace_id = _namespace_id(project, namespace)
    try:
        summary = translate_missing_values(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace_id,
            target_language_codes=_split_codes(langs) or None,
            strict_provider_selection=strict,
        )
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    _echo_translation_summary(summary)
    if summary.failed and not summary.translated:
        raise typer.Exit(code=1)


@app.command("create-build")
def create_build_command(
    slug: str = typer.Argument(..., help="Project slug."),
    namespace: str = typer.Argument(..., help="Namespace name."),
    tag: str = typer.Argument(..., help="Build tag, unique in the project."),
    root: Path | None = _root_option(),
) -> None:
    """Snapshot a namespace into an immutable build."""

    project = _load(slug, root)
    namespace_id = _namespace_id(project, namespace)
    try:
        build = create_build(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace_id,
            tag=tag,
        )
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc
    typer.echo(f"Build created: {build.tag} ({', '.join(sorted(build.language_files))})")


@app.command("list-builds")
def list_builds_command(
    slug: str = typer.Argument(..., help="Project slug."),
    search: str | None = typer.Option(None, "--search", help="Filter by tag."),
    root: Path | None = _root_option(),
) -> None:
    project = _load(slug, root)
    builds = list_builds(db_path=project.db_path, project_id=project.project_id, search=search)
    if not builds:
        typer.echo("No builds.")
        return
    for build in builds:
        state = "active" if build.status == STATUS_ACTIVE else (build.status_description or f"status {build.status}")
        typer.echo(f"{build.tag}\t{build.namespace}\t{state}\t{build.created_at}")


@app.command("delete-build")
def delete_build_command(
    slug: str = typer.Argument(..., help="Project slug."),
    tag: str = typer.Argument(..., help="Build tag."),
    root: Path | None = _root_option(),
) -> None:
    project = _load(slug, root)
    try:
        build = get_build_by_tag(db_path=project.db_path, project_id=project.project_id, tag=tag)
        if build is None:
            raise ValueError(f"Build not found: {tag}")
        release_ids = delete_build(db_path=project.db_path, project_id=project.project_id, build_id=build.id)
    except ValueError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Build deleted: {tag} ({len(release_ids)} releases re-balanced)")


def _parse_build_specs(project: ProjectInfo, specs: list[str]) -> list[BuildSelection]:
    """Turn ``TAG[=CHANCE]`` items into selections; a namespace without chances is split evenly."""

    parsed: list[tuple[str, str, float | None]] = []
    for spec in specs:
        tag, _, raw_chance = spec.partition("=")
        build = get_build_by_tag(db_path=project.db_path, project_id=project.project_id, tag=tag)
        if build is None:
            raise ValueError(f"Build not found: {tag}")
        chance = float(raw_chance) if raw_chance.strip() else None
        parsed.append((build.id, build.namespace, chance))

    by_namespace: dict[str, list[int]] = {}
    for index, (_, namespace, _) in enumerate(parsed):
        by_namespace.setdefault(namespace, []).append(index)

    selections: dict[int, BuildSelection] = {}
    for namespace, indexes in by_namespace.items():
        given = [parsed[index][2] for index in indexes]
        if all(chance is None for chance in given):
            for index, chance in zip(indexes, even_split(len(indexes))):
                selections[index] = BuildSelection(build_id=parsed[index][0], selection_chance=chance)
        elif any(chance is None for chance in given):
            raise ValueError(f'Give a chance for every build of namespace "{namespace}" or for none')
        else:
            for index in indexes:
                selections[index] = BuildSelection(build_id=parsed[index][0], selection_chance=parsed[index][2])
    return [selections[index] for index in range(len(parsed))]


@app.command("create-release")
def create_release_command(
    slug: str = typer.Argument(..., help="Project slug."),
    tag: str = typer.Argument(..., help="Release tag, e.g. 1.0.0."),
    builds: list[str] = typer.Option([], "--build", "-b", help="Build as TAG or TAG=CHANCE; repeatable."),
    root: Path | None = _root_option(),
) -> None:
    """Create a release serving the given builds."""

    project = _load(slug, root)
    try:
        selections = _parse_build_specs(project, builds)
        release = create_release(
            db_path=project.db_path,
            project_id=project.project_id,
            tag=tag,
            builds=selections,
        )
    except ValueError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Release created: {release.tag} ({len(selections)} builds)")


@app.command("release-config")
def release_config_command(
    slug: str = typer.Argument(..., help="Project slug."),
    tag: str = typer.Argument(..., help="Release tag."),
    repair: bool = typer.Option(False, "--repair", help="Store the cleaned configuration if it is dirty."),
    root: Path | None = _root_option(),
) -> None:
    """Show a release's builds grouped by namespace."""

    project = _load(slug, root)
    try:
        release = get_release_by_tag(db_path=project.db_path, project_id=project.project_id, tag=tag)
        if release is None:
            raise ValueError(f"Release not found: {tag}")
        configuration = get_release_configuration(
            db_path=project.db_path,
            project_id=project.project_id,
            release_id=release.id,
        )
    except ValueError as exc:
        raise _fail(exc) from exc

    typer.echo(f"Release: {release.tag}")
    for group in configuration.groups:
        typer.echo(f"  {group.namespace}")
        for build in group.builds:
            typer.echo(f"    {build.build_tag}\t{build.selection_chance:g}%")

    if not configuration.is_dirty:
        return
    if not repair:
        typer.secho("Configuration needs repair; rerun with --repair.", fg=typer.colors.YELLOW)
        return
    repair_release_configuration(
        db_path=project.db_path,
        project_id=project.project_id,
        release_id=release.id,
        clean_builds=configuration.clean_builds,
    )
    typer.echo("Configuration repaired.")


@app.command("resolve")
def resolve_command(
    slug: str = typer.Argument(..., help="Project slug."),
    release: str = typer.Argument(..., help="Release tag."),
    namespace: str = typer.Argument(..., help="Namespace name."),
    lang: str = typer.Argument(..., help="Language code."),
    seed: int | None = typer.Option(None, "--seed", help="Seed for the weighted build choice."),
    root: Path | None = _root_option(),
) -> None:
    """Show which build and file a client request would be served from."""

    project = _load(slug, root)
    try:
        resolved = resolve_translation_file(
            db_path=project.db_path,
            project_id=project.project_id,
            release_tag=release,
            namespace_name=namespace,
            language_code=lang,
            rng=random.Random(seed) if seed is not None else None,
        )
    except ResolutionError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Build: {resolved.build_tag}")
    typer.echo(f"File: {resolved.file_id} ({resolved.file_size} bytes)")


@app.command("create-version")
def create_version_command(
    slug: str = typer.Argument(..., help="Project slug."),
    namespace: str = typer.Argument(..., help="Namespace name."),
    version: str = typer.Argument(..., help="Version name, e.g. development."),
    empty: bool = typer.Option(False, "--empty", help="Create without language files."),
    root: Path | None = _root_option(),
) -> None:
    project = _load(slug, root)
    namespace_id = _namespace_id(project, namespace)
    try:
        created = create_namespace_version(
            db_path=project.db_path,
            project_id=project.project_id,
            namespace_id=namespace_id,
            version=version,
            snapshot=not empty,
        )
    except ValueError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Version created: {created.version} ({created.language_count} languages)")


@app.command("merge-versions")
def merge_versions_command(
    slug: str = typer.Argument(..., help="Project slug."),
    namespace: str = typer.Argument(..., help="Namespace name."),
    source: str = typer.Argument(..., help="Version to copy from."),
    target: str = typer.Argument(..., help="Version to overwrite."),
    root: Path | None = _root_option(),
) -> None:
    """Make the target version's languages a copy of the source's."""

    project = _load(slug, root)
    namespace_id = _namespace_id(project, namespace)
    try:
        result = merge_namespace_versions(
            db_path=project.db_path,
            namespace_id=namespace_id,
            source_version=source,
            target_version=target,
        )
    except ValueError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Merged {result.source_version} into {result.target_version}")
    typer.echo(f"  created: {', '.join(result.created) or '-'}")
    typer.echo(f"  updated: {', '.join(result.updated) or '-'}")
    typer.echo(f"  deleted: {', '.join(result.deleted) or '-'}")
    if result.skipped:
        typer.secho(f"  skipped: {', '.join(result.skipped)}", fg=typer.colors.YELLOW)


@app.command("create-api-key")
def create_api_key_command(
    slug: str = typer.Argument(..., help="Project slug."),
    name: str = typer.Argument(..., help="Label for the key."),
    permissions: list[str] = typer.Option(
        [],
        "--permission",
        "-p",
        help=f"Repeatable; one of {', '.join(ALL_PERMISSIONS)}. Defaults to all.",
    ),
    root: Path | None = _root_option(),
) -> None:
    """Create a serving API key. The key is printed once."""

    project = _load(slug, root)
    try:
        created = create_api_key(
            db_path=project.db_path,
            project_id=project.project_id,
            project_slug=project.slug,
            name=name,
            permissions=permissions or None,
        )
    except ValueError as exc:
        raise _fail(exc) from exc
    typer.echo(f"API key id: {created.record.id}")
    typer.echo(f"Permissions: {', '.join(created.record.permissions)}")
    typer.echo(created.plaintext)


@app.command("revoke-api-key")
def revoke_api_key_command(
    slug: str = typer.Argument(..., help="Project slug."),
    key_id: str = typer.Argument(..., help="API key id."),
    root: Path | None = _root_option(),
) -> None:
    project = _load(slug, root)
    try:
        revoke_api_key(db_path=project.db_path, project_id=project.project_id, key_id=key_id)
    except ValueError as exc:
        raise _fail(exc) from exc
    typer.echo(f"API key revoked: {key_id}")


@app.command("request-log")
def request_log_command(
    slug: str = typer.Argument(..., help="Project slug."),
    limit: int = typer.Option(50, "--limit", min=1, help="Number of events to show."),
    denied: bool = typer.Option(False, "--denied", help="Only show denied requests."),
    root: Path | None = _root_option(),
) -> None:
    """Show recent serving API requests."""

    project = _load(slug, root)
    events = list_request_events(db_path=project.db_path, limit=limit, denied_only=denied)
    if not events:
        typer.echo("No requests recorded.")
        return
    for event in events:
        outcome = event.denied_reason or "served"
        typer.echo(
            f"{event.created_at}\t{event.event}\t{event.namespace or '-'}\t"
            f"{event.language_code or '-'}\t{outcome}"
        )


@app.command("set-secret")
def set_secret_command(
    name: str = typer.Argument(..., help=f"Secret name: {', '.join(SECRET_LABELS)}."),
    value: str = typer.Option(..., "--value", prompt=True, hide_input=True, help="Secret value."),
) -> None:
    """Store a provider secret in the OS keyring."""

    if name not in SECRET_LABELS:
        raise _fail(ValueError(f"Unknown secret: {name}"))
    try:
        set_secret(name, value)
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc
    typer.echo(f"Secret stored: {name}")


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    root: Path | None = _root_option(),
) -> None:
    """Run the /v1 serving API with uvicorn."""

    if root is not None:
        os.environ[PROJECTS_ROOT_ENV] = str(root)
    uvicorn.run("ul_api.app:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":
    app()
