"""Public ``/v1`` serving API.

Every data endpoint authenticates with a project API key, counts the request
against the project's monthly limit and writes a request event, whether the
request was served or denied.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from ul_core.access.api_keys import (
    PERMISSION_BUILDS_READ,
    PERMISSION_BUILDS_WRITE,
    PERMISSION_KEYS_READ,
    PERMISSION_TRANSLATIONS_READ,
    verify_api_key,
)
from ul_core.access.usage import DENIED_LIMIT_EXCEEDED, check_and_record_request, record_request_event
from ul_core.constants import LOG_LEVEL_ENV
from ul_core.db.schema import connection_scope
from ul_core.log import setup_logging
from ul_core.project.create_project import ProjectInfo
from ul_core.project.paths import files_dir_for_db, resolve_projects_root
from ul_core.serving.resolver import (
    BUILD_NOT_FOUND,
    BUILD_NOT_READY,
    BUILD_TAG_EXISTS,
    KEY_NOT_FOUND,
    LANGUAGE_NOT_FOUND,
    NAMESPACE_NOT_FOUND,
    RELEASE_NOT_FOUND,
    ResolutionError,
    create_build_via_api,
    resolve_build,
    resolve_single_key,
    resolve_translation_file,
)
from ul_core.storage.file_store import read_json_file

logger = logging.getLogger(__name__)

DENIED_BLOB_MISSING = "storage_blob_missing"
DENIED_INTERNAL_ERROR = "internal_error"

LIMIT_EXCEEDED_MESSAGE = "Request limit exceeded. Please upgrade your plan or wait for the monthly reset."


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _internal_error(exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error while serving request")
    return _error(500, "Internal server error", message=str(exc))


def _api_key_from(request: Request) -> str | None:
    header_key = request.headers.get("x-api-key", "").strip()
    if header_key:
        return header_key
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def _record(project: ProjectInfo, **event: Any) -> None:
    with connection_scope(db_path=project.db_path) as active:
        record_request_event(active, **event)


class _Gate:
    """Authenticates one request and accounts for it."""

    def __init__(self, request: Request, *, event: str, permission: str) -> None:
        self.request = request
        self.event = event
        self.permission = permission
        self.project: ProjectInfo | None = None

    def authorize(self, *, namespace: str | None, language_code: str | None) -> ProjectInfo | JSONResponse:
        plaintext = _api_key_from(self.request)
        if plaintext is None:
            return _error(401, "API key required")
        try:
            project, _ = verify_api_key(
                root=self.request.app.state.projects_root,
                plaintext=plaintext,
                permission=self.permission,
            )
        except PermissionError as exc:
            logger.info("Rejected %s: %s", self.event, exc)
            return _error(401, "Invalid API key")
        self.project = project

        limit = project.limits.requests
        with connection_scope(db_path=project.db_path) as active:
            usage = check_and_record_request(active, limit=limit)
            if not usage.is_request_allowed:
                record_request_event(
                    active,
                    event=self.event,
                    namespace=namespace,
                    language_code=language_code,
                    denied_reason=DENIED_LIMIT_EXCEEDED,
                )
                return _error(
                    429,
                    LIMIT_EXCEEDED_MESSAGE,
                    currentUsage=usage.current_requests,
                    limit=limit,
                    resetPeriod="monthly",
                )
        return project

    def denied(
        self,
        response: JSONResponse,
        reason: str,
        *,
        namespace: str | None = None,
        language_code: str | None = None,
    ) -> JSONResponse:
        if self.project is not None:
            _record(
                self.project,
                event=self.event,
                namespace=namespace,
                language_code=language_code,
                denied_reason=reason,
            )
        return response

    def served(
        self,
        payload: dict[str, Any],
        *,
        status_code: int = 200,
        namespace: str | None = None,
        language_code: str | None = None,
        response_size: int | None = None,
    ) -> JSONResponse:
        if self.project is not None:
            _record(
                self.project,
                event=self.event,
                namespace=namespace,
                language_code=language_code,
                response_size=response_size,
            )
        return JSONResponse(status_code=status_code, content=payload)


def _missing_parameters(message: str, example: str) -> JSONResponse:
    return _error(400, message, example=example)


def get_translations(request: Request, release: str | None = None, namespace: str | None = None, lang: str | None = None):
    gate = _Gate(request, event="api.v1.translations.get", permission=PERMISSION_TRANSLATIONS_READ)
    try:
        if _api_key_from(request) is None:
            return _error(401, "API key required")
        if not release or not namespace or not lang:
            return _missing_parameters(
                "Missing required parameters: release, namespace, and lang are required",
                "/v1/translations?release=1.0.0&namespace=common&lang=en",
            )
        project = gate.authorize(namespace=namespace, language_code=lang)
        if isinstance(project, JSONResponse):
            return project

        try:
            resolved = resolve_translation_file(
                db_path=project.db_path,
                project_id=project.project_id,
                release_tag=release,
                namespace_name=namespace,
                language_code=lang,
                rng=request.app.state.rng,
            )
        except ResolutionError as exc:
            messages = {
                RELEASE_NOT_FOUND: f"Release tag '{release}' not found",
                NAMESPACE_NOT_FOUND: f"Namespace '{namespace}' not found in release '{release}'",
                LANGUAGE_NOT_FOUND: f"Language '{lang}' not found for namespace '{namespace}'",
            }
            return gate.denied(
                _error(404, messages.get(exc.code, str(exc))),
                exc.code,
                namespace=namespace,
                language_code=lang,
            )

        try:
            translations = read_json_file(files_dir_for_db(project.db_path), resolved.file_id)
        except FileNotFoundError:
            logger.error("Stored file %s for build %s is missing", resolved.file_id, resolved.build_tag)
            return gate.denied(
                _error(500, "Failed to retrieve language file"),
                DENIED_BLOB_MISSING,
                namespace=namespace,
                language_code=lang,
            )

        return gate.served(
            {
                "translations": translations,
                "release": {"tag": resolved.release_tag},
                "build": {"tag": resolved.build_tag, "namespace": resolved.namespace},
            },
            namespace=namespace,
            language_code=lang,
            response_size=resolved.file_size,
        )
    except Exception as exc:
        return gate.denied(_internal_error(exc), DENIED_INTERNAL_ERROR, namespace=namespace, language_code=lang)


def get_key(request: Request, key: str | None = None, namespace: str | None = None, lang: str | None = None):
    gate = _Gate(request, event="api.v1.keys.get", permission=PERMISSION_KEYS_READ)
    try:
        if _api_key_from(request) is None:
            return _error(401, "API key required")
        if not key or not namespace or not lang:
            return _missing_parameters(
                "Missing required parameters: namespace, key, and lang are required",
                "/v1/keys?namespace=common&key=greeting.hello&lang=en",
            )
        project = gate.authorize(namespace=namespace, language_code=lang)
        if isinstance(project, JSONResponse):
            return project

        try:
            resolved = resolve_single_key(
                db_path=project.db_path,
                project_id=project.project_id,
                key=key,
                namespace_name=namespace,
                language_code=lang,
            )
        except ResolutionError as exc:
            messages = {
                NAMESPACE_NOT_FOUND: f"Namespace '{namespace}' not found",
                LANGUAGE_NOT_FOUND: f"Language '{lang}' not found",
                KEY_NOT_FOUND: f"Key '{key}' not found in namespace '{namespace}'",
            }
            return gate.denied(
                _error(404, messages.get(exc.code, f"No value for key '{key}' in language '{lang}'")),
                exc.code,
                namespace=namespace,
                language_code=lang,
            )

        return gate.served(
            {
                "key": resolved.key,
                "value": resolved.value,
                "namespace": resolved.namespace,
                "language": resolved.language,
            },
            namespace=namespace,
            language_code=lang,
            response_size=len(resolved.value.encode("utf-8")),
        )
    except Exception as exc:
        return gate.denied(_internal_error(exc), DENIED_INTERNAL_ERROR, namespace=namespace, language_code=lang)


def get_build(request: Request, build: str | None = None, lang: str | None = None):
    gate = _Gate(request, event="api.v1.builds.get", permission=PERMISSION_BUILDS_READ)
    try:
        if _api_key_from(request) is None:
            return _error(401, "API key required")
        if not build:
            return _missing_parameters(
                "Missing required parameter: build is required",
                "/v1/builds?build=common-1.0.0&lang=en",
            )
        project = gate.authorize(namespace=None, language_code=lang)
        if isinstance(project, JSONResponse):
            return project

        try:
            resolved = resolve_build(
                db_path=project.db_path,
                project_id=project.project_id,
                build_tag=build,
                language_code=lang,
            )
        except ResolutionError as exc:
            if exc.code == BUILD_NOT_READY:
                return gate.denied(
                    _error(
                        202,
                        f"Build '{build}' is not ready yet: {exc.status_description or 'processing'}",
                        status="processing",
                    ),
                    exc.code,
                    language_code=lang,
                )
            messages = {
                BUILD_NOT_FOUND: f"Build '{build}' not found",
                LANGUAGE_NOT_FOUND: f"Language '{lang}' not found in build '{build}'",
            }
            return gate.denied(
                _error(404, messages.get(exc.code, str(exc))),
                exc.code,
                language_code=lang,
            )

        files_dir = files_dir_for_db(project.db_path)
        try:
            translations = {
                code: read_json_file(files_dir, stored.file_id)
                for code, stored in resolved.language_files.items()
            }
        except FileNotFoundError:
            logger.error("Build %s has a missing stored file", resolved.tag)
            return gate.denied(
                _error(500, "Failed to retrieve language file"),
                DENIED_BLOB_MISSING,
                namespace=resolved.namespace,
                language_code=lang,
            )

        payload: dict[str, Any] = {"build": {"tag": resolved.tag, "namespace": resolved.namespace}}
        if lang is not None:
            payload["language"] = lang
            payload["translations"] = translations[lang]
        else:
            payload["translations"] = translations
        return gate.served(
            payload,
            namespace=resolved.namespace,
            language_code=lang,
            response_size=sum(stored.file_size for stored in resolved.language_files.values()),
        )
    except Exception as exc:
        return gate.denied(_internal_error(exc), DENIED_INTERNAL_ERROR, language_code=lang)


async def post_build(request: Request):
    gate = _Gate(request, event="api.v1.builds.post", permission=PERMISSION_BUILDS_WRITE)
    namespace: str | None = None
    try:
        if _api_key_from(request) is None:
            return _error(401, "API key required")
        try:
            body = await request.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}
        namespace = str(body.get("namespace") or "").strip() or None
        tag = str(body.get("tag") or "").strip() or None
        if namespace is None or tag is None:
            return _missing_parameters(
                "Missing required fields: namespace and tag are required",
                '{"namespace": "common", "tag": "common-1.0.1"}',
            )

        project = await run_in_threadpool(gate.authorize, namespace=namespace, language_code=None)
        if isinstance(project, JSONResponse):
            return project

        try:
            created = await run_in_threadpool(
                create_build_via_api,
                db_path=project.db_path,
                project_id=project.project_id,
                namespace_name=namespace,
                build_tag=tag,
            )
        except ResolutionError as exc:
            if exc.code == BUILD_TAG_EXISTS:
                response = _error(409, f"Build tag '{tag}' already exists")
            else:
                response = _error(404, f"Namespace '{namespace}' not found")
            return await run_in_threadpool(gate.denied, response, exc.code, namespace=namespace)
        except ValueError as exc:
            return await run_in_threadpool(gate.denied, _error(400, str(exc)), "invalid_build", namespace=namespace)

        return await run_in_threadpool(
            gate.served,
            {
                "build": {
                    "id": created.id,
                    "tag": created.tag,
                    "namespace": created.namespace,
                    "status": created.status,
                    "languages": sorted(created.language_files),
                }
            },
            status_code=202,
            namespace=namespace,
        )
    except Exception as exc:
        return gate.denied(_internal_error(exc), DENIED_INTERNAL_ERROR, namespace=namespace)


def health() -> dict[str, str]:
    return {"status": "ok"}


def create_app(projects_root: Path | None = None, *, rng: Any = None) -> FastAPI:
    """Build the serving app for every project under ``projects_root``."""

    setup_logging(os.environ.get(LOG_LEVEL_ENV, "INFO"))

    app = FastAPI(title="unlingo", version="0.1.0")
    app.state.projects_root = resolve_projects_root(projects_root)
    app.state.rng = rng

    app.add_api_route("/v1/health", health, methods=["GET"])
    app.add_api_route("/v1/translations", get_translations, methods=["GET"])
    app.add_api_route("/v1/keys", get_key, methods=["GET"])
    app.add_api_route("/v1/builds", get_build, methods=["GET"])
    app.add_api_route("/v1/builds", post_build, methods=["POST"])

    logger.info("Serving projects from %s", app.state.projects_root)
    return app
