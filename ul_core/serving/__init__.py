"""Read path for client applications: releases, keys and builds."""

from ul_core.serving.resolver import (
    ResolutionError,
    ResolvedBuild,
    ResolvedKey,
    ResolvedTranslation,
    create_build_via_api,
    resolve_build,
    resolve_single_key,
    resolve_translation_file,
)

__all__ = [
    "ResolutionError",
    "ResolvedBuild",
    "ResolvedKey",
    "ResolvedTranslation",
    "create_build_via_api",
    "resolve_build",
    "resolve_single_key",
    "resolve_translation_file",
]
