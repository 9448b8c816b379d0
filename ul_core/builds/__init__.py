"""Immutable per-language snapshots of a namespace."""

from ul_core.builds.build_service import (
    Build,
    create_build,
    delete_build,
    get_build,
    get_build_by_tag,
    list_builds,
    read_build_file,
    update_build_tag,
)

__all__ = [
    "Build",
    "create_build",
    "delete_build",
    "get_build",
    "get_build_by_tag",
    "list_builds",
    "read_build_file",
    "update_build_tag",
]
