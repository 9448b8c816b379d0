"""Releases: weighted sets of builds served to clients."""

from ul_core.releases.release_service import (
    BuildSelection,
    ConfiguredBuild,
    NamespaceGroup,
    Release,
    ReleaseConfiguration,
    ReleaseConnection,
    add_build_to_release,
    create_release,
    delete_release,
    get_release_by_tag,
    get_release_configuration,
    list_release_connections,
    list_releases,
    remove_build_from_release,
    repair_release_configuration,
    update_connection_chance,
    update_release,
    validate_builds_configuration,
)
from ul_core.releases.selection import even_split, normalize_chances, pick_weighted

__all__ = [
    "BuildSelection",
    "ConfiguredBuild",
    "NamespaceGroup",
    "Release",
    "ReleaseConfiguration",
    "ReleaseConnection",
    "add_build_to_release",
    "create_release",
    "delete_release",
    "even_split",
    "get_release_by_tag",
    "get_release_configuration",
    "list_release_connections",
    "list_releases",
    "normalize_chances",
    "pick_weighted",
    "remove_build_from_release",
    "repair_release_configuration",
    "update_connection_chance",
    "update_release",
    "validate_builds_configuration",
]
