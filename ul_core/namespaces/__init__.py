"""Namespaces and structured language changes.

Namespace versions live in ``ul_core.namespaces.version_service``; they read
key values, so they are imported from there directly rather than re-exported.
"""

from ul_core.namespaces.changes import ChangeItem, LanguageChanges, LanguageItem, apply_language_changes
from ul_core.namespaces.namespace_service import (
    Namespace,
    create_namespace,
    delete_namespace,
    get_namespace,
    get_namespace_by_name,
    list_namespaces,
    update_namespace,
    validate_namespace_name,
)

__all__ = [
    "ChangeItem",
    "LanguageChanges",
    "LanguageItem",
    "Namespace",
    "apply_language_changes",
    "create_namespace",
    "delete_namespace",
    "get_namespace",
    "get_namespace_by_name",
    "list_namespaces",
    "update_namespace",
    "validate_namespace_name",
]
