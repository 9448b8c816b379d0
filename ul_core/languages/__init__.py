"""Project language management."""

from ul_core.languages.language_service import (
    Language,
    create_language,
    delete_language,
    get_language_by_code,
    get_primary_language,
    list_languages,
    normalize_language_code,
    update_language,
)

__all__ = [
    "Language",
    "create_language",
    "delete_language",
    "get_language_by_code",
    "get_primary_language",
    "list_languages",
    "normalize_language_code",
    "update_language",
]
