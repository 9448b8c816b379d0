from __future__ import annotations

from ul_core.glossary.glossary_store import (
    GlossaryRule,
    GlossaryTerm,
    create_term,
    delete_term,
    glossary_context,
    list_terms,
    update_term,
)

__all__ = [
    "GlossaryRule",
    "GlossaryTerm",
    "create_term",
    "delete_term",
    "glossary_context",
    "list_terms",
    "update_term",
]
