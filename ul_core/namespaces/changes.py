from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from ul_core.keys.json_flatten import flatten_json, unflatten_json


@dataclass(slots=True, frozen=True)
class LanguageItem:
    key: str
    value: Any
    primary_value: Any = None


@dataclass(slots=True, frozen=True)
class ChangeItem:
    key: str
    item: LanguageItem
    new_value: Any = None


@dataclass(slots=True)
class LanguageChanges:
    add: list[ChangeItem] = field(default_factory=list)
    modify: list[ChangeItem] = field(default_factory=list)
    delete: list[ChangeItem] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.add or self.modify or self.delete)


def apply_language_changes(
    content: dict[str, LanguageItem],
    changes: LanguageChanges,
) -> dict[str, LanguageItem]:
    """Return a copy of ``content`` with deletes, then adds, then modifies applied."""

    updated = dict(content)

    for change in changes.delete:
        updated.pop(change.key, None)

    for change in changes.add:
        updated[change.key] = change.item

    for change in changes.modify:
        updated[change.key] = replace(change.item, value=change.new_value)

    return updated


def content_from_document(
    document: dict[str, Any],
    primary_document: dict[str, Any] | None = None,
) -> dict[str, LanguageItem]:
    primary_flat = flatten_json(primary_document) if primary_document else {}
    return {
        key: LanguageItem(key=key, value=value, primary_value=primary_flat.get(key))
        for key, value in flatten_json(document).items()
    }


def document_from_content(content: dict[str, LanguageItem]) -> dict[str, Any]:
    return unflatten_json({key: item.value for key, item in content.items()})
