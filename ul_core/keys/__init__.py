"""Translation keys, values and JSON (un)flattening."""

from ul_core.keys.json_flatten import flatten_json, unflatten_json
from ul_core.keys.key_store import (
    ImportSummary,
    TranslationKeyRecord,
    create_translation_key,
    delete_translation_keys,
    export_namespace_json,
    import_namespace_json,
    list_translation_keys,
    namespace_values,
    set_translation_value,
)

__all__ = [
    "ImportSummary",
    "TranslationKeyRecord",
    "create_translation_key",
    "delete_translation_keys",
    "export_namespace_json",
    "flatten_json",
    "import_namespace_json",
    "list_translation_keys",
    "namespace_values",
    "set_translation_value",
    "unflatten_json",
]
