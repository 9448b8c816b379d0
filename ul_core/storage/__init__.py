"""Blob storage for generated JSON files."""

from ul_core.storage.file_store import (
    StoredFile,
    delete_file,
    read_json_file,
    read_text_file,
    store_json,
)

__all__ = ["StoredFile", "delete_file", "read_json_file", "read_text_file", "store_json"]
