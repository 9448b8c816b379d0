from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

_FILE_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


@dataclass(slots=True, frozen=True)
class StoredFile:
    file_id: str
    file_size: int


def _file_path(files_dir: Path, file_id: str) -> Path:
    if not _FILE_ID_PATTERN.match(file_id):
        raise ValueError(f"Invalid file id: {file_id!r}")
    return Path(files_dir) / f"{file_id}.json"


def store_json(files_dir: Path, payload: Any) -> StoredFile:
    """Serialize ``payload`` as pretty-printed JSON and store it under a new id."""

    files_dir = Path(files_dir)
    files_dir.mkdir(parents=True, exist_ok=True)

    data = json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")
    file_id = uuid4().hex
    target = _file_path(files_dir, file_id)
    temp_path = target.with_suffix(".tmp")
    temp_path.write_bytes(data)
    os.replace(temp_path, target)
    return StoredFile(file_id=file_id, file_size=len(data))


def read_text_file(files_dir: Path, file_id: str) -> str | None:
    path = _file_path(files_dir, file_id)
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8")


def read_json_file(files_dir: Path, file_id: str) -> Any:
    content = read_text_file(files_dir, file_id)
    if content is None:
        raise FileNotFoundError(f"Stored file not found: {file_id}")
    return json.loads(content)


def delete_file(files_dir: Path, file_id: str | None) -> None:
    if not file_id:
        return
    _file_path(files_dir, file_id).unlink(missing_ok=True)
