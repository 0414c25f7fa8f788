"""Atomic, concurrency-safe JSON and JSONL files."""

import json
import os
import tempfile
from contextlib import contextmanager
from typing import Any, Iterator

from filelock import FileLock


class FileStore:

    @staticmethod
    def _lock_path(file_path: str) -> str:
        return f"{file_path}.lock"

    @staticmethod
    def _load(file_path: str, default: Any) -> Any:
        if not os.path.exists(file_path):
            return default
        with open(file_path, "r") as f:
            return json.load(f)

    @staticmethod
    def _replace(file_path: str, data: Any) -> None:
        os.makedirs(os.path.dirname(file_path), exist_ok=True)
        fd, tmp = tempfile.mkstemp(
            dir=os.path.dirname(file_path), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2, default=str)
            os.replace(tmp, file_path)
        except Exception:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    @staticmethod
    def read_json(file_path: str, default: Any = None) -> Any:
        os.makedirs(os.path.dirname(file_path), exist_ok=True)
        with FileLock(FileStore._lock_path(file_path)):
            return FileStore._load(file_path, default if default is not None else {})

    @staticmethod
    def write_json(file_path: str, data: Any) -> None:
        os.makedirs(os.path.dirname(file_path), exist_ok=True)
        with FileLock(FileStore._lock_path(file_path)):
            FileStore._replace(file_path, data)

    @staticmethod
    @contextmanager
    def locked_json(file_path: str, default: Any = None) -> Iterator[Any]:
        """Hold the file lock across a read-modify-write.

        The yielded document is written back only if the block exits
        cleanly, so a raised exception leaves the file untouched. Callers
        must not await inside the block.
        """
        os.makedirs(os.path.dirname(file_path), exist_ok=True)
        with FileLock(FileStore._lock_path(file_path)):
            data = FileStore._load(file_path, default if default is not None else {})
            yield data
            FileStore._replace(file_path, data)

    @staticmethod
    def append_jsonl(file_path: str, record: dict) -> None:
        os.makedirs(os.path.dirname(file_path), exist_ok=True)
        with FileLock(FileStore._lock_path(file_path)):
            with open(file_path, "a") as f:
                f.write(json.dumps(record, default=str) + "\n")

    @staticmethod
    def read_jsonl(file_path: str) -> list[dict]:
        os.makedirs(os.path.dirname(file_path), exist_ok=True)
        with FileLock(FileStore._lock_path(file_path)):
            if not os.path.exists(file_path):
                return []
            records = []
            with open(file_path, "r") as f:
                for line in f:
                    line = line.strip()
                    if line:
                        records.append(json.loads(line))
            return records

