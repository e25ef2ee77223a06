"""Local durable key/value storage for the agent (the persisted user id)."""

import json
import os
from pathlib import Path
from typing import Dict, Optional, Protocol


class StorageError(Exception):
    """Storage backend could not be read or written."""


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStorage:
    """Process-local storage; values are lost when the process exits."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value


class FileStorage:
    """JSON file storage.

    The whole document is rewritten on every `set` through a temporary file
    and `os.replace`, so a crash never leaves a truncated file behind.
    """

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path).expanduser()

    def _read(self) -> Dict[str, str]:
        try:
            with open(self.path, encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            raise StorageError(f'Cannot read {self.path}: {e}') from e

        if not isinstance(data, dict):
            raise StorageError(f'Unexpected content in {self.path}')
        return data

    def get(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        try:
            data = self._read()
        except StorageError:
            data = {}
        data[key] = value

        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f'Cannot write {self.path}: {e}') from e
