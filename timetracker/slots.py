from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from .errors import CorruptStateError, StorageError

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class SlotStore:
    """Named JSON blobs in a directory, one file per slot.

    Writes go through a temp file and os.replace so a slot is either the
    old value or the new one, never half written.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root).expanduser()

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"invalid slot key: {key!r}")
        return self.root / f"{key}.json"

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def read(self, key: str) -> Any | None:
        path = self._path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"slot {key} unreadable: {exc}") from exc
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CorruptStateError(f"slot {key} is not valid json") from exc

    def write(self, key: str, value: Any) -> None:
        path = self._path(key)
        body = json.dumps(value, ensure_ascii=False)
        tmp_name: str | None = None
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.root,
                prefix=f".{key}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(body)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as exc:
            raise StorageError(f"slot {key} write failed: {exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"slot {key} delete failed: {exc}") from exc

    def keys(self, prefix: str = "") -> list[str]:
        if not self.root.exists():
            return []
        names = [p.stem for p in self.root.glob("*.json") if p.stem.startswith(prefix)]
        return sorted(names)
