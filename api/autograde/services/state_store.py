"""
State Store
Durable key-value storage for exam keys, config, selections and the last image.
"""
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from autograde.config import MAX_STORED_IMAGE_CHARS, STORAGE_KEY_IMAGE


class StateStore:
    """
    A JSON file holding one value per storage key.

    Every `set`/`remove` rewrites the file immediately. Keys are
    independent, so a failed write only loses that update. Writes replace
    the file atomically; an unreadable file is moved to `<name>.corrupt`
    before anything is written. With no path the store lives in memory only.
    """

    def __init__(self, path: Optional[Path] = None, max_image_chars: int = MAX_STORED_IMAGE_CHARS):
        self.path = Path(path) if path is not None else None
        self.max_image_chars = max_image_chars
        self.writable = True
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            print(f"[Store] Failed to load saved state from {self.path}: {e}")
            self._quarantine()
            return {}
        if not isinstance(data, dict):
            print(f"[Store] Saved state in {self.path} is not an object")
            self._quarantine()
            return {}
        return data

    def _quarantine(self) -> None:
        """Moves an unreadable state file aside so new writes cannot replace it."""
        corrupt_path = self.path.with_name(self.path.name + ".corrupt")
        try:
            os.replace(self.path, corrupt_path)
            print(f"[Store] Kept unreadable state as {corrupt_path}")
        except OSError as e:
            print(f"[Store] Could not move unreadable state aside, saving disabled: {e}")
            self.writable = False

    def _write(self) -> None:
        if self.path is None or not self.writable:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Swap in a fully written sibling file.
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except Exception:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._write()

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._write()

    def save_image(self, data_url: str) -> bool:
        """
        Stores the last uploaded image as a data URL.

        Returns:
            False when the image is too large and was dropped instead.
        """
        if len(data_url) > self.max_image_chars:
            print("[Store] Image too large to persist; it will not survive a restart")
            self.remove(STORAGE_KEY_IMAGE)
            return False
        self.set(STORAGE_KEY_IMAGE, data_url)
        return True
