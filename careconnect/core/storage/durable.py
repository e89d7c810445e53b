from __future__ import annotations

"""
Durable key-value stores for session tokens.

The session manager only needs get/set/remove on string values; every
implementation here is safe to share between threads.
"""

import json
import logging
import os
import tempfile
import threading
from typing import Dict, Optional, Protocol

from cryptography.exceptions import InvalidTag

from careconnect.core.storage.crypto import aesgcm_decrypt, aesgcm_encrypt, best_effort_restrict_permissions, load_or_create_key


logger = logging.getLogger(__name__)


class DurableStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._lock = threading.Lock()
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = str(value)

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)


class JsonFileStore:
    """
    Plain JSON file. Every write replaces the file atomically.

    A corrupt or unreadable file is treated as empty (the user logs in again);
    it is never fatal.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self._data: Dict[str, str] = self._load()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = str(value)
            self._flush_locked()

    def remove(self, key: str) -> None:
        with self._lock:
            if key not in self._data:
                return
            del self._data[key]
            self._flush_locked()

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)

    # ---- encoding hooks ----
    def _encode(self, data: Dict[str, str]) -> Dict[str, object]:
        return dict(data)

    def _decode(self, obj: Dict[str, object]) -> Dict[str, str]:
        return {str(k): str(v) for k, v in obj.items()}

    # ---- internals ----
    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                obj = json.load(f)
            if not isinstance(obj, dict):
                raise ValueError("store root is not an object")
            return self._decode(obj)
        except (OSError, ValueError, KeyError, InvalidTag) as e:
            logger.warning("Durable store %s unreadable (%s); starting empty.", self.path, type(e).__name__)
            return {}

    def _flush_locked(self) -> None:
        parent = os.path.dirname(self.path) or "."
        os.makedirs(parent, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._encode(self._data), f, sort_keys=True)
            os.replace(tmp, self.path)
            best_effort_restrict_permissions(self.path)
        finally:
            if os.path.exists(tmp):
                try:
                    os.remove(tmp)
                except OSError:
                    pass


class EncryptedFileStore(JsonFileStore):
    """
    JsonFileStore whose contents are sealed with AES-GCM. The key file is
    created on first use.
    """

    aad = b"careconnect.session_store.v1"

    def __init__(self, path: str, *, key_path: str):
        self._key = load_or_create_key(key_path)
        super().__init__(path)

    def _encode(self, data: Dict[str, str]) -> Dict[str, object]:
        return aesgcm_encrypt(self._key, json.dumps(data, sort_keys=True).encode("utf-8"), aad=self.aad)

    def _decode(self, obj: Dict[str, object]) -> Dict[str, str]:
        plain = aesgcm_decrypt(self._key, obj, aad=self.aad)
        data = json.loads(plain.decode("utf-8"))
        if not isinstance(data, dict):
            raise ValueError("decrypted store is not an object")
        return {str(k): str(v) for k, v in data.items()}
