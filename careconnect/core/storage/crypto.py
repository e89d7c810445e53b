from __future__ import annotations

import base64
import os
import secrets
from typing import Dict

from cryptography.hazmat.primitives.ciphers.aead import AESGCM


class KeyFileError(RuntimeError):
    pass


def _b64e(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("ascii")


def _b64d(s: str) -> bytes:
    return base64.urlsafe_b64decode(s.encode("ascii"))


def generate_key_bytes() -> bytes:
    # AES-256
    return secrets.token_bytes(32)


def best_effort_restrict_permissions(path: str) -> None:
    """
    Tighten to 0o600 on POSIX; a no-op elsewhere.
    """
    if os.name == "nt":
        return
    try:
        os.chmod(path, 0o600)
    except OSError:
        return


def write_key_file(path: str, key_bytes: bytes) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "wb") as f:
        f.write(key_bytes)
    best_effort_restrict_permissions(path)


def load_or_create_key(path: str) -> bytes:
    if not os.path.exists(path):
        key = generate_key_bytes()
        write_key_file(path, key)
        return key
    with open(path, "rb") as f:
        b = f.read()
    if len(b) != 32:
        raise KeyFileError(f"Session key at {path!r} must be 32 bytes (AES-256).")
    return b


def aesgcm_encrypt(key: bytes, plaintext: bytes, aad: bytes = b"") -> Dict[str, object]:
    nonce = secrets.token_bytes(12)
    ct = AESGCM(key).encrypt(nonce, plaintext, aad or None)
    return {"v": 1, "nonce": _b64e(nonce), "ciphertext": _b64e(ct)}


def aesgcm_decrypt(key: bytes, blob: Dict[str, object], aad: bytes = b"") -> bytes:
    if blob.get("v") != 1:
        raise ValueError("Unsupported encrypted blob version.")
    return AESGCM(key).decrypt(_b64d(str(blob["nonce"])), _b64d(str(blob["ciphertext"])), aad or None)
