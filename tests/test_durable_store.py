from __future__ import annotations

import json

from careconnect.core.storage import EncryptedFileStore, JsonFileStore, MemoryStore
from careconnect.core.storage.crypto import aesgcm_decrypt, aesgcm_encrypt, generate_key_bytes


def test_aesgcm_round_trip():
    key = generate_key_bytes()
    blob = aesgcm_encrypt(key, b"token", aad=b"t")
    assert aesgcm_decrypt(key, blob, aad=b"t") == b"token"


def test_memory_store():
    s = MemoryStore({"a": "1"})
    s.set("b", "2")
    s.remove("a")
    s.remove("missing")
    assert s.keys() == ["b"]
    assert s.get("a") is None


def test_json_store_persists(tmp_path):
    path = tmp_path / "secure" / "session.json"
    s = JsonFileStore(str(path))
    s.set("access_token", "abc")
    assert JsonFileStore(str(path)).get("access_token") == "abc"
    s.remove("access_token")
    assert json.loads(path.read_text(encoding="utf-8")) == {}


def test_json_store_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("{not json", encoding="utf-8")
    s = JsonFileStore(str(path))
    assert s.get("access_token") is None
    s.set("access_token", "x")
    assert JsonFileStore(str(path)).get("access_token") == "x"


def test_encrypted_store_hides_tokens(tmp_path):
    path = tmp_path / "session.enc"
    key = tmp_path / "session.key"
    s = EncryptedFileStore(str(path), key_path=str(key))
    s.set("refresh_token", "very-secret-refresh")
    raw = path.read_text(encoding="utf-8")
    assert "very-secret-refresh" not in raw
    assert EncryptedFileStore(str(path), key_path=str(key)).get("refresh_token") == "very-secret-refresh"


def test_encrypted_store_wrong_key_starts_empty(tmp_path):
    path = tmp_path / "session.enc"
    EncryptedFileStore(str(path), key_path=str(tmp_path / "a.key")).set("access_token", "x")
    other = EncryptedFileStore(str(path), key_path=str(tmp_path / "b.key"))
    assert other.get("access_token") is None
