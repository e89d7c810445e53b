from careconnect.core.storage.durable import DurableStore, EncryptedFileStore, JsonFileStore, MemoryStore

__all__ = ["DurableStore", "EncryptedFileStore", "JsonFileStore", "MemoryStore"]
