from contactsync.store.persistence import FileStorage, KeyValueStorage, MemoryStorage
from contactsync.store.store import ContactStore, MutationResult, StoreChange

__all__ = [
    "ContactStore",
    "FileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "MutationResult",
    "StoreChange",
]
