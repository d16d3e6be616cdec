"""
Client identity package.

Provides a stable, persisted client identifier and the key-value stores
it is kept in.
"""

from .provider import IdentityProvider, generate_identity
from .store import JsonFileStore, KeyValueStore, MemoryStore

__all__ = [
    "IdentityProvider",
    "generate_identity",
    "KeyValueStore",
    "JsonFileStore",
    "MemoryStore",
]
