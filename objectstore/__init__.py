"""
Object store over an embedded transactional key-value backend.

This package provides:
- ObjectStore.list_ids() - All stored ids
- ObjectStore.get(id) - Read a record
- ObjectStore.put(id, content_type, ...) - Create or replace a record
- ObjectStore.delete(id) - Remove a record
"""

from objectstore.backend import KVBackend
from objectstore.codec import ObjectRecord
from objectstore.store import ObjectStore

__all__ = ["KVBackend", "ObjectRecord", "ObjectStore"]
