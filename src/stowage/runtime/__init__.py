"""
Storable runtime.

This module provides:
- Storable properties (loaders, finders, attribute-level hooks)
- Instance-level lifecycle hooks
- Index declarations
- Query parsing and normalization
- The StorableComponent orchestrator (get, load, save, delete, find, count)
- The store contract, a document store base and an in-memory store
- The remote capability for store-less components

Example usage:
    >>> from stowage.runtime import MemoryStore, StorableComponent, attribute, primary_identifier
    >>>
    >>> class Movie(StorableComponent):
    ...     id = primary_identifier()
    ...     title = attribute("string")
    >>>
    >>> store = MemoryStore()
    >>> store.register_storable(Movie)
    >>> await Movie(title="Inception").save()
"""

from stowage.runtime.hooks import (
    HookDescriptor,
    HookKind,
    HookRegistry,
    after_delete,
    after_load,
    after_save,
    before_delete,
    before_load,
    before_save,
)
from stowage.runtime.index import Index, IndexDeclaration, index
from stowage.runtime.properties import (
    StorableAttribute,
    StorableMethod,
    StorablePropertyMixin,
    attribute,
    method,
    primary_identifier,
    secondary_identifier,
)
from stowage.runtime.query import QueryNormalizer, normalize_query, parse_query
from stowage.runtime.remote import RemoteCapability
from stowage.runtime.storable import StorableComponent
from stowage.runtime.store import Store, StoreLike, TraceEntry, build_index_schemas
from stowage.runtime.memory_store import MemoryDatabase, MemoryStore

__all__ = [
    # Hooks
    "HookDescriptor",
    "HookKind",
    "HookRegistry",
    "after_delete",
    "after_load",
    "after_save",
    "before_delete",
    "before_load",
    "before_save",
    # Index
    "Index",
    "IndexDeclaration",
    "index",
    # Properties
    "StorableAttribute",
    "StorableMethod",
    "StorablePropertyMixin",
    "attribute",
    "method",
    "primary_identifier",
    "secondary_identifier",
    # Query
    "QueryNormalizer",
    "normalize_query",
    "parse_query",
    # Orchestrator
    "RemoteCapability",
    "StorableComponent",
    # Stores
    "MemoryDatabase",
    "MemoryStore",
    "Store",
    "StoreLike",
    "TraceEntry",
    "build_index_schemas",
]
