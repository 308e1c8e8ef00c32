"""
stowage - storable components with partial loading, hooks and a query algebra.

Components declare attributes; storable components add get/load/save/
delete/find/count against a pluggable store (or a remote peer), computed
attributes, lifecycle hooks and indexes.
"""

from stowage.component import (
    Component,
    EmbeddedComponent,
    ValueSource,
    get_identity_registry,
    use_identity_registry,
)
from stowage.errors import (
    CapabilityError,
    ConflictError,
    NotFoundError,
    StowageError,
    UnloadedArrayItemError,
    UsageError,
    ValidationError,
)
from stowage.runtime import (
    MemoryDatabase,
    MemoryStore,
    RemoteCapability,
    StorableComponent,
    Store,
    after_delete,
    after_load,
    after_save,
    attribute,
    before_delete,
    before_load,
    before_save,
    index,
    method,
    primary_identifier,
    secondary_identifier,
)
from stowage.specs import MigrationReport

__version__ = "0.4.0"

__all__ = [
    "CapabilityError",
    "Component",
    "ConflictError",
    "EmbeddedComponent",
    "MemoryDatabase",
    "MemoryStore",
    "MigrationReport",
    "NotFoundError",
    "RemoteCapability",
    "StorableComponent",
    "Store",
    "StowageError",
    "UnloadedArrayItemError",
    "UsageError",
    "ValidationError",
    "ValueSource",
    "__version__",
    "after_delete",
    "after_load",
    "after_save",
    "attribute",
    "before_delete",
    "before_load",
    "before_save",
    "get_identity_registry",
    "index",
    "method",
    "primary_identifier",
    "secondary_identifier",
    "use_identity_registry",
]
