"""
Remote capability for store-less storable components.

A component class that is not registered in a store may still be
loaded, saved, deleted and queried through a remote peer. Set
``__remote__`` on the class to an object implementing RemoteCapability;
the orchestrator calls it with these method names and arguments:

    load    (instance, selector, throw_if_missing=...)           -> document | None
    get     (class, identifiers, selector, throw_if_missing=...) -> document | None
    save    (instance, document, throw_if_missing=..., throw_if_exists=...) -> truthy | None
    delete  (instance, throw_if_missing=...)                     -> truthy | None
    find    (class, query, sort=..., skip=..., limit=...)        -> list of documents
    count   (class, query)                                       -> int

Documents follow ``Component.serialize``. Values received this way are
stamped with the ``remote`` value source.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class RemoteCapability(ABC):
    """Dispatches storable operations to a remote peer."""

    @abstractmethod
    def has_method(self, name: str) -> bool:
        """Whether the peer exposes the operation ``name``."""
        pass

    @abstractmethod
    async def call_method(self, target: Any, name: str, *args: Any, **kwargs: Any) -> Any:
        """Invoke ``name`` on the peer for ``target`` (an instance or a class)."""
        pass
