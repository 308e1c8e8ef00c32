"""
Identity registry.

Deduplicates in-memory instances that stand for the same persisted
identity. A registry holds one IdentityMap per component class and is
carried through a context variable, so concurrent tasks (or tests) can
work against separate registries.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from stowage.errors import UsageError, make_context

if TYPE_CHECKING:
    from stowage.component.component import Component

logger = logging.getLogger(__name__)


@dataclass
class IdentityMap:
    """Instances of one component class, keyed by each identifier they carry."""

    component_class: type
    _instances: dict[tuple[str, Any], Component] = field(default_factory=dict)

    def get(self, identifiers: dict[str, Any]) -> Component | None:
        """Look up an instance by an identifier descriptor ({name: value})."""
        for name, value in identifiers.items():
            instance = self._instances.get((name, value))
            if instance is not None:
                return instance
        return None

    def contains(self, instance: Component) -> bool:
        for attribute in instance.get_identifier_attributes():
            if attribute.is_set(instance):
                key = (attribute.name, attribute.get_value(instance))
                if self._instances.get(key) is instance:
                    return True
        return False

    def attach(self, instance: Component) -> None:
        keys = [
            (attribute.name, attribute.get_value(instance))
            for attribute in instance.get_identifier_attributes()
            if attribute.is_set(instance)
        ]
        for key in keys:
            existing = self._instances.get(key)
            if existing is not None and existing is not instance:
                raise UsageError(
                    f"A {self.component_class.__name__} instance with the same identifier "
                    f"({key[0]}={key[1]!r}) is already in the identity registry",
                    make_context(instance, key[0]),
                )
        for key in keys:
            self._instances[key] = instance
        logger.debug(f"Attached {self.component_class.__name__} instance for {keys!r}")

    def detach(self, instance: Component) -> None:
        stale = [key for key, value in self._instances.items() if value is instance]
        for key in stale:
            del self._instances[key]

    def __len__(self) -> int:
        return len({id(instance) for instance in self._instances.values()})


@dataclass
class IdentityRegistry:
    """All identity maps of one context."""

    _maps: dict[type, IdentityMap] = field(default_factory=dict)

    def get_map(self, component_class: type) -> IdentityMap:
        identity_map = self._maps.get(component_class)
        if identity_map is None:
            identity_map = IdentityMap(component_class)
            self._maps[component_class] = identity_map
        return identity_map

    def get(self, component_class: type, identifiers: dict[str, Any]) -> Component | None:
        return self.get_map(component_class).get(identifiers)

    def attach(self, instance: Component) -> None:
        self.get_map(type(instance)).attach(instance)

    def detach(self, instance: Component) -> None:
        self.get_map(type(instance)).detach(instance)

    def clear(self) -> None:
        self._maps.clear()


_default_registry = IdentityRegistry()
_current_registry: ContextVar[IdentityRegistry] = ContextVar("stowage_identity_registry")


def get_identity_registry() -> IdentityRegistry:
    """Registry of the current context (a process-wide one by default)."""
    return _current_registry.get(_default_registry)


@contextmanager
def use_identity_registry(registry: IdentityRegistry | None = None) -> Iterator[IdentityRegistry]:
    """Run a block against ``registry`` (a fresh one when omitted)."""
    registry = registry if registry is not None else IdentityRegistry()
    token = _current_registry.set(registry)
    try:
        yield registry
    finally:
        _current_registry.reset(token)
