"""
Storable property metadata.

Extends component properties with what the storable orchestrator needs:

- a *loader* on attributes, producing a derived value from the instance
- a *finder* on attributes and methods, turning a query fragment keyed by
  the property name into a query over persisted attributes
- attribute-level lifecycle hooks

An attribute with a loader or a finder is *computed*: it is never sent to
a store and never required for a save.

Declaration::

    class User(StorableComponent):
        id = primary_identifier()
        first_name = attribute("string")
        last_name = attribute("string")
        full_name = attribute("string?")

        @full_name.loader
        def _load_full_name(self):
            return f"{self.first_name} {self.last_name}"

        @full_name.finder
        def _find_full_name(cls, value):
            first, last = value.split(" ", 1)
            return {"first_name": first, "last_name": last}
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from stowage.component.properties import (
    Attribute,
    Method,
    PrimaryIdentifierAttribute,
    SecondaryIdentifierAttribute,
)
from stowage.errors import UsageError
from stowage.runtime.hooks import HookKind, call_maybe_async

Loader = Callable[[Any], Any]
Finder = Callable[[type, Any], Any]
AttributeHook = Callable[[Any], Any]


class StorablePropertyMixin:
    """Finder support shared by storable attributes and methods."""

    name: str
    _finder: Finder | None = None

    @property
    def has_finder(self) -> bool:
        return self._finder is not None

    def finder(self, func: Finder) -> Finder:
        """Decorator form: ``@prop.finder`` on a ``(cls, value) -> query`` function."""
        self._finder = func
        return func

    async def call_finder(self, component_class: type, value: Any) -> dict[str, Any]:
        if self._finder is None:
            raise UsageError(f"The property '{self.name}' has no finder")
        query = await call_maybe_async(self._finder, component_class, value)
        if not isinstance(query, dict):
            raise UsageError(
                f"The finder of '{self.name}' should return a query dict, "
                f"got '{type(query).__name__}'"
            )
        return query


class StorableAttribute(StorablePropertyMixin, Attribute):
    """
    Attribute with optional loader, finder and lifecycle hooks.

    Args:
        value_type: Value type declaration
        default: Default for new instances
        validators: Value validators
        loader: ``(instance) -> value``, sync or async
        finder: ``(cls, value) -> query``, sync or async
        before_load ... after_delete: ``(instance) -> None`` hooks, sync or async
    """

    def __init__(
        self,
        value_type: Any = "any",
        *,
        loader: Loader | None = None,
        finder: Finder | None = None,
        before_load: AttributeHook | None = None,
        after_load: AttributeHook | None = None,
        before_save: AttributeHook | None = None,
        after_save: AttributeHook | None = None,
        before_delete: AttributeHook | None = None,
        after_delete: AttributeHook | None = None,
        **options: Any,
    ) -> None:
        super().__init__(value_type, **options)
        self._loader = loader
        self._finder = finder
        self._hooks: dict[HookKind, AttributeHook] = {}
        for kind, hook in (
            (HookKind.BEFORE_LOAD, before_load),
            (HookKind.AFTER_LOAD, after_load),
            (HookKind.BEFORE_SAVE, before_save),
            (HookKind.AFTER_SAVE, after_save),
            (HookKind.BEFORE_DELETE, before_delete),
            (HookKind.AFTER_DELETE, after_delete),
        ):
            if hook is not None:
                self._hooks[kind] = hook

    # -------------------------------------------------------------------------
    # Loader
    # -------------------------------------------------------------------------

    @property
    def has_loader(self) -> bool:
        return self._loader is not None

    @property
    def is_computed(self) -> bool:
        return self.has_loader or self.has_finder

    def loader(self, func: Loader) -> Loader:
        """Decorator form: ``@attr.loader`` on a ``(self) -> value`` method."""
        self._loader = func
        return func

    async def call_loader(self, instance: Any) -> Any:
        if self._loader is None:
            raise UsageError(f"The attribute '{self.name}' has no loader")
        return await call_maybe_async(self._loader, instance)

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    def has_hook(self, kind: HookKind) -> bool:
        return kind in self._hooks

    def set_hook(self, kind: HookKind, func: AttributeHook) -> AttributeHook:
        self._hooks[kind] = func
        return func

    async def call_hook(self, kind: HookKind, instance: Any) -> None:
        hook = self._hooks.get(kind)
        if hook is not None:
            await call_maybe_async(hook, instance)

    def before_load(self, func: AttributeHook) -> AttributeHook:
        return self.set_hook(HookKind.BEFORE_LOAD, func)

    def after_load(self, func: AttributeHook) -> AttributeHook:
        return self.set_hook(HookKind.AFTER_LOAD, func)

    def before_save(self, func: AttributeHook) -> AttributeHook:
        return self.set_hook(HookKind.BEFORE_SAVE, func)

    def after_save(self, func: AttributeHook) -> AttributeHook:
        return self.set_hook(HookKind.AFTER_SAVE, func)

    def before_delete(self, func: AttributeHook) -> AttributeHook:
        return self.set_hook(HookKind.BEFORE_DELETE, func)

    def after_delete(self, func: AttributeHook) -> AttributeHook:
        return self.set_hook(HookKind.AFTER_DELETE, func)


class StorableMethod(StorablePropertyMixin, Method):
    """Method that can appear in queries through its finder."""

    def __init__(self, func: Callable[..., Any], finder: Finder | None = None) -> None:
        super().__init__(func)
        self._finder = finder


# =============================================================================
# Declaration helpers
# =============================================================================


def attribute(value_type: Any = "any", **options: Any) -> StorableAttribute:
    """Declare a storable attribute (see StorableAttribute for options)."""
    return StorableAttribute(value_type, **options)


def primary_identifier(value_type: Any = "string", **options: Any) -> PrimaryIdentifierAttribute:
    """Declare the primary identifier. New instances get a generated id unless a default is given."""
    return PrimaryIdentifierAttribute(value_type, **options)


def secondary_identifier(
    value_type: Any = "string", **options: Any
) -> SecondaryIdentifierAttribute:
    """Declare a secondary identifier (unique, implicitly indexed)."""
    return SecondaryIdentifierAttribute(value_type, **options)


def method(
    func: Callable[..., Any] | None = None, *, finder: Finder | None = None
) -> Any:
    """Declare a storable method, optionally queryable through ``finder``.

    Usable bare (``@method``) or with options (``@method(finder=...)``).
    """
    if func is not None:
        return StorableMethod(func, finder=finder)

    def decorator(inner: Callable[..., Any]) -> StorableMethod:
        return StorableMethod(inner, finder=finder)

    return decorator
