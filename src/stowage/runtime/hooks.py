"""
Lifecycle hooks for storable components.

Six hook kinds exist: before/after crossed with load/save/delete.

Attribute-level hooks are attached to a StorableAttribute and fire only
when that attribute is part of the operation's resolved selector.
Instance-level hooks are methods decorated with ``@before_save`` (etc.)
and fire once per operation. They are collected into a HookRegistry when
the class is defined, base-class hooks first::

    class Article(StorableComponent):
        @before_save
        async def touch(self, selector):
            self.updated_at = datetime.now()

Order for every kind: attribute-level hooks (declaration order), then
instance-level hooks (base first, then derived). Hooks may be sync or
async; an exception aborts the operation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

HOOK_MARKER = "__stowage_hook__"


class HookKind(str, Enum):
    """Lifecycle hook points."""

    BEFORE_LOAD = "before_load"
    AFTER_LOAD = "after_load"
    BEFORE_SAVE = "before_save"
    AFTER_SAVE = "after_save"
    BEFORE_DELETE = "before_delete"
    AFTER_DELETE = "after_delete"


@dataclass
class HookDescriptor:
    """An instance-level hook: a component method bound to a hook kind."""

    kind: HookKind
    name: str
    owner: str
    function: Callable[..., Any]


@dataclass
class HookRegistry:
    """Instance-level hooks of one component class, grouped by kind.

    Hooks keep base-then-derived order. A derived class redefining a hook
    method under the same name replaces the inherited entry in place.
    """

    _hooks: dict[HookKind, list[HookDescriptor]] = field(default_factory=dict)

    def register(self, descriptor: HookDescriptor) -> None:
        """Register a hook descriptor."""
        hooks = self._hooks.setdefault(descriptor.kind, [])
        for index, existing in enumerate(hooks):
            if existing.name == descriptor.name:
                hooks[index] = descriptor
                break
        else:
            hooks.append(descriptor)
        logger.debug("Registered %s hook %s.%s", descriptor.kind.value, descriptor.owner, descriptor.name)

    def get_hooks(self, kind: HookKind) -> list[HookDescriptor]:
        """Get the hooks of one kind, in call order."""
        return self._hooks.get(kind, [])

    def copy(self) -> HookRegistry:
        return HookRegistry({kind: list(hooks) for kind, hooks in self._hooks.items()})

    @property
    def count(self) -> int:
        """Total number of registered hooks."""
        return sum(len(v) for v in self._hooks.values())

    def summary(self) -> dict[str, int]:
        """Return a summary of hooks per kind."""
        return {k.value: len(v) for k, v in self._hooks.items() if v}


def build_hook_registry(cls: type, inherited: HookRegistry | None) -> HookRegistry:
    """Extend the inherited registry with the hook methods defined in ``cls`` itself."""
    registry = inherited.copy() if inherited is not None else HookRegistry()
    for name, member in cls.__dict__.items():
        kind = getattr(member, HOOK_MARKER, None)
        if kind is None:
            continue
        registry.register(
            HookDescriptor(kind=kind, name=name, owner=cls.__qualname__, function=member)
        )
    return registry


def _hook_decorator(kind: HookKind) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        setattr(func, HOOK_MARKER, kind)
        return func

    decorator.__name__ = kind.value
    decorator.__doc__ = f"Declare a method as an instance-level {kind.value} hook."
    return decorator


before_load = _hook_decorator(HookKind.BEFORE_LOAD)
after_load = _hook_decorator(HookKind.AFTER_LOAD)
before_save = _hook_decorator(HookKind.BEFORE_SAVE)
after_save = _hook_decorator(HookKind.AFTER_SAVE)
before_delete = _hook_decorator(HookKind.BEFORE_DELETE)
after_delete = _hook_decorator(HookKind.AFTER_DELETE)


async def call_maybe_async(func: Callable[..., Any], *args: Any) -> Any:
    """Call ``func`` and await the result when it is a coroutine."""
    result = func(*args)
    if asyncio.iscoroutine(result):
        result = await result
    return result
