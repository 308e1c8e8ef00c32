"""
Component properties: attributes, identifier attributes and methods.

Attributes are data descriptors. Each instance keeps, per attribute name,
a value and the source that value came from. An attribute without an
entry is *unset*, which is distinct from holding ``None``.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from stowage.component.identity_map import get_identity_registry
from stowage.errors import UnsetAttributeError, UsageError, make_context
from stowage.component.value_types import ValueType, parse_value_type

if TYPE_CHECKING:
    from stowage.component.component import Component


class ValueSource(str, Enum):
    """Where an attribute value was last confirmed."""

    LOCAL = "local"
    STORE = "store"
    REMOTE = "remote"


_MISSING: Any = object()

# Per-instance storage keys in the instance __dict__
_VALUES_KEY = "_stowage_values"
_SOURCES_KEY = "_stowage_sources"


def _values(instance: Any) -> dict[str, Any]:
    return instance.__dict__.setdefault(_VALUES_KEY, {})


def _sources(instance: Any) -> dict[str, ValueSource]:
    return instance.__dict__.setdefault(_SOURCES_KEY, {})


class Property:
    """A named member of a component class."""

    def __init__(self) -> None:
        self.name: str = ""
        self.owner: type | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name
        self.owner = owner

    def describe(self) -> str:
        owner = getattr(self.owner, "__component_name__", None) or "?"
        return f"{type(self).__name__} '{self.name}' of '{owner}'"

    def __repr__(self) -> str:
        return f"<{self.describe()}>"


class Attribute(Property):
    """
    Data attribute of a component.

    Args:
        value_type: Value type declaration (see parse_value_type)
        default: Value (or zero-argument callable) assigned to new instances
        validators: Callables ``value -> bool``; a falsy result is a validation failure
    """

    def __init__(
        self,
        value_type: Any = "any",
        *,
        default: Any = _MISSING,
        validators: tuple[Callable[[Any], bool], ...] | list[Callable[[Any], bool]] = (),
    ) -> None:
        super().__init__()
        self._value_type_spec = value_type
        self._value_type: ValueType | None = None
        self.default = default
        self.validators = tuple(validators)

    @property
    def value_type(self) -> ValueType:
        if self._value_type is None:
            self._value_type = parse_value_type(self._value_type_spec)
        return self._value_type

    @property
    def has_default(self) -> bool:
        return self.default is not _MISSING

    def evaluate_default(self, instance: Component) -> Any:
        if callable(self.default):
            return self.default()
        return self.default

    # -------------------------------------------------------------------------
    # Descriptor protocol
    # -------------------------------------------------------------------------

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        values = _values(instance)
        if self.name not in values:
            raise UnsetAttributeError(
                "Cannot get the value of an unset attribute",
                make_context(instance, self.name),
            )
        return values[self.name]

    def __set__(self, instance: Any, value: Any) -> None:
        self.set_value(instance, value)

    def __delete__(self, instance: Any) -> None:
        self.unset_value(instance)

    # -------------------------------------------------------------------------
    # Value access
    # -------------------------------------------------------------------------

    def is_set(self, instance: Any) -> bool:
        return self.name in _values(instance)

    def get_value(self, instance: Any, default: Any = _MISSING) -> Any:
        values = _values(instance)
        if self.name in values:
            return values[self.name]
        if default is not _MISSING:
            return default
        raise UnsetAttributeError(
            "Cannot get the value of an unset attribute", make_context(instance, self.name)
        )

    def set_value(
        self, instance: Any, value: Any, source: ValueSource = ValueSource.LOCAL
    ) -> None:
        failures = self.value_type.check(value, self.name)
        if failures and value is not None:
            raise UsageError(failures[0].message, make_context(instance, self.name))
        _values(instance)[self.name] = value
        _sources(instance)[self.name] = source

    def unset_value(self, instance: Any) -> None:
        _values(instance).pop(self.name, None)
        _sources(instance).pop(self.name, None)

    def get_value_source(self, instance: Any) -> ValueSource | None:
        """Source of the current value, or None when unset."""
        return _sources(instance).get(self.name)

    def set_value_source(self, instance: Any, source: ValueSource) -> None:
        if self.is_set(instance):
            _sources(instance)[self.name] = source

    def run_validators(self, instance: Any) -> list[str]:
        """Return failure messages for the current value (an unset value passes)."""
        if not self.is_set(instance):
            return []
        value = self.get_value(instance)
        messages = [failure.message for failure in self.value_type.check(value, self.name)]
        if value is not None:
            for validator in self.validators:
                if not validator(value):
                    label = getattr(validator, "__name__", "validator")
                    messages.append(f"The validator '{label}' failed")
        return messages


class IdentifierAttribute(Attribute):
    """An attribute that identifies instances. Implicitly indexed."""

    def __init__(self, value_type: Any = "string", **kwargs: Any) -> None:
        super().__init__(value_type, **kwargs)

    def set_value(
        self, instance: Any, value: Any, source: ValueSource = ValueSource.LOCAL
    ) -> None:
        if value is None:
            raise UsageError(
                "The value of an identifier attribute cannot be None",
                make_context(instance, self.name),
            )
        previous = _values(instance).get(self.name, _MISSING)
        if (
            isinstance(self, PrimaryIdentifierAttribute)
            and previous is not _MISSING
            and previous != value
            and not instance.is_new()
        ):
            raise UsageError(
                "The value of an identifier attribute cannot be modified",
                make_context(instance, self.name),
            )
        attached = instance.is_attached()
        if attached:
            existing = get_identity_registry().get(type(instance), {self.name: value})
            if existing is not None and existing is not instance:
                raise UsageError(
                    f"Another instance already holds the identifier {self.name}={value!r}",
                    make_context(instance, self.name),
                )
            instance.detach()
        super().set_value(instance, value, source)
        if attached:
            instance.attach()


def generate_id() -> str:
    return uuid4().hex


class PrimaryIdentifierAttribute(IdentifierAttribute):
    """The primary identifier. New instances get a generated id by default."""

    def __init__(self, value_type: Any = "string", **kwargs: Any) -> None:
        kwargs.setdefault("default", generate_id)
        super().__init__(value_type, **kwargs)


class SecondaryIdentifierAttribute(IdentifierAttribute):
    """A unique alternative identifier (e.g. a slug or an email)."""

    pass


class Method(Property):
    """A method exposed as a component property."""

    def __init__(self, func: Callable[..., Any]) -> None:
        super().__init__()
        self.func = func
        self.__doc__ = func.__doc__

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        return self.func.__get__(instance, owner)
