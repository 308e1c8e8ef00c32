"""
Value types for component attributes.

A value type is parsed from a short string (``"string"``, ``"number[]"``,
``"Person?"``), a Python type, a component class, or a ValueType instance.
Component types may be named before the class exists; the name is
resolved through the component registry on first use.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from stowage.errors import UsageError, ValidationFailure

if TYPE_CHECKING:
    from stowage.component.component import Component


class ValueType:
    """Base value type: accepts anything, optionally ``None``."""

    name = "any"
    is_indexable = True

    def __init__(self, is_optional: bool = False):
        self.is_optional = is_optional

    def check(self, value: Any, path: str = "") -> list[ValidationFailure]:
        if value is None:
            if self.is_optional:
                return []
            return [ValidationFailure(path=path, message="A value is required")]
        if not self.accepts(value):
            return [
                ValidationFailure(
                    path=path,
                    message=f"Expected a value of type '{self}', got '{type(value).__name__}'",
                )
            ]
        return []

    def accepts(self, value: Any) -> bool:
        return True

    def __str__(self) -> str:
        return f"{self.name}?" if self.is_optional else self.name

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self}>"


class AnyType(ValueType):
    name = "any"
    is_indexable = False


class StringType(ValueType):
    name = "string"

    def accepts(self, value: Any) -> bool:
        return isinstance(value, str)


class NumberType(ValueType):
    name = "number"

    def accepts(self, value: Any) -> bool:
        return isinstance(value, (int, float)) and not isinstance(value, bool)


class BooleanType(ValueType):
    name = "boolean"

    def accepts(self, value: Any) -> bool:
        return isinstance(value, bool)


class DateTimeType(ValueType):
    name = "datetime"

    def accepts(self, value: Any) -> bool:
        return isinstance(value, (datetime, date))


class ObjectType(ValueType):
    """Unstructured mapping. Cannot be indexed."""

    name = "object"
    is_indexable = False

    def accepts(self, value: Any) -> bool:
        return isinstance(value, dict)


class ArrayType(ValueType):
    def __init__(self, item_type: ValueType, is_optional: bool = False):
        super().__init__(is_optional)
        self.item_type = item_type

    @property
    def name(self) -> str:  # type: ignore[override]
        return f"{self.item_type}[]"

    @property
    def is_indexable(self) -> bool:  # type: ignore[override]
        return self.item_type.is_indexable

    def check(self, value: Any, path: str = "") -> list[ValidationFailure]:
        failures = super().check(value, path)
        if failures or value is None:
            return failures
        for index, item in enumerate(value):
            failures.extend(self.item_type.check(item, f"{path}[{index}]"))
        return failures

    def accepts(self, value: Any) -> bool:
        return isinstance(value, list)


class ComponentType(ValueType):
    """Reference to (or embedding of) another component class."""

    def __init__(self, target: type[Component] | str, is_optional: bool = False):
        super().__init__(is_optional)
        self._target = target

    @property
    def component(self) -> type[Component]:
        if isinstance(self._target, str):
            from stowage.component.component import get_component_class

            self._target = get_component_class(self._target)
        return self._target

    @property
    def name(self) -> str:  # type: ignore[override]
        if isinstance(self._target, str):
            return self._target
        return self._target.__component_name__

    @property
    def is_reference(self) -> bool:
        """True for identifiable, non-embedded components."""
        component = self.component
        return not component.__embedded__ and component.has_primary_identifier_attribute()

    def check(self, value: Any, path: str = "") -> list[ValidationFailure]:
        failures = super().check(value, path)
        if failures or value is None or self.is_reference:
            return failures
        return value.run_validators(prefix=path)

    def accepts(self, value: Any) -> bool:
        return isinstance(value, self.component)


_SCALAR_TYPES: dict[Any, type[ValueType]] = {
    "any": AnyType,
    "string": StringType,
    "str": StringType,
    "number": NumberType,
    "int": NumberType,
    "float": NumberType,
    "boolean": BooleanType,
    "bool": BooleanType,
    "date": DateTimeType,
    "datetime": DateTimeType,
    "Date": DateTimeType,
    "object": ObjectType,
    "dict": ObjectType,
    str: StringType,
    int: NumberType,
    float: NumberType,
    bool: BooleanType,
    datetime: DateTimeType,
    date: DateTimeType,
    dict: ObjectType,
}


def parse_value_type(spec: Any) -> ValueType:
    """
    Parse a value type declaration.

    Examples:
        parse_value_type("string")      -> StringType
        parse_value_type("number[]?")   -> optional ArrayType(NumberType)
        parse_value_type("Person")      -> ComponentType("Person")
        parse_value_type(Person)        -> ComponentType(Person)
    """
    if isinstance(spec, ValueType):
        return spec

    if isinstance(spec, type):
        from stowage.component.component import Component

        if issubclass(spec, Component):
            return ComponentType(spec)
        if spec in _SCALAR_TYPES:
            return _SCALAR_TYPES[spec]()
        raise UsageError(f"Unsupported value type: {spec!r}")

    if not isinstance(spec, str) or not spec.strip():
        raise UsageError(f"Unsupported value type: {spec!r}")

    text = spec.strip()
    is_optional = text.endswith("?")
    if is_optional:
        text = text[:-1]

    if text.endswith("[]"):
        return ArrayType(parse_value_type(text[:-2]), is_optional=is_optional)

    scalar = _SCALAR_TYPES.get(text)
    if scalar is not None:
        return scalar(is_optional=is_optional)

    if not text.isidentifier():
        raise UsageError(f"Unsupported value type: {spec!r}")
    return ComponentType(text, is_optional=is_optional)


def unwrap_component_type(value_type: ValueType) -> ComponentType | None:
    """Return the component type inside ``value_type`` (unwrapping arrays), if any."""
    while isinstance(value_type, ArrayType):
        value_type = value_type.item_type
    if isinstance(value_type, ComponentType):
        return value_type
    return None
