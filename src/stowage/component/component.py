"""
Component base classes.

A component class owns a table of properties built once, when the class
is defined, from its own body and its bases. Instances are either *new*
(created in memory, nothing confirmed by a store) or *not new*
(materialized from a store or a remote peer).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any, ClassVar, Literal

from stowage.component import attribute_selector as selectors
from stowage.component.attribute_selector import AttributeSelector
from stowage.component.identity_map import get_identity_registry
from stowage.component.properties import (
    _MISSING,
    Attribute,
    IdentifierAttribute,
    PrimaryIdentifierAttribute,
    Property,
    SecondaryIdentifierAttribute,
    ValueSource,
)
from stowage.component.value_types import ArrayType, ComponentType, ValueType
from stowage.errors import (
    UsageError,
    ValidationError,
    ValidationFailure,
    make_context,
)

logger = logging.getLogger(__name__)

COMPONENT_TAG = "__component"

AttributeFilter = Callable[[Attribute, "Component | None"], bool]

# =============================================================================
# Component Registry
# =============================================================================

_component_classes: dict[str, type[Component]] = {}


def register_component_class(cls: type[Component]) -> None:
    name = cls.__component_name__
    if name in _component_classes and _component_classes[name] is not cls:
        logger.debug(f"Component name '{name}' now refers to {cls.__module__}.{cls.__qualname__}")
    _component_classes[name] = cls


def get_component_class(name: str) -> type[Component]:
    """Resolve a component class by its component name."""
    cls = _component_classes.get(name)
    if cls is None:
        raise UsageError(f"The component '{name}' is not defined")
    return cls


# =============================================================================
# Selector Resolution
# =============================================================================


@dataclass(frozen=True)
class ResolveOptions:
    filter: AttributeFilter | None = None
    set_attributes_only: bool = False
    target: ValueSource | None = None
    aggregation_mode: Literal["union", "intersection"] = "union"
    include_referenced_components: bool = False


def resolve_attribute_selector(
    component: Component | type[Component],
    selector: Any = True,
    options: ResolveOptions | None = None,
    _is_deep: bool = False,
) -> dict[str, AttributeSelector]:
    """
    Expand ``selector`` against a component class or instance.

    The primary identifier is always part of the result. A ``True`` leaf on
    a reference to another identifiable component becomes that component's
    primary identifier, unless ``include_referenced_components`` asks for
    the referenced attributes (one level deep). With ``set_attributes_only``
    unset attributes are skipped, and array items are aggregated by
    ``aggregation_mode``. With ``target``, attributes whose value is already
    confirmed by that source are skipped (the primary identifier never is).
    """
    options = options or ResolveOptions()
    selector = selectors.normalize(selector)
    if selector is False:
        return {}

    instance = None if isinstance(component, type) else component
    cls = component if isinstance(component, type) else type(component)

    result: dict[str, AttributeSelector] = {}
    for attribute in cls.get_attributes():
        is_primary = isinstance(attribute, PrimaryIdentifierAttribute)
        subselector = True if is_primary else selectors.get(selector, attribute.name)
        if subselector is False:
            continue

        value: Any = _MISSING
        if instance is not None:
            if attribute.is_set(instance):
                value = attribute.get_value(instance)
            elif options.set_attributes_only:
                continue
        if options.filter is not None and not options.filter(attribute, instance):
            continue
        if (
            instance is not None
            and options.target is not None
            and not isinstance(attribute, PrimaryIdentifierAttribute)
            and attribute.get_value_source(instance) == options.target
            and not _holds_embedded_component(attribute.value_type)
        ):
            continue

        resolved = _resolve_value(attribute.value_type, subselector, value, options, _is_deep)
        if resolved is not False:
            result[attribute.name] = resolved
    return result


def _holds_embedded_component(value_type: ValueType) -> bool:
    return isinstance(value_type, ComponentType) and not value_type.is_reference


def _resolve_value(
    value_type: ValueType,
    selector: AttributeSelector,
    value: Any,
    options: ResolveOptions,
    is_deep: bool,
) -> AttributeSelector:
    if isinstance(value_type, ArrayType):
        item_options = replace(options, target=None)
        items = value if isinstance(value, list) else None
        if not options.set_attributes_only or not items:
            return _resolve_value(value_type.item_type, selector, _MISSING, item_options, is_deep)
        aggregate = selectors.merge if options.aggregation_mode == "union" else selectors.intersect
        aggregated: AttributeSelector | None = None
        for item in items:
            item_selector = _resolve_value(value_type.item_type, selector, item, item_options, is_deep)
            aggregated = item_selector if aggregated is None else aggregate(aggregated, item_selector)
        return aggregated if aggregated is not None else False

    if not isinstance(value_type, ComponentType):
        return True

    if value is None:
        return True

    component_class = value_type.component
    nested: Component | type[Component] = value if isinstance(value, Component) else component_class

    if value_type.is_reference:
        if options.include_referenced_components and not is_deep:
            return resolve_attribute_selector(
                nested, selector, replace(options, include_referenced_components=False), True
            )
        primary = component_class.get_primary_identifier_attribute()
        return resolve_attribute_selector(
            nested, {primary.name: True}, replace(options, target=None), True
        )

    return resolve_attribute_selector(nested, selector, options, True)


# =============================================================================
# Component
# =============================================================================


class Component:
    """Base class of every component."""

    __component_name__: ClassVar[str] = "Component"
    __embedded__: ClassVar[bool] = False
    __properties__: ClassVar[dict[str, Property]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        properties: dict[str, Property] = {}
        for klass in reversed(cls.__mro__):
            for name, member in klass.__dict__.items():
                if isinstance(member, Property):
                    properties[name] = member
                elif name in properties:
                    del properties[name]
        cls.__properties__ = properties
        cls.__component_name__ = cls.__dict__.get("__component_name__", cls.__name__)
        register_component_class(cls)

    def __init__(self, **values: Any) -> None:
        self.__dict__["_stowage_is_new"] = True
        for attribute in self.get_attributes():
            if attribute.name in values:
                attribute.set_value(self, values.pop(attribute.name))
            elif attribute.has_default:
                attribute.set_value(self, attribute.evaluate_default(self))
        if values:
            names = ", ".join(sorted(values))
            raise UsageError(f"Unknown attributes: {names}", make_context(self))

    @classmethod
    def instantiate(
        cls, identifiers: dict[str, Any] | None = None, source: ValueSource = ValueSource.LOCAL
    ) -> Component:
        """
        Get a not-new instance for ``identifiers``.

        An instance already in the identity registry is returned as is;
        otherwise a bare instance holding only the identifiers is created
        and attached.
        """
        identifiers = dict(identifiers or {})
        registry = get_identity_registry()
        if identifiers and cls.has_primary_identifier_attribute():
            existing = registry.get(cls, identifiers)
            if existing is not None:
                return existing

        instance = cls.__new__(cls)
        instance.__dict__["_stowage_is_new"] = False
        for name, value in identifiers.items():
            cls.get_attribute(name).set_value(instance, value, source)
        if identifiers and cls.has_primary_identifier_attribute():
            registry.attach(instance)
        return instance

    # -------------------------------------------------------------------------
    # New mark and identity
    # -------------------------------------------------------------------------

    def is_new(self) -> bool:
        return self.__dict__.get("_stowage_is_new", False)

    def mark_as_new(self) -> None:
        self.__dict__["_stowage_is_new"] = True

    def mark_as_not_new(self) -> None:
        self.__dict__["_stowage_is_new"] = False

    def attach(self) -> None:
        get_identity_registry().attach(self)

    def detach(self) -> None:
        get_identity_registry().detach(self)

    def is_attached(self) -> bool:
        return get_identity_registry().get_map(type(self)).contains(self)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @classmethod
    def describe_component(cls) -> str:
        return f"component: '{cls.__component_name__}'"

    @classmethod
    def has_property(cls, name: str) -> bool:
        return name in cls.__properties__

    @classmethod
    def get_property(cls, name: str) -> Property:
        prop = cls.__properties__.get(name)
        if prop is None:
            raise UsageError(f"The property '{name}' is missing", make_context(cls))
        return prop

    @classmethod
    def get_properties(cls) -> list[Property]:
        return list(cls.__properties__.values())

    @classmethod
    def has_attribute(cls, name: str) -> bool:
        return isinstance(cls.__properties__.get(name), Attribute)

    @classmethod
    def get_attribute(cls, name: str) -> Attribute:
        prop = cls.get_property(name)
        if not isinstance(prop, Attribute):
            raise UsageError(
                f"A property with the specified name was found, but it is not an attribute "
                f"({prop.describe()})"
            )
        return prop

    @classmethod
    def get_attributes(cls) -> list[Attribute]:
        return [prop for prop in cls.__properties__.values() if isinstance(prop, Attribute)]

    @classmethod
    def has_primary_identifier_attribute(cls) -> bool:
        return any(
            isinstance(prop, PrimaryIdentifierAttribute) for prop in cls.__properties__.values()
        )

    @classmethod
    def get_primary_identifier_attribute(cls) -> PrimaryIdentifierAttribute:
        for prop in cls.__properties__.values():
            if isinstance(prop, PrimaryIdentifierAttribute):
                return prop
        raise UsageError("The component has no primary identifier attribute", make_context(cls))

    @classmethod
    def get_secondary_identifier_attributes(cls) -> list[SecondaryIdentifierAttribute]:
        return [
            prop
            for prop in cls.__properties__.values()
            if isinstance(prop, SecondaryIdentifierAttribute)
        ]

    @classmethod
    def get_identifier_attributes(cls) -> list[IdentifierAttribute]:
        return [
            prop for prop in cls.__properties__.values() if isinstance(prop, IdentifierAttribute)
        ]

    # -------------------------------------------------------------------------
    # Identifier descriptors
    # -------------------------------------------------------------------------

    def get_identifier_descriptor(self) -> dict[str, Any]:
        """The primary identifier when set, else the first set secondary identifier."""
        primary = self.get_primary_identifier_attribute()
        if primary.is_set(self):
            return {primary.name: primary.get_value(self)}
        for attribute in self.get_secondary_identifier_attributes():
            if attribute.is_set(self):
                return {attribute.name: attribute.get_value(self)}
        raise UsageError(
            "Cannot get an identifier descriptor from a component that has no set identifier",
            make_context(type(self)),
        )

    @classmethod
    def normalize_identifier_descriptor(cls, descriptor: Any) -> dict[str, Any]:
        """Accept a bare primary identifier value or a single-entry {name: value} mapping."""
        if not isinstance(descriptor, dict):
            descriptor = {cls.get_primary_identifier_attribute().name: descriptor}
        if len(descriptor) != 1:
            raise UsageError(
                f"An identifier descriptor should have exactly one entry (got {descriptor!r})",
                make_context(cls),
            )
        ((name, value),) = descriptor.items()
        if not isinstance(cls.__properties__.get(name), IdentifierAttribute):
            raise UsageError(
                f"The property '{name}' is not an identifier attribute", make_context(cls)
            )
        if value is None:
            raise UsageError(
                f"The identifier '{name}' cannot be None", make_context(cls)
            )
        return {name: value}

    # -------------------------------------------------------------------------
    # Attribute selectors
    # -------------------------------------------------------------------------

    def resolve_attribute_selector(
        self,
        selector: Any = True,
        *,
        filter: AttributeFilter | None = None,
        set_attributes_only: bool = False,
        target: ValueSource | None = None,
        aggregation_mode: Literal["union", "intersection"] = "union",
        include_referenced_components: bool = False,
    ) -> dict[str, AttributeSelector]:
        return resolve_attribute_selector(
            self,
            selector,
            ResolveOptions(
                filter=filter,
                set_attributes_only=set_attributes_only,
                target=target,
                aggregation_mode=aggregation_mode,
                include_referenced_components=include_referenced_components,
            ),
        )

    def mark_value_sources(self, selector: AttributeSelector, source: ValueSource) -> None:
        """Stamp ``source`` on every set attribute covered by ``selector``, embedded ones included."""
        for name, subselector in self._iterate_selected(selector):
            attribute = self.get_attribute(name)
            if not attribute.is_set(self):
                continue
            attribute.set_value_source(self, source)
            value = attribute.get_value(self)
            for item in value if isinstance(value, list) else [value]:
                if isinstance(item, Component) and item.__embedded__:
                    item.mark_value_sources(subselector, source)

    def _iterate_selected(self, selector: Any):
        selector = selectors.normalize(selector)
        if selector is True:
            return [(attribute.name, True) for attribute in self.get_attributes()]
        return [(name, sub) for name, sub in selectors.iterate(selector) if self.has_attribute(name)]

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def serialize(self, selector: Any = True) -> dict[str, Any]:
        """
        Convert to a plain document.

        Referenced components are reduced to ``{"__component": name, <primary id>: value}``;
        embedded components are serialized inline.
        """
        document: dict[str, Any] = {COMPONENT_TAG: self.__component_name__}
        for name, subselector in self._iterate_selected(selector):
            attribute = self.get_attribute(name)
            if attribute.is_set(self):
                document[name] = _serialize_value(attribute.get_value(self), subselector)
        return document

    def deserialize(self, document: dict[str, Any], source: ValueSource = ValueSource.LOCAL) -> Component:
        """Assign every attribute found in ``document`` to this instance, stamped with ``source``."""
        for name, value in document.items():
            if name == COMPONENT_TAG:
                continue
            attribute = self.get_attribute(name)
            attribute.set_value(self, _deserialize_value(value, attribute.value_type, source), source)
        return self

    def deserialize_fetched(self, document: dict[str, Any], source: ValueSource) -> Component:
        """
        Deserialize a document fetched for this instance, keeping one instance per record.

        An instance created from a secondary identifier does not know its
        primary identifier yet. When the document reveals one that already
        belongs to a registered instance, that instance receives the document
        and this one is detached.
        """
        cls = type(self)
        if cls.has_primary_identifier_attribute():
            primary = cls.get_primary_identifier_attribute()
            value = document.get(primary.name)
            if value is not None and not primary.is_set(self):
                existing = get_identity_registry().get(cls, {primary.name: value})
                if existing is not None and existing is not self:
                    self.detach()
                    # The identifiers used for the lookup are confirmed too
                    known = {
                        attribute.name: attribute.get_value(self)
                        for attribute in self.get_identifier_attributes()
                        if attribute.is_set(self)
                    }
                    return existing.deserialize({**known, **document}, source)
        return self.deserialize(document, source)

    def to_identifier_object(self) -> dict[str, Any]:
        """Minimal object form: the primary identifier only."""
        primary = self.get_primary_identifier_attribute()
        return {primary.name: primary.get_value(self)}

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def run_validators(self, selector: Any = True, prefix: str = "") -> list[ValidationFailure]:
        failures: list[ValidationFailure] = []
        for name, _ in self._iterate_selected(selector):
            attribute = self.get_attribute(name)
            path = f"{prefix}.{name}" if prefix else name
            for message in attribute.run_validators(self):
                failures.append(ValidationFailure(path=path, message=message))
        return failures

    def validate(self, selector: Any = True) -> None:
        failures = self.run_validators(selector)
        if failures:
            details = "; ".join(f"{failure.path}: {failure.message}" for failure in failures)
            raise ValidationError(
                f"The component is invalid ({details})", failures, make_context(self)
            )

    def __repr__(self) -> str:
        parts = []
        for attribute in self.get_identifier_attributes():
            if attribute.is_set(self):
                parts.append(f"{attribute.name}={attribute.get_value(self)!r}")
        if self.is_new():
            parts.append("new")
        return f"<{self.__component_name__} {' '.join(parts)}>".replace(" >", ">")


class EmbeddedComponent(Component):
    """A component stored inside its owner rather than in its own collection."""

    __embedded__ = True


def _serialize_value(value: Any, selector: AttributeSelector) -> Any:
    if isinstance(value, list):
        return [_serialize_value(item, selector) for item in value]
    if isinstance(value, Component):
        if value.__embedded__:
            return value.serialize(selector)
        return {COMPONENT_TAG: value.__component_name__, **value.to_identifier_object()}
    return value


def _deserialize_value(value: Any, value_type: ValueType, source: ValueSource) -> Any:
    if value is None or isinstance(value, Component):
        return value

    if isinstance(value_type, ArrayType):
        return [_deserialize_value(item, value_type.item_type, source) for item in value]

    if isinstance(value_type, ComponentType) and isinstance(value, dict):
        tag = value.get(COMPONENT_TAG)
        component_class = value_type.component
        if tag and tag != component_class.__component_name__:
            component_class = get_component_class(tag)
        if component_class.__embedded__ or not component_class.has_primary_identifier_attribute():
            return component_class.instantiate().deserialize(value, source)
        primary = component_class.get_primary_identifier_attribute()
        instance = component_class.instantiate({primary.name: value[primary.name]}, source)
        return instance.deserialize(value, source)

    return value
