"""
Component model.

Classes with declared attributes, identifiers and methods; attribute
selectors; serialization to plain documents; and the identity registry
that deduplicates instances of the same persisted identity.
"""

from stowage.component import attribute_selector
from stowage.component.attribute_selector import AttributeSelector
from stowage.component.component import (
    COMPONENT_TAG,
    Component,
    EmbeddedComponent,
    ResolveOptions,
    get_component_class,
    resolve_attribute_selector,
)
from stowage.component.identity_map import (
    IdentityMap,
    IdentityRegistry,
    get_identity_registry,
    use_identity_registry,
)
from stowage.component.properties import (
    Attribute,
    IdentifierAttribute,
    Method,
    PrimaryIdentifierAttribute,
    Property,
    SecondaryIdentifierAttribute,
    ValueSource,
)
from stowage.component.value_types import (
    ArrayType,
    ComponentType,
    ValueType,
    parse_value_type,
)

__all__ = [
    "COMPONENT_TAG",
    "ArrayType",
    "Attribute",
    "AttributeSelector",
    "Component",
    "ComponentType",
    "EmbeddedComponent",
    "IdentifierAttribute",
    "IdentityMap",
    "IdentityRegistry",
    "Method",
    "PrimaryIdentifierAttribute",
    "Property",
    "ResolveOptions",
    "SecondaryIdentifierAttribute",
    "ValueSource",
    "ValueType",
    "attribute_selector",
    "get_component_class",
    "get_identity_registry",
    "parse_value_type",
    "resolve_attribute_selector",
    "use_identity_registry",
]
