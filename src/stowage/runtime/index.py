"""
Index declarations for storable components.

An Index names one or more attributes with a sort direction, optionally
unique. It is validated when constructed:

- at least one attribute
- every attribute exists, is an attribute (not a method) and is not computed
- every direction is ``asc`` or ``desc``
- every value type is indexable (``object`` and ``any`` are not)
- a single-attribute index may not target an identifier (identifiers are
  implicitly indexed) nor a reference to another storable component
  (covered by the implicit ``<attr>.<id>`` index)

Indexes belong to a component class. A subclass shares its parent's
table until it mutates it, at which point the table is forked.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from stowage.component.properties import Attribute, IdentifierAttribute
from stowage.component.value_types import unwrap_component_type
from stowage.errors import UsageError, make_context
from stowage.runtime.properties import StorableAttribute
from stowage.specs.index import SortDirection

IndexAttributes = dict[str, SortDirection]


def normalize_index_attributes(attributes: dict[str, Any]) -> IndexAttributes:
    """Coerce directions to SortDirection, rejecting anything else."""
    if not isinstance(attributes, dict):
        raise UsageError(
            f"Expected a mapping of attribute names to directions, got '{type(attributes).__name__}'"
        )
    normalized: IndexAttributes = {}
    for name, direction in attributes.items():
        try:
            normalized[name] = SortDirection(direction)
        except ValueError:
            raise UsageError(
                f"Cannot create an index with an invalid direction '{direction}' "
                f"(expected 'asc' or 'desc')"
            ) from None
    return normalized


def index_key(attributes: dict[str, Any]) -> str:
    """Stable key of an index, derived from its attributes and directions."""
    return json.dumps({name: SortDirection(d).value for name, d in attributes.items()})


class Index:
    """A validated index owned by a component class."""

    def __init__(self, attributes: dict[str, Any], parent: type, *, is_unique: bool = False):
        self.attributes = normalize_index_attributes(attributes)
        self.parent = parent
        self.is_unique = is_unique
        self._validate()

    def _validate(self) -> None:
        if not self.attributes:
            raise UsageError(
                "Cannot create an index for an empty 'attributes' parameter",
                make_context(self.parent),
            )

        for name in self.attributes:
            if not self.parent.has_property(name):
                raise UsageError(
                    "Cannot create an index for an attribute that doesn't exist",
                    make_context(self.parent, name),
                )
            prop = self.parent.get_property(name)
            if not isinstance(prop, Attribute):
                raise UsageError(
                    f"Cannot create an index for a property that is not an attribute "
                    f"({prop.describe()})",
                    make_context(self.parent, name),
                )
            if isinstance(prop, StorableAttribute) and prop.is_computed:
                raise UsageError(
                    "Cannot create an index for a computed attribute",
                    make_context(self.parent, name),
                )
            if not prop.value_type.is_indexable:
                raise UsageError(
                    f"Cannot create an index for an attribute of type '{prop.value_type}'",
                    make_context(self.parent, name),
                )

        if len(self.attributes) == 1:
            (name,) = self.attributes
            attribute = self.parent.get_attribute(name)
            if isinstance(attribute, IdentifierAttribute):
                raise UsageError(
                    "Cannot explicitly create an index for an identifier attribute "
                    "(identifiers are automatically indexed)",
                    make_context(self.parent, name),
                )
            component_type = unwrap_component_type(attribute.value_type)
            if component_type is not None and component_type.is_reference:
                raise UsageError(
                    "Cannot explicitly create an index for a reference to a storable component "
                    "(referenced identifiers are automatically indexed)",
                    make_context(self.parent, name),
                )

    @property
    def key(self) -> str:
        return index_key(self.attributes)

    def fork(self, parent: type) -> Index:
        """Copy for a subclass, skipping re-validation."""
        forked = Index.__new__(Index)
        forked.attributes = dict(self.attributes)
        forked.parent = parent
        forked.is_unique = self.is_unique
        return forked

    def __repr__(self) -> str:
        unique = " unique" if self.is_unique else ""
        return f"<Index {self.key}{unique} of {self.parent.__name__}>"


@dataclass(frozen=True)
class IndexDeclaration:
    """Index listed in a class body before the class exists (see ``index()``)."""

    attributes: dict[str, Any] = field(default_factory=dict)
    is_unique: bool = False


def index(attributes: dict[str, Any], *, is_unique: bool = False) -> IndexDeclaration:
    """
    Declare an index in a class body::

        class Movie(StorableComponent):
            __indexes__ = [
                index({"title": "asc"}),
                index({"year": "desc", "title": "asc"}, is_unique=True),
            ]
    """
    return IndexDeclaration(attributes=dict(attributes), is_unique=is_unique)
