"""
Error types for storable component operations.

Every failure raised by the data-access layer derives from StowageError.
Nothing here is retried: errors propagate to the caller untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ErrorContext:
    """
    Context information for an error.

    Attributes:
        component: Name of the component class involved
        identifiers: Identifier descriptor of the instance (e.g. {"id": "abc"})
        attribute: Attribute name, when the error concerns a single attribute
    """

    component: str | None = None
    identifiers: dict[str, Any] = field(default_factory=dict)
    attribute: str | None = None

    def format(self) -> str:
        """
        Format error context as a human-readable string.

        Returns:
            Formatted string like: "component: 'Movie', id: 'abc123'"
        """
        parts = []
        if self.component:
            parts.append(f"component: '{self.component}'")
        for name, value in self.identifiers.items():
            parts.append(f"{name}: {value!r}")
        if self.attribute:
            parts.append(f"attribute: '{self.attribute}'")
        return ", ".join(parts)


class StowageError(Exception):
    """Base exception for all storable component errors."""

    def __init__(self, message: str, context: ErrorContext | None = None):
        self.message = message
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with context if available."""
        if self.context:
            formatted = self.context.format()
            if formatted:
                return f"{self.message} ({formatted})"
        return self.message


class UsageError(StowageError):
    """
    Raised when an operation is called in a way that can never succeed.

    Examples:
    - load() or delete() on a new instance
    - save() with both throw_if_missing and throw_if_exists
    - Unknown attribute in a query against a store-backed component
    - Invalid index declaration
    """

    pass


class UnsetAttributeError(UsageError, AttributeError):
    """Raised when reading an attribute that holds no value."""

    pass


class NotFoundError(StowageError):
    """
    Raised when a record is missing and throw_if_missing is set.

    Examples:
    - Loading an identifier that was never saved
    - Saving a non-new instance that was deleted elsewhere
    - Deleting twice
    """

    pass


class ConflictError(StowageError):
    """
    Raised when a write collides with existing data.

    Examples:
    - Saving a new instance whose identifier already exists
    - Unique index violation detected by the store
    """

    pass


@dataclass
class ValidationFailure:
    """A single failed attribute check."""

    path: str
    message: str


class ValidationError(StowageError):
    """
    Raised when an instance fails attribute validation before dispatch.

    Examples:
    - Missing value for a required attribute
    - Value of the wrong type
    """

    def __init__(
        self,
        message: str,
        failures: list[ValidationFailure] | None = None,
        context: ErrorContext | None = None,
    ):
        self.failures = failures or []
        super().__init__(message, context)


class UnloadedArrayItemError(ValidationError):
    """Raised when saving an array of embedded components with partially loaded items."""

    pass


class CapabilityError(StowageError):
    """
    Raised when a component has no way to perform an operation.

    The component is neither registered in a store nor exposes the
    corresponding remote method.
    """

    pass


def make_context(component: Any, attribute: str | None = None) -> ErrorContext:
    """
    Build an ErrorContext from a component class or instance.

    Args:
        component: Component class or instance
        attribute: Optional attribute name

    Returns:
        ErrorContext describing the component
    """
    cls = component if isinstance(component, type) else type(component)
    identifiers: dict[str, Any] = {}
    if not isinstance(component, type):
        describe = getattr(component, "get_identifier_descriptor", None)
        if describe is not None:
            try:
                identifiers = describe()
            except UsageError:
                identifiers = {}
    return ErrorContext(
        component=getattr(cls, "__component_name__", cls.__name__),
        identifiers=identifiers,
        attribute=attribute,
    )
