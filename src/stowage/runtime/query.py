"""
Query parsing and normalization.

Turns the plain query grammar into a query tree bound to the value types
of a component class.

Parsing (``parse_query``):
    - ("title", "Inception")            -> AttributeCondition(title, $equal "Inception")
    - ("year", {"$greaterThan": 2000})  -> AttributeCondition(year, $greaterThan 2000)
    - ("$or", [{...}, {...}])           -> Logical($or, ...)
    - ("$not", {...})                   -> Negation(...)

Binding (``normalize_query``):
    - ``{"director": person}``            -> ``{"director": {"id": person.id}}``
    - ``{"director": {"$in": [p1, p2]}}`` -> ``{"director": {"id": {"$in": [id1, id2]}}}``
    - ``{"tags": "x"}``                   -> ``{"tags": {"$some": "x"}}``
    - ``{"tags": {"$includes": "x"}}``    -> ``{"tags": {"$some": "x"}}``
    - ``$every`` and ``$length`` on arrays pass through

Unknown attribute names raise UsageError, except in loose mode (used for
store-less components whose queries are forwarded to a remote peer).
"""

from __future__ import annotations

from typing import Any

from stowage.component.component import Component
from stowage.component.value_types import (
    AnyType,
    ArrayType,
    ComponentType,
    ObjectType,
    ValueType,
)
from stowage.errors import UsageError
from stowage.specs.query import (
    NOT_OPERATOR,
    ArrayQuantifier,
    AttributeCondition,
    Clauses,
    Condition,
    Logical,
    LogicalOperator,
    Negation,
    Quantifier,
    QueryOperator,
    ValueComparison,
)

_COMPARISON_OPERATORS = {operator.value: operator for operator in QueryOperator}
_QUANTIFIERS = {quantifier.value: quantifier for quantifier in Quantifier}
_LOGICAL_OPERATORS = {operator.value: operator for operator in LogicalOperator}

# =============================================================================
# Parsing
# =============================================================================


def parse_query(query: dict[str, Any] | None) -> Clauses:
    """Parse a plain query object into an unbound Clauses tree."""
    if query is None:
        return Clauses()
    if not isinstance(query, dict):
        raise UsageError(
            f"Expected a query object, but received a value of type '{type(query).__name__}'"
        )
    return Clauses(conditions=tuple(_parse_object(query)))


def _is_operator(key: str) -> bool:
    return key.startswith("$")


def _parse_object(query: dict[str, Any]) -> list[Condition]:
    keys = list(query)
    operator_keys = [key for key in keys if _is_operator(key)]
    if operator_keys and len(operator_keys) != len(keys):
        raise UsageError(
            f"A subquery cannot mix attribute names and operators "
            f"(keys: {', '.join(repr(key) for key in keys)})"
        )

    conditions: list[Condition] = []
    for key, value in query.items():
        if _is_operator(key):
            conditions.append(_parse_operator(key, value))
        else:
            conditions.append(AttributeCondition(name=key, condition=_parse_value(value)))
    return conditions


def _parse_value(value: Any) -> Condition:
    """Parse what sits under an attribute name or an operator taking a subquery."""
    if isinstance(value, dict) and not _is_component_document(value):
        conditions = _parse_object(value)
        if len(conditions) == 1:
            return conditions[0]
        return Clauses(conditions=tuple(conditions))
    return ValueComparison(operator=QueryOperator.EQUAL, operand=value)


def _is_component_document(value: dict[str, Any]) -> bool:
    return "__component" in value


def _parse_operator(key: str, value: Any) -> Condition:
    if key in _LOGICAL_OPERATORS:
        if not isinstance(value, list):
            raise UsageError(f"Expected a list after the '{key}' operator")
        branches: list[Condition] = []
        for item in value:
            if not isinstance(item, dict):
                raise UsageError(f"Expected a list of subqueries after the '{key}' operator")
            branches.append(Clauses(conditions=tuple(_parse_object(item))))
        return Logical(operator=_LOGICAL_OPERATORS[key], conditions=tuple(branches))

    if key == NOT_OPERATOR:
        return Negation(condition=_parse_value(value))

    if key in _QUANTIFIERS:
        return ArrayQuantifier(quantifier=_QUANTIFIERS[key], condition=_parse_value(value))

    operator = _COMPARISON_OPERATORS.get(key)
    if operator is None:
        raise UsageError(f"The operator '{key}' is not supported")
    if operator == QueryOperator.IN and not isinstance(value, list):
        raise UsageError("Expected a list after the '$in' operator")
    if operator == QueryOperator.MATCHES and not isinstance(value, str):
        raise UsageError("Expected a regular expression string after the '$matches' operator")
    if operator in (QueryOperator.STARTS_WITH, QueryOperator.ENDS_WITH) and not isinstance(
        value, str
    ):
        raise UsageError(f"Expected a string after the '{key}' operator")
    if operator == QueryOperator.LENGTH and (not isinstance(value, int) or isinstance(value, bool)):
        raise UsageError("Expected an integer after the '$length' operator")
    return ValueComparison(operator=operator, operand=value)


# =============================================================================
# Binding
# =============================================================================


class QueryNormalizer:
    """Binds a parsed query to the value types of a component class."""

    def __init__(self, component_class: type[Component], *, loose: bool = False):
        self.component_class = component_class
        self.loose = loose

    def normalize(self, query: dict[str, Any] | None) -> Clauses:
        clauses = parse_query(query)
        bound = self._bind_component(self.component_class, clauses)
        if isinstance(bound, Clauses):
            return bound
        return Clauses(conditions=(bound,))

    # -------------------------------------------------------------------------
    # Component level
    # -------------------------------------------------------------------------

    def _bind_component(self, cls: type[Component], condition: Condition) -> Condition:
        if isinstance(condition, Clauses):
            return Clauses(
                conditions=tuple(self._bind_component(cls, c) for c in condition.conditions)
            )

        if isinstance(condition, AttributeCondition):
            if not cls.has_attribute(condition.name):
                if self.loose:
                    return condition
                raise UsageError(
                    f"Cannot query the attribute '{condition.name}', "
                    f"which is not defined on '{cls.__component_name__}'"
                )
            attribute = cls.get_attribute(condition.name)
            return AttributeCondition(
                name=condition.name,
                condition=self._bind_type(attribute.value_type, condition.condition),
            )

        if isinstance(condition, Logical):
            return Logical(
                operator=condition.operator,
                conditions=tuple(self._bind_component(cls, c) for c in condition.conditions),
            )

        if isinstance(condition, Negation):
            return Negation(condition=self._bind_component(cls, condition.condition))

        if isinstance(condition, ValueComparison):
            return self._bind_component_comparison(cls, condition)

        raise UsageError(
            f"The operator '{condition.to_query()}' cannot be used on the component "
            f"'{cls.__component_name__}'"
        )

    def _bind_component_comparison(
        self, cls: type[Component], condition: ValueComparison
    ) -> Condition:
        if condition.operator not in (QueryOperator.EQUAL, QueryOperator.IN):
            raise UsageError(
                f"The operator '{condition.operator.value}' cannot be used on the component "
                f"'{cls.__component_name__}'"
            )
        if not cls.has_primary_identifier_attribute():
            raise UsageError(
                f"Cannot compare instances of '{cls.__component_name__}', "
                "which has no primary identifier"
            )
        primary = cls.get_primary_identifier_attribute()
        if condition.operator == QueryOperator.IN:
            operand = [_to_identifier_value(cls, item) for item in condition.operand]
        else:
            operand = _to_identifier_value(cls, condition.operand)
        return AttributeCondition(
            name=primary.name,
            condition=ValueComparison(operator=condition.operator, operand=operand),
        )

    # -------------------------------------------------------------------------
    # Type level
    # -------------------------------------------------------------------------

    def _bind_type(self, value_type: ValueType, condition: Condition) -> Condition:
        if isinstance(condition, Clauses):
            return Clauses(
                conditions=tuple(self._bind_type(value_type, c) for c in condition.conditions)
            )
        if isinstance(condition, Logical):
            return Logical(
                operator=condition.operator,
                conditions=tuple(self._bind_type(value_type, c) for c in condition.conditions),
            )
        if isinstance(condition, Negation):
            return Negation(condition=self._bind_type(value_type, condition.condition))

        if isinstance(value_type, ArrayType):
            return self._bind_array(value_type, condition)

        if isinstance(value_type, ComponentType):
            if (
                isinstance(condition, ValueComparison)
                and condition.operator == QueryOperator.EQUAL
                and condition.operand is None
            ):
                return condition
            return self._bind_component(value_type.component, condition)

        if isinstance(condition, (AttributeCondition, ArrayQuantifier)):
            if isinstance(value_type, (AnyType, ObjectType)):
                return condition
            raise UsageError(
                f"The query {condition.to_query()!r} cannot be used on a value of type "
                f"'{value_type}'"
            )
        return condition

    def _bind_array(self, array_type: ArrayType, condition: Condition) -> Condition:
        item_type = array_type.item_type

        if isinstance(condition, ArrayQuantifier):
            return ArrayQuantifier(
                quantifier=condition.quantifier,
                condition=self._bind_type(item_type, condition.condition),
            )

        if isinstance(condition, ValueComparison):
            if condition.operator == QueryOperator.LENGTH:
                return condition
            if condition.operator == QueryOperator.INCLUDES:
                return ArrayQuantifier(
                    quantifier=Quantifier.SOME,
                    condition=self._bind_type(
                        item_type,
                        ValueComparison(operator=QueryOperator.EQUAL, operand=condition.operand),
                    ),
                )
            if condition.operator in (QueryOperator.EQUAL, QueryOperator.NOT_EQUAL) and (
                condition.operand is None or isinstance(condition.operand, list)
            ):
                # Whole-array comparison
                return condition

        return ArrayQuantifier(
            quantifier=Quantifier.SOME, condition=self._bind_type(item_type, condition)
        )


def _to_identifier_value(cls: type[Component], value: Any) -> Any:
    if isinstance(value, Component):
        if not isinstance(value, cls):
            raise UsageError(
                f"Expected an instance of '{cls.__component_name__}' in the query, "
                f"got '{value.__component_name__}'"
            )
        return value.get_primary_identifier_attribute().get_value(value)
    if isinstance(value, dict) and "__component" in value:
        primary = cls.get_primary_identifier_attribute()
        return value.get(primary.name)
    return value


def normalize_query(
    component_class: type[Component], query: dict[str, Any] | None, *, loose: bool = False
) -> Clauses:
    """Parse ``query`` and bind it to ``component_class``."""
    return QueryNormalizer(component_class, loose=loose).normalize(query)
