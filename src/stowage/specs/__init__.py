"""
Spec types shared by storables and stores.

This module exports the query tree, index schema and migration report types.
"""

from stowage.specs.index import IndexSchema, SortDirection
from stowage.specs.migration import CollectionMigration, MigrationReport
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

__all__ = [
    "NOT_OPERATOR",
    "ArrayQuantifier",
    "AttributeCondition",
    "Clauses",
    "CollectionMigration",
    "Condition",
    "IndexSchema",
    "Logical",
    "LogicalOperator",
    "MigrationReport",
    "Negation",
    "Quantifier",
    "QueryOperator",
    "SortDirection",
    "ValueComparison",
]
