"""
In-memory store.

Keeps collections as lists of documents inside a MemoryDatabase and
evaluates query trees directly. Suitable for tests and prototyping.

Several MemoryStore instances may share one MemoryDatabase, the way
several clients share one database server: each store registers its own
classes, all of them see the same documents and index state.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from typing import Any

from stowage.component import attribute_selector as selectors
from stowage.component.attribute_selector import AttributeSelector
from stowage.errors import ConflictError, UsageError
from stowage.logging import get_store_logger
from stowage.runtime.store import Document, SortSpec, Store, build_index_schemas
from stowage.specs.index import IndexSchema, SortDirection
from stowage.specs.migration import CollectionMigration
from stowage.specs.query import (
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

logger = get_store_logger()


@dataclass
class MemoryDatabase:
    """Documents and index state, per collection."""

    collections: dict[str, list[Document]] = field(default_factory=dict)
    indexes: dict[str, dict[str, IndexSchema]] = field(default_factory=dict)

    def get_collection(self, name: str) -> list[Document]:
        return self.collections.setdefault(name, [])


class MemoryStore(Store):
    """Store keeping documents in memory."""

    def __init__(self, database: MemoryDatabase | None = None, *, trace: bool | None = None):
        super().__init__(trace=trace)
        self.database = database if database is not None else MemoryDatabase()

    # -------------------------------------------------------------------------
    # Document operations
    # -------------------------------------------------------------------------

    async def create_document(
        self, collection_name: str, identifier_descriptor: dict[str, Any], document: Document
    ) -> bool:
        collection = self.database.get_collection(collection_name)
        if _find_by_identifier(collection, identifier_descriptor) is not None:
            return False
        self._check_unique_indexes(collection_name, document, exclude=None)
        collection.append(copy.deepcopy(document))
        return True

    async def read_document(
        self,
        collection_name: str,
        identifier_descriptor: dict[str, Any],
        projection: AttributeSelector,
    ) -> Document | None:
        collection = self.database.get_collection(collection_name)
        document = _find_by_identifier(collection, identifier_descriptor)
        if document is None:
            return None
        return copy.deepcopy(selectors.pick(document, projection, include_names=["__component"]))

    async def update_document(
        self, collection_name: str, identifier_descriptor: dict[str, Any], patch: dict[str, Any]
    ) -> bool:
        collection = self.database.get_collection(collection_name)
        document = _find_by_identifier(collection, identifier_descriptor)
        if document is None:
            return False

        updated = copy.deepcopy(document)
        for path, value in patch.get("$set", {}).items():
            _set_path(updated, path, copy.deepcopy(value))
        for path in patch.get("$unset", []):
            _unset_path(updated, path)

        self._check_unique_indexes(collection_name, updated, exclude=document)
        document.clear()
        document.update(updated)
        return True

    async def delete_document(
        self, collection_name: str, identifier_descriptor: dict[str, Any]
    ) -> bool:
        collection = self.database.get_collection(collection_name)
        document = _find_by_identifier(collection, identifier_descriptor)
        if document is None:
            return False
        collection.remove(document)
        return True

    async def find_documents(
        self,
        collection_name: str,
        query: Clauses,
        *,
        sort: SortSpec | None,
        skip: int | None,
        limit: int | None,
        projection: AttributeSelector,
    ) -> list[Document]:
        collection = self.database.get_collection(collection_name)
        documents = [document for document in collection if evaluate(query, document)]

        # Stable sorts applied from the last key to the first
        for path, direction in reversed(list((sort or {}).items())):
            try:
                documents.sort(
                    key=lambda document, path=path: _sort_key(_get_path(document, path)),
                    reverse=direction == SortDirection.DESC,
                )
            except TypeError as error:
                raise UsageError(
                    f"Cannot sort the '{collection_name}' collection by '{path}': {error}"
                ) from error

        if skip is not None:
            documents = documents[skip:]
        if limit is not None:
            documents = documents[:limit]
        return [
            copy.deepcopy(selectors.pick(document, projection, include_names=["__component"]))
            for document in documents
        ]

    async def count_documents(self, collection_name: str, query: Clauses) -> int:
        collection = self.database.get_collection(collection_name)
        return sum(1 for document in collection if evaluate(query, document))

    async def migrate_collection(
        self, collection_name: str, indexes: list[IndexSchema]
    ) -> CollectionMigration:
        existing = self.database.indexes.get(collection_name, {})
        desired = {schema.name: schema for schema in indexes}

        created = [name for name in desired if name not in existing]
        dropped = [name for name in existing if name not in desired]
        self.database.indexes[collection_name] = desired

        if created or dropped:
            logger.debug(
                f"Collection '{collection_name}': created {created or 'none'}, dropped {dropped or 'none'}"
            )
        return CollectionMigration(
            name=collection_name, created_indexes=created, dropped_indexes=dropped
        )

    # -------------------------------------------------------------------------
    # Unique indexes
    # -------------------------------------------------------------------------

    def _check_unique_indexes(
        self, collection_name: str, document: Document, exclude: Document | None
    ) -> None:
        if not self.has_storable(collection_name):
            return
        schemas = [
            schema
            for schema in build_index_schemas(self.get_storable(collection_name))
            if schema.is_unique
        ]
        if not schemas:
            return

        collection = self.database.get_collection(collection_name)
        for schema in schemas:
            values = [_get_path(document, path) for path in schema.attributes]
            if all(value is None for value in values):
                continue
            for other in collection:
                if other is exclude:
                    continue
                if [_get_path(other, path) for path in schema.attributes] == values:
                    raise ConflictError(
                        f"A document of '{collection_name}' already has the same value for "
                        f"the unique index '{schema.name}'"
                    )


# =============================================================================
# Query evaluation
# =============================================================================


def evaluate(condition: Condition, value: Any) -> bool:
    """Evaluate a query tree against a document (or a nested value)."""
    if isinstance(condition, Clauses):
        return all(evaluate(child, value) for child in condition.conditions)

    if isinstance(condition, AttributeCondition):
        attribute_value = value.get(condition.name) if isinstance(value, dict) else None
        return evaluate(condition.condition, attribute_value)

    if isinstance(condition, Logical):
        results = (evaluate(child, value) for child in condition.conditions)
        if condition.operator == LogicalOperator.AND:
            return all(results)
        if condition.operator == LogicalOperator.OR:
            return any(results)
        return not any(results)

    if isinstance(condition, Negation):
        return not evaluate(condition.condition, value)

    if isinstance(condition, ArrayQuantifier):
        if not isinstance(value, list):
            return False
        results = (evaluate(condition.condition, item) for item in value)
        if condition.quantifier == Quantifier.SOME:
            return any(results)
        return all(results)

    if isinstance(condition, ValueComparison):
        return _compare(condition.operator, value, condition.operand)

    raise UsageError(f"Unsupported query node: {condition!r}")


def _compare(operator: QueryOperator, value: Any, operand: Any) -> bool:
    if operator == QueryOperator.EQUAL:
        return value == operand
    if operator == QueryOperator.NOT_EQUAL:
        return value != operand
    if operator == QueryOperator.IN:
        return value in operand

    if operator in (
        QueryOperator.GREATER_THAN,
        QueryOperator.GREATER_THAN_OR_EQUAL,
        QueryOperator.LESS_THAN,
        QueryOperator.LESS_THAN_OR_EQUAL,
    ):
        if value is None or operand is None:
            return False
        try:
            if operator == QueryOperator.GREATER_THAN:
                return value > operand
            if operator == QueryOperator.GREATER_THAN_OR_EQUAL:
                return value >= operand
            if operator == QueryOperator.LESS_THAN:
                return value < operand
            return value <= operand
        except TypeError:
            return False

    if operator == QueryOperator.INCLUDES:
        if isinstance(value, str):
            return isinstance(operand, str) and operand in value
        return isinstance(value, list) and operand in value
    if operator == QueryOperator.STARTS_WITH:
        return isinstance(value, str) and value.startswith(operand)
    if operator == QueryOperator.ENDS_WITH:
        return isinstance(value, str) and value.endswith(operand)
    if operator == QueryOperator.MATCHES:
        return isinstance(value, str) and re.search(operand, value) is not None
    if operator == QueryOperator.LENGTH:
        return isinstance(value, (str, list)) and len(value) == operand

    raise UsageError(f"Unsupported query operator: '{operator.value}'")


# =============================================================================
# Document helpers
# =============================================================================


def _find_by_identifier(
    collection: list[Document], identifier_descriptor: dict[str, Any]
) -> Document | None:
    ((name, value),) = identifier_descriptor.items()
    for document in collection:
        if document.get(name) == value:
            return document
    return None


def _get_path(document: Any, path: str) -> Any:
    value = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _set_path(document: Document, path: str, value: Any) -> None:
    *parents, name = path.split(".")
    target = document
    for part in parents:
        child = target.get(part)
        if not isinstance(child, dict):
            child = {}
            target[part] = child
        target = child
    target[name] = value


def _unset_path(document: Document, path: str) -> None:
    *parents, name = path.split(".")
    target: Any = document
    for part in parents:
        target = target.get(part) if isinstance(target, dict) else None
    if isinstance(target, dict):
        target.pop(name, None)


def _sort_key(value: Any) -> tuple[bool, str, Any]:
    # None sorts first, then values grouped by type (numbers together)
    if value is None:
        return (False, "", 0)
    if isinstance(value, (bool, int, float)):
        return (True, "number", value)
    return (True, type(value).__name__, value)
