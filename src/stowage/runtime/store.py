"""
Store contract and document-oriented store base.

``StoreLike`` is the narrow contract the storable orchestrator talks to:
five async operations (load, save, delete, find, count).

``Store`` implements that contract over a handful of abstract document
operations, so a backend only has to read, write and query plain
documents. It also owns:

- storable registration (one store per component class)
- document conversion: every document carries a ``__component`` tag and
  references are stored as ``{"__component": name, "<id>": value}``
- operation tracing, used to count backend round trips
- index migration (``migrate_storables``)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from stowage.component import attribute_selector as selectors
from stowage.component.attribute_selector import AttributeSelector
from stowage.component.component import COMPONENT_TAG, get_component_class
from stowage.component.properties import ValueSource
from stowage.component.value_types import ArrayType, ComponentType, unwrap_component_type
from stowage.config import get_config
from stowage.errors import ConflictError, NotFoundError, UsageError, make_context
from stowage.logging import get_store_logger, log_with_context
from stowage.runtime.index import normalize_index_attributes
from stowage.runtime.storable import StorableComponent
from stowage.specs.index import IndexSchema, SortDirection
from stowage.specs.migration import CollectionMigration, MigrationReport
from stowage.specs.query import Clauses

logger = get_store_logger()

Document = dict[str, Any]
SortSpec = dict[str, SortDirection]

# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class StoreLike(Protocol):
    """What the storable orchestrator needs from a persistence backend."""

    async def load(
        self,
        storable: StorableComponent,
        *,
        attribute_selector: AttributeSelector,
        throw_if_missing: bool,
    ) -> StorableComponent | None:
        """Fill ``storable`` with the selected attributes."""
        ...

    async def save(
        self,
        storable: StorableComponent,
        *,
        attribute_selector: AttributeSelector,
        throw_if_missing: bool,
        throw_if_exists: bool,
    ) -> StorableComponent | None:
        """Persist the selected attributes of ``storable``."""
        ...

    async def delete(
        self, storable: StorableComponent, *, throw_if_missing: bool
    ) -> StorableComponent | None:
        """Remove ``storable``."""
        ...

    async def find(
        self,
        component_class: type[StorableComponent],
        query: Clauses,
        *,
        sort: SortSpec | None = None,
        skip: int | None = None,
        limit: int | None = None,
    ) -> list[StorableComponent]:
        """Return matching instances holding their primary identifier only."""
        ...

    async def count(self, component_class: type[StorableComponent], query: Clauses) -> int:
        """Count matching documents."""
        ...


# =============================================================================
# Tracing
# =============================================================================


@dataclass
class TraceEntry:
    """One store operation, recorded while tracing is on."""

    operation: str
    params: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: Exception | None = None


# =============================================================================
# Index schemas
# =============================================================================


def build_index_schemas(component_class: type[StorableComponent]) -> list[IndexSchema]:
    """
    Indexes a collection should have, primary index excluded.

    - each secondary identifier: ``{name: asc}``, unique
    - each reference attribute: ``{"<name>.<id>": asc}``
    - each declared index, with reference attributes mapped to ``<name>.<id>``
    """
    schemas: list[IndexSchema] = []
    for attribute in component_class.get_secondary_identifier_attributes():
        schemas.append(
            IndexSchema(attributes={attribute.name: SortDirection.ASC}, is_unique=True)
        )

    for attribute in component_class.get_attributes():
        path = _reference_path(attribute)
        if path is not None:
            schemas.append(IndexSchema(attributes={path: SortDirection.ASC}))

    for index in component_class.get_indexes():
        attributes: SortSpec = {}
        for name, direction in index.attributes.items():
            path = _reference_path(component_class.get_attribute(name))
            attributes[path or name] = direction
        schemas.append(IndexSchema(attributes=attributes, is_unique=index.is_unique))
    return schemas


def _reference_path(attribute: Any) -> str | None:
    component_type = unwrap_component_type(attribute.value_type)
    if component_type is None or not component_type.is_reference:
        return None
    primary = component_type.component.get_primary_identifier_attribute()
    return f"{attribute.name}.{primary.name}"


# =============================================================================
# Store base
# =============================================================================


class Store(ABC):
    """
    Base class for document stores.

    Subclasses implement the document operations; everything else
    (selector projection, create-vs-update, error semantics, tracing,
    migration) is handled here.

    Example:
        store = MemoryStore()
        store.register_storables(Movie, Person)
        await store.migrate_storables()
    """

    def __init__(self, *, trace: bool | None = None):
        self._storables: dict[str, type[StorableComponent]] = {}
        if trace is None:
            trace = get_config().trace_store
        self._trace: list[TraceEntry] | None = [] if trace else None

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_storable(self, component_class: type[StorableComponent]) -> None:
        """Register a storable component class with this store."""
        if not (isinstance(component_class, type) and issubclass(component_class, StorableComponent)):
            raise UsageError(f"Expected a storable component class, got {component_class!r}")

        current = component_class.__dict__.get("__store__")
        if current is self:
            return
        if current is not None:
            raise UsageError(
                "Cannot register a storable component that is already registered in another store",
                make_context(component_class),
            )

        name = component_class.__component_name__
        if name in self._storables:
            raise UsageError(
                f"A storable component with the same name ('{name}') is already registered",
                make_context(component_class),
            )

        component_class.__store__ = self
        self._storables[name] = component_class
        logger.info(f"Registered storable '{name}' in {type(self).__name__}")

    def register_storables(self, *component_classes: type[StorableComponent]) -> None:
        for component_class in component_classes:
            self.register_storable(component_class)

    def get_storable(self, name: str) -> type[StorableComponent]:
        component_class = self._storables.get(name)
        if component_class is None:
            raise UsageError(f"The storable component '{name}' is not registered in the store")
        return component_class

    def has_storable(self, name: str) -> bool:
        return name in self._storables

    def get_storables(self) -> list[type[StorableComponent]]:
        """Registered classes, sorted by component name."""
        return [self._storables[name] for name in sorted(self._storables)]

    # -------------------------------------------------------------------------
    # Tracing
    # -------------------------------------------------------------------------

    def start_trace(self) -> None:
        self._trace = []

    def get_trace(self) -> list[TraceEntry]:
        if self._trace is None:
            raise UsageError("Cannot get the trace of a store that is not being traced")
        return list(self._trace)

    def stop_trace(self) -> None:
        self._trace = None

    async def _run_operation(
        self, operation: str, params: dict[str, Any], func: Callable[[], Awaitable[Any]]
    ) -> Any:
        entry: TraceEntry | None = None
        if self._trace is not None:
            entry = TraceEntry(operation=operation, params=params)
            self._trace.append(entry)
        try:
            result = await func()
        except Exception as error:
            if entry is not None:
                entry.error = error
            raise
        if entry is not None:
            entry.result = result
        return result

    # -------------------------------------------------------------------------
    # Store contract
    # -------------------------------------------------------------------------

    async def load(
        self,
        storable: StorableComponent,
        *,
        attribute_selector: AttributeSelector,
        throw_if_missing: bool = True,
    ) -> StorableComponent | None:
        async def operation() -> StorableComponent | None:
            component_class = self._get_registered_class(storable)
            collection = component_class.__component_name__
            identifiers = storable.get_identifier_descriptor()
            projection = selectors.normalize(attribute_selector)

            document = await self.read_document(collection, identifiers, projection)
            if document is None:
                if throw_if_missing:
                    raise NotFoundError(
                        "Cannot load a component that is missing from the store",
                        make_context(storable),
                    )
                return None

            document = selectors.pick(document, projection, include_names=[COMPONENT_TAG])
            _fill_missing_attributes(document, projection, component_class)
            return storable.deserialize_fetched(document, ValueSource.STORE)

        return await self._run_operation(
            "load",
            {
                "storable": storable,
                "attribute_selector": attribute_selector,
                "throw_if_missing": throw_if_missing,
            },
            operation,
        )

    async def save(
        self,
        storable: StorableComponent,
        *,
        attribute_selector: AttributeSelector,
        throw_if_missing: bool = False,
        throw_if_exists: bool = False,
    ) -> StorableComponent | None:
        async def operation() -> StorableComponent | None:
            component_class = self._get_registered_class(storable)
            collection = component_class.__component_name__
            identifiers = storable.to_identifier_object()
            document = storable.serialize(attribute_selector)

            if storable.is_new():
                saved = await self.create_document(collection, identifiers, document)
                if not saved and throw_if_exists:
                    raise ConflictError(
                        "Cannot save a new component with an identifier that already exists",
                        make_context(storable),
                    )
            else:
                patch = _build_document_patch(document, identifiers)
                saved = await self.update_document(collection, identifiers, patch)
                if not saved and throw_if_missing:
                    raise NotFoundError(
                        "Cannot save a component that is missing from the store",
                        make_context(storable),
                    )

            if not saved:
                return None
            storable.mark_value_sources(attribute_selector, ValueSource.STORE)
            return storable

        return await self._run_operation(
            "save",
            {
                "storable": storable,
                "attribute_selector": attribute_selector,
                "throw_if_missing": throw_if_missing,
                "throw_if_exists": throw_if_exists,
            },
            operation,
        )

    async def delete(
        self, storable: StorableComponent, *, throw_if_missing: bool = True
    ) -> StorableComponent | None:
        async def operation() -> StorableComponent | None:
            component_class = self._get_registered_class(storable)
            deleted = await self.delete_document(
                component_class.__component_name__, storable.to_identifier_object()
            )
            if not deleted:
                if throw_if_missing:
                    raise NotFoundError(
                        "Cannot delete a component that is missing from the store",
                        make_context(storable),
                    )
                return None
            return storable

        return await self._run_operation(
            "delete", {"storable": storable, "throw_if_missing": throw_if_missing}, operation
        )

    async def find(
        self,
        component_class: type[StorableComponent],
        query: Clauses,
        *,
        sort: SortSpec | None = None,
        skip: int | None = None,
        limit: int | None = None,
    ) -> list[StorableComponent]:
        async def operation() -> list[StorableComponent]:
            registered = self.get_storable(component_class.__component_name__)
            primary = registered.get_primary_identifier_attribute()
            documents = await self.find_documents(
                registered.__component_name__,
                query,
                sort=_sort_paths(registered, sort),
                skip=skip,
                limit=limit,
                projection={primary.name: True},
            )
            return [
                registered.instantiate({primary.name: document[primary.name]}, ValueSource.STORE)
                for document in documents
            ]

        return await self._run_operation(
            "find",
            {
                "component_class": component_class,
                "query": query,
                "sort": sort,
                "skip": skip,
                "limit": limit,
            },
            operation,
        )

    async def count(self, component_class: type[StorableComponent], query: Clauses) -> int:
        async def operation() -> int:
            registered = self.get_storable(component_class.__component_name__)
            return await self.count_documents(registered.__component_name__, query)

        return await self._run_operation(
            "count", {"component_class": component_class, "query": query}, operation
        )

    def _get_registered_class(self, storable: StorableComponent) -> type[StorableComponent]:
        component_class = self.get_storable(storable.__component_name__)
        if not isinstance(storable, component_class):
            raise UsageError(
                "The component is not an instance of the registered storable class",
                make_context(storable),
            )
        return component_class

    # -------------------------------------------------------------------------
    # Migration
    # -------------------------------------------------------------------------

    async def migrate_storables(self, *, silent: bool = False) -> MigrationReport:
        """Bring every collection's indexes in line with the registered classes."""
        collections: list[CollectionMigration] = []
        for component_class in self.get_storables():
            schemas = build_index_schemas(component_class)
            migration = await self.migrate_collection(component_class.__component_name__, schemas)
            collections.append(migration)

        report = MigrationReport(collections=sorted(collections, key=lambda c: c.name))
        if not silent:
            for migration in report.collections:
                if migration.has_changes:
                    log_with_context(
                        logger,
                        logging.INFO,
                        f"Migrated collection '{migration.name}'",
                        created=migration.created_indexes,
                        dropped=migration.dropped_indexes,
                    )
            logger.info(
                f"Migration complete: {len(report.collections)} collection(s), "
                f"{'changes applied' if report.has_changes else 'no changes'}"
            )
        return report

    # -------------------------------------------------------------------------
    # Document operations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_document(
        self, collection_name: str, identifier_descriptor: dict[str, Any], document: Document
    ) -> bool:
        """Insert ``document``. Return False if the identifier already exists."""
        pass

    @abstractmethod
    async def read_document(
        self,
        collection_name: str,
        identifier_descriptor: dict[str, Any],
        projection: AttributeSelector,
    ) -> Document | None:
        """Return the document matching the identifier descriptor, or None."""
        pass

    @abstractmethod
    async def update_document(
        self, collection_name: str, identifier_descriptor: dict[str, Any], patch: dict[str, Any]
    ) -> bool:
        """Apply ``{"$set": {...}, "$unset": [...]}`` (dotted paths). Return False if missing."""
        pass

    @abstractmethod
    async def delete_document(
        self, collection_name: str, identifier_descriptor: dict[str, Any]
    ) -> bool:
        """Remove a document. Return False if missing."""
        pass

    @abstractmethod
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
        """Return matching documents, sorted, then skipped, then limited."""
        pass

    @abstractmethod
    async def count_documents(self, collection_name: str, query: Clauses) -> int:
        pass

    @abstractmethod
    async def migrate_collection(
        self, collection_name: str, indexes: list[IndexSchema]
    ) -> CollectionMigration:
        """Create missing indexes and drop stale ones."""
        pass


# =============================================================================
# Helpers
# =============================================================================


def _fill_missing_attributes(
    document: Document, selector: AttributeSelector, component_class: type
) -> None:
    """Selected attributes absent from a stored document are loaded as None."""
    for attribute in component_class.get_attributes():
        subselector = selectors.get(selector, attribute.name)
        if subselector is False:
            continue
        if attribute.name not in document:
            document[attribute.name] = None
            continue
        value = document[attribute.name]
        value_type = attribute.value_type
        if isinstance(value_type, ArrayType):
            value_type = value_type.item_type
        if not isinstance(value_type, ComponentType) or value_type.is_reference:
            continue
        for item in value if isinstance(value, list) else [value]:
            if isinstance(item, dict):
                tag = item.get(COMPONENT_TAG)
                item_class = get_component_class(tag) if tag else value_type.component
                _fill_missing_attributes(item, subselector, item_class)


def _build_document_patch(document: Document, identifiers: dict[str, Any]) -> dict[str, Any]:
    """``$set`` for values, ``$unset`` for None; embedded documents become dotted paths."""
    set_values: dict[str, Any] = {}
    unset_paths: list[str] = []

    def visit(values: Document, prefix: str) -> None:
        for name, value in values.items():
            if name == COMPONENT_TAG or (not prefix and name in identifiers):
                continue
            path = f"{prefix}{name}"
            if value is None:
                unset_paths.append(path)
            elif _is_embedded_document(value):
                set_values[f"{path}.{COMPONENT_TAG}"] = value[COMPONENT_TAG]
                visit(value, f"{path}.")
            else:
                set_values[path] = value

    visit(document, "")
    return {"$set": set_values, "$unset": unset_paths}


def _is_embedded_document(value: Any) -> bool:
    if not isinstance(value, dict) or COMPONENT_TAG not in value:
        return False
    return get_component_class(value[COMPONENT_TAG]).__embedded__


def _sort_paths(component_class: type[StorableComponent], sort: dict[str, Any] | None) -> SortSpec | None:
    if not sort:
        return None
    paths: SortSpec = {}
    for name, direction in normalize_index_attributes(sort).items():
        if component_class.has_attribute(name):
            path = _reference_path(component_class.get_attribute(name))
            paths[path or name] = direction
        else:
            paths[name] = direction
    return paths
