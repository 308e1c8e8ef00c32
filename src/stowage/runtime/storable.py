"""
Storable components: load, save, delete, find and count.

A StorableComponent is a component class whose instances can be fetched
from and persisted to a store (registered with ``Store.register_storable``)
or, for store-less classes, through a remote capability (``__remote__``).

Loading is partial: an operation names the attributes it needs with an
attribute selector, and only attributes not already confirmed by a store
or remote peer are fetched. Saving sends only the attributes modified
since the last sync.

Example:
    class Movie(StorableComponent):
        id = primary_identifier()
        slug = secondary_identifier()
        title = attribute("string")
        director = attribute("Person?")

    store.register_storables(Movie, Person)

    movie = await Movie.get({"slug": "inception"}, {"title": True})
    movie.title = "Inception (2010)"
    await movie.save()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, ClassVar

from stowage.component import attribute_selector as selectors
from stowage.component.attribute_selector import AttributeSelector
from stowage.component.component import Component
from stowage.component.identity_map import get_identity_registry
from stowage.component.properties import Attribute, ValueSource
from stowage.config import get_config
from stowage.errors import (
    CapabilityError,
    UnloadedArrayItemError,
    UsageError,
    ValidationFailure,
    make_context,
)
from stowage.logging import get_storable_logger, log_with_context
from stowage.runtime.hooks import HookKind, HookRegistry, build_hook_registry, call_maybe_async
from stowage.runtime.index import Index, IndexDeclaration, index_key
from stowage.runtime.properties import StorableAttribute, StorablePropertyMixin
from stowage.runtime.query import normalize_query
from stowage.specs.query import Clauses

if TYPE_CHECKING:
    from stowage.runtime.remote import RemoteCapability
    from stowage.runtime.store import StoreLike

logger = get_storable_logger()

_CONFIRMED_SOURCES = (ValueSource.STORE, ValueSource.REMOTE)


def _is_computed(attribute: Attribute) -> bool:
    return isinstance(attribute, StorableAttribute) and attribute.is_computed


def _is_not_computed(attribute: Attribute, instance: Any) -> bool:
    return not _is_computed(attribute)


def _is_confirmed(attribute: Attribute, instance: Any) -> bool:
    return instance is not None and attribute.get_value_source(instance) in _CONFIRMED_SOURCES


def _is_embedded(value: Any) -> bool:
    return isinstance(value, Component) and value.__embedded__


def _check_embedded_array_items(
    component: Component, selector: AttributeSelector, owner: Component, prefix: str
) -> None:
    for name, subselector in component._iterate_selected(selector):
        attribute = component.get_attribute(name)
        if not attribute.is_set(component):
            continue
        value = attribute.get_value(component)
        path = f"{prefix}{name}"

        if _is_embedded(value):
            _check_embedded_array_items(value, subselector, owner, f"{path}.")
            continue
        if not isinstance(value, list):
            continue

        for position, item in enumerate(value):
            if not _is_embedded(item):
                continue
            item_path = f"{path}[{position}]"
            unset = [a.name for a in item.get_attributes() if not a.is_set(item)]
            if unset:
                failures = [
                    ValidationFailure(path=f"{item_path}.{attr}", message="Unloaded attribute")
                    for attr in unset
                ]
                raise UnloadedArrayItemError(
                    f"Cannot save an array item that has some unset attributes "
                    f"({item_path}: {', '.join(unset)})",
                    failures,
                    make_context(owner, path.split(".")[0]),
                )
            # Items are saved whole
            _check_embedded_array_items(item, True, owner, f"{item_path}.")


class StorableComponent(Component):
    """Base class of components that can be loaded, saved, deleted and queried."""

    __store__: ClassVar[StoreLike | None] = None
    __remote__: ClassVar[RemoteCapability | None] = None
    __hook_registry__: ClassVar[HookRegistry] = HookRegistry()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls.__hook_registry__ = build_hook_registry(cls, getattr(cls, "__hook_registry__", None))
        for declaration in cls.__dict__.get("__indexes__", ()):
            if not isinstance(declaration, IndexDeclaration):
                raise UsageError(
                    f"Expected index declarations in '__indexes__', got {declaration!r}",
                    make_context(cls),
                )
            cls.set_index(declaration.attributes, is_unique=declaration.is_unique)

    # -------------------------------------------------------------------------
    # Store and remote
    # -------------------------------------------------------------------------

    @classmethod
    def get_store(cls) -> StoreLike:
        store = cls.__dict__.get("__store__")
        if store is None:
            raise UsageError(
                "Cannot get the store of a storable component that is not registered",
                make_context(cls),
            )
        return store

    @classmethod
    def has_store(cls) -> bool:
        return cls.__dict__.get("__store__") is not None

    @classmethod
    def _get_remote_method(cls, name: str) -> RemoteCapability | None:
        remote = cls.__remote__
        if remote is not None and remote.has_method(name):
            return remote
        return None

    @classmethod
    def _capability_error(cls, operation: str, target: Any) -> CapabilityError:
        return CapabilityError(
            f"Cannot {operation} a component that is not registered in a store "
            f"and has no remote '{operation}' method",
            make_context(target),
        )

    @classmethod
    def _has_loose_queries(cls) -> bool:
        return not cls.has_store() and not get_config().strict_queries

    # -------------------------------------------------------------------------
    # Deletion mark
    # -------------------------------------------------------------------------

    def is_deleted(self) -> bool:
        return self.__dict__.get("_stowage_is_deleted", False)

    def set_is_deleted(self, is_deleted: bool) -> None:
        self.__dict__["_stowage_is_deleted"] = is_deleted

    # -------------------------------------------------------------------------
    # Get / Has
    # -------------------------------------------------------------------------

    @classmethod
    async def get(
        cls,
        identifier: Any,
        selector: Any = True,
        *,
        reload: bool = False,
        throw_if_missing: bool = True,
    ) -> StorableComponent | None:
        """
        Fetch an instance by primary or secondary identifier.

        Args:
            identifier: A primary identifier value or a ``{name: value}`` descriptor
            selector: Attributes to load
            reload: Fetch even the attributes already confirmed by the store
            throw_if_missing: Raise NotFoundError instead of returning None

        Returns:
            The instance (from the identity registry when already known), or None
        """
        identifiers = cls.normalize_identifier_descriptor(identifier)
        storable = get_identity_registry().get(cls, identifiers)
        is_speculative = storable is None
        if storable is None:
            storable = cls.instantiate(identifiers)

        try:
            result = await storable.load(selector, reload=reload, throw_if_missing=throw_if_missing)
        except Exception:
            if is_speculative:
                storable.detach()
            raise
        if result is None and is_speculative:
            storable.detach()
        return result

    @classmethod
    async def has(cls, identifier: Any, *, reload: bool = False) -> bool:
        """Whether a record exists for ``identifier``."""
        storable = await cls.get(identifier, {}, reload=reload, throw_if_missing=False)
        return storable is not None

    # -------------------------------------------------------------------------
    # Load
    # -------------------------------------------------------------------------

    async def load(
        self, selector: Any = True, *, reload: bool = False, throw_if_missing: bool = True
    ) -> StorableComponent | None:
        """
        Load the selected attributes.

        Attributes already confirmed by the store (or a remote peer) are
        skipped unless ``reload``; when nothing is left to fetch, the store
        is not called at all. Computed attributes are then evaluated and
        referenced storables loaded concurrently.
        """
        if self.is_new():
            raise UsageError("Cannot load a new component", make_context(self))

        selector = selectors.normalize(selector)
        to_load: AttributeSelector = self.resolve_attribute_selector(selector)
        if not reload:
            confirmed = self.resolve_attribute_selector(
                selector,
                filter=_is_confirmed,
                set_attributes_only=True,
                aggregation_mode="intersection",
            )
            to_load = selectors.remove(to_load, confirmed)

        cls = type(self)
        computed = [
            name
            for name, _ in selectors.iterate(to_load)
            if cls.has_attribute(name) and _is_computed(cls.get_attribute(name))
        ]
        persisted = selectors.trim(
            selectors.remove(to_load, selectors.from_names(computed))
        )

        if persisted is not False:
            await self._run_hooks(HookKind.BEFORE_LOAD, persisted)
            log_with_context(
                logger,
                logging.DEBUG,
                f"Loading {self!r}",
                selector=persisted,
                reload=reload,
            )
            result = await self._dispatch_load(persisted, throw_if_missing)
            if result is None:
                return None
            # A secondary-identifier lookup may resolve to an already registered instance
            instance = result
            await instance._run_hooks(HookKind.AFTER_LOAD, persisted)
        else:
            logger.debug(f"Nothing to fetch for {self!r}")
            instance = self

        for name in computed:
            attribute = cls.get_attribute(name)
            if isinstance(attribute, StorableAttribute) and attribute.has_loader:
                value = await attribute.call_loader(instance)
                attribute.set_value(instance, value, ValueSource.STORE)

        await instance._populate(selector, reload=reload, throw_if_missing=throw_if_missing)
        return instance

    async def _dispatch_load(
        self, selector: AttributeSelector, throw_if_missing: bool
    ) -> StorableComponent | None:
        cls = type(self)
        if cls.has_store():
            return await cls.get_store().load(
                self, attribute_selector=selector, throw_if_missing=throw_if_missing
            )

        primary = cls.get_primary_identifier_attribute()
        if primary.is_set(self):
            remote = cls._get_remote_method("load")
            if remote is None:
                raise cls._capability_error("load", self)
            document = await remote.call_method(
                self, "load", selector, throw_if_missing=throw_if_missing
            )
        else:
            remote = cls._get_remote_method("get")
            if remote is None:
                raise cls._capability_error("get", self)
            document = await remote.call_method(
                cls,
                "get",
                self.get_identifier_descriptor(),
                selector,
                throw_if_missing=throw_if_missing,
            )

        if document is None:
            return None
        return self.deserialize_fetched(document, ValueSource.REMOTE)

    async def _populate(self, selector: AttributeSelector, *, reload: bool, throw_if_missing: bool) -> None:
        """Load referenced storables reachable through ``selector``, grouped by identity."""
        resolved = self.resolve_attribute_selector(selector, include_referenced_components=True)
        groups: dict[int, tuple[StorableComponent, AttributeSelector]] = {}

        def collect(value: Any, subselector: AttributeSelector, context: dict[str, Any]) -> None:
            if not isinstance(value, StorableComponent) or value.__embedded__ or value.is_new():
                return
            key = id(value)
            if key in groups:
                storable, merged = groups[key]
                groups[key] = (storable, selectors.merge(merged, subselector))
            else:
                groups[key] = (value, subselector)

        selectors.traverse(
            self, resolved, collect, include_subtrees=True, include_leaves=False
        )
        if not groups:
            return
        await asyncio.gather(
            *(
                storable.load(subselector, reload=reload, throw_if_missing=throw_if_missing)
                for storable, subselector in groups.values()
            )
        )

    # -------------------------------------------------------------------------
    # Save
    # -------------------------------------------------------------------------

    async def save(
        self,
        selector: Any = True,
        *,
        throw_if_missing: bool | None = None,
        throw_if_exists: bool | None = None,
    ) -> StorableComponent | None:
        """
        Persist the selected attributes modified since the last sync.

        A new instance saves every set attribute; a persisted one saves only
        what changed, and is not sent at all when nothing did. Computed
        attributes are never saved.

        Args:
            selector: Attributes in scope
            throw_if_missing: Raise NotFoundError if the record is gone (default: not new)
            throw_if_exists: Raise ConflictError if the identifier is taken (default: new)
        """
        is_new = self.is_new()
        if throw_if_missing is None:
            throw_if_missing = not is_new
        if throw_if_exists is None:
            throw_if_exists = is_new
        if throw_if_missing and throw_if_exists:
            raise UsageError(
                "The 'throw_if_missing' and 'throw_if_exists' options cannot both be set",
                make_context(self),
            )

        selector = selectors.normalize(selector)
        to_save = self._resolve_save_selector(selector)
        if not is_new and len(to_save) < 2:
            logger.debug(f"Nothing to save for {self!r}")
            return self

        await self._run_hooks(HookKind.BEFORE_SAVE, to_save)

        # Hooks may have modified or reverted attributes
        to_save = self._resolve_save_selector(selector)
        if not is_new and len(to_save) < 2:
            logger.debug(f"Nothing to save for {self!r}")
            return self

        self._check_array_items(to_save)
        self.validate(to_save)

        log_with_context(logger, logging.DEBUG, f"Saving {self!r}", selector=to_save)
        result = await self._dispatch_save(to_save, throw_if_missing, throw_if_exists)
        if result is None:
            return None

        self.mark_as_not_new()
        if type(self).has_primary_identifier_attribute():
            self.attach()
        await self._run_hooks(HookKind.AFTER_SAVE, to_save)
        return self

    def _resolve_save_selector(self, selector: AttributeSelector) -> dict[str, AttributeSelector]:
        target = ValueSource.STORE if type(self).has_store() else ValueSource.REMOTE
        resolved = self.resolve_attribute_selector(
            selector,
            filter=_is_not_computed,
            set_attributes_only=True,
            target=target,
            aggregation_mode="intersection",
        )
        trimmed = selectors.trim(resolved)
        return trimmed if isinstance(trimmed, dict) else {}

    def _check_array_items(self, selector: AttributeSelector) -> None:
        """
        Arrays of embedded components are saved whole, so every item must be fully loaded.

        Embedded components reachable through ``selector`` are walked as well,
        which covers arrays nested at any depth.
        """
        _check_embedded_array_items(self, selector, self, "")

    async def _dispatch_save(
        self, selector: AttributeSelector, throw_if_missing: bool, throw_if_exists: bool
    ) -> StorableComponent | None:
        cls = type(self)
        if cls.has_store():
            return await cls.get_store().save(
                self,
                attribute_selector=selector,
                throw_if_missing=throw_if_missing,
                throw_if_exists=throw_if_exists,
            )

        remote = cls._get_remote_method("save")
        if remote is None:
            raise cls._capability_error("save", self)
        result = await remote.call_method(
            self,
            "save",
            self.serialize(selector),
            throw_if_missing=throw_if_missing,
            throw_if_exists=throw_if_exists,
        )
        if result is None:
            return None
        self.mark_value_sources(selector, ValueSource.REMOTE)
        return self

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    async def delete(self, *, throw_if_missing: bool = True) -> StorableComponent | None:
        """
        Delete the record and mark the instance deleted.

        The instance stays in the identity registry; detaching it is up to
        the caller.
        """
        if self.is_new():
            raise UsageError("Cannot delete a new component", make_context(self))

        selector = self.resolve_attribute_selector(True, filter=_is_not_computed)
        await self._run_hooks(HookKind.BEFORE_DELETE, selector)

        logger.debug(f"Deleting {self!r}")
        cls = type(self)
        if cls.has_store():
            result = await cls.get_store().delete(self, throw_if_missing=throw_if_missing)
        else:
            remote = cls._get_remote_method("delete")
            if remote is None:
                raise cls._capability_error("delete", self)
            result = await remote.call_method(self, "delete", throw_if_missing=throw_if_missing)
        if result is None:
            return None

        await self._run_hooks(HookKind.AFTER_DELETE, selector)
        self.set_is_deleted(True)
        return self

    # -------------------------------------------------------------------------
    # Find / Count
    # -------------------------------------------------------------------------

    @classmethod
    async def find(
        cls,
        query: dict[str, Any] | None = None,
        selector: Any = True,
        *,
        sort: dict[str, str] | None = None,
        skip: int | None = None,
        limit: int | None = None,
        reload: bool = False,
    ) -> list[StorableComponent]:
        """
        Find instances matching ``query`` and load ``selector`` on each of them.

        Example:
            movies = await Movie.find(
                {"genres": "drama", "year": {"$greaterThan": 2000}},
                {"title": True},
                sort={"year": "desc"},
                limit=10,
            )
        """
        normalized = await cls._normalize_query(query)
        log_with_context(
            logger,
            logging.DEBUG,
            f"Finding {cls.__component_name__}",
            query=normalized.to_query(),
            sort=sort,
            skip=skip,
            limit=limit,
        )

        if cls.has_store():
            storables = await cls.get_store().find(
                cls, normalized, sort=sort, skip=skip, limit=limit
            )
        else:
            remote = cls._get_remote_method("find")
            if remote is None:
                raise cls._capability_error("find", cls)
            documents = await remote.call_method(
                cls, "find", normalized.to_query(), sort=sort, skip=skip, limit=limit
            )
            storables = [cls._materialize_remote(document) for document in documents]

        results = await asyncio.gather(
            *(storable.load(selector, reload=reload, throw_if_missing=False) for storable in storables)
        )
        return [storable for storable in results if storable is not None]

    @classmethod
    async def count(cls, query: dict[str, Any] | None = None) -> int:
        """Count instances matching ``query`` without materializing them."""
        normalized = await cls._normalize_query(query)
        if cls.has_store():
            return await cls.get_store().count(cls, normalized)

        remote = cls._get_remote_method("count")
        if remote is None:
            raise cls._capability_error("count", cls)
        return await remote.call_method(cls, "count", normalized.to_query())

    @classmethod
    async def _normalize_query(cls, query: dict[str, Any] | None) -> Clauses:
        query = await cls._apply_finders(dict(query or {}))
        return normalize_query(cls, query, loose=cls._has_loose_queries())

    @classmethod
    async def _apply_finders(cls, query: dict[str, Any]) -> dict[str, Any]:
        """Replace keys handled by a finder with the finder's query over stored attributes."""
        result: dict[str, Any] = {}
        for key, value in query.items():
            if key in ("$and", "$or", "$nor") and isinstance(value, list):
                result[key] = [
                    await cls._apply_finders(item) if isinstance(item, dict) else item
                    for item in value
                ]
                continue
            prop = cls.__properties__.get(key)
            if isinstance(prop, StorablePropertyMixin) and prop.has_finder:
                fragment = await prop.call_finder(cls, value)
                result.update(await cls._apply_finders(fragment))
                continue
            result[key] = value
        return result

    @classmethod
    def _materialize_remote(cls, document: dict[str, Any]) -> StorableComponent:
        primary = cls.get_primary_identifier_attribute()
        storable = cls.instantiate({primary.name: document[primary.name]}, ValueSource.REMOTE)
        storable.deserialize(document, ValueSource.REMOTE)
        return storable

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    async def _run_hooks(self, kind: HookKind, selector: AttributeSelector) -> None:
        """Attribute-level hooks in declaration order, then instance-level hooks."""
        for attribute in self.get_attributes():
            if not isinstance(attribute, StorableAttribute) or not attribute.has_hook(kind):
                continue
            if selectors.get(selector, attribute.name) is False:
                continue
            if kind != HookKind.BEFORE_LOAD and not attribute.is_set(self):
                continue
            await attribute.call_hook(kind, self)

        for descriptor in type(self).__hook_registry__.get_hooks(kind):
            await call_maybe_async(descriptor.function, self, selector)

    # -------------------------------------------------------------------------
    # Indexes
    # -------------------------------------------------------------------------

    @classmethod
    def _get_index_table(cls, *, for_mutation: bool = False) -> dict[str, Index]:
        table = cls.__dict__.get("_stowage_indexes")
        if table is not None:
            return table
        inherited: dict[str, Index] = {}
        for base in cls.__mro__[1:]:
            base_table = base.__dict__.get("_stowage_indexes")
            if base_table is not None:
                inherited = base_table
                break
        if not for_mutation:
            return inherited
        table = {key: index.fork(cls) for key, index in inherited.items()}
        cls._stowage_indexes = table
        return table

    @classmethod
    def set_index(cls, attributes: dict[str, Any], *, is_unique: bool = False) -> Index:
        """Declare (or replace) an index on this class."""
        index = Index(attributes, cls, is_unique=is_unique)
        cls._get_index_table(for_mutation=True)[index.key] = index
        return index

    @classmethod
    def has_index(cls, attributes: dict[str, Any]) -> bool:
        return index_key(attributes) in cls._get_index_table()

    @classmethod
    def get_index(cls, attributes: dict[str, Any]) -> Index:
        index = cls._get_index_table().get(index_key(attributes))
        if index is None:
            raise UsageError(
                f"The index {index_key(attributes)} is missing", make_context(cls)
            )
        if index.parent is not cls:
            index = index.fork(cls)
        return index

    @classmethod
    def delete_index(cls, attributes: dict[str, Any]) -> bool:
        key = index_key(attributes)
        if key not in cls._get_index_table():
            return False
        del cls._get_index_table(for_mutation=True)[key]
        return True

    @classmethod
    def get_indexes(cls) -> list[Index]:
        return list(cls._get_index_table().values())


