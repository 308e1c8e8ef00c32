"""
Unit tests for index migration.
"""

import logging

import pytest

from stowage.runtime import (
    MemoryDatabase,
    MemoryStore,
    StorableComponent,
    attribute,
    build_index_schemas,
    index,
    primary_identifier,
    secondary_identifier,
)
from stowage.specs import MigrationReport
from stowage.specs.index import IndexSchema, SortDirection


def define_movie():
    class Movie(StorableComponent):
        id = primary_identifier()
        slug = secondary_identifier()
        title = attribute("string")

    return Movie


def define_movie_without_slug():
    class Movie(StorableComponent):
        id = primary_identifier()
        title = attribute("string")

    return Movie


def define_catalog():
    class Person(StorableComponent):
        id = primary_identifier()
        full_name = attribute("string")

    class Film(StorableComponent):
        id = primary_identifier()
        title = attribute("string")
        year = attribute("number")
        director = attribute(Person)
        cast = attribute("Person[]", default=list)

        __indexes__ = [
            index({"title": "asc", "year": "desc"}),
            index({"director": "asc", "year": "desc"}, is_unique=True),
        ]

    return Person, Film


class TestIndexSchemas:
    """Tests for the indexes a collection should have."""

    def test_secondary_identifier(self):
        Movie = define_movie()
        assert build_index_schemas(Movie) == [
            IndexSchema(attributes={"slug": SortDirection.ASC}, is_unique=True)
        ]

    def test_references_and_declared_indexes(self):
        _, Film = define_catalog()

        names = [schema.name for schema in build_index_schemas(Film)]

        assert names == [
            "director.id",
            "cast.id",
            "title + year (desc)",
            "director.id + year (desc) [unique]",
        ]


class TestMigrateStorables:
    """Tests for Store.migrate_storables."""

    @pytest.mark.asyncio
    async def test_index_lifecycle(self):
        database = MemoryDatabase()
        store = MemoryStore(database)
        store.register_storable(define_movie())

        report = await store.migrate_storables()
        assert report.to_dict() == {
            "collections": [
                {"name": "Movie", "createdIndexes": ["slug [unique]"], "droppedIndexes": []}
            ]
        }

        report = await store.migrate_storables()
        assert not report.has_changes
        assert report.collections[0].created_indexes == []

        store_without_slug = MemoryStore(database)
        store_without_slug.register_storable(define_movie_without_slug())

        report = await store_without_slug.migrate_storables()
        assert report.collections[0].dropped_indexes == ["slug [unique]"]
        assert report.collections[0].created_indexes == []

    @pytest.mark.asyncio
    async def test_collections_are_sorted_by_name(self):
        store = MemoryStore()
        Person, Film = define_catalog()
        store.register_storables(Person, Film)

        report = await store.migrate_storables()

        assert [collection.name for collection in report.collections] == ["Film", "Person"]
        assert report.collections[1].created_indexes == []

    @pytest.mark.asyncio
    async def test_changed_direction_replaces_the_index(self):
        database = MemoryDatabase()
        _, first = define_catalog()
        await _migrate(database, first)

        _, second = define_catalog()
        second.delete_index({"title": "asc", "year": "desc"})
        second.set_index({"title": "asc", "year": "asc"})
        report = await _migrate(database, second)

        (collection,) = report.collections
        assert collection.created_indexes == ["title + year"]
        assert collection.dropped_indexes == ["title + year (desc)"]

    @pytest.mark.asyncio
    async def test_logging(self, caplog):
        store = MemoryStore()
        store.register_storable(define_movie())

        with caplog.at_level(logging.INFO, logger="stowage"):
            await store.migrate_storables()

        assert any("Migrated collection 'Movie'" in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_silent(self, caplog):
        store = MemoryStore()
        store.register_storable(define_movie())

        with caplog.at_level(logging.INFO, logger="stowage"):
            await store.migrate_storables(silent=True)

        assert not any("Migrat" in record.getMessage() for record in caplog.records)


class TestMigrationReport:
    """Tests for the report model."""

    def test_from_wire_shape(self):
        report = MigrationReport.model_validate(
            {"collections": [{"name": "Movie", "createdIndexes": ["slug [unique]"]}]}
        )

        assert report.collections[0].created_indexes == ["slug [unique]"]
        assert report.collections[0].dropped_indexes == []
        assert report.has_changes


async def _migrate(database, component_class):
    store = MemoryStore(database)
    store.register_storable(component_class)
    return await store.migrate_storables(silent=True)
