"""
Unit tests for StorableComponent.save.
"""

import pytest

from stowage.component import EmbeddedComponent, ValueSource, get_identity_registry
from stowage.component.value_types import ArrayType, ComponentType
from stowage.errors import (
    CapabilityError,
    ConflictError,
    NotFoundError,
    UnloadedArrayItemError,
    UsageError,
    ValidationError,
)
from stowage.runtime import StorableComponent, attribute, primary_identifier, secondary_identifier


def define_models():
    class Credit(EmbeddedComponent):
        role = attribute("string")
        name = attribute("string")

    class User(StorableComponent):
        id = primary_identifier()
        email = secondary_identifier()
        full_name = attribute("string")
        access_level = attribute("number", default=0)
        bio = attribute("string?")
        display_name = attribute("string?")

        @display_name.loader
        def _load_display_name(self):
            return self.full_name.upper()

    class Movie(StorableComponent):
        id = primary_identifier()
        title = attribute("string")
        credits = attribute(ArrayType(ComponentType(Credit)), default=list)

    return Credit, User, Movie


@pytest.fixture
def models(store):
    Credit, User, Movie = define_models()
    store.register_storables(User, Movie)
    return Credit, User, Movie


class TestSaveNew:
    """Tests for saving new instances."""

    @pytest.mark.asyncio
    async def test_save_creates_document(self, store, models, calls):
        _, User, _ = models
        user = User(id="u1", email="ada@example.com", full_name="Ada Lovelace")

        assert await user.save() is user

        assert not user.is_new()
        assert user.is_attached()
        assert store.database.get_collection("User") == [
            {
                "__component": "User",
                "id": "u1",
                "email": "ada@example.com",
                "full_name": "Ada Lovelace",
                "access_level": 0,
            }
        ]
        assert len(calls("save")) == 1

    @pytest.mark.asyncio
    async def test_saved_values_are_confirmed(self, store, models):
        _, User, _ = models
        user = User(email="ada@example.com", full_name="Ada Lovelace")
        await user.save()

        assert User.get_attribute("full_name").get_value_source(user) == ValueSource.STORE
        assert User.get_attribute("access_level").get_value_source(user) == ValueSource.STORE

    @pytest.mark.asyncio
    async def test_second_save_is_skipped(self, store, models, calls):
        _, User, _ = models
        user = User(email="ada@example.com", full_name="Ada Lovelace")
        await user.save()

        assert await user.save() is user
        assert len(calls("save")) == 1

    @pytest.mark.asyncio
    async def test_existing_identifier(self, store, models):
        _, User, _ = models
        await User(id="u1", email="ada@example.com", full_name="Ada Lovelace").save()
        get_identity_registry().clear()

        duplicate = User(id="u1", email="grace@example.com", full_name="Grace Hopper")
        with pytest.raises(ConflictError):
            await duplicate.save()
        assert duplicate.is_new()

    @pytest.mark.asyncio
    async def test_existing_identifier_without_throwing(self, store, models):
        _, User, _ = models
        await User(id="u1", email="ada@example.com", full_name="Ada Lovelace").save()
        get_identity_registry().clear()

        duplicate = User(id="u1", email="grace@example.com", full_name="Grace Hopper")
        assert await duplicate.save(throw_if_exists=False) is None
        assert duplicate.is_new()

    @pytest.mark.asyncio
    async def test_unique_secondary_identifier(self, store, models):
        _, User, _ = models
        await User(email="ada@example.com", full_name="Ada Lovelace").save()

        with pytest.raises(ConflictError):
            await User(email="ada@example.com", full_name="Someone Else").save()
        assert len(store.database.get_collection("User")) == 1

    @pytest.mark.asyncio
    async def test_validation_runs_before_dispatch(self, store, models, calls):
        _, User, _ = models
        user = User(email="ada@example.com", full_name=None)

        with pytest.raises(ValidationError) as exc_info:
            await user.save()

        assert exc_info.value.failures[0].path == "full_name"
        assert calls("save") == []

    @pytest.mark.asyncio
    async def test_computed_attribute_is_not_saved(self, store, models, calls):
        _, User, _ = models
        user = User(email="ada@example.com", full_name="Ada Lovelace")
        User.get_attribute("display_name").set_value(user, "ADA")

        await user.save()

        assert "display_name" not in calls("save")[0].params["attribute_selector"]
        assert "display_name" not in store.database.get_collection("User")[0]

    @pytest.mark.asyncio
    async def test_computed_attribute_is_not_saved_when_selected(self, store, models, calls):
        _, User, _ = models
        user = User(id="u1", email="ada@example.com", full_name="Ada Lovelace")
        User.get_attribute("display_name").set_value(user, "ADA")

        await user.save({"display_name": True, "full_name": True})

        assert "display_name" not in calls("save")[0].params["attribute_selector"]
        assert "display_name" not in store.database.get_collection("User")[0]
        assert store.database.get_collection("User")[0]["full_name"] == "Ada Lovelace"


class TestSaveExisting:
    """Tests for saving instances already in the store."""

    @pytest.mark.asyncio
    async def test_only_modified_attributes_are_sent(self, store, models, calls):
        _, User, _ = models
        await User(id="u1", email="ada@example.com", full_name="Ada Lovelace").save()
        get_identity_registry().clear()
        store.start_trace()

        user = await User.get("u1")
        user.access_level = 3
        await user.save()

        entries = calls("save")
        assert len(entries) == 1
        assert entries[0].params["attribute_selector"] == {"id": True, "access_level": True}
        assert store.database.get_collection("User")[0]["access_level"] == 3

    @pytest.mark.asyncio
    async def test_unchanged_instance_is_not_sent(self, store, models, calls):
        _, User, _ = models
        await User(id="u1", email="ada@example.com", full_name="Ada Lovelace").save()
        get_identity_registry().clear()
        store.start_trace()

        user = await User.get("u1")
        await user.save()

        assert calls("save") == []

    @pytest.mark.asyncio
    async def test_none_unsets_the_stored_value(self, store, models):
        _, User, _ = models
        user = User(id="u1", email="ada@example.com", full_name="Ada Lovelace", bio="Analyst")
        await user.save()

        user.bio = None
        await user.save()

        assert "bio" not in store.database.get_collection("User")[0]

        get_identity_registry().clear()
        reloaded = await User.get("u1", {"bio": True})
        assert reloaded.bio is None

    @pytest.mark.asyncio
    async def test_changing_a_secondary_identifier(self, store, models):
        _, User, _ = models
        user = User(id="u1", email="ada@example.com", full_name="Ada Lovelace")
        await user.save()

        user.email = "countess@example.com"
        await user.save()

        assert store.database.get_collection("User")[0]["email"] == "countess@example.com"

    @pytest.mark.asyncio
    async def test_missing_record(self, store, models):
        _, User, _ = models
        user = User.instantiate({"id": "ghost"})
        user.full_name = "Nobody"

        with pytest.raises(NotFoundError):
            await user.save()

    @pytest.mark.asyncio
    async def test_missing_record_without_throwing(self, store, models):
        _, User, _ = models
        user = User.instantiate({"id": "ghost"})
        user.full_name = "Nobody"

        assert await user.save(throw_if_missing=False) is None

    @pytest.mark.asyncio
    async def test_conflicting_options(self, store, models):
        _, User, _ = models
        user = User(email="ada@example.com", full_name="Ada Lovelace")

        with pytest.raises(UsageError):
            await user.save(throw_if_missing=True, throw_if_exists=True)

    @pytest.mark.asyncio
    async def test_selector_limits_the_saved_attributes(self, store, models, calls):
        _, User, _ = models
        await User(id="u1", email="ada@example.com", full_name="Ada Lovelace").save()
        get_identity_registry().clear()
        store.start_trace()

        user = await User.get("u1")
        user.full_name = "Augusta Ada King"
        user.access_level = 5
        await user.save({"access_level": True})

        assert calls("save")[0].params["attribute_selector"] == {"id": True, "access_level": True}
        assert store.database.get_collection("User")[0]["full_name"] == "Ada Lovelace"


class TestEmbeddedArrays:
    """Tests for arrays of embedded components."""

    @pytest.mark.asyncio
    async def test_array_is_saved_whole(self, store, models):
        Credit, _, Movie = models
        movie = Movie(
            id="m1",
            title="Inception",
            credits=[Credit(role="director", name="Christopher Nolan")],
        )
        await movie.save()

        movie.credits = [*movie.credits, Credit(role="composer", name="Hans Zimmer")]
        await movie.save()

        assert store.database.get_collection("Movie")[0]["credits"] == [
            {"__component": "Credit", "role": "director", "name": "Christopher Nolan"},
            {"__component": "Credit", "role": "composer", "name": "Hans Zimmer"},
        ]

    @pytest.mark.asyncio
    async def test_partially_loaded_item_is_rejected(self, store, models, calls):
        Credit, _, Movie = models
        movie = Movie(id="m1", title="Inception")
        await movie.save()

        movie.credits = [Credit(role="writer")]

        with pytest.raises(UnloadedArrayItemError) as exc_info:
            await movie.save()

        assert exc_info.value.failures[0].path == "credits[0].name"
        assert len(calls("save")) == 1

    @pytest.mark.asyncio
    async def test_nested_partially_loaded_item_is_rejected(self, store, calls):
        class Note(EmbeddedComponent):
            author = attribute("string")
            text = attribute("string")

        class Details(EmbeddedComponent):
            summary = attribute("string?")
            notes = attribute(ArrayType(ComponentType(Note)), default=list)

        class Show(StorableComponent):
            id = primary_identifier()
            details = attribute("Details")

        store.register_storable(Show)
        show = Show(id="s1", details=Details(summary="Pilot"))
        await show.save()

        show.details.notes = [Note(text="hello")]

        with pytest.raises(UnloadedArrayItemError) as exc_info:
            await show.save()

        assert exc_info.value.failures[0].path == "details.notes[0].author"
        assert len(calls("save")) == 1


class TestCapabilities:
    """Tests for components with neither a store nor a remote."""

    @pytest.mark.asyncio
    async def test_save_without_store(self):
        _, User, _ = define_models()

        with pytest.raises(CapabilityError):
            await User(email="ada@example.com", full_name="Ada Lovelace").save()
