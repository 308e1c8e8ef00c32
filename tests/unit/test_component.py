"""
Unit tests for the component model: properties, value types, identity,
selector resolution and serialization.
"""

import pytest

from stowage.component import (
    Attribute,
    Component,
    EmbeddedComponent,
    PrimaryIdentifierAttribute,
    SecondaryIdentifierAttribute,
    ValueSource,
    get_identity_registry,
    parse_value_type,
    use_identity_registry,
)
from stowage.component.value_types import ArrayType, ComponentType, NumberType, StringType
from stowage.errors import UnsetAttributeError, UsageError, ValidationError


def define_components():
    class Address(EmbeddedComponent):
        city = Attribute("string")
        country = Attribute("string?")

    class Director(Component):
        id = PrimaryIdentifierAttribute()
        name = Attribute("string")

    class Film(Component):
        id = PrimaryIdentifierAttribute()
        slug = SecondaryIdentifierAttribute()
        title = Attribute("string")
        year = Attribute("number?", validators=[lambda value: value > 1880])
        tags = Attribute("string[]", default=list)
        director = Attribute(Director)
        location = Attribute(Address)

    return Address, Director, Film


class TestValueTypes:
    """Tests for value type parsing."""

    def test_parse_scalars(self):
        assert isinstance(parse_value_type("string"), StringType)
        assert isinstance(parse_value_type(int), NumberType)
        assert parse_value_type("number?").is_optional

    def test_parse_array(self):
        value_type = parse_value_type("string[]")
        assert isinstance(value_type, ArrayType)
        assert isinstance(value_type.item_type, StringType)
        assert str(value_type) == "string[]"

    def test_parse_component(self):
        _, Director, _ = define_components()
        value_type = parse_value_type(Director)
        assert isinstance(value_type, ComponentType)
        assert value_type.is_reference

    def test_embedded_component_is_not_a_reference(self):
        Address, _, _ = define_components()
        assert not parse_value_type(Address).is_reference

    def test_object_is_not_indexable(self):
        assert not parse_value_type("object").is_indexable
        assert parse_value_type("string").is_indexable

    def test_invalid_type(self):
        with pytest.raises(UsageError):
            parse_value_type("not a type")


class TestComponentProperties:
    """Tests for the property table and attribute access."""

    def test_properties_in_declaration_order(self):
        _, _, Film = define_components()
        names = [prop.name for prop in Film.get_properties()]
        assert names == ["id", "slug", "title", "year", "tags", "director", "location"]

    def test_subclass_inherits_and_overrides(self):
        _, _, Film = define_components()

        class Documentary(Film):
            subject = Attribute("string")
            year = None

        names = [prop.name for prop in Documentary.get_properties()]
        assert "subject" in names
        assert "year" not in names
        assert Film.has_attribute("year")

    def test_new_instance_gets_defaults(self):
        _, _, Film = define_components()
        film = Film(title="Inception")

        assert film.is_new()
        assert film.title == "Inception"
        assert film.tags == []
        assert len(film.id) == 32

    def test_unknown_attribute(self):
        _, _, Film = define_components()
        with pytest.raises(UsageError):
            Film(rating=5)

    def test_unset_attribute_raises(self):
        _, _, Film = define_components()
        film = Film()
        with pytest.raises(UnsetAttributeError):
            film.title
        assert not Film.get_attribute("title").is_set(film)

    def test_wrong_type_rejected(self):
        _, _, Film = define_components()
        with pytest.raises(UsageError):
            Film(title=42)

    def test_value_source_defaults_to_local(self):
        _, _, Film = define_components()
        film = Film(title="Inception")
        assert Film.get_attribute("title").get_value_source(film) == ValueSource.LOCAL

    def test_get_attribute_of_missing_property(self):
        _, _, Film = define_components()
        with pytest.raises(UsageError):
            Film.get_attribute("rating")


class TestIdentity:
    """Tests for identifiers and the identity registry."""

    def test_normalize_identifier_descriptor(self):
        _, _, Film = define_components()
        assert Film.normalize_identifier_descriptor("abc") == {"id": "abc"}
        assert Film.normalize_identifier_descriptor({"slug": "inception"}) == {"slug": "inception"}

    def test_normalize_rejects_non_identifier(self):
        _, _, Film = define_components()
        with pytest.raises(UsageError):
            Film.normalize_identifier_descriptor({"title": "Inception"})

    def test_normalize_rejects_none(self):
        _, _, Film = define_components()
        with pytest.raises(UsageError):
            Film.normalize_identifier_descriptor({"id": None})

    def test_instantiate_returns_registered_instance(self):
        _, _, Film = define_components()
        film = Film.instantiate({"id": "f1"})

        assert not film.is_new()
        assert film.is_attached()
        assert Film.instantiate({"id": "f1"}) is film

    def test_secondary_identifier_lookup(self):
        _, _, Film = define_components()
        film = Film.instantiate({"id": "f1"})
        film.slug = "inception"

        assert get_identity_registry().get(Film, {"slug": "inception"}) is film

    def test_secondary_identifier_conflict(self):
        _, _, Film = define_components()
        film = Film.instantiate({"id": "f1"})
        film.slug = "inception"
        other = Film.instantiate({"id": "f2"})

        with pytest.raises(UsageError):
            other.slug = "inception"

        assert not Film.get_attribute("slug").is_set(other)
        assert other.is_attached()
        assert get_identity_registry().get(Film, {"slug": "inception"}) is film

    def test_attach_conflict(self):
        _, _, Film = define_components()
        film = Film.instantiate({"id": "f1"})

        with pytest.raises(UsageError):
            Film(id="f1").attach()

        assert get_identity_registry().get(Film, {"id": "f1"}) is film

    def test_primary_identifier_is_immutable_once_persisted(self):
        _, _, Film = define_components()
        film = Film.instantiate({"id": "f1"})
        with pytest.raises(UsageError):
            film.id = "f2"

    def test_identifier_cannot_be_none(self):
        _, _, Film = define_components()
        with pytest.raises(UsageError):
            Film(slug=None)

    def test_detach(self):
        _, _, Film = define_components()
        film = Film.instantiate({"id": "f1"})
        film.detach()

        assert not film.is_attached()
        assert get_identity_registry().get(Film, {"id": "f1"}) is None

    def test_scoped_registry(self):
        _, _, Film = define_components()
        outer = Film.instantiate({"id": "f1"})

        with use_identity_registry() as registry:
            inner = Film.instantiate({"id": "f1"})
            assert inner is not outer
            assert get_identity_registry() is registry

        assert Film.instantiate({"id": "f1"}) is outer


class TestResolveAttributeSelector:
    """Tests for selector resolution against classes and instances."""

    def test_resolve_true_on_instance(self):
        _, _, Film = define_components()
        film = Film.instantiate({"id": "f1"})
        result = film.resolve_attribute_selector(True)

        assert result["title"] is True
        assert result["director"] == {"id": True}
        assert result["location"] == {"city": True, "country": True}

    def test_primary_identifier_always_included(self):
        _, _, Film = define_components()
        film = Film.instantiate({"id": "f1"})
        assert film.resolve_attribute_selector({"title": True}) == {"id": True, "title": True}

    def test_set_attributes_only(self):
        _, _, Film = define_components()
        film = Film.instantiate({"id": "f1"})
        film.title = "Inception"

        result = film.resolve_attribute_selector(True, set_attributes_only=True)
        assert result == {"id": True, "title": True}

    def test_target_skips_confirmed_values(self):
        _, _, Film = define_components()
        film = Film.instantiate({"id": "f1"}, ValueSource.STORE)
        Film.get_attribute("title").set_value(film, "Inception", ValueSource.STORE)
        film.year = 2010

        result = film.resolve_attribute_selector(
            True, set_attributes_only=True, target=ValueSource.STORE
        )
        assert result == {"id": True, "year": True}

    def test_include_referenced_components(self):
        _, Director, Film = define_components()
        film = Film.instantiate({"id": "f1"})
        film.director = Director.instantiate({"id": "d1"})

        result = film.resolve_attribute_selector(
            {"director": True}, include_referenced_components=True
        )
        assert result == {"id": True, "director": {"id": True, "name": True}}

    def test_filter(self):
        _, _, Film = define_components()
        film = Film.instantiate({"id": "f1"})
        result = film.resolve_attribute_selector(
            {"title": True, "year": True}, filter=lambda attribute, instance: attribute.name != "year"
        )
        assert result == {"id": True, "title": True}


class TestSerialization:
    """Tests for document conversion."""

    def test_serialize_reference_and_embedded(self):
        Address, Director, Film = define_components()
        director = Director(id="d1", name="Nolan")
        film = Film(
            id="f1",
            title="Inception",
            director=director,
            location=Address(city="Los Angeles"),
        )

        document = film.serialize({"title": True, "director": True, "location": True})

        assert document == {
            "__component": "Film",
            "title": "Inception",
            "director": {"__component": "Director", "id": "d1"},
            "location": {"__component": "Address", "city": "Los Angeles"},
        }

    def test_deserialize_stamps_source(self):
        Address, Director, Film = define_components()
        film = Film.instantiate({"id": "f1"})
        film.deserialize(
            {
                "__component": "Film",
                "title": "Inception",
                "director": {"__component": "Director", "id": "d1"},
                "location": {"__component": "Address", "city": "Paris", "country": "FR"},
            },
            ValueSource.STORE,
        )

        assert film.title == "Inception"
        assert isinstance(film.director, Director)
        assert film.director is Director.instantiate({"id": "d1"})
        assert film.location.city == "Paris"
        assert Film.get_attribute("title").get_value_source(film) == ValueSource.STORE
        assert Address.get_attribute("city").get_value_source(film.location) == ValueSource.STORE


class TestValidation:
    """Tests for attribute validation."""

    def test_validators_run(self):
        _, _, Film = define_components()
        film = Film(title="Metropolis", year=1800)

        with pytest.raises(ValidationError) as exc_info:
            film.validate()

        assert exc_info.value.failures[0].path == "year"

    def test_required_value(self):
        _, _, Film = define_components()
        film = Film(title=None)

        with pytest.raises(ValidationError):
            film.validate({"title": True})

    def test_optional_value(self):
        _, _, Film = define_components()
        film = Film(title="Metropolis", year=None)
        film.validate({"title": True, "year": True})

    def test_embedded_values_are_validated(self):
        Address, _, Film = define_components()
        film = Film(title="Metropolis", location=Address(city="Paris"))
        film.location.city = None

        with pytest.raises(ValidationError) as exc_info:
            film.validate({"location": True})

        assert exc_info.value.failures[0].path == "location"
