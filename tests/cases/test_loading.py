from __future__ import annotations

from datetime import date

import pytest

from sqla_entities import (
    AmbiguousResultError,
    Criteria,
    Database,
    EntityLoader,
    ValidationError,
    above,
    after,
    after_now,
    any_of,
    between,
    contains,
    equal,
    starts_with,
)

from ..models import Address, Subject, User


def _ids(entities: list) -> list[int | None]:
    return [entity.get_id() for entity in entities]


class TestLoadById:
    def test_properties(self, seed_data: Database) -> None:
        user = User.load_by_id(1)

        assert user is not None
        assert user.id == 1
        assert user.name == "Lojzi"
        assert user.email == "lojzi@example.com"
        assert user.active is True
        assert user.birth_date == date(1980, 3, 14)

    def test_missing(self, seed_data: Database) -> None:
        assert User.load_by_id(99) is None

    def test_nulls(self, seed_data: Database) -> None:
        user = User.load_by_id(6)

        assert user is not None
        assert user.email is None
        assert user.birth_date is None
        assert user.address is None
        assert user.active is False

    def test_hidden_field_only_on_request(self, seed_data: Database) -> None:
        user = User.load_by_id(1)
        with_password = User.load_by_id(1, fields=["name", "password"])

        assert user is not None and with_password is not None
        assert user.password is None
        assert with_password.password == "secret1"

    def test_relations_share_instances(self, seed_data: Database) -> None:
        user = User.load_by_id(1)

        assert user is not None
        address = user.address
        assert isinstance(address, Address)
        assert address.city == "Ljubljana"
        assert address.owner is user
        assert _ids(address.users) == [1, 4]
        assert address.users[0] is user
        assert address.users[1].address is address

    def test_fields(self, seed_data: Database) -> None:
        user = User.load_by_id(4, fields=["name"])

        assert user is not None
        assert user.id == 4
        assert user.name == "Leon"
        assert user.email is None
        assert user.address is None

    def test_explicit_relation_ignores_options(self, seed_data: Database) -> None:
        address = Address.load_by_id(2, fields=["users"], include_one_to_many=False)

        assert address is not None
        assert _ids(address.users) == [2, 5]
        assert address.city is None

    def test_exclude(self, seed_data: Database) -> None:
        user = User.load_by_id(1, exclude=["address", "email"])

        assert user is not None
        assert user.name == "Lojzi"
        assert user.email is None
        assert user.address is None

    def test_include_flags(self, seed_data: Database) -> None:
        address = Address.load_by_id(1, include_one_to_many=False)
        user = User.load_by_id(1, include_many_to_one=False)

        assert address is not None and user is not None
        assert address.users is None
        assert isinstance(address.owner, User)
        assert user.address is None

    def test_unknown_field(self, seed_data: Database) -> None:
        with pytest.raises(ValidationError, match="nickname"):
            User.load_by_id(1, fields=["nickname"])

    def test_unknown_option(self, seed_data: Database) -> None:
        with pytest.raises(TypeError):
            User.load_by_id(1, include_everything=True)

    def test_each_call_has_its_own_session(self, seed_data: Database) -> None:
        assert User.load_by_id(1) is not User.load_by_id(1)


class TestLoadList:
    def test_all_ordered_by_id(self, seed_data: Database) -> None:
        users = User.load_list()

        assert [user.name for user in users] == ["Lojzi", "Tadej", "Grega", "Leon", "Matic", "Katja"]

    def test_shared_references(self, seed_data: Database) -> None:
        users = User.load_list()

        assert users[0].address is users[3].address
        assert users[0].address.users[1] is users[3]

    def test_equal(self, seed_data: Database) -> None:
        criteria = Criteria(User).add(equal(User, "active", False))

        assert _ids(User.load_list(criteria)) == [3, 6]

    def test_is_null(self, seed_data: Database) -> None:
        criteria = Criteria(User).add(equal(User, "address", None))

        assert _ids(User.load_list(criteria)) == [6]

    def test_reference_by_fields(self, seed_data: Database) -> None:
        criteria = Criteria(User).add(equal(User, "address", Address(city="Maribor")))

        assert _ids(User.load_list(criteria)) == [2, 5]

    def test_any_of(self, seed_data: Database) -> None:
        criteria = Criteria(User).add(
            any_of([equal(User, "name", "Leon"), equal(User, "name", "Matic"), equal(User, "name", "Nobody")])
        )

        assert _ids(User.load_list(criteria)) == [4, 5]

    def test_ranges(self, seed_data: Database) -> None:
        born = Criteria(User).add(between(User, "birth_date", date(1990, 1, 1), date(2001, 12, 31)))
        young = Criteria(User).add(after(User, "birth_date", date(1999, 1, 1)))
        future = Criteria(User).add(after_now(User, "birth_date"))
        heavy = Criteria(Subject).add(above(Subject, "credits", 4))

        assert _ids(User.load_list(born)) == [2, 4, 5]
        assert _ids(User.load_list(young)) == [4, 5]
        assert User.load_list(future) == []
        assert [subject.name for subject in Subject.load_list(heavy)] == ["Math", "History"]

    def test_between_includes_bounds(self, seed_data: Database) -> None:
        criteria = Criteria(User).add(between(User, "id", 2, 4))

        assert _ids(User.load_list(criteria)) == [2, 3, 4]

    def test_like(self, seed_data: Database) -> None:
        criteria = Criteria(User).add(contains(User, "email", "ma")).add(starts_with(User, "name", "M"))

        assert _ids(User.load_list(criteria)) == [5]

    def test_combined(self, seed_data: Database) -> None:
        criteria = Criteria(User).add(equal(User, "address", 1)).add(after(User, "birth_date", date(1990, 1, 1)))

        assert _ids(User.load_list(criteria)) == [4]

    def test_values_are_bound(self, seed_data: Database) -> None:
        criteria = Criteria(User).add(equal(User, "name", "Lojzi' OR '1'='1"))

        assert User.load_list(criteria) == []

    def test_criteria_of_other_type(self, seed_data: Database) -> None:
        with pytest.raises(ValidationError):
            User.load_list(Criteria(Subject))

    def test_colors_and_floats(self, seed_data: Database) -> None:
        subjects = Subject.load_list(fields=["name", "credits", "color"])

        assert [(s.name, s.credits, s.color) for s in subjects] == [
            ("Math", 6.0, "FF0000"),
            ("History", 4.5, "00FF00"),
            ("Geography", 3.0, "0000FF"),
        ]


class TestLoad:
    def test_single(self, seed_data: Database) -> None:
        user = User.load(Criteria(User).add(equal(User, "email", "leon@example.com")))

        assert user is not None
        assert user.id == 4

    def test_none(self, seed_data: Database) -> None:
        assert User.load(Criteria(User).add(equal(User, "name", "Nobody"))) is None

    def test_ambiguous(self, seed_data: Database) -> None:
        with pytest.raises(AmbiguousResultError):
            User.load(Criteria(User).add(equal(User, "address", 1)))


class TestEntityLoader:
    def test_explicit_database(self, seed_data: Database) -> None:
        loader = EntityLoader(seed_data)

        assert loader.database is seed_data
        assert _ids(loader.load_list("Address")) == [1, 2, 3]

    def test_plan(self, seed_data: Database) -> None:
        loader = EntityLoader(seed_data)
        session = loader.new_session(include_many_to_one=False)

        plan = loader.plan(User.__entity__, None, None, None, session.options)

        assert plan.query == (
            "SELECT User.ID AS id,User.Name AS name,User.Email AS email,User.Active AS active,"
            "User.BirthDate AS birth_date FROM User ORDER BY User.ID"
        )
        assert plan.many_to_one == []
        assert plan.cacheable

    def test_reserved_word_field(self, seed_data: Database) -> None:
        loader = EntityLoader(seed_data)
        session = loader.new_session()
        quoted = seed_data.engine.dialect.identifier_preparer.quote("order")

        plan = loader.plan(Subject.__entity__, None, ["order"], None, session.options)

        assert quoted != "order"
        assert f"Subject.Position AS {quoted}" in plan.query
        assert [s.order for s in Subject.load_list()] == [1, 2, 3]
