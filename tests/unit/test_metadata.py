from __future__ import annotations

from collections.abc import Iterator

import pytest

from sqla_entities import (
    AssociativeEntity,
    Identifier,
    ManyToOne,
    Property,
    PropertyType,
    Settings,
    StrongEntity,
    SubEntity,
    ValidationError,
    entity_type_of,
    get_id_column,
    get_table_name,
    init_settings,
)
from sqla_entities.config import reset_settings
from sqla_entities.metadata import FieldKind, Registry, get_value, set_value
from sqla_entities.tools import get_pointing_back

from ..models import Address, Student, StudentSubject, Subject, Teacher, User


class TestEntityType:
    def test_strong_entity(self) -> None:
        entity_type = entity_type_of(User)

        assert entity_type.cls is User
        assert entity_type.table == "User"
        assert entity_type.id_column == "ID"
        assert entity_type.id_field == "id"
        assert not entity_type.is_sub_entity
        assert not entity_type.is_associative

    def test_hidden_fields_are_not_selected_by_default(self) -> None:
        entity_type = entity_type_of(User)

        assert "password" in entity_type.fields
        assert "password" not in entity_type.field_names
        assert entity_type.field_names[0] == "id"

    def test_sub_entity(self) -> None:
        entity_type = entity_type_of(Student)

        assert entity_type.parent is entity_type_of(User)
        assert entity_type.parent_field == "user"
        assert entity_type.id_field is None
        assert list(entity_type.own_fields) == ["registration_number", "level", "subjects"]
        assert {"name", "address", "registration_number"} <= set(entity_type.field_names)
        assert list(entity_type.ancestors) == [entity_type_of(User)]

    def test_custom_parent_field(self) -> None:
        assert entity_type_of(Teacher).parent_field == "person"

    def test_associative(self) -> None:
        entity_type = entity_type_of(StudentSubject)

        assert entity_type.is_associative
        assert entity_type.sides == ("student", "subject")
        assert entity_type.table == "Student_Subject"

    def test_owner_of(self) -> None:
        student = entity_type_of(Student)

        assert student.owner_of("level") is student
        assert student.owner_of("email") is entity_type_of(User)

        with pytest.raises(ValidationError, match="does not exist on Student"):
            student.owner_of("title")

    def test_field_kinds(self) -> None:
        assert entity_type_of(User).field("address").kind is FieldKind.MANY_TO_ONE
        assert entity_type_of(Address).field("users").kind is FieldKind.ONE_TO_MANY
        assert entity_type_of(Student).field("subjects").kind is FieldKind.MANY_TO_MANY
        assert entity_type_of(Student).field("name").entity_type is entity_type_of(User)

    def test_descriptors_on_class(self) -> None:
        assert isinstance(User.name, Property)
        assert isinstance(User.id, Identifier)
        assert User.id.owner is User
        assert Subject.id is not User.id

    def test_one_to_many_identifier_field(self) -> None:
        assert Address.users.identifier_field is User.address

    def test_table_helpers(self) -> None:
        assert get_table_name("StudentSubject") == "Student_Subject"
        assert get_id_column(Student()) == "ID"


class TestRegistry:
    @pytest.fixture
    def namespaced(self) -> Iterator[None]:
        init_settings(Settings(url="sqlite://", entities_namespace=User.__module__))
        yield
        reset_settings()

    def test_singleton(self) -> None:
        assert Registry() is Registry()

    def test_resolve(self) -> None:
        entity_type = entity_type_of(User)

        assert Registry().resolve(User) is entity_type
        assert Registry().resolve("User") is entity_type
        assert Registry().resolve(entity_type.qualified_name) is entity_type
        assert Registry().resolve(entity_type) is entity_type

    @pytest.mark.usefixtures("namespaced")
    def test_namespace(self) -> None:
        assert Registry().get("Subject") is entity_type_of(Subject)

    def test_unknown(self) -> None:
        with pytest.raises(ValidationError, match="Unknown entity"):
            entity_type_of("Classroom")

    def test_abstract_is_not_an_entity(self) -> None:
        with pytest.raises(ValidationError):
            entity_type_of(StrongEntity)


class TestDeclarationErrors:
    def test_sub_entity_with_identifier(self) -> None:
        with pytest.raises(ValidationError, match="own identifier"):

            class Assistant(SubEntity):
                __parent__ = User

                id = Identifier()

    def test_sub_entity_redeclaring_parent_field(self) -> None:
        with pytest.raises(ValidationError, match="name"):

            class Alumnus(SubEntity):
                __parent__ = User

                name = Property(PropertyType.TEXT)

    def test_associative_side_must_be_many_to_one(self) -> None:
        with pytest.raises(ValidationError, match="must be a many-to-one field"):

            class Enrollment(AssociativeEntity):
                __side_a__ = "student"
                __side_b__ = "year"

                student = ManyToOne(Student)
                year = Property(PropertyType.INT)


class TestEntity:
    def test_abstract_cannot_be_instantiated(self) -> None:
        with pytest.raises(TypeError, match="abstract"):
            StrongEntity()

    def test_unknown_keyword(self) -> None:
        with pytest.raises(TypeError, match="nickname"):
            User(nickname="Lo")

    def test_values_default_to_none(self) -> None:
        user = User(name="Leon")

        assert user.name == "Leon"
        assert user.email is None
        assert user.get_id() is None

    def test_parent_fields_routed_to_parent(self) -> None:
        student = Student(registration_number="E1066934", name="Leon")

        assert isinstance(student.user, User)
        assert student.user.name == "Leon"
        assert get_value(student, "name") == "Leon"
        assert get_value(student, "registration_number") == "E1066934"

    def test_set_value_creates_parent(self) -> None:
        teacher = Teacher(title="Prof")
        assert teacher.parent_instance() is None
        assert get_value(teacher, "email") is None

        set_value(teacher, "email", "grega@example.com")

        assert teacher.person.email == "grega@example.com"

    def test_sub_entity_id_lives_on_parent(self) -> None:
        student = Student()
        assert student.get_id() is None

        student.set_id(4)

        assert student.user.id == 4
        assert student.get_id() == 4
        assert repr(student) == "Student(id=4)"

    def test_associative_has_no_identifier(self) -> None:
        with pytest.raises(ValidationError, match="no identifier"):
            StudentSubject().set_id(1)

    def test_side_helpers(self) -> None:
        assert StudentSubject.side_a() == "student"
        assert StudentSubject.side_b() == "subject"
        assert StudentSubject.opposite_side("student") == "subject"
        assert StudentSubject.opposite_side("subject") == "student"

        with pytest.raises(ValidationError):
            StudentSubject.opposite_side("teacher")


class TestPointingBack:
    def test_mutual_references(self) -> None:
        [(own, other, other_field)] = get_pointing_back(entity_type_of(User))

        assert own is User.address
        assert other is entity_type_of(Address)
        assert other_field is Address.owner

    def test_none(self) -> None:
        assert get_pointing_back(entity_type_of(Subject)) == ()
