from __future__ import annotations

import pytest

from sqla_entities import Criteria, Database, ValidationError, contains, equal

from ..models import Address, Level, Student, Subject, Teacher, User


class TestLoadSubEntity:
    def test_load_by_id(self, seed_data: Database) -> None:
        student = Student.load_by_id(4)

        assert student is not None
        assert student.get_id() == 4
        assert student.registration_number == "E1066934"
        assert student.level is Level.UNDERGRADUATE
        assert isinstance(student.user, User)
        assert student.user.name == "Leon"
        assert isinstance(student.user.address, Address)
        assert student.user.address.city == "Ljubljana"

    def test_not_a_student(self, seed_data: Database) -> None:
        assert Student.load_by_id(1) is None

    def test_custom_parent_field(self, seed_data: Database) -> None:
        teacher = Teacher.load_by_id(3)

        assert teacher is not None
        assert teacher.title == "Prof"
        assert teacher.person.name == "Grega"
        assert teacher.person.active is False

    def test_load_list(self, seed_data: Database) -> None:
        students = Student.load_list()

        assert [s.get_id() for s in students] == [2, 4, 5]
        assert [s.user.name for s in students] == ["Tadej", "Leon", "Matic"]
        assert students[0].level is Level.GRADUATE

    def test_parent_field_criteria(self, seed_data: Database) -> None:
        by_name = Criteria(Student).add(equal(Student, "name", "Matic"))
        by_both = (
            Criteria(Student)
            .add(equal(Student, "level", Level.UNDERGRADUATE))
            .add(contains(Student, "email", "leon"))
        )

        assert [s.get_id() for s in Student.load_list(by_name)] == [5]
        assert [s.get_id() for s in Student.load_list(by_both)] == [4]

    def test_parent_reference_criteria(self, seed_data: Database) -> None:
        criteria = Criteria(Student).add(equal(Student, "address", Address(city="Maribor"), User))

        assert [s.get_id() for s in Student.load_list(criteria)] == [2, 5]

    def test_parent_fields_subset(self, seed_data: Database) -> None:
        student = Student.load_by_id(4, fields=["registration_number", "name"])

        assert student is not None
        assert student.registration_number == "E1066934"
        assert student.level is None
        assert student.user.name == "Leon"
        assert student.user.email is None
        assert student.subjects is None

    def test_own_fields_only(self, seed_data: Database) -> None:
        student = Student.load_by_id(5, fields=["level"])

        assert student is not None
        assert student.level is Level.UNDERGRADUATE
        assert student.get_id() == 5
        assert student.user.name is None

    def test_exclude_parent_field(self, seed_data: Database) -> None:
        student = Student.load_by_id(2, exclude=["email", "subjects"])

        assert student is not None
        assert student.user.name == "Tadej"
        assert student.user.email is None
        assert student.subjects is None

    def test_many_to_many(self, seed_data: Database) -> None:
        student = Student.load_by_id(2)

        assert student is not None
        assert [s.name for s in student.subjects] == ["Math", "History", "Geography"]
        assert student in student.subjects[0].students

    def test_graph_identity(self, seed_data: Database) -> None:
        student = Student.load_by_id(4)

        assert student is not None
        [math] = student.subjects
        assert isinstance(math, Subject)
        assert [s.get_id() for s in math.students] == [2, 4]
        assert math.students[1] is student
        assert math.students[0].subjects[0] is math

    def test_unknown_parent_field(self, seed_data: Database) -> None:
        with pytest.raises(ValidationError):
            Student.load_by_id(4, fields=["title"])
