"""Writing entities: insert, update, delete and existence checks."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from .criteria import Criteria
from .database import Database, Transaction, get_database
from .errors import ValidationError
from .expression import equal
from .metadata import Entity, EntityType, Field, ManyToOne, Property
from .properties import BIND_INTEGER, to_string
from .tools import EntityRef, entity_type_of, get_pointing_back, id_of


logger = logging.getLogger(__name__)


class EntityWriter:
    """Persists entities through a ``Database``.

    Every operation accepts an optional ``Transaction``. Without one the operation
    commits on its own, or joins the transaction that is already active.
    """

    __slots__ = ("database",)

    def __init__(self, database: Database | None = None) -> None:
        self.database = database or get_database()

    def save(self, entity: Entity, transaction: Transaction | None = None) -> None:
        """Insert ``entity`` and assign the generated id.

        A sub-entity first saves its parent and reuses the parent's id.

        Raises:
            ValidationError: If the entity already has an id, a sub-entity has no
                parent instance, or a referenced entity was never saved.
        """
        entity_type = type(entity).__entity__
        if entity.get_id() is not None:
            raise ValidationError(f"{entity!r} already has an id, call update() instead")

        with self.database.transaction(transaction) as tx:
            columns: list[str] = []
            tags = ""
            values: list[Any] = []

            if entity_type.is_sub_entity:
                parent = entity.parent_instance()
                if parent is None:
                    raise ValidationError(f"{entity_type.name} needs its {entity_type.parent_field} to be set")
                self.save(parent, tx)
                columns.append(entity_type.id_column)
                tags += BIND_INTEGER
                values.append(parent.get_id())

            for own in entity_type.own_fields.values():
                if not own.has_column:
                    continue
                value = entity.__dict__.get(own.name)
                if value is None:
                    continue
                tag, bound = _bind(own, value)
                columns.append(own.column)
                tags += tag
                values.append(bound)

            if values:
                placeholders = ",".join("?" * len(values))
                result = self.database.prepare_and_execute(
                    f"INSERT INTO {entity_type.table} ({','.join(columns)}) VALUES ({placeholders})",
                    [tags, *values],
                )
                new_id = result.last_insert_id
            else:
                new_id = self.database.insert_default(entity_type.table)

            if not entity_type.is_sub_entity and entity_type.id_field is not None:
                entity.set_id(new_id)

        logger.debug("Saved %r", entity)

    def update(
        self,
        entity: Entity,
        fields: Sequence[str] | None = None,
        update_parents: bool = True,
        transaction: Transaction | None = None,
    ) -> None:
        """Write the selected fields of ``entity`` (all visible ones by default).

        Args:
            entity: Entity with an id.
            fields: Names to write. For a sub-entity, names declared on a parent are
                written to the parent row.
            update_parents: Whether a sub-entity also updates its parent rows.
            transaction: Transaction to join.

        Raises:
            ValidationError: If the entity has no id or a field is unknown.
        """
        entity_type = type(entity).__entity__
        identifier = entity.get_id()
        if identifier is None:
            raise ValidationError(f"{entity!r} has no id, call save() instead")

        requested = list(fields) if fields else list(entity_type.field_names)
        entity_type.validate_fields(requested)

        assignments: list[str] = []
        tags = ""
        values: list[Any] = []
        parent_fields: list[str] = []
        for name in requested:
            if entity_type.owner_of(name) is not entity_type:
                parent_fields.append(name)
                continue
            own = entity_type.own_fields[name]
            if not own.has_column or name == entity_type.id_field:
                continue
            value = entity.__dict__.get(name)
            tag, bound = _bind(own, value) if value is not None else (_tag(own), None)
            assignments.append(f"{own.column}=?")
            tags += tag
            values.append(bound)

        with self.database.transaction(transaction) as tx:
            if assignments:
                self.database.prepare_and_execute(
                    f"UPDATE {entity_type.table} SET {','.join(assignments)} "
                    f"WHERE {entity_type.table}.{entity_type.id_column}=?",
                    [tags + BIND_INTEGER, *values, identifier],
                )

            if entity_type.is_sub_entity and update_parents and (not fields or parent_fields):
                parent = entity.parent_instance()
                if parent is None:
                    raise ValidationError(f"{entity_type.name} needs its {entity_type.parent_field} to be set")
                self.update(parent, parent_fields if fields else None, True, tx)

        logger.debug("Updated %r", entity)

    def delete(self, entity: Entity, transaction: Transaction | None = None) -> None:
        """Delete ``entity`` and, for a sub-entity, its parent rows.

        Many-to-one columns of other tables that point back at the entity are set to
        NULL first.

        Raises:
            ValidationError: If the entity has no id.
        """
        entity_type = type(entity).__entity__
        identifier = entity.get_id()
        if identifier is None:
            raise ValidationError(f"{entity!r} has no id and cannot be deleted")

        with self.database.transaction(transaction) as tx:
            self._clear_pointing_back(entity_type, entity, identifier)
            self.database.prepare_and_execute(
                f"DELETE FROM {entity_type.table} WHERE {entity_type.table}.{entity_type.id_column}=?",
                [BIND_INTEGER, identifier],
            )

            if entity_type.is_sub_entity:
                self.delete(entity.parent_instance(), tx)  # type: ignore[arg-type]

        logger.debug("Deleted %s %s", entity_type.name, identifier)

    def _clear_pointing_back(self, entity_type: EntityType, entity: Entity, identifier: int) -> None:
        for own, _other, other_field in get_pointing_back(entity_type):
            referenced = entity.__dict__.get(own.name)
            if referenced is None:
                continue

            owner = other_field.entity_type
            self.database.prepare_and_execute(
                f"UPDATE {owner.table} SET {other_field.column}=NULL "
                f"WHERE {owner.table}.{owner.id_column}=? AND {owner.table}.{other_field.column}=?",
                [BIND_INTEGER * 2, id_of(referenced, context=own.name), identifier],
            )

    def save_list(
        self,
        entity_type: EntityRef,
        entities: Sequence[Entity],
        transaction: Transaction | None = None,
    ) -> None:
        expected = entity_type_of(entity_type)
        with self.database.transaction(transaction) as tx:
            for entity in entities:
                _check_type(entity, expected)
                self.save(entity, tx)

    def update_list(
        self,
        entity_type: EntityRef,
        entities: Sequence[Entity],
        fields: Sequence[str] | None = None,
        update_parents: bool = True,
        transaction: Transaction | None = None,
    ) -> None:
        expected = entity_type_of(entity_type)
        with self.database.transaction(transaction) as tx:
            for entity in entities:
                _check_type(entity, expected)
                self.update(entity, fields, update_parents, tx)

    def delete_list(
        self,
        entity_type: EntityRef,
        entities: Sequence[Entity],
        transaction: Transaction | None = None,
    ) -> None:
        expected = entity_type_of(entity_type)
        with self.database.transaction(transaction) as tx:
            for entity in entities:
                _check_type(entity, expected)
                self.delete(entity, tx)

    def exists(
        self,
        entity_type: EntityRef,
        field: str,
        value: Any,
        parent: EntityRef | None = None,
    ) -> bool:
        """Tell whether any row has ``value`` in ``field``.

        Many-to-one fields are compared by id, so ``value`` must be an ``int`` or ``None``.

        Raises:
            ValidationError: For relation fields without a column, or an entity value.
        """
        base = entity_type_of(entity_type)
        owner = base.owner_of(field) if parent is None else entity_type_of(parent)
        target_field = base.field(field) if parent is None else owner.own_fields.get(field)
        if isinstance(target_field, ManyToOne):
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise ValidationError(f"exists on many-to-one field {field!r} needs an id, got {value!r}")
        elif not isinstance(target_field, Property):
            raise ValidationError(f"exists is not supported on field {field!r} of {base.name}")

        return self.exists_by_criteria(base, Criteria(base).add(equal(base, field, value, parent)))

    def exists_by_criteria(self, entity_type: EntityRef, criteria: Criteria) -> bool:
        base = entity_type_of(entity_type)
        if criteria.entity_type is not base:
            raise ValidationError(f"Criteria for {criteria.entity_type.name} cannot check {base.name}")

        prepared = criteria.prepare()
        query = f"SELECT EXISTS(SELECT 1 FROM {base.table}"
        if prepared.joins:
            query += f" {prepared.joins}"
        if prepared.restrictions:
            query += f" WHERE {prepared.restrictions}"
        query += ") AS result"

        if prepared.needs_binding:
            row = self.database.prepare_and_execute_select_single(query, prepared.parameters)
        else:
            row = self.database.select_single(query)

        return bool(row and row["result"])


def _tag(own: Field) -> str:
    if isinstance(own, Property):
        return own.property_type.bind_type

    return BIND_INTEGER


def _bind(own: Field, value: Any) -> tuple[str, Any]:
    if isinstance(own, ManyToOne):
        return BIND_INTEGER, id_of(value, context=f"Value of {own.name!r}")

    assert isinstance(own, Property)
    return own.property_type.bind_type, to_string(value, own.property_type)


def _check_type(entity: Entity, expected: EntityType) -> None:
    if type(entity).__entity__ is not expected:
        raise ValidationError(f"Expected a {expected.name}, got {type(entity).__name__}")

