"""Typed predicates on entity fields.

Every builder validates that the field supports the operation and returns an
``Expression``: a SQL fragment with ``?`` placeholders, the joins it relies on,
and the values to bind in canonical string form.

Example:
    >>> criteria = Criteria(Student)
    >>> criteria.add(equal(Student, "name", "Leon"))
    >>> criteria.add(contains(Student, "registration_number", "106"))
    >>> Student.load_list(criteria)
"""

from __future__ import annotations

import warnings
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .database import get_database
from .datastructures import frozendict
from .errors import ValidationError
from .joins import JoinKind, JoinSpec, JoinTable, join_table
from .metadata import Entity, EntityType, Field, ManyToOne, Property
from .properties import BIND_INTEGER, PropertyType, to_string
from .tools import EntityRef, entity_type_of, flatten


@dataclass(frozen=True, slots=True)
class Expression:
    entity_type: EntityType
    term: str
    joins: frozendict[JoinSpec, str] = field(default_factory=frozendict)
    values: tuple[str, ...] = ()
    value_types: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if len(self.values) != len(self.value_types):
            raise ValueError("Every bound value needs exactly one type tag")

    @property
    def value_count(self) -> int:
        return len(self.values)

    @property
    def is_literal(self) -> bool:
        return not self.values


def _locate(
    base: EntityType,
    name: str,
    parent: EntityRef | None,
    joins: JoinTable,
) -> tuple[Field, str, frozendict[JoinSpec, str]]:
    """Find the field, the place (table or alias) holding its column, and the joins to reach it."""
    owner = base.owner_of(name) if parent is None else entity_type_of(parent)
    if owner is not base and owner not in base.ancestors:
        raise ValidationError(f"{owner.name} is not {base.name} or one of its parents")
    if name not in owner.own_fields:
        raise ValidationError(f"Field {name!r} is not declared on {owner.name}")

    target_field = owner.own_fields[name]
    if owner is base:
        return target_field, base.table, frozendict()

    spec = JoinSpec(owner, JoinKind.INNER, base.table, base.id_column, owner.id_column)
    return target_field, joins.alias(spec), frozendict({spec: joins.alias(spec)})


def _property(target_field: Field, operation: str) -> Property:
    if not isinstance(target_field, Property):
        raise ValidationError(
            f"{operation} is not supported on {target_field.kind.value} field {target_field.name!r}"
        )

    return target_field


def _ordered(target_field: Field, operation: str) -> Property:
    prop = _property(target_field, operation)
    if not prop.property_type.is_ordered:
        raise ValidationError(
            f"{operation} is not supported on {prop.property_type.value} field {prop.name!r}"
        )

    return prop


def _textual(target_field: Field, value: Any, operation: str) -> Property:
    prop = _property(target_field, operation)
    if not prop.property_type.is_textual:
        raise ValidationError(
            f"{operation} is not supported on {prop.property_type.value} field {prop.name!r}"
        )
    if not isinstance(value, str):
        raise ValidationError(f"{operation} on {prop.name!r} needs a string value, got {value!r}")

    return prop


def equal(
    entity_type: EntityRef,
    name: str,
    value: Any,
    parent: EntityRef | None = None,
    *,
    joins: JoinTable | None = None,
) -> list[Expression]:
    """Build the expressions restricting field ``name`` to ``value``.

    A many-to-one value that is a fully populated entity is compared field by
    field on the joined target table, so several expressions can be returned.
    Callers AND them together (``Criteria.add`` accepts the list as is).

    Args:
        entity_type: The criteria's base entity.
        name: Field name, declared on ``entity_type`` or one of its parents.
        value: Value to compare, ``None`` for ``IS NULL``.
        parent: Class declaring the field, found automatically when omitted.
        joins: Join table to allocate aliases from.

    Returns:
        One or more expressions.

    Raises:
        ValidationError: If the field is a one-to-many or many-to-many field, or
            the value has nothing to compare.
    """
    joins = joins or join_table
    base = entity_type_of(entity_type)
    target_field, place, parent_joins = _locate(base, name, parent, joins)

    if not target_field.has_column:
        raise ValidationError(
            f"equal is not supported on {target_field.kind.value} field {target_field.name!r}"
        )

    column = f"{place}.{target_field.column}"
    if value is None:
        return [Expression(base, f"{column} IS NULL", parent_joins)]

    if isinstance(target_field, Property):
        return [
            Expression(
                base,
                f"{column}=?",
                parent_joins,
                (to_string(value, target_field.property_type),),
                (target_field.property_type.bind_type,),
            )
        ]

    assert isinstance(target_field, ManyToOne)
    return _equal_reference(base, target_field, place, value, parent_joins, joins)


def _equal_reference(
    base: EntityType,
    target_field: ManyToOne,
    place: str,
    value: Entity | int,
    parent_joins: frozendict[JoinSpec, str],
    joins: JoinTable,
) -> list[Expression]:
    column = f"{place}.{target_field.column}"
    if isinstance(value, bool) or not isinstance(value, (int, Entity)):
        raise ValidationError(f"Field {target_field.name!r} needs an entity or an id, got {value!r}")

    if isinstance(value, int):
        return [Expression(base, f"{column}=?", parent_joins, (str(value),), (BIND_INTEGER,))]

    target = type(value).__entity__
    if target is not target_field.target_type:
        raise ValidationError(
            f"Field {target_field.name!r} references {target_field.target_type.name}, got {target.name}"
        )

    identifier = value.get_id()
    only_id = not target.is_sub_entity and all(
        value.__dict__.get(name) is None for name in target.own_fields if name != target.id_field
    )
    if only_id and identifier is not None:
        return [Expression(base, f"{column}=?", parent_joins, (str(identifier),), (BIND_INTEGER,))]

    spec = JoinSpec(target, JoinKind.INNER, place, target_field.column, target.id_column)
    alias = joins.alias(spec)
    reference_joins = parent_joins.merged({spec: alias})

    expressions: list[Expression] = []
    ignored: list[str] = []
    for name, own in target.own_fields.items():
        own_value = value.__dict__.get(name)
        if own_value is None:
            continue
        if not isinstance(own, Property):
            if own_value != []:
                ignored.append(name)
            continue
        expressions.append(
            Expression(
                base,
                f"{alias}.{own.column}=?",
                reference_joins,
                (to_string(own_value, own.property_type),),
                (own.property_type.bind_type,),
            )
        )

    if target.is_sub_entity and identifier is not None:
        expressions.append(
            Expression(base, f"{alias}.{target.id_column}=?", reference_joins, (str(identifier),), (BIND_INTEGER,))
        )

    if ignored:
        warnings.warn(
            f"Relation fields {ignored} of the {target.name} value are ignored when comparing "
            f"{base.name}.{target_field.name}",
            UserWarning,
            stacklevel=3,
        )

    if not expressions:
        raise ValidationError(
            f"The {target.name} value given for {target_field.name!r} has no field to compare"
        )

    return expressions


def above(
    entity_type: EntityRef,
    name: str,
    value: Any,
    parent: EntityRef | None = None,
    *,
    joins: JoinTable | None = None,
) -> Expression:
    """Restrict an ordered field to values greater than ``value``."""
    return _greater(entity_type, name, value, parent, joins, "above")


def after(
    entity_type: EntityRef,
    name: str,
    value: Any,
    parent: EntityRef | None = None,
    *,
    joins: JoinTable | None = None,
) -> Expression:
    """Same as ``above``; reads better for dates and times."""
    return _greater(entity_type, name, value, parent, joins, "after")


def _greater(
    entity_type: EntityRef,
    name: str,
    value: Any,
    parent: EntityRef | None,
    joins: JoinTable | None,
    operation: str,
) -> Expression:
    base = entity_type_of(entity_type)
    target_field, place, parent_joins = _locate(base, name, parent, joins or join_table)
    prop = _ordered(target_field, operation)
    if value is None:
        raise ValidationError(f"{operation} on {prop.name!r} needs a value")

    return Expression(
        base,
        f"{place}.{prop.column} > ?",
        parent_joins,
        (to_string(value, prop.property_type),),
        (prop.property_type.bind_type,),
    )


def after_now(
    entity_type: EntityRef,
    name: str,
    parent: EntityRef | None = None,
    *,
    joins: JoinTable | None = None,
) -> Expression:
    """Restrict a date, time or datetime field to values after the current moment.

    The timestamp is embedded as an escaped literal, nothing is bound.
    """
    base = entity_type_of(entity_type)
    target_field, place, parent_joins = _locate(base, name, parent, joins or join_table)
    prop = _ordered(target_field, "after_now")
    if prop.property_type not in (PropertyType.DATE, PropertyType.TIME, PropertyType.DATETIME):
        raise ValidationError(f"after_now is not supported on {prop.property_type.value} field {prop.name!r}")

    now = get_database().escape_string(to_string(datetime.now(), prop.property_type))
    return Expression(base, f"{place}.{prop.column} > '{now}'", parent_joins)


def between(
    entity_type: EntityRef,
    name: str,
    low: Any,
    high: Any,
    parent: EntityRef | None = None,
    *,
    joins: JoinTable | None = None,
) -> Expression:
    base = entity_type_of(entity_type)
    target_field, place, parent_joins = _locate(base, name, parent, joins or join_table)
    prop = _ordered(target_field, "between")
    if low is None or high is None:
        raise ValidationError(f"between on {prop.name!r} needs both bounds")

    tag = prop.property_type.bind_type
    return Expression(
        base,
        f"{place}.{prop.column} BETWEEN ? AND ?",
        parent_joins,
        (to_string(low, prop.property_type), to_string(high, prop.property_type)),
        (tag, tag),
    )


def _like(
    entity_type: EntityRef,
    name: str,
    value: Any,
    parent: EntityRef | None,
    joins: JoinTable | None,
    operation: str,
    pattern: str,
) -> Expression:
    base = entity_type_of(entity_type)
    target_field, place, parent_joins = _locate(base, name, parent, joins or join_table)
    prop = _textual(target_field, value, operation)

    return Expression(
        base,
        f"{place}.{prop.column} LIKE ?",
        parent_joins,
        (pattern.format(value),),
        (prop.property_type.bind_type,),
    )


def contains(
    entity_type: EntityRef,
    name: str,
    value: str,
    parent: EntityRef | None = None,
    *,
    joins: JoinTable | None = None,
) -> Expression:
    return _like(entity_type, name, value, parent, joins, "contains", "%{}%")


def starts_with(
    entity_type: EntityRef,
    name: str,
    value: str,
    parent: EntityRef | None = None,
    *,
    joins: JoinTable | None = None,
) -> Expression:
    return _like(entity_type, name, value, parent, joins, "starts_with", "{}%")


def ends_with(
    entity_type: EntityRef,
    name: str,
    value: str,
    parent: EntityRef | None = None,
    *,
    joins: JoinTable | None = None,
) -> Expression:
    return _like(entity_type, name, value, parent, joins, "ends_with", "%{}")


def is_not_in(entity_type: EntityRef, associative: EntityRef, side: str) -> Expression:
    """Keep only entities that have no link in ``associative`` on ``side``.

    Args:
        entity_type: The criteria's base entity.
        associative: Associative entity holding the links.
        side: The associative field that references ``entity_type``.

    Raises:
        ValidationError: If ``side`` is not a side of ``associative`` or does not
            reference ``entity_type``.
    """
    base = entity_type_of(entity_type)
    link = entity_type_of(associative)
    if link.sides is None or side not in link.sides:
        raise ValidationError(f"{side!r} is not a side of {link.name}")

    side_field = link.own_fields[side]
    assert isinstance(side_field, ManyToOne)
    if side_field.target_type is not base:
        raise ValidationError(
            f"Side {side!r} of {link.name} references {side_field.target_type.name}, not {base.name}"
        )

    return Expression(
        base,
        f"NOT EXISTS (SELECT 1 FROM {link.table} "
        f"WHERE {link.table}.{side_field.column}={base.table}.{base.id_column})",
    )


def any_of(expressions: Iterable[Expression | Iterable[Expression]]) -> Expression:
    """Combine expressions with OR.

    Nested lists are flattened, so the result of ``equal`` can be passed as is.
    Each member is parenthesised and the joins of all members are merged.

    Raises:
        ValidationError: If there are no expressions or they belong to different entity types.
    """
    members: list[Expression] = list(flatten(expressions))
    if not members:
        raise ValidationError("any_of needs at least one expression")

    base = members[0].entity_type
    if any(member.entity_type is not base for member in members):
        raise ValidationError("any_of needs expressions of a single entity type")

    return Expression(
        base,
        "(" + " OR ".join(f"({member.term})" for member in members) + ")",
        frozendict.union(member.joins for member in members),
        tuple(value for member in members for value in member.values),
        tuple(tag for member in members for tag in member.value_types),
    )
