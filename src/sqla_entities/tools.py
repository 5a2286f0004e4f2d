from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from functools import lru_cache
from typing import Any

from .errors import ValidationError
from .metadata import Entity, EntityType, FieldKind, ManyToOne, Registry


EntityRef = type[Entity] | EntityType | str


def entity_type_of(target: EntityRef | Entity) -> EntityType:
    """Return the ``EntityType`` of a class, an instance, a name or an entity type.

    Args:
        target: Entity class, entity instance, registered name or ``EntityType``.

    Returns:
        The registered entity type.

    Raises:
        ValidationError: If ``target`` is not a concrete entity.
    """
    if isinstance(target, Entity):
        return type(target).__entity__

    return Registry().resolve(target)


def get_table_name(target: EntityRef | Entity) -> str:
    return entity_type_of(target).table


def get_id_column(target: EntityRef | Entity) -> str:
    return entity_type_of(target).id_column


def id_of(value: Entity | int | None, *, context: str = "value") -> int:
    """Return the id of an entity, or ``value`` itself when it already is one.

    Raises:
        ValidationError: If there is no id to return.
    """
    if isinstance(value, Entity):
        identifier = value.get_id()
    else:
        identifier = value

    if identifier is None:
        raise ValidationError(f"{context} has no id, save it first")

    return int(identifier)


def flatten(items: Iterable[Any]) -> Iterator[Any]:
    """Yield the leaves of arbitrarily nested lists and tuples, depth first."""
    for item in items:
        if isinstance(item, (list, tuple)):
            yield from flatten(item)
        else:
            yield item


@lru_cache
def _pointing_back(entity_type: EntityType) -> Sequence[tuple[ManyToOne, EntityType, ManyToOne]]:
    result: list[tuple[ManyToOne, EntityType, ManyToOne]] = []
    for field in entity_type.own_fields.values():
        if not isinstance(field, ManyToOne):
            continue

        other = field.target_type
        for other_field in other.fields.values():
            if other_field.kind is FieldKind.MANY_TO_ONE and other_field.target_type is entity_type:  # type: ignore[attr-defined]
                result.append((field, other, other_field))  # type: ignore[arg-type]

    return tuple(result)


def get_pointing_back(entity_type: EntityType) -> Sequence[tuple[ManyToOne, EntityType, ManyToOne]]:
    """Find mutual many-to-one pairs where another type points back at ``entity_type``.

    For every many-to-one field ``g`` of ``entity_type`` targeting ``D``, each
    many-to-one field of ``D`` targeting ``entity_type`` forms a pair. Deleting an
    entity requires clearing those back-references first.

    Args:
        entity_type: Entity type about to lose rows.

    Returns:
        Tuples ``(own field, other type, other field)``. Computed once per type.
    """
    return _pointing_back(entity_type)


def entities_cache_clear() -> None:
    """Clear cached relationship lookups (after redefining entity classes in tests)."""
    _pointing_back.cache_clear()
