from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .config import Settings
from .metadata import Entity, EntityType


@dataclass(frozen=True, slots=True)
class LoadOptions:
    """Which relation kinds a default field selection resolves."""

    include_many_to_one: bool = True
    include_one_to_many: bool = True
    include_many_to_many: bool = True

    @classmethod
    def from_settings(cls, settings: Settings | None, **overrides: bool | None) -> LoadOptions:
        base = cls() if settings is None else cls(
            include_many_to_one=settings.include_many_to_one,
            include_one_to_many=settings.include_one_to_many,
            include_many_to_many=settings.include_many_to_many,
        )
        values = {
            "include_many_to_one": base.include_many_to_one,
            "include_one_to_many": base.include_one_to_many,
            "include_many_to_many": base.include_many_to_many,
        }
        for name, value in overrides.items():
            if name not in values:
                raise TypeError(f"Unknown load option {name!r}")
            if value is not None:
                values[name] = value

        return cls(**values)


class Session:
    """Identity cache for one top-level load.

    Keeps one instance per ``(entity type, id)`` so a graph with cycles is built
    once and every reference to the same row is the same object. Lists loaded for
    one-to-many and many-to-many fields are kept under
    ``(target, identifier, owner id)``.
    """

    __slots__ = ("options", "_entities", "_lists")

    def __init__(self, options: LoadOptions | None = None) -> None:
        self.options = options or LoadOptions()
        self._entities: dict[tuple[EntityType, int], Entity] = {}
        self._lists: dict[tuple[EntityType, str, int], list[Any]] = {}

    def add(self, entity_type: EntityType, id: int, entity: Entity) -> None:  # noqa: A002
        self._entities[entity_type, id] = entity

    def look_up(self, entity_type: EntityType, id: int) -> Entity | None:  # noqa: A002
        return self._entities.get((entity_type, id))

    def add_list(self, target: EntityType, identifier: str, owner_id: int, items: list[Any]) -> None:
        self._lists[target, identifier, owner_id] = items

    def look_up_list(self, target: EntityType, identifier: str, owner_id: int) -> list[Any] | None:
        return self._lists.get((target, identifier, owner_id))

    def __repr__(self) -> str:
        return f"<Session entities={len(self._entities)} lists={len(self._lists)}>"
