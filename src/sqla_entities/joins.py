"""Join deduplication.

Every join an expression needs is described by a ``JoinSpec``. The join table
hands out one alias per distinct spec, so two expressions that need the same
join share it and a criteria renders it once.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Final


if TYPE_CHECKING:
    from .metadata import EntityType


_alias_counter: Final = itertools.count(1)


class JoinKind(str, Enum):
    INNER = "INNER"
    LEFT = "LEFT"


@dataclass(frozen=True, slots=True)
class JoinSpec:
    target: EntityType
    kind: JoinKind
    base_place: str
    base_column: str
    join_column: str

    def render(self, alias: str) -> str:
        return (
            f"{self.kind.value} JOIN {self.target.table} AS {alias} "
            f"ON {self.base_place}.{self.base_column}={alias}.{self.join_column}"
        )


class JoinTable:
    """Map of join specs to aliases.

    Aliases are ``J1``, ``J2``, ... drawn from a counter shared by all instances,
    so they never collide within a process even across separate tables.
    """

    __slots__ = ("_aliases",)

    def __init__(self) -> None:
        self._aliases: dict[JoinSpec, str] = {}

    def get_join_name(
        self,
        target: EntityType,
        kind: JoinKind,
        base_place: str,
        base_column: str,
        join_column: str,
    ) -> str:
        """Return the alias of a join, allocating it on first use.

        Args:
            target: Entity type whose table is joined.
            kind: Join kind.
            base_place: Table name or alias the join starts from.
            base_column: Column on ``base_place``.
            join_column: Column on the joined table.

        Returns:
            The alias, identical for identical arguments.
        """
        return self.alias(JoinSpec(target, kind, base_place, base_column, join_column))

    def alias(self, spec: JoinSpec) -> str:
        name = self._aliases.get(spec)
        if name is None:
            name = f"J{next(_alias_counter)}"
            self._aliases[spec] = name

        return name

    def __contains__(self, spec: object) -> bool:
        return spec in self._aliases

    def __len__(self) -> int:
        return len(self._aliases)


join_table: Final = JoinTable()
