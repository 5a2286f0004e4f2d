"""Loading and maintaining many-to-many links stored in associative entities."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from .criteria import Criteria
from .database import Database, Transaction, get_database
from .datastructures import frozendict
from .errors import ConstraintError, ValidationError
from .expression import Expression
from .joins import JoinKind, JoinSpec, JoinTable, join_table
from .metadata import Entity, EntityType, ManyToOne
from .properties import BIND_INTEGER
from .tools import EntityRef, entity_type_of, id_of


if TYPE_CHECKING:
    from .loader import EntityLoader
    from .session import Session


logger = logging.getLogger(__name__)


class Linker:
    """Operations on one associative entity's link table.

    Args:
        database: Database to use, the process-wide one by default.
        loader: Loader used to hydrate the opposite side.
        joins: Join table to allocate aliases from.
    """

    __slots__ = ("database", "_loader", "_joins")

    def __init__(
        self,
        database: Database | None = None,
        *,
        loader: EntityLoader | None = None,
        joins: JoinTable | None = None,
    ) -> None:
        self.database = database or get_database()
        self._loader = loader
        self._joins = joins or join_table

    @property
    def loader(self) -> EntityLoader:
        if self._loader is None:
            from .loader import EntityLoader

            self._loader = EntityLoader(self.database)

        return self._loader

    def load_list_for_side(
        self,
        associative: EntityRef,
        origin_side: str,
        owner_id: int,
        fields: Sequence[str] | None = None,
        exclude: Sequence[str] | None = None,
        include_one_to_many: bool | None = None,
        criteria: Criteria | None = None,
        include_many_to_many: bool | None = None,
        *,
        session: Session | None = None,
    ) -> list[Entity]:
        """Load the entities linked to ``owner_id`` on the opposite side.

        Args:
            associative: Associative entity holding the links.
            origin_side: Side whose target ``owner_id`` belongs to.
            owner_id: Id of the entity on ``origin_side``.
            fields: Fields of the opposite entity to load.
            exclude: Fields of the opposite entity not to load.
            include_one_to_many: Overrides the configured default for a new session.
            criteria: Extra restrictions on the opposite entity type.
            include_many_to_many: Overrides the configured default for a new session.
            session: Session to hydrate into, a new one when omitted.

        Returns:
            Opposite-side entities ordered by id.

        Raises:
            ValidationError: If the side is unknown or ``criteria`` is for another type.
        """
        link = _associative_type(associative)
        origin = _side(link, origin_side)
        opposite = _side(link, link.cls.opposite_side(origin_side))  # type: ignore[attr-defined]
        target = opposite.target_type

        if criteria is not None and criteria.entity_type is not target:
            raise ValidationError(
                f"Criteria for {criteria.entity_type.name} cannot restrict {target.name} "
                f"linked through {link.name}"
            )

        spec = JoinSpec(link, JoinKind.INNER, target.table, target.id_column, opposite.column)
        alias = self._joins.alias(spec)
        linked = Criteria(target).add(
            Expression(
                target,
                f"{alias}.{origin.column}=?",
                frozendict({spec: alias}),
                (str(owner_id),),
                (BIND_INTEGER,),
            )
        )
        if criteria is not None:
            linked.add(criteria.expressions)

        if session is None:
            session = self.loader.new_session(
                include_one_to_many=include_one_to_many,
                include_many_to_many=include_many_to_many,
            )

        return self.loader.load_rows(target, linked, fields, exclude, session)

    def link(
        self,
        associative: EntityRef,
        a: Entity | int,
        b: Entity | int,
        transaction: Transaction | None = None,
    ) -> None:
        """Insert the link between ``a`` and ``b``.

        Raises:
            ConstraintError: If the two are already linked.
        """
        link = _associative_type(associative)
        side_a, side_b = _sides(link)
        a_id = _checked_id(side_a, a)
        b_id = _checked_id(side_b, b)

        with self.database.transaction(transaction):
            if self._is_linked(link, side_a, side_b, a_id, b_id):
                raise ConstraintError(f"{link.name} already links {a_id} and {b_id}")

            self.database.prepare_and_execute(
                f"INSERT INTO {link.table} ({side_a.column},{side_b.column}) VALUES (?,?)",
                [BIND_INTEGER * 2, a_id, b_id],
            )
        logger.debug("Linked %s %s and %s", link.name, a_id, b_id)

    def unlink(
        self,
        associative: EntityRef,
        a: Entity | int,
        b: Entity | int,
        transaction: Transaction | None = None,
    ) -> None:
        """Delete the link between ``a`` and ``b``.

        Raises:
            ConstraintError: If the two are not linked.
        """
        link = _associative_type(associative)
        side_a, side_b = _sides(link)
        a_id = _checked_id(side_a, a)
        b_id = _checked_id(side_b, b)

        with self.database.transaction(transaction):
            result = self.database.prepare_and_execute(
                f"DELETE FROM {link.table} WHERE {side_a.column}=? AND {side_b.column}=?",
                [BIND_INTEGER * 2, a_id, b_id],
            )
            if result.rowcount == 0:
                raise ConstraintError(f"{link.name} does not link {a_id} and {b_id}")
        logger.debug("Unlinked %s %s and %s", link.name, a_id, b_id)

    def link_multiple_a(
        self,
        associative: EntityRef,
        b: Entity | int,
        a_list: Sequence[Entity | int],
        transaction: Transaction | None = None,
    ) -> None:
        with self.database.transaction(transaction) as tx:
            for a in a_list:
                self.link(associative, a, b, tx)

    def link_multiple_b(
        self,
        associative: EntityRef,
        a: Entity | int,
        b_list: Sequence[Entity | int],
        transaction: Transaction | None = None,
    ) -> None:
        with self.database.transaction(transaction) as tx:
            for b in b_list:
                self.link(associative, a, b, tx)

    def unlink_multiple_a(
        self,
        associative: EntityRef,
        b: Entity | int,
        a_list: Sequence[Entity | int],
        transaction: Transaction | None = None,
    ) -> None:
        with self.database.transaction(transaction) as tx:
            for a in a_list:
                self.unlink(associative, a, b, tx)

    def unlink_multiple_b(
        self,
        associative: EntityRef,
        a: Entity | int,
        b_list: Sequence[Entity | int],
        transaction: Transaction | None = None,
    ) -> None:
        with self.database.transaction(transaction) as tx:
            for b in b_list:
                self.unlink(associative, a, b, tx)

    def _is_linked(
        self, link: EntityType, side_a: ManyToOne, side_b: ManyToOne, a_id: int, b_id: int
    ) -> bool:
        row = self.database.prepare_and_execute_select_single(
            f"SELECT EXISTS(SELECT 1 FROM {link.table} "
            f"WHERE {side_a.column}=? AND {side_b.column}=?) AS result",
            [BIND_INTEGER * 2, a_id, b_id],
        )
        return bool(row and row["result"])


def _associative_type(associative: EntityRef) -> EntityType:
    link = entity_type_of(associative)
    if link.sides is None:
        raise ValidationError(f"{link.name} is not an associative entity")

    return link


def _sides(link: EntityType) -> tuple[ManyToOne, ManyToOne]:
    side_a, side_b = link.sides  # type: ignore[misc]
    return _side(link, side_a), _side(link, side_b)


def _side(link: EntityType, name: str) -> ManyToOne:
    if name not in link.sides:  # type: ignore[operator]
        raise ValidationError(f"{name!r} is not a side of {link.name}")

    return link.own_fields[name]  # type: ignore[return-value]


def _checked_id(side: ManyToOne, value: Entity | int) -> int:
    if isinstance(value, Entity) and type(value).__entity__ is not side.target_type:
        raise ValidationError(
            f"Side {side.name!r} links {side.target_type.name}, got {type(value).__name__}"
        )

    return id_of(value, context=f"{side.target_type.name} for side {side.name!r}")
