"""Building SELECT statements for entities and hydrating rows into object graphs."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .config import current_settings
from .criteria import Criteria
from .database import Database, get_database
from .errors import AmbiguousResultError, ValidationError
from .expression import Expression, equal
from .metadata import (
    Entity,
    EntityType,
    FieldKind,
    ManyToMany,
    ManyToOne,
    OneToMany,
    Property,
    set_value,
)
from .properties import BIND_INTEGER, create
from .session import LoadOptions, Session
from .tools import EntityRef, entity_type_of


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SelectPlan:
    """What one SELECT reads and which relations are resolved afterwards."""

    entity_type: EntityType
    query: str
    properties: list[Property] = field(default_factory=list)
    many_to_one: list[ManyToOne] = field(default_factory=list)
    one_to_many: list[OneToMany] = field(default_factory=list)
    many_to_many: list[ManyToMany] = field(default_factory=list)
    parent_fields: list[str] | None = None
    parent_exclude: list[str] | None = None
    cacheable: bool = True


class EntityLoader:
    """Loads entities, resolving their relations through a per-call ``Session``.

    Args:
        database: Database to read from, the process-wide one by default.
    """

    __slots__ = ("database",)

    def __init__(self, database: Database | None = None) -> None:
        self.database = database or get_database()

    def new_session(self, **options: bool | None) -> Session:
        return Session(LoadOptions.from_settings(current_settings(), **options))

    def load_by_id(
        self,
        entity_type: EntityRef,
        id: int,  # noqa: A002
        fields: Sequence[str] | None = None,
        exclude: Sequence[str] | None = None,
        **options: bool | None,
    ) -> Entity | None:
        """Load one entity by id.

        Args:
            entity_type: Entity class or name.
            id: Identifier of the row.
            fields: Fields to load, all visible fields when omitted.
            exclude: Fields not to load.
            **options: ``include_many_to_one``, ``include_one_to_many`` and
                ``include_many_to_many``, overriding the configured defaults.

        Returns:
            The entity, or ``None`` if there is no such row.
        """
        session = self.new_session(**options)
        return self._load_by_id(entity_type_of(entity_type), id, fields, exclude, session)

    def load(
        self,
        entity_type: EntityRef,
        criteria: Criteria,
        fields: Sequence[str] | None = None,
        exclude: Sequence[str] | None = None,
        **options: bool | None,
    ) -> Entity | None:
        """Load the single entity matching ``criteria``.

        Raises:
            AmbiguousResultError: If more than one row matches.
        """
        session = self.new_session(**options)
        items = self.load_rows(entity_type_of(entity_type), criteria, fields, exclude, session)
        return _single(items, entity_type_of(entity_type))

    def load_list(
        self,
        entity_type: EntityRef,
        criteria: Criteria | None = None,
        fields: Sequence[str] | None = None,
        exclude: Sequence[str] | None = None,
        **options: bool | None,
    ) -> list[Entity]:
        """Load every entity matching ``criteria`` (all of them when omitted), ordered by id."""
        session = self.new_session(**options)
        return self.load_rows(entity_type_of(entity_type), criteria, fields, exclude, session)

    def _load_by_id(
        self,
        entity_type: EntityType,
        id: int,  # noqa: A002
        fields: Sequence[str] | None,
        exclude: Sequence[str] | None,
        session: Session,
    ) -> Entity | None:
        if not fields and not exclude and (cached := session.look_up(entity_type, id)) is not None:
            return cached

        criteria = Criteria(entity_type).add(
            Expression(
                entity_type,
                f"{entity_type.table}.{entity_type.id_column}=?",
                values=(str(id),),
                value_types=(BIND_INTEGER,),
            )
        )
        return _single(self.load_rows(entity_type, criteria, fields, exclude, session), entity_type)

    def load_rows(
        self,
        entity_type: EntityType,
        criteria: Criteria | None,
        fields: Sequence[str] | None,
        exclude: Sequence[str] | None,
        session: Session,
    ) -> list[Entity]:
        """Run the SELECT for ``criteria`` and hydrate every row within ``session``."""
        if criteria is not None and criteria.entity_type is not entity_type:
            raise ValidationError(
                f"Criteria for {criteria.entity_type.name} cannot load {entity_type.name}"
            )

        plan = self.plan(entity_type, criteria, fields, exclude, session.options)
        prepared = criteria.prepare() if criteria is not None else None
        if prepared is not None and prepared.needs_binding:
            rows = self.database.prepare_and_execute_select(plan.query, prepared.parameters)
        else:
            rows = self.database.select(plan.query)
        logger.debug("Hydrating %d %s rows", len(rows), entity_type.name)

        return [self._hydrate(plan, row, session) for row in rows]

    def plan(
        self,
        entity_type: EntityType,
        criteria: Criteria | None,
        fields: Sequence[str] | None,
        exclude: Sequence[str] | None,
        options: LoadOptions,
    ) -> SelectPlan:
        """Decide the selected columns and relations to resolve, and render the SELECT.

        An explicit ``fields`` list always loads the named relations. A default
        selection resolves only the relation kinds enabled in ``options``.
        """
        explicit = bool(fields)
        requested = list(fields) if fields else list(entity_type.field_names)
        excluded = set(exclude or ())
        entity_type.validate_fields(requested)
        entity_type.validate_fields(excluded)

        table = entity_type.table
        plan = SelectPlan(entity_type, "", cacheable=not fields and not exclude)

        quote = self.database.engine.dialect.identifier_preparer.quote
        columns: list[str] = []
        if entity_type.is_sub_entity:
            columns.append(f"{table}.{entity_type.id_column} AS {quote(entity_type.parent_field)}")
        elif (id_field := entity_type.id_field) is not None:
            columns.append(f"{table}.{entity_type.id_column} AS {quote(id_field)}")

        parent_fields: list[str] = []
        for name in requested:
            if name in excluded or name == entity_type.id_field:
                continue

            if entity_type.owner_of(name) is not entity_type:
                parent_fields.append(name)
                continue

            own = entity_type.own_fields[name]
            if own.kind is FieldKind.PROPERTY:
                columns.append(f"{table}.{own.column} AS {quote(name)}")
                plan.properties.append(own)  # type: ignore[arg-type]
            elif own.kind is FieldKind.MANY_TO_ONE:
                if explicit or options.include_many_to_one:
                    columns.append(f"{table}.{own.column} AS {quote(name)}")
                    plan.many_to_one.append(own)  # type: ignore[arg-type]
            elif own.kind is FieldKind.ONE_TO_MANY:
                if explicit or options.include_one_to_many:
                    plan.one_to_many.append(own)  # type: ignore[arg-type]
            elif explicit or options.include_many_to_many:
                plan.many_to_many.append(own)  # type: ignore[arg-type]

        if entity_type.is_sub_entity:
            if explicit:
                plan.parent_fields = parent_fields
            else:
                plan.parent_exclude = [
                    name for name in excluded if entity_type.owner_of(name) is not entity_type
                ] or None

        if not columns:
            raise ValidationError(f"Nothing to select for {entity_type.name}")

        query = f"SELECT {','.join(columns)} FROM {table}"
        if criteria is not None:
            prepared = criteria.prepare()
            if prepared.joins:
                query += f" {prepared.joins}"
            if prepared.restrictions:
                query += f" WHERE {prepared.restrictions}"
        if entity_type.is_sub_entity or entity_type.id_field is not None:
            query += f" ORDER BY {table}.{entity_type.id_column}"

        plan.query = query
        return plan

    def _hydrate(self, plan: SelectPlan, row: dict[str, Any], session: Session) -> Entity:
        entity_type = plan.entity_type
        if entity_type.is_sub_entity:
            id = row[entity_type.parent_field]  # type: ignore[index]  # noqa: A001
        else:
            id = row.get(entity_type.id_field) if entity_type.id_field else None  # type: ignore[arg-type]  # noqa: A001

        if plan.cacheable and id is not None and (cached := session.look_up(entity_type, id)) is not None:
            return cached

        entity = entity_type.cls()
        if entity_type.id_field is not None:
            entity.set_id(id)
        for prop in plan.properties:
            setattr(entity, prop.name, create(row[prop.name], prop.property_type, enum=prop.enum))

        # registered before relations are resolved so cycles end at this instance
        if plan.cacheable and id is not None:
            session.add(entity_type, id, entity)

        for reference in plan.many_to_one:
            setattr(entity, reference.name, self._load_many_to_one(reference, row[reference.name], session))

        for collection in plan.one_to_many:
            setattr(entity, collection.name, self._load_one_to_many(entity, id, collection, session))

        for link in plan.many_to_many:
            setattr(entity, link.name, self._load_many_to_many(id, link, session))

        if entity_type.is_sub_entity:
            set_value(entity, entity_type.parent_field, self._load_parent(plan, id, session))  # type: ignore[arg-type]

        return entity

    def _load_many_to_one(self, reference: ManyToOne, value: Any, session: Session) -> Entity | None:
        if value is None:
            return None

        target = reference.target_type
        return self._load_by_id(target, int(value), None, None, session)

    def _load_one_to_many(
        self, owner: Entity, owner_id: int, collection: OneToMany, session: Session
    ) -> list[Entity]:
        target = collection.target_type
        items = session.look_up_list(target, collection.identifier, owner_id)
        if items is not None:
            return items

        criteria = Criteria(target).add(equal(target, collection.identifier, owner_id))
        items = self.load_rows(target, criteria, None, None, session)
        for item in items:
            set_value(item, collection.identifier, owner)

        session.add_list(target, collection.identifier, owner_id, items)
        return items

    def _load_many_to_many(self, owner_id: int, link: ManyToMany, session: Session) -> list[Entity]:
        from .associative import Linker

        associative = link.associative_type
        items = session.look_up_list(associative, link.side, owner_id)
        if items is not None:
            return items

        items = Linker(self.database, loader=self).load_list_for_side(
            associative, link.side, owner_id, session=session
        )
        session.add_list(associative, link.side, owner_id, items)
        return items

    def _load_parent(self, plan: SelectPlan, id: int, session: Session) -> Entity | None:  # noqa: A002
        parent = plan.entity_type.parent
        assert parent is not None

        if plan.parent_fields is None:
            return self._load_by_id(parent, id, None, plan.parent_exclude, session)

        if not plan.parent_fields:
            instance = parent.cls()
            instance.set_id(id)
            return instance

        return self._load_by_id(parent, id, plan.parent_fields, None, session)


def _single(items: list[Entity], entity_type: EntityType) -> Entity | None:
    if len(items) > 1:
        raise AmbiguousResultError(f"Expected a single {entity_type.name}, got {len(items)}")

    return items[0] if items else None
