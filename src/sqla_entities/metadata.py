from __future__ import annotations

import copy
import sys
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Final, final

from .config import get_entities_namespace
from .datastructures import frozendict
from .errors import ValidationError
from .properties import PropertyType


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .criteria import Criteria
    from .database import Transaction


DEFAULT_ID_COLUMN: Final[str] = "ID"


class FieldKind(str, Enum):
    PROPERTY = "property"
    MANY_TO_ONE = "many_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_MANY = "many_to_many"


class Field:
    """Data descriptor declaring one mapped attribute of an entity class.

    On the class the descriptor returns itself, so ``Student.registration_number``
    can be inspected. On an instance it returns the stored value, ``None`` until set.
    """

    kind: ClassVar[FieldKind]

    def __init__(self, *, column: str | None = None, hidden: bool = False) -> None:
        self.name = ""
        self.owner: type[Entity] | None = None
        self.hidden = hidden
        self._column = column

    def __set_name__(self, owner: type[Entity], name: str) -> None:
        self.name = name
        self.owner = owner

    @property
    def column(self) -> str:
        return self._column or self.name

    @property
    def has_column(self) -> bool:
        return self.kind in (FieldKind.PROPERTY, FieldKind.MANY_TO_ONE)

    @property
    def entity_type(self) -> EntityType:
        """The entity type whose table holds this field."""
        if self.owner is None or "__entity__" not in vars(self.owner):
            raise ValidationError(f"Field {self.name!r} is not bound to an entity class")

        return self.owner.__entity__

    def __get__(self, instance: Entity | None, owner: type[Entity] | None = None) -> Any:
        if instance is None:
            return self

        return instance.__dict__.get(self.name)

    def __set__(self, instance: Entity, value: Any) -> None:
        instance.__dict__[self.name] = value

    def __repr__(self) -> str:
        owner = self.owner.__name__ if self.owner is not None else "?"
        return f"<{type(self).__name__} {owner}.{self.name}>"


class Property(Field):
    kind = FieldKind.PROPERTY

    def __init__(
        self,
        property_type: PropertyType,
        *,
        column: str | None = None,
        enum: type[Enum] | None = None,
        hidden: bool = False,
    ) -> None:
        super().__init__(column=column, hidden=hidden)
        self.property_type = property_type
        self.enum = enum


class Identifier(Property):
    """The integer primary key. Its column is the owning class's ``__id_column__``."""

    def __init__(self, *, hidden: bool = False) -> None:
        super().__init__(PropertyType.INT, hidden=hidden)

    @property
    def column(self) -> str:
        return getattr(self.owner, "__id_column__", DEFAULT_ID_COLUMN)


class ManyToOne(Field):
    kind = FieldKind.MANY_TO_ONE

    def __init__(
        self, target: type[Entity] | str, *, column: str | None = None, hidden: bool = False
    ) -> None:
        super().__init__(column=column, hidden=hidden)
        self.target = target

    @property
    def target_type(self) -> EntityType:
        return Registry().resolve(self.target)


class OneToMany(Field):
    kind = FieldKind.ONE_TO_MANY

    def __init__(self, target: type[Entity] | str, identifier: str, *, hidden: bool = False) -> None:
        super().__init__(hidden=hidden)
        self.target = target
        self.identifier = identifier

    @property
    def target_type(self) -> EntityType:
        return Registry().resolve(self.target)

    @property
    def identifier_field(self) -> ManyToOne:
        """The many-to-one field on the target that points back at the owner."""
        field = self.target_type.field(self.identifier)
        if not isinstance(field, ManyToOne):
            raise ValidationError(
                f"Identifier {self.identifier!r} of {self.name!r} must be a many-to-one field"
            )

        return field


class ManyToMany(Field):
    kind = FieldKind.MANY_TO_MANY

    def __init__(self, associative: type[Entity] | str, side: str, *, hidden: bool = False) -> None:
        super().__init__(hidden=hidden)
        self.associative = associative
        self.side = side

    @property
    def associative_type(self) -> EntityType:
        entity_type = Registry().resolve(self.associative)
        if entity_type.sides is None:
            raise ValidationError(f"{entity_type.name} is not an associative entity")

        return entity_type


@dataclass(frozen=True, slots=True, eq=False, repr=False)
class EntityType:
    """Immutable metadata of one entity class, built when the class is defined."""

    cls: type[Entity]
    table: str
    id_column: str
    own_fields: frozendict[str, Field]
    fields: frozendict[str, Field]
    field_names: tuple[str, ...]
    parent: EntityType | None = None
    parent_field: str | None = None
    sides: tuple[str, str] | None = None

    @property
    def name(self) -> str:
        return self.cls.__name__

    @property
    def qualified_name(self) -> str:
        return f"{self.cls.__module__}.{self.cls.__qualname__}"

    @property
    def is_sub_entity(self) -> bool:
        return self.parent is not None

    @property
    def is_associative(self) -> bool:
        return self.sides is not None

    @property
    def id_field(self) -> str | None:
        """Name of the identifier field declared on this table, if any."""
        for name, field in self.own_fields.items():
            if isinstance(field, Identifier):
                return name

        return None

    @property
    def ancestors(self) -> Iterator[EntityType]:
        parent = self.parent
        while parent is not None:
            yield parent
            parent = parent.parent

    def owner_of(self, name: str) -> EntityType:
        """Return the entity type in the parent chain that declares ``name``.

        Raises:
            ValidationError: If no type in the chain declares the field.
        """
        if name in self.own_fields:
            return self
        if self.parent is not None and name in self.parent.fields:
            return self.parent.owner_of(name)

        raise ValidationError(f"Field {name!r} does not exist on {self.name}")

    def field(self, name: str) -> Field:
        return self.owner_of(name).own_fields[name]

    def validate_fields(self, names: Iterable[str]) -> None:
        for name in names:
            self.owner_of(name)

    def __repr__(self) -> str:
        return f"<EntityType {self.name} table={self.table!r}>"

    @classmethod
    def from_class(cls, entity_cls: type[Entity]) -> EntityType:
        declared: dict[str, Field] = {}
        for klass in reversed(entity_cls.__mro__):
            for name, value in vars(klass).items():
                if isinstance(value, Field):
                    declared[name] = value

        own: dict[str, Field] = {}
        for name, field in declared.items():
            # descriptors inherited from abstract bases are copied so each table owns its fields
            if field.owner is not entity_cls:
                field = copy.copy(field)
                field.owner = entity_cls
                setattr(entity_cls, name, field)
            own[name] = field

        own_fields: frozendict[str, Field] = frozendict(own)
        fields = own_fields
        parent: EntityType | None = None
        parent_field: str | None = None
        sides: tuple[str, str] | None = None

        parent_cls = getattr(entity_cls, "__parent__", None)
        if parent_cls is not None:
            parent = _entity_type_of_class(parent_cls)
            parent_field = getattr(entity_cls, "__parent_field__", None) or parent_cls.__name__.lower()
            if any(isinstance(field, Identifier) for field in own.values()):
                raise ValidationError(f"Sub-entity {entity_cls.__name__} cannot declare its own identifier")
            clashes = set(own) & set(parent.fields)
            if clashes or parent_field in parent.fields or parent_field in own:
                raise ValidationError(
                    f"{entity_cls.__name__} redeclares fields of {parent.name}: "
                    f"{sorted(clashes or {parent_field})}"
                )
            fields = own_fields.merged(parent.fields)

        side_a = getattr(entity_cls, "__side_a__", None)
        side_b = getattr(entity_cls, "__side_b__", None)
        if side_a is not None or side_b is not None:
            for side in (side_a, side_b):
                if not isinstance(own.get(side), ManyToOne):  # type: ignore[arg-type]
                    raise ValidationError(
                        f"Side {side!r} of associative entity {entity_cls.__name__} "
                        "must be a many-to-one field"
                    )
            sides = (side_a, side_b)  # type: ignore[assignment]

        return cls(
            cls=entity_cls,
            table=vars(entity_cls).get("__tablename__") or entity_cls.__name__,
            id_column=getattr(entity_cls, "__id_column__", DEFAULT_ID_COLUMN),
            own_fields=own_fields,
            fields=fields,
            field_names=tuple(name for name, field in fields.items() if not field.hidden),
            parent=parent,
            parent_field=parent_field,
            sides=sides,
        )


def _entity_type_of_class(entity_cls: type[Any]) -> EntityType:
    entity_type = vars(entity_cls).get("__entity__") if isinstance(entity_cls, type) else None
    if entity_type is None:
        raise ValidationError(f"{entity_cls!r} is not a concrete entity class")

    return entity_type


@final
class Registry:
    """Singleton mapping entity names to their ``EntityType``.

    Every concrete entity class registers itself when it is defined. Targets of
    relation fields may be given as strings, which are resolved here, first
    under the configured ``entities_namespace`` and then as given.
    """

    __instance: ClassVar[Registry | None] = None
    _types: dict[str, EntityType]

    def __new__(cls) -> Registry:
        if cls.__instance is None:
            instance = super().__new__(cls)
            instance._types = {}
            cls.__instance = instance

        return cls.__instance

    def register(self, entity_type: EntityType) -> None:
        self._types[entity_type.qualified_name] = entity_type
        self._types[entity_type.name] = entity_type

    def get(self, name: str) -> EntityType | None:
        namespace = get_entities_namespace()
        if namespace and (entity_type := self._types.get(f"{namespace}.{name}")) is not None:
            return entity_type

        return self._types.get(name)

    def resolve(self, target: type[Entity] | EntityType | str) -> EntityType:
        """Return the entity type for a class, an entity type or a registered name.

        Raises:
            ValidationError: If the target is unknown or not a concrete entity.
        """
        if isinstance(target, EntityType):
            return target
        if isinstance(target, str):
            entity_type = self.get(target)
            if entity_type is None:
                raise ValidationError(f"Unknown entity {target!r}")
            return entity_type

        return _entity_type_of_class(target)


def get_value(entity: Entity, name: str) -> Any:
    """Read a field from ``entity``, following the parent chain for ancestor fields."""
    entity_type = type(entity).__entity__
    if name == entity_type.parent_field or name in entity_type.own_fields:
        return entity.__dict__.get(name)

    entity_type.owner_of(name)  # raises for unknown names
    parent = entity.parent_instance()
    if parent is None:
        return None

    return get_value(parent, name)


def set_value(entity: Entity, name: str, value: Any) -> None:
    """Assign a field on ``entity``, creating parent instances for ancestor fields as needed."""
    entity_type = type(entity).__entity__
    if name == entity_type.parent_field or name in entity_type.own_fields:
        entity.__dict__[name] = value
        return

    entity_type.owner_of(name)
    set_value(entity.parent_instance(create=True), name, value)  # type: ignore[arg-type]


class Entity:
    """Base class of every mapped class.

    Subclasses are registered on definition unless they set ``__abstract__ = True``
    in their own body. Keyword arguments to the constructor may name any field in
    the parent chain:

        >>> student = Student(registration_number="E1066934", name="Leon")
        >>> student.user.name
        'Leon'
    """

    __abstract__: ClassVar[bool] = True
    __id_column__: ClassVar[str] = DEFAULT_ID_COLUMN
    __entity__: ClassVar[EntityType]

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if vars(cls).get("__abstract__", False):
            return

        cls.__entity__ = EntityType.from_class(cls)
        Registry().register(cls.__entity__)

    def __init__(self, **values: Any) -> None:
        entity_type = vars(type(self)).get("__entity__")
        if entity_type is None:
            raise TypeError(f"Cannot instantiate abstract entity class {type(self).__name__}")

        if entity_type.parent_field is not None:
            self.__dict__[entity_type.parent_field] = None

        for name, value in values.items():
            if name != entity_type.parent_field and name not in entity_type.fields:
                raise TypeError(f"{type(self).__name__}() got an unexpected keyword argument {name!r}")
            set_value(self, name, value)

    def get_id(self) -> int | None:
        entity_type = self.__entity__
        if entity_type.is_sub_entity:
            parent = self.parent_instance()
            return None if parent is None else parent.get_id()

        id_field = entity_type.id_field
        return None if id_field is None else self.__dict__.get(id_field)

    def set_id(self, value: int | None) -> None:
        entity_type = self.__entity__
        if entity_type.is_sub_entity:
            self.parent_instance(create=True).set_id(value)  # type: ignore[union-attr]
            return

        id_field = entity_type.id_field
        if id_field is None:
            raise ValidationError(f"{entity_type.name} has no identifier")
        self.__dict__[id_field] = value

    def parent_instance(self, *, create: bool = False) -> Entity | None:
        """Return the instance holding the ancestor fields of a sub-entity."""
        entity_type = self.__entity__
        if entity_type.parent is None or entity_type.parent_field is None:
            return None

        parent = self.__dict__.get(entity_type.parent_field)
        if parent is None and create:
            parent = entity_type.parent.cls()
            self.__dict__[entity_type.parent_field] = parent

        return parent

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.get_id()!r})"

    @classmethod
    def load_by_id(
        cls,
        id: int,  # noqa: A002
        fields: Sequence[str] | None = None,
        exclude: Sequence[str] | None = None,
        **options: bool | None,
    ) -> Self | None:
        from .loader import EntityLoader

        return EntityLoader().load_by_id(cls, id, fields, exclude, **options)  # type: ignore[return-value]

    @classmethod
    def load(
        cls,
        criteria: Criteria,
        fields: Sequence[str] | None = None,
        exclude: Sequence[str] | None = None,
        **options: bool | None,
    ) -> Self | None:
        from .loader import EntityLoader

        return EntityLoader().load(cls, criteria, fields, exclude, **options)  # type: ignore[return-value]

    @classmethod
    def load_list(
        cls,
        criteria: Criteria | None = None,
        fields: Sequence[str] | None = None,
        exclude: Sequence[str] | None = None,
        **options: bool | None,
    ) -> list[Self]:
        from .loader import EntityLoader

        return EntityLoader().load_list(cls, criteria, fields, exclude, **options)  # type: ignore[return-value]

    @classmethod
    def exists(cls, field: str, value: Any, parent: type[Entity] | None = None) -> bool:
        from .persistence import EntityWriter

        return EntityWriter().exists(cls, field, value, parent)

    @classmethod
    def exists_by_criteria(cls, criteria: Criteria) -> bool:
        from .persistence import EntityWriter

        return EntityWriter().exists_by_criteria(cls, criteria)

    @classmethod
    def save_list(cls, entities: Sequence[Self], transaction: Transaction | None = None) -> None:
        from .persistence import EntityWriter

        EntityWriter().save_list(cls, entities, transaction)

    @classmethod
    def update_list(
        cls,
        entities: Sequence[Self],
        fields: Sequence[str] | None = None,
        update_parents: bool = True,
        transaction: Transaction | None = None,
    ) -> None:
        from .persistence import EntityWriter

        EntityWriter().update_list(cls, entities, fields, update_parents, transaction)

    @classmethod
    def delete_list(cls, entities: Sequence[Self], transaction: Transaction | None = None) -> None:
        from .persistence import EntityWriter

        EntityWriter().delete_list(cls, entities, transaction)

    def save(self, transaction: Transaction | None = None) -> None:
        from .persistence import EntityWriter

        EntityWriter().save(self, transaction)

    def update(
        self,
        fields: Sequence[str] | None = None,
        update_parents: bool = True,
        transaction: Transaction | None = None,
    ) -> None:
        from .persistence import EntityWriter

        EntityWriter().update(self, fields, update_parents, transaction)

    def delete(self, transaction: Transaction | None = None) -> None:
        from .persistence import EntityWriter

        EntityWriter().delete(self, transaction)


class StrongEntity(Entity):
    """An entity with its own auto-incremented identifier."""

    __abstract__ = True

    id = Identifier()


class SubEntity(Entity):
    """An entity whose row extends a parent row sharing the same id.

    Subclasses set ``__parent__`` to the parent class and may set
    ``__parent_field__``, the attribute holding the parent instance (the lowercase
    parent class name by default).
    """

    __abstract__ = True
    __parent__: ClassVar[type[Entity]]
    __parent_field__: ClassVar[str | None] = None


class AssociativeEntity(Entity):
    """A link table between two entities.

    Subclasses declare two many-to-one fields and name them in ``__side_a__`` and
    ``__side_b__``.
    """

    __abstract__ = True
    __side_a__: ClassVar[str]
    __side_b__: ClassVar[str]

    @classmethod
    def side_a(cls) -> str:
        return cls.__entity__.sides[0]  # type: ignore[index]

    @classmethod
    def side_b(cls) -> str:
        return cls.__entity__.sides[1]  # type: ignore[index]

    @classmethod
    def opposite_side(cls, side: str) -> str:
        """Return the other side's field name.

        Raises:
            ValidationError: If ``side`` is not one of the two sides.
        """
        side_a, side_b = cls.__entity__.sides  # type: ignore[misc]
        if side == side_a:
            return side_b
        if side == side_b:
            return side_a

        raise ValidationError(f"{side!r} is not a side of {cls.__name__}")

    @classmethod
    def load_list_for_side(
        cls,
        origin_side: str,
        owner_id: int,
        fields: Sequence[str] | None = None,
        exclude: Sequence[str] | None = None,
        include_one_to_many: bool | None = None,
        criteria: Criteria | None = None,
        include_many_to_many: bool | None = None,
    ) -> list[Entity]:
        from .associative import Linker

        return Linker().load_list_for_side(
            cls,
            origin_side,
            owner_id,
            fields,
            exclude,
            include_one_to_many,
            criteria,
            include_many_to_many,
        )

    @classmethod
    def link(cls, a: Entity | int, b: Entity | int, transaction: Transaction | None = None) -> None:
        from .associative import Linker

        Linker().link(cls, a, b, transaction)

    @classmethod
    def unlink(cls, a: Entity | int, b: Entity | int, transaction: Transaction | None = None) -> None:
        from .associative import Linker

        Linker().unlink(cls, a, b, transaction)

    @classmethod
    def link_multiple_a(
        cls, b: Entity | int, a_list: Sequence[Entity | int], transaction: Transaction | None = None
    ) -> None:
        from .associative import Linker

        Linker().link_multiple_a(cls, b, a_list, transaction)

    @classmethod
    def link_multiple_b(
        cls, a: Entity | int, b_list: Sequence[Entity | int], transaction: Transaction | None = None
    ) -> None:
        from .associative import Linker

        Linker().link_multiple_b(cls, a, b_list, transaction)

    @classmethod
    def unlink_multiple_a(
        cls, b: Entity | int, a_list: Sequence[Entity | int], transaction: Transaction | None = None
    ) -> None:
        from .associative import Linker

        Linker().unlink_multiple_a(cls, b, a_list, transaction)

    @classmethod
    def unlink_multiple_b(
        cls, a: Entity | int, b_list: Sequence[Entity | int], transaction: Transaction | None = None
    ) -> None:
        from .associative import Linker

        Linker().unlink_multiple_b(cls, a, b_list, transaction)
