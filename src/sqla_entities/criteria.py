from __future__ import annotations

import sys
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .datastructures import frozendict
from .errors import ValidationError
from .expression import Expression
from .metadata import EntityType
from .tools import EntityRef, entity_type_of, flatten


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


@dataclass(frozen=True, slots=True)
class PreparedCriteria:
    joins: str
    restrictions: str
    parameters: tuple[Any, ...]

    @property
    def needs_binding(self) -> bool:
        return len(self.parameters) > 1


class Criteria:
    """AND-combination of expressions on one base entity type.

    Example:
        >>> criteria = Criteria(User).add(equal(User, "name", "Lojzi"))
        >>> criteria.prepared_restrictions
        'User.Name=?'
    """

    __slots__ = ("entity_type", "expressions", "_prepared")

    def __init__(self, entity_type: EntityRef) -> None:
        self.entity_type: EntityType = entity_type_of(entity_type)
        self.expressions: list[Expression] = []
        self._prepared: PreparedCriteria | None = None

    def add(self, expression: Expression | Iterable[Expression]) -> Self:
        """Append one expression or a (nested) list of them.

        Raises:
            ValidationError: If an expression belongs to another entity type.
        """
        items = [expression] if isinstance(expression, Expression) else list(flatten(expression))
        for item in items:
            if not isinstance(item, Expression):
                raise ValidationError(f"Expected an Expression, got {item!r}")
            if item.entity_type is not self.entity_type:
                raise ValidationError(
                    f"Expression for {item.entity_type.name} cannot be added to criteria "
                    f"for {self.entity_type.name}"
                )

        self.expressions.extend(items)
        self._prepared = None
        return self

    def prepare(self) -> PreparedCriteria:
        if self._prepared is None:
            joins = frozendict.union(expression.joins for expression in self.expressions)
            tags = "".join(tag for expression in self.expressions for tag in expression.value_types)
            values = [value for expression in self.expressions for value in expression.values]

            self._prepared = PreparedCriteria(
                joins=" ".join(spec.render(alias) for spec, alias in joins.items()),
                restrictions=" AND ".join(expression.term for expression in self.expressions),
                parameters=(tags, *values),
            )

        return self._prepared

    @property
    def prepared_joins(self) -> str:
        return self.prepare().joins

    @property
    def prepared_restrictions(self) -> str:
        return self.prepare().restrictions

    @property
    def prepared_parameters(self) -> list[Any]:
        return list(self.prepare().parameters)

    def __repr__(self) -> str:
        return f"<Criteria {self.entity_type.name} expressions={len(self.expressions)}>"
