from __future__ import annotations

import sys
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


K = TypeVar("K")
V = TypeVar("V")


class frozendict(Mapping[K, V]):  # noqa: N801
    """Immutable, insertion-ordered mapping.

    Used for the field tables of entity types and for the join maps carried by
    expressions, where the order of keys matters (joins must render in the order
    they were first seen) and nothing may mutate the map after construction.

    The hash is computed on first use, so values only need to be hashable when
    the mapping itself is hashed.

    Example:
        >>> joins = frozendict({"a": "J1"})
        >>> joins.merged({"b": "J2"}, {"a": "J9"})
        <frozendict {'a': 'J1', 'b': 'J2'}>
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash: int | None = None

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __contains__(self, key: Any) -> bool:
        return key in self._dict

    def merged(self, *others: Mapping[K, V]) -> Self:
        """Return a new mapping with the keys of ``others`` appended.

        Keys already present keep their first value and position.

        Args:
            *others: Mappings merged from left to right.

        Returns:
            New frozendict instance.
        """
        result = dict(self._dict)
        for other in others:
            for key, value in other.items():
                result.setdefault(key, value)

        return type(self)(result)

    @classmethod
    def union(cls, mappings: Iterable[Mapping[K, V]]) -> Self:
        return cls().merged(*mappings)

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, frozendict):
            return self._dict == other._dict

        if isinstance(other, dict):
            return self._dict == other

        return NotImplemented

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._dict.items()))

        return self._hash
