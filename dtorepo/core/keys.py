"""Composite primary keys and the key -> entity index."""

from collections.abc import Iterator, Mapping
from typing import Any, Generic, TypeVar

from dtorepo.errors import KeyCollisionError

T = TypeVar("T")


class PrimaryKey:
    """Composite key made of (property name, value) pairs ordered by name.

    Two keys are equal when they have the same property names and, for each
    name, values of the same type that compare equal. ``1``, ``1.0`` and
    ``"1"`` are three different key values.
    """

    __slots__ = ("_parts",)

    def __init__(self, values: Mapping[str, Any]):
        self._parts: tuple[tuple[str, Any], ...] = tuple(sorted(values.items(), key=lambda item: item[0]))

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self._parts)

    @property
    def values(self) -> tuple[Any, ...]:
        return tuple(value for _, value in self._parts)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._parts)

    def has_missing_values(self) -> bool:
        """True if any key part is ``None``."""
        return any(value is None for _, value in self._parts)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PrimaryKey):
            return NotImplemented
        if len(self._parts) != len(other._parts):
            return False
        for (name, value), (other_name, other_value) in zip(self._parts, other._parts):
            if name != other_name:
                return False
            if type(value) is not type(other_value) or value != other_value:
                return False
        return True

    def __hash__(self) -> int:
        return hash(tuple((name, type(value).__qualname__, value) for name, value in self._parts))

    def __len__(self) -> int:
        return len(self._parts)

    def __repr__(self) -> str:
        inner = ", ".join(f"{name}={value!r}" for name, value in self._parts)
        return f"PrimaryKey({inner})"


class PrimaryKeyIndex(Generic[T]):
    """Maps primary keys to entities; at most one entity per key."""

    def __init__(self, entity_type_name: str | None = None):
        self.entity_type_name = entity_type_name
        self._entries: dict[PrimaryKey, T] = {}

    def add(self, key: PrimaryKey, entity: T) -> None:
        """Index an entity under its key.

        Raises:
            KeyCollisionError: If another entity is already indexed under the key
        """
        existing = self._entries.get(key)
        if existing is not None and existing is not entity:
            raise KeyCollisionError(key, self.entity_type_name)
        self._entries[key] = entity

    def get(self, key: PrimaryKey) -> T | None:
        return self._entries.get(key)

    def remove(self, key: PrimaryKey) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[PrimaryKey]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[PrimaryKey]:
        return iter(self._entries)
