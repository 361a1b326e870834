"""Foreign-key metadata: which object-valued properties to resolve and how.

The map is derived from database constraint metadata. Table and column
names are translated to entity type and property names with the naming
convention, so a constraint ``game_item.game_item_type_cd ->
game_item_type.game_item_type_cd`` becomes a mapping on type ``GameItem``
for property ``GameItemType``: ``GameItemTypeCd -> GameItemTypeCd``.
"""

from collections.abc import Iterable, Iterator
from typing import TypedDict

from pydantic import BaseModel, Field

from dtorepo.naming import property_name_from_column, type_name_from_table


class ForeignKeyConstraintRow(TypedDict):
    """One column pair of a foreign-key constraint, as reported by an adapter."""

    constraint_name: str
    table_name: str
    referenced_table: str
    column_name: str
    referenced_column_name: str


class ForeignKeyPropertyMapping(BaseModel, frozen=True):
    """A single local property -> target key property pair."""

    source_property: str = Field(description="Property on the source entity holding the key value")
    target_property: str = Field(description="Key property on the target entity")

    def __str__(self) -> str:
        return f"{self.source_property}->{self.target_property}"


class ForeignKeyReference(BaseModel, frozen=True):
    """Everything needed to resolve one object-valued property."""

    property_name: str = Field(description="Object-valued property to populate on the source entity")
    target_type_name: str = Field(description="Entity type name of the referenced object")
    constraint_name: str | None = Field(default=None, description="Database constraint the mapping came from")
    mappings: tuple[ForeignKeyPropertyMapping, ...] = Field(default=(), description="Ordered key pairs")

    @property
    def source_properties(self) -> list[str]:
        return [m.source_property for m in self.mappings]

    @property
    def target_properties(self) -> list[str]:
        return [m.target_property for m in self.mappings]

    def with_mapping(self, mapping: ForeignKeyPropertyMapping) -> "ForeignKeyReference":
        """Return a copy with ``mapping`` added (replacing any pair for the same source property)."""
        kept = tuple(m for m in self.mappings if m.source_property != mapping.source_property)
        return self.model_copy(update={"mappings": kept + (mapping,)})

    def without_mapping(self, mapping: ForeignKeyPropertyMapping) -> "ForeignKeyReference":
        kept = tuple(m for m in self.mappings if m.source_property != mapping.source_property)
        return self.model_copy(update={"mappings": kept})


class ForeignKeyCollection:
    """Foreign-key references of one source entity type, keyed by property name."""

    def __init__(self, references: Iterable[ForeignKeyReference] = ()):
        self._references: dict[str, ForeignKeyReference] = {}
        self._frozen = False
        for reference in references:
            self._references[reference.property_name] = reference

    def add(
        self,
        property_name: str,
        target_type_name: str,
        mapping: ForeignKeyPropertyMapping,
        constraint_name: str | None = None,
    ) -> None:
        """Add a key pair for a property, creating the reference if needed.

        An existing reference keeps its pairs; its target type is updated.
        """
        self._check_mutable()
        reference = self._references.get(property_name)
        if reference is None:
            reference = ForeignKeyReference(
                property_name=property_name,
                target_type_name=target_type_name,
                constraint_name=constraint_name,
            )
        else:
            reference = reference.model_copy(update={"target_type_name": target_type_name})
        self._references[property_name] = reference.with_mapping(mapping)

    def add_reference(self, reference: ForeignKeyReference) -> None:
        self._check_mutable()
        self._references[reference.property_name] = reference

    def remove_property_mappings(self, property_name: str) -> None:
        """Drop every mapping for a property."""
        self._check_mutable()
        self._references.pop(property_name, None)

    def remove_property_mapping(self, property_name: str, mapping: ForeignKeyPropertyMapping) -> None:
        """Drop a single key pair from a property's mappings."""
        self._check_mutable()
        reference = self._references.get(property_name)
        if reference is not None:
            self._references[property_name] = reference.without_mapping(mapping)

    def get_mappings_for_property(self, property_name: str) -> ForeignKeyReference | None:
        return self._references.get(property_name)

    @property
    def properties(self) -> list[str]:
        """Names of the properties that have foreign-key mappings."""
        return list(self._references)

    @property
    def target_type_names(self) -> list[str]:
        """Distinct target type names, in property order."""
        seen: dict[str, None] = {}
        for reference in self._references.values():
            seen.setdefault(reference.target_type_name, None)
        return list(seen)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self) -> None:
        if self._frozen:
            raise TypeError("ForeignKeyCollection is read-only once the foreign key map is built")

    def __contains__(self, property_name: object) -> bool:
        return property_name in self._references

    def __iter__(self) -> Iterator[ForeignKeyReference]:
        return iter(self._references.values())

    def __len__(self) -> int:
        return len(self._references)

    def __repr__(self) -> str:
        return f"ForeignKeyCollection({list(self._references.values())!r})"


class ForeignKeyMap:
    """Foreign-key collections for every source entity type.

    Built once per database connection and read-only afterwards.
    """

    def __init__(self, collections: dict[str, ForeignKeyCollection] | None = None):
        self._collections: dict[str, ForeignKeyCollection] = dict(collections or {})
        for collection in self._collections.values():
            collection.freeze()

    @classmethod
    def from_constraint_rows(cls, rows: Iterable[ForeignKeyConstraintRow]) -> "ForeignKeyMap":
        """Build the map from flat constraint rows.

        Rows are grouped by (constraint, source table, target table); each
        group becomes one reference whose pairs keep the row order.

        Args:
            rows: One row per column pair of each foreign-key constraint

        Returns:
            A read-only ForeignKeyMap
        """
        groups: dict[tuple[str, str, str], list[ForeignKeyConstraintRow]] = {}
        for row in rows:
            group_key = (row["constraint_name"], row["table_name"], row["referenced_table"])
            groups.setdefault(group_key, []).append(row)

        collections: dict[str, ForeignKeyCollection] = {}
        for (constraint_name, source_table, target_table), constraint_rows in groups.items():
            source_type_name = type_name_from_table(source_table)
            target_type_name = type_name_from_table(target_table)

            mappings: dict[str, ForeignKeyPropertyMapping] = {}
            for constraint_row in constraint_rows:
                source_property = property_name_from_column(constraint_row["column_name"])
                mappings[source_property] = ForeignKeyPropertyMapping(
                    source_property=source_property,
                    target_property=property_name_from_column(constraint_row["referenced_column_name"]),
                )

            collection = collections.setdefault(source_type_name, ForeignKeyCollection())
            property_name = _property_name_for_constraint(
                collection,
                source_type_name,
                target_type_name,
                constraint_name,
                [r["column_name"] for r in constraint_rows],
            )
            collection.add_reference(
                ForeignKeyReference(
                    property_name=property_name,
                    target_type_name=target_type_name,
                    constraint_name=constraint_name,
                    mappings=tuple(mappings.values()),
                )
            )

        return cls(collections)

    def resolve(self, source_type_name: str) -> ForeignKeyCollection | None:
        """Get the foreign-key collection for a source type, or None."""
        return self._collections.get(source_type_name)

    @property
    def type_names(self) -> list[str]:
        return list(self._collections)

    def describe(self) -> str:
        """Human-readable dump of every mapping in the map."""
        lines = []
        for type_name, collection in self._collections.items():
            lines.append(f"ForeignKeyCollection for {type_name}")
            for reference in collection:
                lines.append(f"   Mappings for {reference.property_name} -> {reference.target_type_name}")
                for mapping in reference.mappings:
                    lines.append(
                        f"      SourceProperty: {mapping.source_property}, "
                        f"TargetType: {reference.target_type_name}, "
                        f"TargetProperty: {mapping.target_property}"
                    )
        return "\n".join(lines)

    def __contains__(self, source_type_name: object) -> bool:
        return source_type_name in self._collections

    def __len__(self) -> int:
        return len(self._collections)

    def __bool__(self) -> bool:
        return bool(self._collections)


def _property_name_for_constraint(
    collection: ForeignKeyCollection,
    source_type_name: str,
    target_type_name: str,
    constraint_name: str,
    column_names: list[str],
) -> str:
    """Pick the object-valued property a constraint populates.

    The target type name is used unless another constraint already claimed
    it or the constraint points back at its own table. Then the name comes
    from the single key column's stem (``home_team_id`` -> ``HomeTeam``) or
    from the constraint name.
    """
    if target_type_name not in collection and target_type_name != source_type_name:
        return target_type_name

    if len(column_names) == 1:
        column = column_names[0]
        for suffix in ("_id", "_cd"):
            if column.endswith(suffix) and len(column) > len(suffix):
                return property_name_from_column(column[: -len(suffix)])

    return property_name_from_column(constraint_name)
