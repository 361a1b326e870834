"""Column <-> property binding for entity types."""

import logging
from typing import Any

from pydantic import TypeAdapter, ValidationError

from dtorepo.core.entity import Entity, entity_type_in
from dtorepo.db.table import Row, TableSchema
from dtorepo.errors import MappingError
from dtorepo.naming import property_name_from_column

logger = logging.getLogger(__name__)

_adapters: dict[Any, TypeAdapter] = {}


def _type_adapter(annotation: Any) -> TypeAdapter:
    adapter = _adapters.get(annotation)
    if adapter is None:
        adapter = TypeAdapter(annotation)
        _adapters[annotation] = adapter
    return adapter


def convert_value(value: Any, target_type: Any, column: str) -> Any:
    """Convert a value to a type with pydantic's lax coercion.

    Raises:
        MappingError: If the value cannot be converted
    """
    if target_type is object or target_type is Any:
        return value
    try:
        return _type_adapter(target_type).validate_python(value)
    except ValidationError as e:
        reason = e.errors()[0]["msg"] if e.errors() else str(e)
        raise MappingError(column, target_type, value, reason) from e


class ColumnBinding:
    """One mapped column and the entity field it populates."""

    __slots__ = ("column", "field_name", "property_name", "annotation")

    def __init__(self, column: str, field_name: str, property_name: str, annotation: Any):
        self.column = column
        self.field_name = field_name
        self.property_name = property_name
        self.annotation = annotation

    def to_property(self, raw_value: Any) -> Any:
        return convert_value(raw_value, self.annotation, self.column)

    def __repr__(self) -> str:
        return f"ColumnBinding({self.column!r} -> {self.property_name!r})"


def build_mapping(entity_type: type[Entity], column_names: list[str]) -> dict[str, ColumnBinding]:
    """Map each column to the entity field whose property name matches it.

    A column is mapped only if the type has a writable scalar field whose
    property name is exactly the column's PascalCase form. Other columns
    are dropped.

    Args:
        entity_type: Entity subclass
        column_names: Column names in table order

    Returns:
        Column name -> binding, in column order
    """
    fields_by_property = {}
    for field_name, field in entity_type.model_fields.items():
        if field.frozen or entity_type_in(field.annotation) is not None:
            continue
        fields_by_property[entity_type.property_name_for(field_name)] = (field_name, field.annotation)

    mapping = {}
    for column in column_names:
        property_name = property_name_from_column(column)
        found = fields_by_property.get(property_name)
        if found is None:
            logger.debug("Column %s has no %s property, skipping", column, entity_type.type_name())
            continue
        field_name, annotation = found
        mapping[column] = ColumnBinding(column, field_name, property_name, annotation)
    return mapping


class ColumnMapper:
    """Cached column mapping for one entity type.

    The mapping is built on first use and rebuilt only if the table's
    column list changes.
    """

    def __init__(self, entity_type: type[Entity]):
        self.entity_type = entity_type
        self._columns: tuple[str, ...] | None = None
        self._mapping: dict[str, ColumnBinding] = {}

    def build_mapping(self, column_names: list[str]) -> dict[str, ColumnBinding]:
        columns = tuple(column_names)
        if columns != self._columns:
            self._mapping = build_mapping(self.entity_type, list(columns))
            self._columns = columns
        return self._mapping

    def populate_entity_from_row(self, entity: Entity, row: Row, column_names: list[str] | None = None) -> None:
        """Assign every mapped column of a row to the entity.

        Values are set without state tracking.

        Raises:
            MappingError: If a value does not convert to its field's type
        """
        mapping = self.build_mapping(column_names if column_names is not None else list(row.values))
        for column, binding in mapping.items():
            entity._load_value(binding.field_name, binding.to_property(row.get(column)))

    def populate_row_from_entity(self, entity: Entity, row: Row, schema: TableSchema) -> None:
        """Write every mapped property of the entity into the row.

        Values are converted to the Python type of the target column;
        ``None`` is written as is.

        Raises:
            MappingError: If a value does not convert to its column's type
        """
        mapping = self.build_mapping(schema.column_names)
        for column_name, binding in mapping.items():
            value = getattr(entity, binding.field_name)
            column = schema.column(column_name)
            if value is not None and column is not None:
                value = convert_value(value, column.python_type, column_name)
            row[column_name] = value
