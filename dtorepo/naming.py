"""Naming conventions between database identifiers and Python names.

Columns and tables are snake_case; properties and entity types are
PascalCase. An underscore marks a word boundary.
"""


def property_name_from_column(column_name: str) -> str:
    """Translate a snake_case column name into a PascalCase property name.

    Args:
        column_name: Column (or table) name, e.g. ``game_item_type_cd``

    Returns:
        Property (or type) name, e.g. ``GameItemTypeCd``. Empty input
        yields an empty string.
    """
    if not column_name:
        return ""

    chars = []
    upper_next = True
    for char in column_name:
        if char == "_":
            upper_next = True
            continue
        chars.append(char.upper() if upper_next else char.lower())
        upper_next = False

    return "".join(chars)


def column_name_from_property(property_name: str) -> str:
    """Translate a PascalCase property name into a snake_case column name.

    Args:
        property_name: Property (or type) name, e.g. ``GameItemType``

    Returns:
        Column (or table) name, e.g. ``game_item_type``
    """
    if not property_name:
        return ""

    chars = []
    for index, char in enumerate(property_name):
        if char.isupper() and index > 0:
            chars.append("_")
        chars.append(char.lower())

    return "".join(chars)


# Tables and entity types follow the same convention as columns and properties.
type_name_from_table = property_name_from_column
table_name_from_type = column_name_from_property
