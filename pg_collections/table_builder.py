from __future__ import annotations

from typing import Sequence

from pg_collections.exceptions import ColumnMissing, ColumnSpecError

ID_COLUMN = "id serial primary key"

TYPE_SHORTCUTS = {
    "int": "integer",
    "bool": "boolean",
    "timestampz": "timestamp with time zone",
}

INDEX_SQL = {
    "unique": " UNIQUE",
    "noindex": "",
}

NULLABLE_SQL = {
    "notnull": " NOT NULL",
    "null": "",
}


def _type_sql(type_name: str) -> str:
    return TYPE_SHORTCUTS.get(type_name.lower(), type_name)


def _index_sql(index: str) -> str:
    try:
        return INDEX_SQL[index.lower()]
    except KeyError:
        raise ColumnSpecError(f"Bad index value : {index}") from None


def _nullable_sql(nullable: str) -> str:
    try:
        return NULLABLE_SQL[nullable.lower()]
    except KeyError:
        raise ColumnSpecError(f"Bad nullable value : {nullable}") from None


def column_sql(spec: str) -> str:
    """
    Translate one `name:type[:index[:nullable[:default]]]` spec to a column definition.

        column_sql("username:varchar(255):unique:notnull")
        -> "username varchar(255) UNIQUE NOT NULL"
    """
    parts = spec.split(":")
    if len(parts) < 2 or len(parts) > 5 or not parts[0] or not parts[1]:
        raise ColumnSpecError(f"Bad column format : {spec}")

    name, type_name = parts[0], parts[1]
    definition = f"{name} {_type_sql(type_name)}"
    if len(parts) >= 3:
        definition += _index_sql(parts[2])
    if len(parts) >= 4:
        definition += _nullable_sql(parts[3])
    if len(parts) == 5:
        if not parts[4]:
            raise ColumnSpecError(f"Missing default value for column {name}")
        definition += f" DEFAULT {parts[4]}"
    return definition


def create_table_sql(table_name: str, columns: Sequence[str]) -> str:
    """
    Build a CREATE TABLE statement with a serial `id` primary key and the given column specs.
    """
    if not table_name:
        raise ColumnSpecError("Table name must be defined.")
    if isinstance(columns, str):
        raise ColumnSpecError("Columns must be a sequence of column specs.")
    if not columns:
        raise ColumnMissing("Columns missing.")

    cols = [ID_COLUMN] + [column_sql(c) for c in columns]
    return f'CREATE TABLE IF NOT EXISTS "{table_name}" ( {", ".join(cols)} )'
