from __future__ import annotations

from typing import Any


class CollectionError(Exception):
    """Base class for every error raised by pg_collections."""


class InvalidFormat(CollectionError, TypeError):
    """An argument does not have the expected shape or type."""

    def __init__(self, argument: Any):
        self.argument = argument
        super().__init__(f"Invalid format: {argument}")


class MissingArg(CollectionError, TypeError):
    def __init__(self, argument: str):
        self.argument = argument
        super().__init__(f"Missing argument: {argument}")


class CannotBeEmpty(CollectionError, ValueError):
    def __init__(self, argument: str):
        self.argument = argument
        super().__init__(f"{argument} cannot be empty.")


class ColumnMissing(CollectionError, ValueError):
    pass


class ColumnSpecError(CollectionError, ValueError):
    pass


class HookNotFound(CollectionError, LookupError):
    def __init__(self, name: Any):
        self.name = name
        super().__init__(f"Unknown hook: {name}")


class CollectionNotFound(CollectionError, LookupError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} is missing in collections")


class CountMissing(CollectionError, LookupError):
    pass


class ConnectionMissing(CollectionError, RuntimeError):
    def __init__(self, table_name: str):
        self.table_name = table_name
        super().__init__(f"Collection '{table_name}' has no connection. Call set_connection() first.")
