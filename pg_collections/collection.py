from __future__ import annotations

import inspect
import logging
import types
from collections.abc import Awaitable, Callable, Mapping
from numbers import Real
from typing import TYPE_CHECKING, Any, Optional

from pg_collections.exceptions import (
    CannotBeEmpty,
    CollectionError,
    ConnectionMissing,
    CountMissing,
    HookNotFound,
    InvalidFormat,
    MissingArg,
)
from pg_collections.query_router import QueryRouter

if TYPE_CHECKING:
    from pg_collections.backend import SQLExecutor, TablePrimitives
    from pg_collections.registry import CollectionRegistry

logger = logging.getLogger(__name__)

HOOK_NAMES = (
    "get",
    "count",
    "flush",
    "insert",
    "update",
    "update_all",
    "remove",
    "remove_all",
    "find",
)


class TableCollection:
    """
    Data-access facade for one table.

    Operations validate their arguments immediately and return an awaitable:

        users = TableCollection("users", backend, registry=registry)
        row = await users.insert({"username": "John Doe"})
        rows = await users.find({"age >": 18}, {"order": [{"field": "age", "direction": "DESC"}]})

    Hooks written as plain functions are bound to the collection, so they
    receive it as first argument. Bound methods and builtins are called as is.
    A pre-hook may be a coroutine function; the operation waits for it before
    touching the database. Payload pre-hooks (insert, update, update_all,
    remove_all) may return a replacement payload.

    update_all and remove_all run a SELECT first and mutate the selected rows
    afterwards. Nothing wraps the two phases in a transaction, so concurrent
    bulk operations on one table can act on a stale id set, and a failure in
    the mutating phase looks the same to the caller as a failure before it.
    """

    def __init__(
        self,
        table_name: str,
        connection: Optional["SQLExecutor"] = None,
        *,
        registry: Optional["CollectionRegistry"] = None,
    ):
        if table_name is None:
            raise MissingArg("table_name")
        if not isinstance(table_name, str) or not table_name.strip():
            raise InvalidFormat("table_name")

        self.table_name = table_name
        self.connection: Optional["SQLExecutor"] = None
        self.db: Optional["TablePrimitives"] = None
        self.router = QueryRouter(table_name)

        # Formatters
        self.to_db: Optional[Callable[[dict], Any]] = None
        self.to_js: Optional[Callable[[dict], Any]] = None

        # Hooks
        self.pre: dict[str, Optional[Callable[..., Any]]] = dict.fromkeys(HOOK_NAMES)
        self.post: dict[str, Optional[Callable[..., Any]]] = dict.fromkeys(HOOK_NAMES)

        if connection is not None:
            self.set_connection(connection)

        self.registry = registry
        if registry is not None:
            registry.register(self)

    def __repr__(self) -> str:
        return f"<TableCollection {self.table_name} connected={self.connection is not None}>"

    def set_connection(self, connection: "SQLExecutor") -> None:
        """Attach (or replace) the backend after instantiation."""
        self.connection = connection
        self.db = connection.table(self.table_name)

    # ---------- Formatters & hooks ----------
    def db_format(self, callback: Callable[[dict], Any]) -> None:
        """Format data on its way to the database (insert, update, update_all)."""
        if not callable(callback):
            raise InvalidFormat("callback")
        self.to_db = callback

    def js_format(self, callback: Callable[[dict], Any]) -> None:
        """Format rows read back from the database."""
        if not callable(callback):
            raise InvalidFormat("callback")
        self.to_js = callback

    def pre_hook(self, name: str, callback: Callable[..., Any]) -> None:
        self._set_hook(self.pre, name, callback)

    def post_hook(self, name: str, callback: Callable[..., Any]) -> None:
        self._set_hook(self.post, name, callback)

    def _set_hook(self, slots: dict, name: str, callback: Callable[..., Any]) -> None:
        if name not in slots:
            raise HookNotFound(name)
        if not callable(callback):
            raise InvalidFormat("callback")
        # Only plain functions receive the collection as first argument;
        # bound methods and builtins are called unchanged.
        slots[name] = types.MethodType(callback, self) if inspect.isfunction(callback) else callback

    @staticmethod
    async def _resolve(result: Any) -> Any:
        if inspect.isawaitable(result):
            return await result
        return result

    async def _run_pre(self, name: str, payload: Any = None) -> Any:
        hook = self.pre[name]
        if hook is None:
            return payload
        args = () if payload is None else (payload,)
        replacement = await self._resolve(hook(*args))
        return payload if replacement is None else replacement

    async def _run_post(self, name: str, *args: Any) -> None:
        hook = self.post[name]
        if hook is not None:
            await self._resolve(hook(*args))

    @staticmethod
    def _apply(formatter: Optional[Callable[[dict], Any]], data: Any) -> Any:
        # A formatter returning None has edited its argument in place.
        if formatter is None or data is None:
            return data
        formatted = formatter(data)
        return data if formatted is None else formatted

    def _format_rows(self, rows: list) -> list:
        if self.to_js is not None:
            for i, row in enumerate(rows):
                rows[i] = self._apply(self.to_js, row)
        return rows

    # ---------- Validation ----------
    def _require_connection(self) -> None:
        if self.connection is None or self.db is None:
            raise ConnectionMissing(self.table_name)

    @staticmethod
    def _require_id(id: Any) -> None:
        if isinstance(id, bool) or not isinstance(id, Real):
            raise InvalidFormat("id")

    @staticmethod
    def _require_payload(data: Any, label: str = "data") -> None:
        if not isinstance(data, Mapping):
            raise InvalidFormat(label)
        if len(data) < 1:
            raise CannotBeEmpty(label)

    @staticmethod
    def _first(result: Any) -> Any:
        if isinstance(result, (list, tuple)):
            return result[0] if result else None
        return result

    # ---------- Single row operations ----------
    def get(self, id: Real) -> Awaitable[Optional[dict]]:
        self._require_id(id)
        self._require_connection()
        return self._get(id)

    async def _get(self, id: Real) -> Optional[dict]:
        await self._run_pre("get")
        row = await self.db.find_one(id)
        row = self._apply(self.to_js, row)
        await self._run_post("get", row)
        return row

    def insert(self, data: Mapping) -> Awaitable[dict]:
        self._require_payload(data)
        self._require_connection()
        data = self._apply(self.to_db, data)
        return self._insert(data)

    async def _insert(self, data: Mapping) -> dict:
        data = await self._run_pre("insert", data)
        row = await self.db.insert(data)
        row = self._apply(self.to_js, row)
        await self._run_post("insert", row)
        return row

    def update(self, id: Real, data: Mapping) -> Awaitable[Optional[dict]]:
        self._require_id(id)
        self._require_payload(data)
        self._require_connection()
        data = self._apply(self.to_db, data)
        return self._update(id, data)

    async def _update(self, id: Real, data: Mapping) -> Optional[dict]:
        data = await self._run_pre("update", data)
        row = self._first(await self.db.update_by_id(id, data))
        row = self._apply(self.to_js, row)
        await self._run_post("update", row)
        return row

    def remove(self, id: Real) -> Awaitable[Optional[dict]]:
        self._require_id(id)
        self._require_connection()
        return self._remove(id)

    async def _remove(self, id: Real) -> Optional[dict]:
        await self._run_pre("remove")
        row = self._first(await self.db.destroy_by_id(id))
        row = self._apply(self.to_js, row)
        await self._run_post("remove", row)
        return row

    # ---------- Set operations ----------
    def update_all(self, conditions: Mapping, data: Mapping) -> Awaitable[list[dict]]:
        if not isinstance(conditions, Mapping):
            raise InvalidFormat("conditions")
        self._require_payload(data)
        self._require_connection()
        data = self._apply(self.to_db, data)
        return self._update_all(conditions, data)

    async def _update_all(self, conditions: Mapping, data: Mapping) -> list[dict]:
        data = await self._run_pre("update_all", data)

        candidates = await self.connection.execute(self.router.build_select(conditions))
        ids = [row["id"] for row in candidates]
        if not ids:
            logger.debug("update_all on %s matched no rows; skipping UPDATE", self.table_name)
            await self._run_post("update_all", [])
            return []

        query = self.router.build_update(data, conditions)
        logger.debug("update_all on %s: %s", self.table_name, query)
        await self.connection.execute(query)

        rows = self._format_rows(await self.connection.execute(self.router.build_select_ids(ids)))
        await self._run_post("update_all", rows)
        return rows

    def remove_all(self, conditions: Mapping) -> Awaitable[list[dict]]:
        if not isinstance(conditions, Mapping):
            raise InvalidFormat("conditions")
        if len(conditions) < 1:
            raise CollectionError("conditions cannot be empty; use flush() to empty the table.")
        self._require_connection()
        return self._remove_all(conditions)

    async def _remove_all(self, conditions: Mapping) -> list[dict]:
        conditions = await self._run_pre("remove_all", conditions)

        snapshot = await self.connection.execute(self.router.build_select(conditions))
        if not snapshot:
            logger.debug("remove_all on %s matched no rows; skipping DELETE", self.table_name)
            await self._run_post("remove_all", [])
            return []

        query = self.router.build_delete_ids(row["id"] for row in snapshot)
        logger.debug("remove_all on %s: %s", self.table_name, query)
        await self.connection.execute(query)

        rows = self._format_rows(list(snapshot))
        await self._run_post("remove_all", rows)
        return rows

    def flush(self, reset_sequence: bool = False) -> Awaitable[None]:
        """Empty the table, optionally restarting its id sequence."""
        self._require_connection()
        return self._flush(reset_sequence)

    async def _flush(self, reset_sequence: bool) -> None:
        await self._run_pre("flush")
        await self.connection.execute(self.router.build_truncate())
        await self._run_post("flush")
        if reset_sequence:
            await self.connection.execute(self.router.build_sequence_reset())

    # ---------- Reads ----------
    def count(self, conditions: Optional[Mapping] = None) -> Awaitable[int]:
        if conditions is None:
            conditions = {}
        if not isinstance(conditions, Mapping):
            raise InvalidFormat("conditions")
        self._require_connection()
        return self._count(conditions)

    async def _count(self, conditions: Mapping) -> int:
        await self._run_pre("count")
        result = await self.connection.execute(self.router.build_count(conditions))
        if not isinstance(result, (list, tuple)):
            raise CollectionError(f"Unexpected count result for {self.table_name}: {result!r}")
        first = result[0] if result else {}
        if "count" not in first:
            raise CountMissing(f"count is missing from the result for {self.table_name}.")
        value = int(first["count"])
        await self._run_post("count", value)
        return value

    def find(self, conditions: Optional[Mapping] = None, options: Optional[Mapping] = None) -> Awaitable[list[dict]]:
        if not isinstance(conditions, Mapping):
            conditions = {}
        if not isinstance(options, Mapping):
            options = {}
        self._require_connection()
        return self._find(conditions, options)

    async def _find(self, conditions: Mapping, options: Mapping) -> list[dict]:
        await self._run_pre("find")
        rows = await self.router.find(self.connection, self.db, conditions, options)
        rows = self._format_rows(rows)
        await self._run_post("find", rows)
        return rows
