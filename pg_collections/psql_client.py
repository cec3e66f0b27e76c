import logging
from collections.abc import Mapping
from threading import RLock
from typing import Any, Iterable, Optional

from psycopg2 import sql
from psycopg2.extras import Json
from psycopg2.pool import ThreadedConnectionPool

from pg_collections.conditions import compile_bound_where

logger = logging.getLogger(__name__)


class PSQLClient:
	"""
	Thread-safe PostgreSQL client backing table collections.

	Provides raw execution plus the structured primitives a collection needs:
	find with a condition mapping, fetch/insert/update/delete by primary key.

	Create directly:
		client = PSQLClient(database="app", user="postgres", password="...", host="localhost", port=5432)

	Or share one pool per set of connection parameters:
		client = PSQLClient.get(database="app", user="postgres", host="localhost")

	Call `close()` on a client when done with it, or `PSQLClient.closeall()` to close every cached pool.
	"""

	_cache: dict[tuple, "PSQLClient"] = {}
	_cache_lock = RLock()

	@staticmethod
	def _cache_key(conn_kwargs: dict[str, Any]) -> tuple:
		"""
		Hashable, order-independent key for a set of connect kwargs.
		"""
		items: list[tuple[str, Any]] = []
		for key, value in sorted(conn_kwargs.items()):
			try:
				hash(value)
				items.append((key, value))
			except TypeError:
				# dict/list options are keyed by their repr
				items.append((key, repr(value)))
		return tuple(items)

	@classmethod
	def get(cls, *, minconn: int = 1, maxconn: int = 10, **conn_kwargs) -> "PSQLClient":
		"""
		Return the cached client for these connection parameters, creating it on first use.
		"""
		key = cls._cache_key(conn_kwargs) + (("minconn", minconn), ("maxconn", maxconn))
		with cls._cache_lock:
			client = cls._cache.get(key)
			if client is None or client._closed:
				client = cls(minconn=minconn, maxconn=maxconn, **conn_kwargs)
				client._key = key
				cls._cache[key] = client
				logger.debug("Created pooled PSQLClient %r", client)
			else:
				logger.debug("Reusing pooled PSQLClient %r", client)
			return client

	@classmethod
	def closeall(cls) -> None:
		"""Close every cached pool."""
		with cls._cache_lock:
			clients = list(cls._cache.values())
			cls._cache.clear()
		for client in clients:
			try:
				client.close()
			except Exception:
				logger.exception("Error closing pooled client %r", client)

	def __init__(
		self,
		*,
		database: str = "postgres",
		user: str = "postgres",
		password: Optional[str] = None,
		host: Optional[str] = None,
		port: Optional[int] = None,
		minconn: int = 1,
		maxconn: int = 10,
		**conn_kwargs
	):
		self.database = database
		self.user = user
		self.host = host
		self.port = port
		self._closed = False
		self._state_lock = RLock()
		self._key: tuple | None = None

		connect_kwargs = dict(conn_kwargs)
		for name, value in (("password", password), ("host", host), ("port", port)):
			if value is not None:
				connect_kwargs[name] = value

		self.pool = ThreadedConnectionPool(minconn, maxconn, database=database, user=user, **connect_kwargs)

	def __repr__(self) -> str:
		port = f":{self.port}" if self.port else ""
		return f"<PSQLClient {self.user}@{self.host or ''}{port}/{self.database}>"

	# ---------- Pool plumbing ----------
	def close(self) -> None:
		with self._state_lock:
			if self._closed:
				return
			self._closed = True
		try:
			self.pool.closeall()
		except Exception:
			logger.exception("Error closing connection pool for %r", self)
		finally:
			if self._key is not None:
				with PSQLClient._cache_lock:
					if PSQLClient._cache.get(self._key) is self:
						PSQLClient._cache.pop(self._key, None)

	def _get_conn(self):
		with self._state_lock:
			if self._closed:
				raise RuntimeError("PSQLClient is closed.")
		return self.pool.getconn()

	def _put_conn(self, conn):
		try:
			self.pool.putconn(conn)
		except Exception:
			# The pool may have been closed while the connection was out.
			with self._state_lock:
				if not self._closed:
					raise

	# ---------- Execution ----------
	@staticmethod
	def _rows_from_cursor(cur) -> list[dict] | None:
		if cur.description is None:
			return None
		colnames = [d[0] for d in cur.description]
		return [dict(zip(colnames, r)) for r in cur.fetchall()]

	def _execute(self, query, params: Optional[Iterable] = None) -> list[dict] | None:
		"""
		Run one statement (string or psycopg2.sql Composable) in its own transaction.

		Params are only handed to the driver when there are some, so a raw
		statement containing a literal '%' (LIKE 'jo%') is sent untouched.
		"""
		values = list(params or [])
		conn = self._get_conn()
		try:
			query_text = query if isinstance(query, str) else query.as_string(conn)
			with conn.cursor() as cur:
				cur.execute(query_text, values or None)
				rows = self._rows_from_cursor(cur)
			conn.commit()
			return rows
		except Exception:
			conn.rollback()
			raise
		finally:
			self._put_conn(conn)

	def execute_query(self, query, params: Optional[Iterable] = None) -> list[dict] | None:
		"""
		Execute raw SQL. Returns list[dict] for result sets, otherwise None.
		"""
		return self._execute(query, params)

	# ---------- Names ----------
	@staticmethod
	def _table_ident(table: str) -> sql.Composable:
		"""Quote 'table' or 'schema.table'."""
		name = str(table).strip()
		if "." in name:
			schema, tbl = name.split(".", 1)
			return sql.SQL("{}.{}").format(sql.Identifier(schema.strip('"')), sql.Identifier(tbl.strip('"')))
		return sql.Identifier(name.strip('"'))

	# ---------- Structured primitives ----------
	@staticmethod
	def _adapt(value: Any) -> Any:
		# psycopg2 has no default adapter for dict; send documents as json
		return Json(value) if isinstance(value, Mapping) else value

	@staticmethod
	def _order_clause(order: Iterable[Mapping]) -> sql.Composable:
		items = []
		for o in order:
			direction = str(o.get("direction") or "ASC").upper()
			if direction not in {"ASC", "DESC"}:
				raise ValueError("order direction must be 'ASC' or 'DESC'")
			field = sql.Identifier(*str(o["field"]).split("."))
			if o.get("type") is not None:
				field = sql.SQL("({})::{}").format(field, sql.SQL(str(o["type"])))
			items.append(sql.SQL("{} {}").format(field, sql.SQL(direction)))
		return sql.SQL(", ").join(items)

	def find_rows(self, table: str, conditions: Mapping | None = None, options: Mapping | None = None) -> list[dict]:
		"""
		SELECT rows matching a condition mapping with bound parameters.

		options: columns, order ([{field, direction, type}]), limit, offset.
		"""
		options = options or {}
		columns = options.get("columns")
		fields = sql.SQL(", ").join(sql.Identifier(c) for c in columns) if columns else sql.SQL("*")
		query = sql.SQL("SELECT {} FROM {}").format(fields, self._table_ident(table))

		predicate, params = compile_bound_where(conditions)
		if predicate is not None:
			query += sql.SQL(" WHERE ") + predicate

		if options.get("order"):
			query += sql.SQL(" ORDER BY ") + self._order_clause(options["order"])

		for keyword in ("limit", "offset"):
			value = options.get(keyword)
			if value is None:
				continue
			if isinstance(value, bool) or not isinstance(value, int) or value < 0:
				raise ValueError(f"{keyword} must be a non-negative integer.")
			query += sql.SQL(f" {keyword.upper()} ") + sql.Placeholder()
			params.append(value)

		return self._execute(query, params) or []

	def get_row_by_id(self, table: str, row_id: Any) -> dict | None:
		query = sql.SQL("SELECT * FROM {} WHERE {} = {}").format(
			self._table_ident(table), sql.Identifier("id"), sql.Placeholder()
		)
		rows = self._execute(query, [row_id])
		return rows[0] if rows else None

	def insert_row(self, table: str, data: Mapping) -> dict | None:
		if not data:
			raise ValueError("Data dictionary is empty.")
		columns = list(data.keys())
		query = sql.SQL("INSERT INTO {tbl} ({fields}) VALUES ({placeholders}) RETURNING *").format(
			tbl=self._table_ident(table),
			fields=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
			placeholders=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
		)
		rows = self._execute(query, [self._adapt(data[c]) for c in columns])
		return rows[0] if rows else None

	def update_row_by_id(self, table: str, row_id: Any, data: Mapping) -> list[dict]:
		if not data:
			raise ValueError("Updates dictionary is empty.")
		items = list(data.items())
		query = sql.SQL("UPDATE {tbl} SET {sets} WHERE {id} = {ph} RETURNING *").format(
			tbl=self._table_ident(table),
			sets=sql.SQL(", ").join(
				sql.SQL("{} = {}").format(sql.Identifier(k), sql.Placeholder()) for k, _ in items
			),
			id=sql.Identifier("id"),
			ph=sql.Placeholder(),
		)
		return self._execute(query, [self._adapt(v) for _, v in items] + [row_id]) or []

	def delete_row_by_id(self, table: str, row_id: Any) -> list[dict]:
		query = sql.SQL("DELETE FROM {} WHERE {} = {} RETURNING *").format(
			self._table_ident(table), sql.Identifier("id"), sql.Placeholder()
		)
		return self._execute(query, [row_id]) or []
