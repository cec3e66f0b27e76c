from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import date, datetime
from numbers import Number
from typing import TYPE_CHECKING, Any, Iterable

from pg_collections.conditions import requires_raw_sql, where_clause
from pg_collections.exceptions import InvalidFormat

if TYPE_CHECKING:
	from pg_collections.backend import SQLExecutor, TablePrimitives

logger = logging.getLogger(__name__)

NORMAL = "normal"
JSONB = "jsonb"


def _literal(value: Any) -> str:
	"""Render a SET value as an SQL literal."""
	if value is None:
		return "NULL"
	if isinstance(value, bool):
		return "'true'" if value else "'false'"
	if isinstance(value, Number):
		return str(value)
	if isinstance(value, datetime):
		text = value.isoformat(sep=" ")
	elif isinstance(value, date):
		text = value.isoformat()
	elif isinstance(value, (list, tuple, Mapping)):
		text = json.dumps(value, separators=(",", ":"), default=str)
	else:
		text = str(value)
	return "'" + text.replace("'", "''") + "'"


def _non_negative_int(value: Any, label: str) -> int:
	if isinstance(value, bool) or not isinstance(value, int) or value < 0:
		raise InvalidFormat(label)
	return value


class QueryRouter:
	"""
	Picks the query path for one table and assembles its raw SQL statements.

	The "normal" path hands conditions to the structured find primitive. The
	"jsonb" path compiles everything to an SQL string, which is required as
	soon as a JSONB path shows up in a condition or ORDER field.
	"""

	def __init__(self, table_name: str):
		self.table_name = table_name

	def search_type(self, conditions: Mapping, options: Mapping) -> str:
		return JSONB if requires_raw_sql(conditions, options) else NORMAL

	# ---------- Statement builders ----------
	def _order_sql(self, order: Iterable[Mapping]) -> str:
		items = []
		for o in order:
			field = o.get("field")
			if not field:
				raise InvalidFormat("order.field")
			direction = str(o.get("direction") or "ASC").upper()
			if direction not in {"ASC", "DESC"}:
				raise InvalidFormat("order.direction")
			if o.get("type") is not None:
				field = f"({field})::{o['type']}"
			items.append(f"{field} {direction}")
		return ", ".join(items)

	def build_select(self, conditions: Mapping | None = None, options: Mapping | None = None) -> str:
		options = options or {}
		columns = options.get("columns")
		fields = ", ".join(columns) if columns else "*"

		query = f"SELECT {fields} FROM {self.table_name}{where_clause(conditions)}"

		if options.get("order"):
			query += " ORDER BY " + self._order_sql(options["order"])
		if options.get("limit") is not None:
			query += f" LIMIT {_non_negative_int(options['limit'], 'limit')}"
		if options.get("offset") is not None:
			query += f" OFFSET {_non_negative_int(options['offset'], 'offset')}"
		return query

	def build_count(self, conditions: Mapping | None = None) -> str:
		return f"SELECT count(id) FROM {self.table_name}{where_clause(conditions)}"

	def build_update(self, data: Mapping, conditions: Mapping | None = None) -> str:
		sets = ", ".join(f"{field} = {_literal(value)}" for field, value in data.items())
		return f"UPDATE {self.table_name} SET {sets}{where_clause(conditions)}"

	@staticmethod
	def _id_list(ids: Iterable[Any]) -> str:
		return ",".join(str(i) for i in ids)

	def build_select_ids(self, ids: Iterable[Any]) -> str:
		return f"SELECT * FROM {self.table_name} WHERE id IN ({self._id_list(ids)})"

	def build_delete_ids(self, ids: Iterable[Any]) -> str:
		return f"DELETE FROM {self.table_name} WHERE id IN ({self._id_list(ids)})"

	def build_truncate(self) -> str:
		return f"TRUNCATE {self.table_name}"

	def build_sequence_reset(self) -> str:
		return f"ALTER SEQUENCE {self.table_name}_id_seq RESTART"

	# ---------- Routing ----------
	async def find(
		self,
		connection: "SQLExecutor",
		table: "TablePrimitives",
		conditions: Mapping,
		options: Mapping,
	) -> list[dict]:
		if self.search_type(conditions, options) == NORMAL:
			logger.debug("find on %s via structured primitive: %r", self.table_name, conditions)
			return await table.find(conditions, options)

		query = self.build_select(conditions, options)
		logger.debug("find on %s via raw SQL: %s", self.table_name, query)
		return await connection.execute(query)
