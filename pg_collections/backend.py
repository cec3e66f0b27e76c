"""
Execution primitives consumed by TableCollection.

`SQLExecutor` / `TablePrimitives` describe what a collection needs from its
connection. `PSQLBackend` provides them on top of the pooled psycopg2
`PSQLClient`, pushing each blocking call to a worker thread.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Optional, Protocol

from pg_collections.config import ConnectionSettings
from pg_collections.psql_client import PSQLClient

logger = logging.getLogger(__name__)


class TablePrimitives(Protocol):
	async def find(self, conditions: Mapping, options: Mapping) -> list[dict]: ...

	async def find_one(self, id: Any) -> Optional[dict]: ...

	async def insert(self, data: Mapping) -> dict: ...

	async def update_by_id(self, id: Any, data: Mapping) -> list[dict]: ...

	async def destroy_by_id(self, id: Any) -> list[dict]: ...


class SQLExecutor(Protocol):
	async def execute(self, query: str) -> list[dict]: ...

	def table(self, name: str) -> TablePrimitives: ...


class PSQLTable:
	"""Per-table structured primitives."""

	def __init__(self, client: PSQLClient, name: str):
		self.client = client
		self.name = name

	def __repr__(self) -> str:
		return f"<PSQLTable {self.name} via {self.client!r}>"

	async def find(self, conditions: Mapping, options: Mapping) -> list[dict]:
		return await asyncio.to_thread(self.client.find_rows, self.name, conditions, options)

	async def find_one(self, id: Any) -> Optional[dict]:
		return await asyncio.to_thread(self.client.get_row_by_id, self.name, id)

	async def insert(self, data: Mapping) -> dict:
		return await asyncio.to_thread(self.client.insert_row, self.name, data)

	async def update_by_id(self, id: Any, data: Mapping) -> list[dict]:
		return await asyncio.to_thread(self.client.update_row_by_id, self.name, id, data)

	async def destroy_by_id(self, id: Any) -> list[dict]:
		return await asyncio.to_thread(self.client.delete_row_by_id, self.name, id)


class PSQLBackend:
	"""
	Database-wide connection handed to collections:

		backend = PSQLBackend.from_settings(ConnectionSettings.load(path))
		users = TableCollection("users", backend)
	"""

	def __init__(self, client: PSQLClient):
		self.client = client
		self._tables: dict[str, PSQLTable] = {}

	@classmethod
	def from_settings(cls, settings: ConnectionSettings, **pool_kwargs) -> "PSQLBackend":
		return cls(PSQLClient.get(**settings.client_kwargs(), **pool_kwargs))

	def __repr__(self) -> str:
		return f"<PSQLBackend {self.client!r}>"

	async def execute(self, query: str) -> list[dict]:
		logger.debug("execute: %s", query)
		rows = await asyncio.to_thread(self.client.execute_query, query)
		return rows or []

	def table(self, name: str) -> PSQLTable:
		table = self._tables.get(name)
		if table is None:
			table = self._tables[name] = PSQLTable(self.client, name)
		return table

	def close(self) -> None:
		self.client.close()
