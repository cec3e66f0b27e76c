from __future__ import annotations

import logging
from threading import RLock
from typing import TYPE_CHECKING

from pg_collections.exceptions import CollectionNotFound, InvalidFormat

if TYPE_CHECKING:
    from pg_collections.collection import TableCollection

logger = logging.getLogger(__name__)


class CollectionRegistry:
    """
    Name-keyed lookup of table collections.

    Build one registry and hand it to every collection that should be
    discoverable by name:

        registry = CollectionRegistry()
        TableCollection("users", backend, registry=registry)
        users = registry.get_model("users")

    Registering a second collection under an existing name replaces the first.
    """

    def __init__(self):
        self._collections: dict[str, "TableCollection"] = {}
        self._lock = RLock()

    def register(self, collection: "TableCollection") -> None:
        name = collection.table_name
        with self._lock:
            previous = self._collections.get(name)
            self._collections[name] = collection
        if previous is not None and previous is not collection:
            logger.debug("Replaced registered collection for table %s", name)

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._collections.pop(name, None) is not None

    def get_model(self, name: str) -> "TableCollection":
        if not isinstance(name, str):
            raise InvalidFormat("name")
        with self._lock:
            collection = self._collections.get(name)
        if collection is None:
            raise CollectionNotFound(name)
        return collection

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._collections)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._collections

    def __len__(self) -> int:
        with self._lock:
            return len(self._collections)
