from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from pg_collections.exceptions import InvalidFormat, MissingArg

logger = logging.getLogger(__name__)

CREDENTIALS_ENV = "PG_COLLECTIONS_CREDENTIALS"
DEFAULT_CREDENTIALS_FILE = ".pg_collections_credentials.json"


@dataclass(frozen=True)
class ConnectionSettings:
    """
    Connection parameters persisted by `pg-collections connect`.
    """
    host: str
    port: int
    database: str
    user: str
    password: str

    @classmethod
    def from_address(
        cls,
        address: str | None,
        database: str | None,
        user: str | None,
        password: str | None,
    ) -> "ConnectionSettings":
        """Build settings from a 'host:port' address."""
        for label, value in (("address", address), ("db", database), ("user", user), ("password", password)):
            if value is None:
                raise MissingArg(label)

        host, sep, port = address.partition(":")
        if not sep or not host or not port.isdigit():
            raise InvalidFormat("address (expected host:port)")
        return cls(host=host, port=int(port), database=database, user=user, password=password)

    @classmethod
    def load(cls, path: str | Path) -> "ConnectionSettings":
        json_path = Path(path)
        if not json_path.is_file():
            raise FileNotFoundError(f"No credentials at {json_path}; run `pg-collections connect` first.")
        try:
            payload = json.loads(json_path.read_text(encoding="utf-8"))
        except Exception as exc:
            raise ValueError(f"Failed to parse credentials file: {json_path}") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"Unsupported credentials structure in {json_path}")

        missing = [k for k in ("host", "port", "database", "user", "password") if k not in payload]
        if missing:
            raise ValueError(f"Credentials file {json_path} is missing: {missing}")
        return cls(
            host=str(payload["host"]),
            port=int(payload["port"]),
            database=str(payload["database"]),
            user=str(payload["user"]),
            password=str(payload["password"]),
        )

    def save(self, path: str | Path) -> Path:
        json_path = Path(path)
        json_path.write_text(json.dumps(asdict(self)), encoding="utf-8")
        logger.debug("Wrote credentials to %s", json_path)
        return json_path

    def client_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for PSQLClient / PSQLClient.get."""
        return asdict(self)


def resolve_credentials_path(path: str | Path | None = None) -> Path:
    if path:
        return Path(path)
    env_path = os.environ.get(CREDENTIALS_ENV)
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_CREDENTIALS_FILE


def remove_credentials(path: str | Path) -> bool:
    json_path = Path(path)
    if not json_path.is_file():
        return False
    json_path.unlink()
    logger.debug("Removed credentials %s", json_path)
    return True


def ensure_gitignored(path: str | Path, root: str | Path | None = None) -> bool:
    """
    Add the credentials file to <root>/.gitignore.

    Only an existing .gitignore is patched. Returns True when the file was changed.
    """
    root_dir = Path(root) if root is not None else Path.cwd()
    gitignore = root_dir / ".gitignore"
    if not gitignore.is_file():
        return False

    credentials = Path(path).resolve()
    try:
        entry = credentials.relative_to(root_dir.resolve()).as_posix()
    except ValueError:
        # Outside the repository: nothing git could pick up.
        return False

    lines = gitignore.read_text(encoding="utf-8").splitlines()
    listed = {line.strip().lstrip("/") for line in lines}
    if entry in listed:
        return False

    lines = [line for line in lines if line.strip()]
    lines.append(entry)
    gitignore.write_text("\n".join(lines) + "\n", encoding="utf-8")
    logger.info("Added %s to %s", entry, gitignore)
    return True
