import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from pg_collections.config import (  # noqa: E402
    CREDENTIALS_ENV,
    DEFAULT_CREDENTIALS_FILE,
    ConnectionSettings,
    ensure_gitignored,
    remove_credentials,
    resolve_credentials_path,
)
from pg_collections.exceptions import InvalidFormat, MissingArg  # noqa: E402


class ConfigTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()


class TestConnectionSettings(ConfigTestCase):
    def test_from_address(self):
        settings = ConnectionSettings.from_address("localhost:5432", "test_db", "root", "root")
        self.assertEqual(settings, ConnectionSettings("localhost", 5432, "test_db", "root", "root"))

    def test_missing_arguments(self):
        with self.assertRaisesRegex(MissingArg, "db"):
            ConnectionSettings.from_address("localhost:5432", None, "root", "root")
        with self.assertRaisesRegex(MissingArg, "address"):
            ConnectionSettings.from_address(None, "test_db", "root", "root")

    def test_bad_address(self):
        for address in ("localhost", ":5432", "localhost:port"):
            with self.assertRaises(InvalidFormat):
                ConnectionSettings.from_address(address, "test_db", "root", "root")

    def test_save_and_load(self):
        path = self.root / "creds.json"
        settings = ConnectionSettings("db.local", 6543, "app", "alice", "pw")
        settings.save(path)
        self.assertEqual(ConnectionSettings.load(path), settings)
        self.assertEqual(
            settings.client_kwargs(),
            {"host": "db.local", "port": 6543, "database": "app", "user": "alice", "password": "pw"},
        )

    def test_load_errors(self):
        with self.assertRaises(FileNotFoundError):
            ConnectionSettings.load(self.root / "missing.json")

        broken = self.root / "broken.json"
        broken.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ValueError) as ctx:
            ConnectionSettings.load(broken)
        self.assertIsNotNone(ctx.exception.__cause__)

        partial = self.root / "partial.json"
        partial.write_text('{"host": "x"}', encoding="utf-8")
        with self.assertRaisesRegex(ValueError, "missing"):
            ConnectionSettings.load(partial)


class TestCredentialsFile(ConfigTestCase):
    def test_resolve_order(self):
        with mock.patch.dict(os.environ, {CREDENTIALS_ENV: "/etc/pg.json"}):
            self.assertEqual(resolve_credentials_path("explicit.json"), Path("explicit.json"))
            self.assertEqual(resolve_credentials_path(), Path("/etc/pg.json"))
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertEqual(resolve_credentials_path(), Path.cwd() / DEFAULT_CREDENTIALS_FILE)

    def test_remove_credentials(self):
        path = self.root / "creds.json"
        path.write_text("{}", encoding="utf-8")
        self.assertTrue(remove_credentials(path))
        self.assertFalse(path.exists())
        self.assertFalse(remove_credentials(path))


class TestGitignore(ConfigTestCase):
    def test_patched_once(self):
        gitignore = self.root / ".gitignore"
        gitignore.write_text("node_modules\n\n*.pyc\n", encoding="utf-8")
        path = self.root / DEFAULT_CREDENTIALS_FILE

        self.assertTrue(ensure_gitignored(path, self.root))
        self.assertFalse(ensure_gitignored(path, self.root))
        self.assertEqual(
            gitignore.read_text(encoding="utf-8"),
            f"node_modules\n*.pyc\n{DEFAULT_CREDENTIALS_FILE}\n",
        )

    def test_no_gitignore(self):
        self.assertFalse(ensure_gitignored(self.root / "creds.json", self.root))
        self.assertFalse((self.root / ".gitignore").exists())

    def test_outside_root(self):
        (self.root / ".gitignore").write_text("", encoding="utf-8")
        with tempfile.TemporaryDirectory() as elsewhere:
            self.assertFalse(ensure_gitignored(Path(elsewhere) / "creds.json", self.root))

    def test_nested_entry_uses_posix_path(self):
        gitignore = self.root / ".gitignore"
        gitignore.write_text("", encoding="utf-8")
        (self.root / "config").mkdir()

        self.assertTrue(ensure_gitignored(self.root / "config" / "creds.json", self.root))
        self.assertEqual(gitignore.read_text(encoding="utf-8"), "config/creds.json\n")


if __name__ == "__main__":
    unittest.main()
