"""Regression tests for importing the data layer without the web stack."""

from __future__ import annotations

import importlib
import sys
import types
import unittest
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class CLIImportTests(unittest.TestCase):
    def tearDown(self) -> None:
        self._clear_rpl_modules()

    @staticmethod
    def _clear_rpl_modules() -> None:
        for name in [m for m in list(sys.modules.keys()) if m == "rpl" or m.startswith("rpl.")]:
            sys.modules.pop(name, None)

    def test_import_database_without_fastapi(self) -> None:
        """Importing rpl.database should succeed even if fastapi is unavailable."""

        self._clear_rpl_modules()

        fastapi_module: types.ModuleType | None = sys.modules.pop("fastapi", None)
        sys.modules["fastapi"] = None
        try:
            database_module = importlib.import_module("rpl.database")
            self.assertTrue(hasattr(database_module, "Database"))

            package = sys.modules.get("rpl")
            self.assertIsNotNone(package)
            self.assertTrue(hasattr(package, "Database"))
            self.assertNotIn("rpl.service", sys.modules)
        finally:
            sys.modules.pop("fastapi", None)
            if fastapi_module is not None:
                sys.modules["fastapi"] = fastapi_module


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
