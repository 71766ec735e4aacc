"""ScriptFileStore tests."""

from __future__ import annotations

import pytest

from runpad.errors import ScriptWriteError
from runpad.script_store import ScriptFileStore


class TestScriptFileStore:
    def test_persist_replaces_contents(self, tmp_path):
        path = tmp_path / "script.py"
        path.write_text("a much longer previous script\n" * 10, encoding="utf-8")
        store = ScriptFileStore(str(path))

        store.persist("print(1)")

        assert path.read_text(encoding="utf-8") == "print(1)"

    def test_persist_creates_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "script.py"

        ScriptFileStore(str(path)).persist("x = 1")

        assert path.read_text(encoding="utf-8") == "x = 1"

    def test_line_endings_kept(self, tmp_path):
        path = tmp_path / "script.py"

        ScriptFileStore(str(path)).persist("a\r\nb\n")

        assert path.read_bytes() == b"a\r\nb\n"

    def test_unicode_written_as_utf8(self, tmp_path):
        path = tmp_path / "script.py"

        ScriptFileStore(str(path)).persist("print('héllo ✓')")

        assert path.read_bytes().decode("utf-8") == "print('héllo ✓')"

    def test_write_failure_raises(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        store = ScriptFileStore(str(blocker / "script.py"))

        with pytest.raises(ScriptWriteError) as exc_info:
            store.persist("print(1)")

        assert exc_info.value.path == str(blocker / "script.py")

    def test_load_round_trip_and_missing(self, tmp_path):
        store = ScriptFileStore(str(tmp_path / "script.py"))
        assert store.load() == ""

        store.persist("print(2)\n")

        assert store.load() == "print(2)\n"
