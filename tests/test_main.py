"""Tests for the `python -m quire` entry point."""

from __future__ import annotations

import sys

import pytest

from quire.__main__ import main


def run(monkeypatch, *argv: str) -> int:
    monkeypatch.setattr(sys, "argv", ["quire", *argv])
    with pytest.raises(SystemExit) as exc_info:
        main()
    return exc_info.value.code


class TestMain:
    def test_runs_commands_and_prints_buffer(self, monkeypatch, capsys, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("one\ntwo")
        code = run(monkeypatch, str(path), "-c", ":goto 2", "-c", ":insert >")
        assert code == 0
        assert capsys.readouterr().out == "one\n>two\n"

    def test_failed_command_sets_status(self, monkeypatch, capsys):
        code = run(monkeypatch, "-c", ":nope")
        assert code == 1
        assert "no such command" in capsys.readouterr().err

    def test_list(self, monkeypatch, capsys):
        assert run(monkeypatch, "--list") == 0
        out = capsys.readouterr().out
        assert "insert" in out
        assert "goto" in out and "range" in out

    def test_output_file(self, monkeypatch, tmp_path):
        target = tmp_path / "out.txt"
        assert run(monkeypatch, "-c", "insert hi; mode insert", "-o", str(target)) == 0
        assert target.read_text() == "hi"

    def test_script_file(self, monkeypatch, capsys, tmp_path):
        script = tmp_path / "edit.quire"
        script.write_text("insert a\ninsert b\n")
        assert run(monkeypatch, "--script", str(script)) == 0
        assert capsys.readouterr().out == "ab\n"
