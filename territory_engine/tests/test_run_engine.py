"""Command-line entry point."""

import json
import sys

import pytest

import run_engine


def _run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["run_engine.py", *argv])
    run_engine.main()


def test_warm_then_stats(monkeypatch, capsys):
    _run(monkeypatch, "--no-cache", "--warm", "2", "--stats")
    stats = json.loads(capsys.readouterr().out)
    assert stats["cache_entries"] > 0
    assert stats["in_flight"] == 0


def test_single_lookup_exit_codes(monkeypatch, capsys):
    with pytest.raises(SystemExit) as exc:
        _run(monkeypatch, "--no-cache", "75201")
    assert exc.value.code == 0
    assert json.loads(capsys.readouterr().out)["territoryId"] == "oncor"

    with pytest.raises(SystemExit) as exc:
        _run(monkeypatch, "--no-cache", "90210")
    assert exc.value.code == 1
    assert json.loads(capsys.readouterr().out)["errorType"] == "validation"
