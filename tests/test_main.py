"""Tests for the CLI entry point: argument parsing, sign-in and dispatch."""

import logging
from unittest.mock import patch

import pytest

import plancal.appconfig as pcfg
from plancal.__main__ import _UserFilter, main
from plancal.user_context import current_access_token, current_user_identity, set_user_identity


@pytest.fixture(autouse=True)
def no_config_file(monkeypatch):
    monkeypatch.setattr(pcfg, "_FILE_PATHS", [])


def test_help(capsys):
    assert main(["help"]) == 0
    assert "show-month" in capsys.readouterr().out


def test_requires_command():
    with pytest.raises(SystemExit):
        main([])


def test_signs_in_from_environment(monkeypatch):
    monkeypatch.setenv("PLANCAL_EMAIL", "ann@example.com")
    monkeypatch.setenv("PLANCAL_TOKEN", "tok")
    main(["help"])
    assert current_user_identity() == "ann@example.com"
    assert current_access_token() == "tok"


def test_show_month_dispatch():
    with patch("plancal.commands.show_month.run") as run:
        main(["show-month", "2025-03", "--offline", "--inspector"])
    run.assert_called_once_with(["2025-03", "--offline", "--inspector"])


def test_move_dispatch_returns_exit_code():
    with patch("plancal.commands.move.run", return_value=1) as run:
        assert main(["move", "--to", "2025-03-11", "--partial", "r1", "y2"]) == 1
    run.assert_called_once_with(["--to", "2025-03-11", "--partial", "r1", "y2"])


def test_clear_cache_dispatch():
    with patch("plancal.commands.clear_cache.run") as run:
        main(["clear-cache", "--yes"])
    run.assert_called_once_with(assume_yes=True)


def test_status_dispatch():
    with patch("plancal.commands.status.run") as run:
        main(["status", "--limit", "5"])
    run.assert_called_once_with(limit=5)


def test_user_filter():
    record = logging.LogRecord("plancal", logging.INFO, __file__, 1, "hello", None, None)
    assert _UserFilter().filter(record)
    assert record.user == "-"
    set_user_identity("ann@example.com")
    _UserFilter().filter(record)
    assert record.user == "ann@example.com"
