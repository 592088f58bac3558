"""Tests for the main CLI entry point (dbconfig = dbconfig.cli:main)."""

import json
import subprocess
import sys
from unittest.mock import patch

import pytest

from dbconfig import __version__
from dbconfig.cli import main, parse_assignments


def test_main_version_exits_zero_and_prints_version(capsys):
    with patch.object(sys, "argv", ["dbconfig", "version"]):
        exit_code = main()
    assert exit_code == 0
    out, _ = capsys.readouterr()
    assert __version__ in out


def test_main_help_lists_commands(capsys):
    with patch.object(sys, "argv", ["dbconfig", "--help"]):
        with pytest.raises(SystemExit) as exc_info:
            main()
    assert exc_info.value.code == 0
    out, err = capsys.readouterr()
    combined = out + err
    for command in ("serve", "get", "set", "reload-config", "version"):
        assert command in combined


def test_parse_assignments():
    assert parse_assignments(["A=1", "B=", "C=x=y"]) == {"A": "1", "B": "", "C": "x=y"}
    with pytest.raises(ValueError):
        parse_assignments(["novalue"])
    with pytest.raises(ValueError):
        parse_assignments(["=1"])


def test_set_posts_batch(capsys):
    with patch("dbconfig.cli._request", return_value=(200, "true")) as req, patch.object(
        sys, "argv", ["dbconfig", "set", "A=1", "B=2", "--base-url", "http://svc:9000/"]
    ):
        assert main() == 0
    req.assert_called_once_with("http://svc:9000/api/config", method="POST", body={"A": "1", "B": "2"})


def test_set_reports_not_applied(capsys):
    with patch("dbconfig.cli._request", return_value=(200, "false")), patch.object(sys, "argv", ["dbconfig", "set", "A=1"]):
        assert main() == 1


def test_set_rejects_bad_pair(capsys):
    with patch("dbconfig.cli._request") as req, patch.object(sys, "argv", ["dbconfig", "set", "oops"]):
        assert main() == 2
    req.assert_not_called()


def test_get_single_key(capsys):
    body = json.dumps({"Foo": "bar"})
    with patch("dbconfig.cli._request", return_value=(200, body)), patch.object(sys, "argv", ["dbconfig", "get", "Foo"]):
        assert main() == 0
    assert capsys.readouterr().out.strip() == "bar"


def test_get_missing_key(capsys):
    with patch("dbconfig.cli._request", return_value=(200, "{}")), patch.object(sys, "argv", ["dbconfig", "get", "Foo"]):
        assert main() == 1


def test_module_main_version_via_subprocess():
    result = subprocess.run(
        [sys.executable, "-m", "dbconfig.cli", "version"],
        capture_output=True,
        text=True,
        timeout=10,
    )
    assert result.returncode == 0
    assert __version__ in result.stdout
