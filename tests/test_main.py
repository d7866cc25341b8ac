"""Tests for the command line interface."""

import json
import logging
import sys
from unittest.mock import AsyncMock, patch

import pytest

from conftest import item
from diskuto_sync.__main__ import JSONFormatter, build_clients, main
from diskuto_sync.config import load_config
from diskuto_sync.transport import DiskutoClient, MemoryServer
from diskuto_sync.types import Profile

USER_ID = "42P3FTZoCmN8DRmLSu89y419XfYfHP9Py7a9vNLfD72F"

CONFIG = """
servers:
  home:
    url: https://home.example.com
    dest: true
  public:
    url: https://public.example.com
users:
  me:
    id: 42P3FTZoCmN8DRmLSu89y419XfYfHP9Py7a9vNLfD72F
engine:
  timeout_seconds: 12
  retry_max_attempts: 4
"""


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "diskuto-sync.yaml"
    path.write_text(CONFIG)
    return path


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_format(self):
        """Test that records become one JSON object per line."""
        record = logging.LogRecord(
            "diskuto_sync.sync", logging.WARNING, __file__, 1, "copied %d items", (3,), None
        )

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["component"] == "diskuto_sync.sync"
        assert data["message"] == "copied 3 items"
        assert "exception" not in data

    def test_format_exception(self):
        """Test that exception tracebacks are included."""
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord(
                "x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )

        data = json.loads(JSONFormatter().format(record))

        assert "ValueError: bad" in data["exception"]


class TestBuildClients:
    """Tests for build_clients."""

    def test_one_client_per_server(self, config_path):
        """Test that clients follow the engine settings and config order."""
        clients = build_clients(load_config(config_path))

        assert [server.name for server in clients] == ["home", "public"]
        client = next(iter(clients.values()))
        assert isinstance(client, DiskutoClient)
        assert client.timeout == 12.0
        assert client.max_retries == 4


class TestMain:
    """Tests for main()."""

    def test_no_command(self, capsys):
        """Test that running without a command prints help."""
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_config_error(self, tmp_path, capsys):
        """Test that config errors exit with status 2."""
        code = main(["-c", str(tmp_path / "missing.yaml"), "sync"])

        assert code == 2
        assert "Config error" in capsys.readouterr().err

    def test_sync(self, config_path, capsys):
        """Test a full sync run over in-memory servers."""
        servers = {}

        def populate(config):
            servers.update({info: MemoryServer(info.name) for info in config.server_infos()})
            public = list(servers.values())[1]
            public.add_profile(USER_ID, Profile(item(20), display_name="Me"))
            public.add_item(USER_ID, item(10))
            return servers

        with patch("diskuto_sync.__main__.build_clients", side_effect=populate):
            code = main(["-c", str(config_path), "sync", "--no-color"])

        home = list(servers.values())[0]
        assert code == 0
        assert home.signatures(USER_ID) == {item(20).signature, item(10).signature}
        assert "Items copied: 2" in capsys.readouterr().out

    def test_sync_reports_failures(self, config_path, capsys):
        """Test that a failed user gives exit status 1."""
        with patch(
            "diskuto_sync.__main__.build_clients",
            side_effect=lambda config: {
                info: MemoryServer(info.name) for info in config.server_infos()
            },
        ):
            code = main(["-c", str(config_path), "sync"])

        assert code == 1
        assert "Failed users:" in capsys.readouterr().out

    def test_status_json(self, config_path, capsys):
        """Test status output as JSON."""
        with patch.object(DiskutoClient, "check_connection", AsyncMock(return_value=True)):
            code = main(["-c", str(config_path), "status", "--json"])

        assert code == 0
        data = json.loads(capsys.readouterr().out)
        assert [s["name"] for s in data["servers"]] == ["home", "public"]
        assert data["servers"][0]["dest"] is True
        assert data["servers"][1]["reachable"] is True
        assert data["users"][0]["id"] == USER_ID
        assert data["users"][0]["count"] == 50

    def test_status_unreachable(self, config_path, capsys):
        """Test that an unreachable server fails the status check."""
        with patch.object(DiskutoClient, "check_connection", AsyncMock(side_effect=[True, False])):
            code = main(["-c", str(config_path), "status"])

        out = capsys.readouterr().out
        assert code == 1
        assert "Not reachable" in out
        assert "latest 50" in out

    def test_status_json_does_not_switch_log_format(self, config_path, capsys):
        """Test that status --json only changes the status output."""
        with patch.object(DiskutoClient, "check_connection", AsyncMock(return_value=True)), \
                patch("diskuto_sync.__main__.setup_logging") as setup:
            main(["-c", str(config_path), "status", "--json"])

        setup.assert_called_once_with(False, None, False)
        assert json.loads(capsys.readouterr().out)["servers"]

    def test_global_json_keeps_plain_status(self, config_path, capsys):
        """Test that the global --json flag switches logs, not the status report."""
        with patch.object(DiskutoClient, "check_connection", AsyncMock(return_value=True)), \
                patch("diskuto_sync.__main__.setup_logging") as setup:
            main(["-c", str(config_path), "--json", "status"])

        setup.assert_called_once_with(False, None, True)
        assert "diskuto-sync Status Check" in capsys.readouterr().out
