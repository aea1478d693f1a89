"""Tests for CLI argument parsing and commands."""

from __future__ import annotations

import argparse
import socket
import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from oncelink.cli import (
    cmd_fetch,
    cmd_send,
    cmd_serve,
    cmd_sweep,
    load_settings,
    main,
    parse_target,
)
from oncelink.client.sender import SentTransfer
from oncelink.errors import BackendUnreachable, PayloadTooLarge, TransferExpired


class TestParseTarget:
    def test_host_and_port(self):
        assert parse_target("192.168.1.1:9000") == "http://192.168.1.1:9000"

    def test_host_only(self):
        assert parse_target("myserver") == "http://myserver:8080"

    def test_invalid_port_exits(self):
        with pytest.raises(SystemExit):
            parse_target("host:notaport")

    def test_http_url_passthrough(self):
        assert parse_target("http://proxy.example.com:8080") == "http://proxy.example.com:8080"

    def test_https_url_trailing_slash_stripped(self):
        assert parse_target("https://share.example.com/") == "https://share.example.com"


class TestLoadSettings:
    def test_storage_dir_overrides_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STORAGE_DIR", "/from/env")
        monkeypatch.setenv("TTL_SECONDS", "42")
        s = load_settings(argparse.Namespace(storage_dir=str(tmp_path)))
        assert s.storage_dir == tmp_path
        assert s.ttl_seconds == 42

    def test_env_storage_dir_when_flag_missing(self, monkeypatch):
        monkeypatch.setenv("STORAGE_DIR", "/from/env")
        s = load_settings(argparse.Namespace(storage_dir=None))
        assert s.storage_dir == Path("/from/env")


# ---------------------------------------------------------------------------
# cmd_serve
# ---------------------------------------------------------------------------


class TestCmdServe:
    def _make_args(self, **overrides):
        defaults = {"host": "0.0.0.0", "port": 8080, "storage_dir": None}
        defaults.update(overrides)
        return argparse.Namespace(**defaults)

    @patch("oncelink.cli.uvicorn.run")
    @patch("oncelink.cli.create_app")
    def test_serve_starts_uvicorn(self, mock_create_app, mock_run, tmp_path):
        args = self._make_args(host="127.0.0.1", port=0, storage_dir=str(tmp_path))

        cmd_serve(args)

        settings = mock_create_app.call_args.kwargs["settings"]
        assert settings.storage_dir == tmp_path
        mock_run.assert_called_once_with(
            mock_create_app.return_value,
            host="127.0.0.1", port=0, log_level="warning",
        )

    def test_serve_port_in_use_exits(self):
        """If the port is already bound, cmd_serve should exit with code 1."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 0))
            s.listen()
            port = s.getsockname()[1]

            args = self._make_args(host="127.0.0.1", port=port)
            with pytest.raises(SystemExit, match="1"):
                cmd_serve(args)


# ---------------------------------------------------------------------------
# cmd_send
# ---------------------------------------------------------------------------


class TestCmdSend:
    def _make_args(self, file, target="host:9000", **overrides):
        defaults = {"file": str(file), "target": target, "chunk_size": 1_048_576}
        defaults.update(overrides)
        return argparse.Namespace(**defaults)

    def test_missing_file_exits(self, tmp_path):
        with pytest.raises(SystemExit, match="1"):
            cmd_send(self._make_args(tmp_path / "nope.txt"))

    @patch("oncelink.cli.send_file")
    def test_success(self, mock_send, sample_file):
        mock_send.return_value = SentTransfer(
            filename="notes.txt",
            size=28,
            download_url="http://host:9000/d/abc",
            expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )
        cmd_send(self._make_args(sample_file, chunk_size=4096))

        args, kwargs = mock_send.call_args
        assert args == (sample_file, "http://host:9000")
        assert kwargs["chunk_size"] == 4096
        assert callable(kwargs["step"])

    @patch("oncelink.cli.send_file", side_effect=BackendUnreachable("refused"))
    def test_unreachable_exits(self, _mock_send, sample_file):
        with pytest.raises(SystemExit, match="1"):
            cmd_send(self._make_args(sample_file))

    @patch("oncelink.cli.send_file", side_effect=PayloadTooLarge())
    def test_too_large_exits(self, _mock_send, sample_file):
        with pytest.raises(SystemExit, match="1"):
            cmd_send(self._make_args(sample_file))


# ---------------------------------------------------------------------------
# cmd_fetch / cmd_sweep
# ---------------------------------------------------------------------------


class TestCmdFetch:
    @patch("oncelink.cli.fetch_file")
    def test_success(self, mock_fetch, tmp_path):
        mock_fetch.return_value = tmp_path / "notes.txt"
        cmd_fetch(argparse.Namespace(url="http://h/d/abc", output_dir=str(tmp_path)))
        args, _ = mock_fetch.call_args
        assert args == ("http://h/d/abc", tmp_path)

    @patch("oncelink.cli.fetch_file", side_effect=TransferExpired())
    def test_expired_exits(self, _mock_fetch, tmp_path):
        with pytest.raises(SystemExit, match="1"):
            cmd_fetch(argparse.Namespace(url="http://h/d/abc", output_dir=str(tmp_path)))


class TestCmdSweep:
    def test_sweep_empty_storage(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TTL_SECONDS", raising=False)
        with patch("oncelink.cli.console") as mock_console:
            cmd_sweep(argparse.Namespace(storage_dir=str(tmp_path)))
        printed = mock_console.print.call_args[0][0]
        assert "0" in printed


class TestMain:
    @patch("oncelink.cli.cmd_send")
    def test_dispatches_send(self, mock_cmd, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["oncelink", "send", "f.txt", "host"])
        main()
        args = mock_cmd.call_args[0][0]
        assert args.file == "f.txt"
        assert args.target == "host"
        assert args.chunk_size == 1_048_576

    @patch("oncelink.cli.cmd_fetch")
    def test_dispatches_fetch(self, mock_cmd, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["oncelink", "fetch", "http://h/d/x", "-o", "out"])
        main()
        args = mock_cmd.call_args[0][0]
        assert args.url == "http://h/d/x"
        assert args.output_dir == "out"

    def test_requires_command(self, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["oncelink"])
        with pytest.raises(SystemExit):
            main()

    @patch("oncelink.cli.uvicorn.run", new_callable=MagicMock)
    @patch("oncelink.cli.create_app")
    def test_serve_defaults(self, _mock_create_app, mock_run, monkeypatch, tmp_path):
        monkeypatch.setenv("STORAGE_DIR", str(tmp_path))
        monkeypatch.setattr(
            sys, "argv", ["oncelink", "serve", "--host", "127.0.0.1", "--port", "0"],
        )
        main()
        assert mock_run.call_args.kwargs["port"] == 0
