"""Tests for mpdfav CLI (formatters, commands)."""

from __future__ import annotations

import json
from unittest.mock import patch

from click.testing import CliRunner

from mpdfav.cli import cli, fmt_duration, fmt_playcount, fmt_status, fmt_track
from mpdfav.protocol import ConnectError


class TestFormatters:
    def test_duration(self):
        assert fmt_duration(30) == "0:30"
        assert fmt_duration(195) == "3:15"
        assert fmt_duration(3661) == "61:01"
        assert fmt_duration(-5) == "0:00"

    def test_track(self):
        assert fmt_track({"Artist": "Artist", "Title": "Song"}) == "Artist - Song"

    def test_track_file_only(self):
        assert fmt_track({"file": "music/a/song.mp3"}) == "song.mp3"

    def test_track_none(self):
        assert fmt_track(None) == "(no track)"
        assert fmt_track({}) == "(no track)"

    def test_status_playing(self):
        result = fmt_status(
            {
                "status": {"state": "play", "time": "30:120", "volume": "80"},
                "song": {"Artist": "Artist", "Title": "Song"},
            }
        )
        assert "▶" in result
        assert "Artist - Song" in result
        assert "0:30 / 2:00" in result
        assert "80%" in result

    def test_status_stopped(self):
        result = fmt_status({"status": {"state": "stop"}, "song": {}})
        assert "⏹" in result
        assert "/" not in result

    def test_playcount(self):
        assert fmt_playcount({"file": "a.mp3", "playcount": 3}) == "a.mp3: 3"
        assert fmt_playcount({"file": None, "playcount": None}) == "(no track)"


class TestCommands:
    def test_status(self):
        data = {"status": {"state": "pause", "time": "1:2"}, "song": {"Title": "X"}}
        with patch("mpdfav.cli.run_query", return_value=data) as query:
            result = CliRunner().invoke(cli, ["--host", "music.local", "status"])

        assert result.exit_code == 0
        assert "X" in result.output
        host, port, _ = query.call_args.args
        assert (host, port) == ("music.local", 6600)

    def test_default_is_status(self):
        with patch("mpdfav.cli.run_query", return_value={"status": {}, "song": {}}):
            result = CliRunner().invoke(cli, [])

        assert result.exit_code == 0
        assert "(no track)" in result.output

    def test_json_output(self):
        data = {"file": "a.mp3", "Title": "A"}
        with patch("mpdfav.cli.run_query", return_value=data):
            result = CliRunner().invoke(cli, ["--json", "current"])

        assert json.loads(result.output) == data

    def test_playcount(self):
        with patch("mpdfav.cli.run_query", return_value={"file": "a.mp3", "playcount": 7}):
            result = CliRunner().invoke(cli, ["playcount", "a.mp3"])

        assert result.exit_code == 0
        assert "a.mp3: 7" in result.output

    def test_idle(self):
        with patch("mpdfav.cli.run_query", return_value={"changed": "player"}):
            result = CliRunner().invoke(cli, ["idle", "player"])

        assert "changed: player" in result.output

    def test_connection_error(self):
        with patch("mpdfav.cli.run_query", side_effect=ConnectError("refused")):
            result = CliRunner().invoke(cli, ["--port", "1", "status"])

        assert result.exit_code == 1

    def test_run_without_playcounts(self):
        with patch("mpdfav.daemon.main.main") as daemon_main:
            result = CliRunner().invoke(cli, ["run", "--no-playcounts"])

        assert result.exit_code == 0
        config = daemon_main.call_args.args[0]
        assert config.playcount.enabled is False
