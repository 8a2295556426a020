"""Tests for status and help rendering."""

import pytest

from game_server_manager.process_controller import ServerRuntimeStatus
from game_server_manager.utils.formatting import (
    format_bytes,
    format_status_line,
    format_status_report,
    help_text,
)


class TestFormatBytes:
    """Unit boundaries."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (0, "0 B"),
            (1023, "1023 B"),
            (1024, "1.00 KB"),
            (1536, "1.50 KB"),
            (1048575, "1024.00 KB"),
            (1048576, "1.00 MB"),
            (1073741823, "1024.00 MB"),
            (1073741824, "1.00 GB"),
            (5 * 1073741824, "5.00 GB"),
        ],
    )
    def test_boundaries(self, value, expected):
        assert format_bytes(value) == expected


class TestStatusReport:
    """Status lines and the consolidated report."""

    def test_stopped_line_omits_usage(self):
        line = format_status_line(ServerRuntimeStatus(name="Ark", running=False))

        assert line == "- Ark: stopped"

    def test_running_line(self):
        status = ServerRuntimeStatus(
            name="Valheim", running=True, memory_bytes=2 * 1048576, cpu_percent=12.345
        )

        assert format_status_line(status) == "- Valheim: running | RAM: 2.00 MB | CPU: 12.3%"

    def test_report(self):
        report = format_status_report(
            [
                ServerRuntimeStatus(name="Valheim", running=True, memory_bytes=512, cpu_percent=0.0),
                ServerRuntimeStatus(name="Ark", running=False),
            ]
        )

        assert report == (
            "Server status:\n"
            "- Valheim: running | RAM: 512 B | CPU: 0.0%\n"
            "- Ark: stopped"
        )


class TestHelpText:
    """Help for unknown or missing commands."""

    COMMANDS = ("status", "stop", "start", "backup", "update")

    def test_unknown_command(self):
        text = help_text("!sm", "restart", self.COMMANDS)

        assert text.startswith(
            "Unknown command: restart\nAvailable commands: status, stop, start, backup, update"
        )

    def test_bare_prefix(self):
        text = help_text("!sm", "", self.COMMANDS)

        assert "Unknown command" not in text
        assert "Usage: !sm <command> [server name]" in text
        assert "Available commands: status, stop, start, backup, update" in text
