"""Tests for the command line entry point."""

from __future__ import annotations

import json

from convergence_core import __version__
from convergence_core.cli import main


class TestCli:

    def test_version(self, capsys):
        assert main(["--version"]) == 0

        assert __version__ in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0

        assert "usage: convergence" in capsys.readouterr().out

    def test_notify(self, capsys):
        assert main(["notify", "Deploy", "v2 is live", "--priority", "high"]) == 0

        assert "Sent notif-" in capsys.readouterr().out

    def test_submit_runs_task_to_completion(self, capsys):
        exit_code = main(["submit", "research", "--input", '{"query": "q"}', "--wait", "5"])

        out = capsys.readouterr().out
        assert exit_code == 0
        task = json.loads(out[out.index("{"):])
        assert task["status"] == "completed"
        assert task["type"] == "research"

    def test_submit_rejects_bad_json(self, capsys):
        assert main(["submit", "text", "--input", "{nope"]) == 2

        assert "Invalid --input JSON" in capsys.readouterr().out

    def test_submit_unknown_type(self, capsys):
        assert main(["submit", "telepathy"]) == 2
