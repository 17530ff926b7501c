"""Tests for bounded subprocess execution against real child processes."""

from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import pytest

from pr_monitor.cli_runner import CommandRunner, decode_json
from pr_monitor.errors import (
    CommandFailed,
    CommandTimeout,
    InvalidResponse,
    OutputLimitExceeded,
    ProviderUnavailable,
)

PYTHON = sys.executable


async def test_run_returns_stdout() -> None:
    runner = CommandRunner(timeout_seconds=30)
    output = await runner.run(PYTHON, ["-c", "print('hello')"])
    assert output.strip() == b"hello"


async def test_run_json_decodes_output() -> None:
    runner = CommandRunner(timeout_seconds=30)
    payload = await runner.run_json(PYTHON, ["-c", "print('{\"number\": 7}')"])
    assert payload == {"number": 7}


async def test_non_zero_exit_carries_stderr() -> None:
    runner = CommandRunner(timeout_seconds=30)
    script = "import sys; sys.stderr.write('HTTP 404: Not Found'); sys.exit(1)"
    with pytest.raises(CommandFailed) as excinfo:
        await runner.run(PYTHON, ["-c", script])
    assert excinfo.value.stderr == "HTTP 404: Not Found"
    assert "HTTP 404" in str(excinfo.value)


async def test_timeout_kills_the_process() -> None:
    runner = CommandRunner(timeout_seconds=0.5)
    with pytest.raises(CommandTimeout):
        await runner.run(PYTHON, ["-c", "import time; time.sleep(30)"])


async def test_stdout_over_limit_fails_instead_of_truncating() -> None:
    runner = CommandRunner(timeout_seconds=30, stdout_limit=1024)
    with pytest.raises(OutputLimitExceeded):
        await runner.run(PYTHON, ["-c", "import sys; sys.stdout.write('x' * 200000)"])


async def test_stderr_over_limit_fails() -> None:
    runner = CommandRunner(timeout_seconds=30, stderr_limit=16)
    with pytest.raises(OutputLimitExceeded):
        await runner.run(PYTHON, ["-c", "import sys; sys.stderr.write('e' * 4096)"])


async def test_missing_executable_is_provider_unavailable(tmp_path: Path) -> None:
    runner = CommandRunner(timeout_seconds=30)
    with pytest.raises(ProviderUnavailable):
        await runner.run(str(tmp_path / "nope"), [])


def test_find_executable_checks_fixed_dirs_first(tmp_path: Path) -> None:
    tool = tmp_path / "gh"
    tool.write_text("#!/bin/sh\n")
    tool.chmod(tool.stat().st_mode | stat.S_IXUSR)
    runner = CommandRunner(search_dirs=(str(tmp_path),))
    assert runner.find_executable("gh") == str(tool)


async def test_find_executable_falls_back_to_path(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("PATH", str(tmp_path))
    runner = CommandRunner(search_dirs=())
    with pytest.raises(ProviderUnavailable) as excinfo:
        runner.find_executable("glab")
    assert excinfo.value.cli_name == "glab"
    assert await runner.is_installed("glab") is False


@pytest.mark.skipif(os.name == "nt", reason="shell script fixture")
async def test_graphql_encodes_variables_by_type(tmp_path: Path) -> None:
    gh = tmp_path / "gh"
    gh.write_text(
        f"#!{PYTHON}\nimport json, sys\nprint(json.dumps({{'argv': sys.argv[1:]}}))\n"
    )
    gh.chmod(gh.stat().st_mode | stat.S_IXUSR)
    runner = CommandRunner(timeout_seconds=30, search_dirs=(str(tmp_path),))

    payload = await runner.graphql("query { viewer { login } }", {"owner": "acme", "n": 7})

    assert payload["argv"] == [
        "api",
        "graphql",
        "-f",
        "query=query { viewer { login } }",
        "-f",
        "owner=acme",
        "-F",
        "n=7",
    ]


def test_decode_json_reports_malformed_output() -> None:
    with pytest.raises(InvalidResponse, match="malformed JSON"):
        decode_json(b"not json", context="pr view")
