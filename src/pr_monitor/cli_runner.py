"""Bounded asyncio subprocess execution for the provider CLIs (gh, glab, az, git)."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import shutil
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from pr_monitor.errors import (
    CommandFailed,
    CommandTimeout,
    InvalidResponse,
    OutputLimitExceeded,
    ProviderUnavailable,
)

logger = logging.getLogger("pr_monitor.cli_runner")

COMMON_BIN_DIRS: tuple[str, ...] = ("/usr/local/bin", "/opt/homebrew/bin", "/usr/bin")
DEFAULT_STDOUT_LIMIT = 10 * 1024 * 1024
DEFAULT_STDERR_LIMIT = 1024 * 1024
DEFAULT_TIMEOUT_SECONDS = 120.0
_READ_CHUNK = 64 * 1024


class _StreamOverflow(Exception):
    def __init__(self, stream_name: str, limit: int) -> None:
        self.stream_name = stream_name
        self.limit = limit
        super().__init__(f"{stream_name} exceeded {limit} bytes")


async def _read_bounded(stream: asyncio.StreamReader | None, limit: int, stream_name: str) -> bytes:
    if stream is None:
        return b""
    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        total += len(chunk)
        if total > limit:
            raise _StreamOverflow(stream_name, limit)
        chunks.append(chunk)
    return b"".join(chunks)


async def _kill_quietly(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
    with contextlib.suppress(Exception):
        await asyncio.wait_for(proc.wait(), timeout=2.0)


class CommandRunner:
    """Locate CLI executables and run them with bounded output and a timeout.

    Every call blocks its caller until the subprocess exits, its output limit
    is hit, or ``timeout_seconds`` elapses. There are no retries.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS,
        stdout_limit: int = DEFAULT_STDOUT_LIMIT,
        stderr_limit: int = DEFAULT_STDERR_LIMIT,
        search_dirs: Sequence[str] = COMMON_BIN_DIRS,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.stdout_limit = stdout_limit
        self.stderr_limit = stderr_limit
        self.search_dirs = tuple(search_dirs)

    def find_executable(self, name: str) -> str:
        """Return the path of ``name``: fixed install dirs first, then PATH."""
        for directory in self.search_dirs:
            candidate = Path(directory) / name
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return str(candidate)
        found = shutil.which(name)
        if found:
            return found
        raise ProviderUnavailable(name)

    async def is_installed(self, name: str) -> bool:
        try:
            self.find_executable(name)
        except ProviderUnavailable:
            return False
        return True

    async def run(
        self,
        executable: str,
        args: Sequence[str],
        *,
        cwd: str | None = None,
    ) -> bytes:
        """Run ``executable`` with ``args`` and return stdout.

        Raises CommandFailed on a non-zero exit, CommandTimeout when the
        timeout expires and OutputLimitExceeded when a stream overflows.
        """
        command = " ".join([Path(executable).name, *args])
        logger.debug("exec -> %s (cwd=%s)", command, cwd or ".")
        try:
            proc = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except FileNotFoundError as exc:
            raise ProviderUnavailable(Path(executable).name) from exc

        async def _communicate() -> tuple[bytes, bytes]:
            stdout_task = asyncio.create_task(
                _read_bounded(proc.stdout, self.stdout_limit, "stdout")
            )
            stderr_task = asyncio.create_task(
                _read_bounded(proc.stderr, self.stderr_limit, "stderr")
            )
            try:
                stdout, stderr = await asyncio.gather(stdout_task, stderr_task)
            except BaseException:
                for task in (stdout_task, stderr_task):
                    task.cancel()
                await asyncio.gather(stdout_task, stderr_task, return_exceptions=True)
                raise
            await proc.wait()
            return stdout, stderr

        try:
            stdout, stderr = await asyncio.wait_for(_communicate(), timeout=self.timeout_seconds)
        except TimeoutError as exc:
            await _kill_quietly(proc)
            raise CommandTimeout(
                command, f"timed out after {self.timeout_seconds} seconds"
            ) from exc
        except _StreamOverflow as exc:
            await _kill_quietly(proc)
            raise OutputLimitExceeded(command, str(exc)) from exc

        if proc.returncode != 0:
            raise CommandFailed(command, stderr.decode("utf-8", errors="replace").strip())
        return stdout

    async def run_json(
        self,
        executable: str,
        args: Sequence[str],
        *,
        cwd: str | None = None,
    ) -> Any:
        output = await self.run(executable, args, cwd=cwd)
        return decode_json(output, context=" ".join(args[:3]))

    async def git_remote_url(self, cwd: str | None = None) -> str:
        git = self.find_executable("git")
        output = await self.run(git, ["config", "--get", "remote.origin.url"], cwd=cwd)
        return output.decode("utf-8", errors="replace").strip()

    async def graphql(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        cwd: str | None = None,
    ) -> dict[str, Any]:
        """Execute a GitHub GraphQL query or mutation through ``gh api graphql``."""
        gh = self.find_executable("gh")
        args = ["api", "graphql", "-f", f"query={query}"]
        for key, value in (variables or {}).items():
            if isinstance(value, str):
                args.extend(["-f", f"{key}={value}"])
            elif isinstance(value, bool):
                args.extend(["-F", f"{key}={'true' if value else 'false'}"])
            elif isinstance(value, int):
                args.extend(["-F", f"{key}={value}"])
            else:
                args.extend(["-f", f"{key}={json.dumps(value)}"])
        payload = await self.run_json(gh, args, cwd=cwd)
        if not isinstance(payload, dict):
            raise InvalidResponse("GraphQL response is not an object")
        return payload


def decode_json(output: bytes, context: str = "") -> Any:
    try:
        return json.loads(output.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        where = f" ({context})" if context else ""
        raise InvalidResponse(f"malformed JSON{where}: {exc}") from exc
