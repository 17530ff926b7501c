"""Error taxonomy for provider and subprocess failures."""

from __future__ import annotations


class ProviderError(Exception):
    """Base class for every provider-level failure."""


class ProviderUnavailable(ProviderError):
    """The CLI backing a provider is not installed."""

    def __init__(self, cli_name: str) -> None:
        self.cli_name = cli_name
        super().__init__(f"{cli_name} CLI not found. Please install it first.")


class NoProviderAvailable(ProviderUnavailable):
    """None of the supported provider CLIs is installed."""

    def __init__(self) -> None:
        self.cli_name = "gh, glab, or az"
        ProviderError.__init__(self, "No PR provider CLI found (gh, glab, or az)")


class CommandFailed(ProviderError):
    """A CLI invocation exited non-zero or the remote API rejected the call."""

    def __init__(self, command: str, stderr: str) -> None:
        self.command = command
        self.stderr = stderr
        super().__init__(f"Command '{command}' failed: {stderr}")


class CommandTimeout(CommandFailed):
    """A CLI invocation did not finish within the configured timeout."""


class OutputLimitExceeded(CommandFailed):
    """A CLI invocation wrote more than the allowed bytes to a stream."""


class InvalidConfiguration(ProviderError):
    """Malformed caller input, rejected before any subprocess call."""

    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"Invalid configuration: {details}")


class InvalidResponse(ProviderError):
    """A CLI returned JSON in an unexpected shape."""

    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"Invalid response from provider: {details}")

