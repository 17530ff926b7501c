"""Provider selection: manual override, git remote detection, then CLI probing."""

from __future__ import annotations

import logging

from pr_monitor.cli_runner import CommandRunner
from pr_monitor.errors import NoProviderAvailable, ProviderError, ProviderUnavailable
from pr_monitor.models import ProviderType
from pr_monitor.providers.azure import AzureDevOpsProvider
from pr_monitor.providers.base import PRProvider, detect_provider_type
from pr_monitor.providers.github import GitHubProvider
from pr_monitor.providers.gitlab import GitLabProvider

logger = logging.getLogger("pr_monitor.providers.factory")

PROVIDER_CLASSES: dict[ProviderType, type] = {
    ProviderType.GITHUB: GitHubProvider,
    ProviderType.GITLAB: GitLabProvider,
    ProviderType.AZURE: AzureDevOpsProvider,
}


class ProviderFactory:
    """Build providers that share one ``CommandRunner`` and working directory."""

    def __init__(self, runner: CommandRunner | None = None, cwd: str | None = None) -> None:
        self.runner = runner or CommandRunner()
        self.cwd = cwd

    def build(self, provider_type: ProviderType) -> PRProvider:
        return PROVIDER_CLASSES[ProviderType(provider_type)](runner=self.runner, cwd=self.cwd)

    async def create_provider(self, manual_type: ProviderType | str | None = None) -> PRProvider:
        """Return the provider to use for ``cwd``.

        A manual type must have its CLI installed. Without one, the git remote
        decides; if it is unrecognized or its CLI is missing, the first
        installed CLI in GitHub, GitLab, Azure order wins.
        """
        if manual_type is not None:
            provider = self.build(ProviderType(manual_type))
            if not await provider.is_available():
                raise ProviderUnavailable(provider.cli_name)
            return provider

        try:
            detected = detect_provider_type(await self.runner.git_remote_url(cwd=self.cwd))
        except ProviderError as exc:
            logger.debug("git remote detection failed in %s: %s", self.cwd or ".", exc)
            detected = None

        if detected is not None:
            provider = self.build(detected)
            if await provider.is_available():
                return provider
            logger.info("%s detected but %s is not installed", provider.name, provider.cli_name)

        for provider_type in ProviderType:
            provider = self.build(provider_type)
            if await provider.is_available():
                return provider
        raise NoProviderAvailable()

    async def available_providers(self) -> list[PRProvider]:
        providers = [self.build(provider_type) for provider_type in ProviderType]
        return [provider for provider in providers if await provider.is_available()]
