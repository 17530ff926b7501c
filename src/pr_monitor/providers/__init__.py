"""Platform adapters behind the ``PRProvider`` contract."""

from pr_monitor.providers.azure import AzureDevOpsProvider
from pr_monitor.providers.base import PRProvider, detect_provider_type
from pr_monitor.providers.factory import ProviderFactory
from pr_monitor.providers.github import GitHubProvider
from pr_monitor.providers.gitlab import GitLabProvider

__all__ = [
    "AzureDevOpsProvider",
    "GitHubProvider",
    "GitLabProvider",
    "PRProvider",
    "ProviderFactory",
    "detect_provider_type",
]
