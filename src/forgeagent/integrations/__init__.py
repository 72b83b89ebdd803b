"""External service clients."""

from .base import SourceControlClient
from .github import GitHubClient

__all__ = ["SourceControlClient", "GitHubClient"]
