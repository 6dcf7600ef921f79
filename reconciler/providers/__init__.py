"""Provider port and backend adapters"""

from reconciler.providers.base import BaseProvider, Provider
from reconciler.providers.gitlab_provider import GitLabProvider

__all__ = ["BaseProvider", "GitLabProvider", "Provider"]
