"""Hub collaborators: the thread API client and the reply poller."""

from .client import (
    HttpHubClient,
    HubClient,
    HubPostResult,
    InMemoryHubClient,
    create_hub_client,
)
from .poller import HubPoller

__all__ = [
    "HttpHubClient",
    "HubClient",
    "HubPoller",
    "HubPostResult",
    "InMemoryHubClient",
    "create_hub_client",
]
