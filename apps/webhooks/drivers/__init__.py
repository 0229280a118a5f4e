"""
Webhook drivers for repository hosts.
"""

from apps.webhooks.drivers.base import BaseWebhookDriver, MalformedPayload, ParsedEvent
from apps.webhooks.drivers.github import GitHubWebhookDriver

__all__ = [
    "BaseWebhookDriver",
    "MalformedPayload",
    "ParsedEvent",
    "GitHubWebhookDriver",
    "DRIVER_REGISTRY",
    "get_driver",
]

DRIVER_REGISTRY: dict[str, type[BaseWebhookDriver]] = {
    "github": GitHubWebhookDriver,
}


def get_driver(name: str) -> BaseWebhookDriver:
    """
    Get a driver instance by name.

    Args:
        name: Driver name (e.g., "github").

    Returns:
        Driver instance.

    Raises:
        ValueError: If driver name is not found.
    """
    if name not in DRIVER_REGISTRY:
        raise ValueError(f"Unknown driver: {name}. Available: {', '.join(DRIVER_REGISTRY.keys())}")
    return DRIVER_REGISTRY[name]()
