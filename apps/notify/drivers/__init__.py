"""
Notification drivers for delivering digests.
"""

from apps.notify.drivers.base import BaseNotifyDriver, NotificationMessage
from apps.notify.drivers.email import EmailNotifyDriver
from apps.notify.drivers.generic import GenericNotifyDriver

__all__ = [
    "NotificationMessage",
    "BaseNotifyDriver",
    "EmailNotifyDriver",
    "GenericNotifyDriver",
    "DRIVER_REGISTRY",
    "get_notify_driver",
]

# Registry of available notification drivers
DRIVER_REGISTRY: dict[str, type[BaseNotifyDriver]] = {
    "email": EmailNotifyDriver,
    "generic": GenericNotifyDriver,
}


def get_notify_driver(name: str | None = None) -> BaseNotifyDriver:
    """
    Get a driver instance by name (default: settings.NOTIFY_DRIVER).

    Raises:
        ValueError: If driver name is not found.
    """
    from django.conf import settings

    name = name or getattr(settings, "NOTIFY_DRIVER", "generic")
    if name not in DRIVER_REGISTRY:
        raise ValueError(
            f"Unknown notify driver: {name}. Available: {', '.join(DRIVER_REGISTRY.keys())}"
        )
    return DRIVER_REGISTRY[name]()
