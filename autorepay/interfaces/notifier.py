"""Notifier protocol: operator alert channel abstraction."""
from typing import Protocol


class Notifier(Protocol):
    """Sends operator alerts (loud) and log messages (quiet)."""

    async def send_alert(self, message: str, subject: str = "") -> bool: ...

    async def send_log(self, message: str, silent: bool = True) -> bool: ...
