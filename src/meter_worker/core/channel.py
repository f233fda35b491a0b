"""
Channel interface the core consumes.

WorkerMQTTClient implements it; tests use an in-memory fake.
"""
from __future__ import annotations

from typing import Any, Callable, Protocol


class Channel(Protocol):
    """
    Minimal interface between the core and the transport.
    Keep it small to prevent tight coupling.
    """

    def send(self, event: str, payload: Any) -> Any:
        """Send a named event with a JSON-serializable payload."""
        ...

    def on_message(self, event: str, handler: Callable[[str], None]) -> None:
        """Register handler for an inbound named event (raw payload string)."""
        ...

    def on_connected(self, callback: Callable[[], None]) -> None:
        """Register callback fired after every successful (re)connect."""
        ...
