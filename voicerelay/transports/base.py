"""Base transport interface for voicerelay.

A transport owns one socket: the inbound telephony media stream or the
outbound realtime model connection. Library-specific close exceptions are
translated to :class:`voicerelay.errors.TransportClosed` so callers handle
one error type.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseTransport(ABC):
    """Abstract base class for a single bidirectional message connection."""

    @abstractmethod
    async def connect(self, **kwargs) -> None:
        """Establish (or adopt) the connection."""
        ...

    @abstractmethod
    async def send(self, data: bytes | str) -> None:
        """Send one message.

        Raises:
            TransportClosed: If the connection is already gone.
        """
        ...

    @abstractmethod
    async def recv(self) -> bytes | str:
        """Receive the next message.

        Raises:
            TransportClosed: If the connection is closed.
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        ...
