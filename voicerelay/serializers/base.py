"""Base serializer interface for voicerelay.

Serializers are pure message translators with no I/O. They convert between
a wire protocol's JSON frames and the canonical events in
:mod:`voicerelay.core.events`.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

from voicerelay.errors import ParseError


class BaseSerializer(ABC):
    """Abstract base class for wire codecs.

    Key principles:
    - Serializers do NO I/O
    - ``deserialize`` maps exactly one wire message to at most one event;
      unrecognized message types return ``None`` rather than raising
    - Malformed frames raise :class:`ParseError`
    """

    @abstractmethod
    def deserialize(self, raw: bytes | str | dict) -> Any | None:
        """Parse one raw frame into an event, or ``None`` if it should be ignored."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @staticmethod
    def parse_message(raw: bytes | str | dict) -> dict[str, Any]:
        """Normalise a raw frame into a dict, raising ParseError if impossible."""
        if isinstance(raw, dict):
            return raw
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            msg = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ParseError(f"Invalid JSON frame: {e}") from e
        if not isinstance(msg, dict):
            raise ParseError(f"Expected a JSON object, got {type(msg).__name__}")
        return msg
