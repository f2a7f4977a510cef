"""In-memory suppression of repeated alerts for the same occurrence."""

from datetime import datetime
from typing import Optional

from . import config


class DedupGate:
    """Remembers when each occurrence key last fired.

    Keys are ``"<reminderId>#<HH:MM>"`` so every time of day on a
    reminder is gated independently. State is process-local; a new
    gate re-arms everything.

    Usage:
        if gate.should_fire(key, now):
            await dispatcher.notify(...)
            gate.record_fired(key, now)
    """

    def __init__(self, suppress_window_minutes: Optional[float] = None):
        self.suppress_window_minutes = (
            config.SUPPRESS_WINDOW_MINUTES if suppress_window_minutes is None else suppress_window_minutes
        )
        self._last_fired: dict[str, datetime] = {}

    def should_fire(self, key: str, now: datetime, suppress_window_minutes: Optional[float] = None) -> bool:
        """True if the key never fired or its last firing is older than the window."""
        window = self.suppress_window_minutes if suppress_window_minutes is None else suppress_window_minutes
        last = self._last_fired.get(key)
        if last is None:
            return True
        elapsed_minutes = (now - last).total_seconds() / 60
        return elapsed_minutes > window

    def record_fired(self, key: str, now: datetime) -> None:
        self._last_fired[key] = now

    def last_fired(self, key: str) -> Optional[datetime]:
        return self._last_fired.get(key)

    def clear(self) -> None:
        self._last_fired.clear()

    def __len__(self) -> int:
        return len(self._last_fired)
