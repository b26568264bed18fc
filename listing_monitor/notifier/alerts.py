"""Per-key cooldown for repeated error alerts."""

import time
from typing import Callable, Dict


class AlertThrottle:
    """
    Allow one alert per key within ``cooldown_seconds``.

    Keys are typically ``"<target id>:<kind>"`` so a target that fails every
    cycle produces a single alert per cooldown window.
    """

    def __init__(self, cooldown_seconds: float = 3600.0, clock: Callable[[], float] = time.monotonic):
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self._last_sent: Dict[str, float] = {}

    def should_send(self, key: str) -> bool:
        """Return True and remember the time when the key is not cooling down."""
        now = self.clock()
        last = self._last_sent.get(key)
        if last is not None and now - last < self.cooldown_seconds:
            return False
        self._last_sent[key] = now
        return True

    def clear(self, key: str) -> None:
        self._last_sent.pop(key, None)
