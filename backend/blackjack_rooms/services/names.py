import math
import time
from typing import Callable, Dict

from blackjack_rooms.services.errors import InvalidName, NameCooldownActive


def clean_name(raw) -> str:
    """Trimmed display name; blank or non-string input is rejected."""
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidName()
    return raw.strip()


class NameCooldowns:
    """
    Remembers when each player id last changed its display name.
    Tracked per player id, independent of which room they sit in.
    """

    def __init__(self, cooldown_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._last_update: Dict[str, float] = {}

    def remaining(self, player_id: str) -> float:
        last = self._last_update.get(player_id)
        if last is None:
            return 0.0
        return max(0.0, self.cooldown_seconds - (self._clock() - last))

    def check(self, player_id: str):
        remaining = self.remaining(player_id)
        if remaining > 0:
            raise NameCooldownActive(math.ceil(remaining))

    def record(self, player_id: str):
        self._last_update[player_id] = self._clock()
