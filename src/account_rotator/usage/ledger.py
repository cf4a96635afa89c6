# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Rate limit ledger.

Tracks, per account index and quota key, the absolute time at which an
exhausted quota resets. Expiry is evaluated at read time: once the reset
time passes the key reads as clear without any explicit clear call.

All times are milliseconds since the epoch. The ledger does no locking of
its own; AccountRegistry serialises writes per account.
"""

import math
from typing import Dict, List, Optional


class RateLimitLedger:
    """Per-account, per-quota-key exhaustion state."""

    def __init__(self):
        self._reset_at: Dict[int, Dict[str, int]] = {}

    def mark_exhausted(self, index: int, quota_key: str, reset_at: int) -> None:
        """Record exhaustion. Last write wins."""
        self._reset_at.setdefault(index, {})[quota_key] = int(reset_at)

    def remaining(self, index: int, quota_key: str, now: int) -> Optional[int]:
        """
        Milliseconds until the key resets.

        Returns None if the key was never marked, otherwise
        max(reset_at - now, 0).
        """
        reset_at = self._reset_at.get(index, {}).get(quota_key)
        if reset_at is None:
            return None
        return max(reset_at - now, 0)

    def is_exhausted(self, index: int, quota_key: str, now: int) -> bool:
        remaining = self.remaining(index, quota_key, now)
        return remaining is not None and remaining > 0

    def exhausted_keys(self, index: int, now: int) -> List[str]:
        """Sorted quota keys currently exhausted for an account."""
        return sorted(
            key
            for key in self._reset_at.get(index, {})
            if self.is_exhausted(index, key, now)
        )

    def reset_in(self, index: int, now: int) -> Dict[str, int]:
        """Remaining ms per currently exhausted key."""
        return {
            key: self.remaining(index, key, now)
            for key in self.exhausted_keys(index, now)
        }

    def reset_times(self, index: int) -> Dict[str, int]:
        """Absolute reset times for persistence."""
        return dict(self._reset_at.get(index, {}))

    def load(self, index: int, reset_times: Dict[str, int]) -> None:
        self._reset_at[index] = {k: int(v) for k, v in reset_times.items()}

    def forget(self, index: int) -> None:
        self._reset_at.pop(index, None)

    def prune(self, now: int) -> int:
        """Drop entries whose reset time has passed. Returns count removed."""
        removed = 0
        for index in list(self._reset_at):
            entries = self._reset_at[index]
            for key in [k for k, v in entries.items() if v <= now]:
                del entries[key]
                removed += 1
            if not entries:
                del self._reset_at[index]
        return removed


def format_countdown(ms: Optional[float]) -> str:
    """
    Format a remaining duration for display.

    Examples:
        9000 -> "9s"
        150000 -> "2m"
        5400000 -> "1h30m"
        0 -> "now"
    """
    if ms is None or ms <= 0:
        return "now"
    total_seconds = math.ceil(ms / 1000)
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    if hours > 0 and minutes > 0:
        return f"{hours}h{minutes}m"
    if hours > 0:
        return f"{hours}h"
    if minutes > 0:
        return f"{minutes}m"
    return f"{total_seconds}s"
