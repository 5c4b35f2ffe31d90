from __future__ import annotations
from typing import Sequence

def binary_search_time(events: Sequence, target: float) -> int:
    """Index of the last event with ``time <= target``, -1 if none."""
    lo, hi, result = 0, len(events) - 1, -1
    while lo <= hi:
        mid = (lo + hi) // 2
        if events[mid].time <= target:
            result = mid
            lo = mid + 1
        else:
            hi = mid - 1
    return result

def binary_search_first_ge(events: Sequence, target: float) -> int:
    """Index of the first event with ``time >= target``, len(events) if none."""
    lo, hi = 0, len(events)
    while lo < hi:
        mid = (lo + hi) // 2
        if events[mid].time < target:
            lo = mid + 1
        else:
            hi = mid
    return lo
