"""
Daily listening heatmap.

Counts every play (no duration filter) per UTC calendar day. The mapping is
sparse: days without plays are absent, callers default missing keys to 0.
"""
from collections import Counter
from typing import Iterable

from history import ListeningEvent


def build_heatmap(events: Iterable[ListeningEvent]) -> dict[str, int]:
    """Return {"YYYY-MM-DD": play_count} for days with at least one play."""
    return dict(Counter(e.day for e in events))
