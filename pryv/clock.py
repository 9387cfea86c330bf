"""
Client/server clock skew estimation.

Every API response carries ``meta.serverTime`` (UNIX seconds). Assuming the
server stamped the response halfway through the round trip, the offset of
the server clock relative to the local one is::

    skew = server_time - (local_send + (local_receive - local_send) / 2)

No smoothing is applied: the most recent estimate replaces the previous one.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)


class ClockSkewEstimator:
    """Holds the current skew estimate of one connection."""

    def __init__(self, initial: float = 0.0) -> None:
        self._lock = threading.Lock()
        self._skew = float(initial)

    def update(self, local_send: float, local_receive: float, server_time: float) -> float:
        """Record a new estimate from one exchange and return it."""
        skew = server_time - (local_send + (local_receive - local_send) / 2)
        with self._lock:
            self._skew = skew
        return skew

    def update_from_meta(self, local_send: float, local_receive: float,
                         meta: Optional[Mapping[str, Any]]) -> Optional[float]:
        """Update from a response's ``meta`` block.

        Returns:
            The new estimate, or None when ``meta`` carries no server time
            (the previous estimate is kept).
        """
        server_time = meta.get('serverTime') if isinstance(meta, Mapping) else None
        if not isinstance(server_time, (int, float)) or isinstance(server_time, bool):
            logger.debug('No server time in response meta; keeping clock skew')
            return None
        return self.update(local_send, local_receive, float(server_time))

    @property
    def current(self) -> float:
        with self._lock:
            return self._skew
