"""
registry.py — In-process map of user id to live connection.

═══════════════════════════════════════════════════════════════════════════
SUPERSESSION AND STALE CLOSES
═══════════════════════════════════════════════════════════════════════════

    t0  C1 authenticates for U        → {U: C1}
    t1  C2 authenticates for U        → {U: C2}   (C1 left to the transport)
    t2  C1's close handler runs       → unregister(U, C1) is a no-op
    t3  C2 closes                     → unregister(U, C2) removes the entry

Removal compares handles by identity, so a dropped old connection can
never evict the newer one that replaced it.

Every operation takes a plain threading lock and returns without
awaiting; callers on the event loop never suspend here.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class LiveConnection(Protocol):
    """What the fan-out engine needs from a registered handle."""

    connection_id: str

    @property
    def is_open(self) -> bool: ...

    async def send_json(self, data: Dict[str, Any]) -> None: ...


class ConnectionRegistry:
    """At most one live connection per user."""

    def __init__(self) -> None:
        self._connections: Dict[int, LiveConnection] = {}
        self._lock = threading.Lock()

    def register(self, user_id: int, handle: LiveConnection) -> Optional[LiveConnection]:
        """
        Bind ``handle`` to ``user_id``, replacing any existing binding.

        Returns the superseded handle (if any). The registry does not
        close it.
        """
        with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = handle

        if previous is not None and previous is not handle:
            logger.info(
                "Connection %s superseded by %s",
                previous.connection_id, handle.connection_id,
                extra={"user_id": user_id},
            )
            return previous
        return None

    def lookup(self, user_id: int) -> Optional[LiveConnection]:
        with self._lock:
            return self._connections.get(user_id)

    def unregister(self, user_id: int, handle: LiveConnection) -> bool:
        """Remove the binding only if ``handle`` is the one registered."""
        with self._lock:
            if self._connections.get(user_id) is not handle:
                return False
            del self._connections[user_id]
        return True

    def clear(self) -> None:
        with self._lock:
            self._connections.clear()

    def count(self) -> int:
        with self._lock:
            return len(self._connections)

    __len__ = count
