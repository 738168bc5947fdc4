"""
live.py — Live WebSocket delivery channel.

Delivery mechanism:
    • The member's registered connection from the ConnectionRegistry
    • Payload: the JSON envelope from realtime.messages
    • Bounded wait: a client that cannot take the frame within the
      timeout counts as unreachable, so fan-out falls through to push
      instead of stalling the rest of the group
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from groupsos.realtime.registry import LiveConnection

logger = logging.getLogger(__name__)


async def send(
    connection: LiveConnection,
    payload: Dict[str, Any],
    *,
    user_id: int,
    timeout_seconds: float = 5.0,
) -> bool:
    """
    Write ``payload`` to ``connection``.

    Returns True on success. Timeouts and transport errors are logged
    and reported as False; they never propagate.
    """
    try:
        await asyncio.wait_for(connection.send_json(payload), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(
            "[LIVE] Send to connection %s timed out after %.1fs",
            connection.connection_id, timeout_seconds,
            extra={"user_id": user_id, "connection_id": connection.connection_id},
        )
        return False
    except Exception as exc:
        logger.warning(
            "[LIVE] Send to connection %s failed: %s",
            connection.connection_id, exc,
            extra={"user_id": user_id, "connection_id": connection.connection_id},
        )
        return False

    logger.debug(
        "[LIVE] %s → user %s", payload.get("type"), user_id,
        extra={"user_id": user_id},
    )
    return True
