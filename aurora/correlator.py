"""Bounded polling for the reply to a dispatched command."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from aurora.db import InboxStore
from aurora.models import InboundReply

LOGGER = logging.getLogger(__name__)


class ResponseCorrelator:
    """Polls the inbox until a reply for the requester shows up or time runs out.

    Matching is by recipient address and receive time only. Two commands in
    flight for the same address can each be handed the other's reply.
    """

    def __init__(self, store: InboxStore) -> None:
        self._store = store

    async def await_reply(
        self,
        requester_address: str,
        submitted_after: datetime,
        timeout_seconds: float,
        poll_interval_seconds: float,
        cancel_event: asyncio.Event | None = None,
        category: str | None = None,
    ) -> InboundReply | None:
        """Return the newest reply received after ``submitted_after``, or None.

        None means the timeout elapsed or ``cancel_event`` was set. Store
        failures propagate as StoreError. ``category`` is passed through to
        the store to narrow the match.
        """
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(timeout_seconds, 0.0)
        polls = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                LOGGER.info("Reply wait for %s cancelled after %d polls", requester_address, polls)
                return None

            reply = await asyncio.to_thread(
                self._store.query_latest, requester_address, submitted_after, category=category
            )
            polls += 1
            if reply is not None:
                LOGGER.info("Reply for %s received after %d polls", requester_address, polls)
                return reply

            remaining = deadline - loop.time()
            if remaining <= 0:
                LOGGER.info("No reply for %s after %d polls", requester_address, polls)
                return None

            if await _sleep(min(poll_interval_seconds, remaining), cancel_event):
                LOGGER.info("Reply wait for %s cancelled after %d polls", requester_address, polls)
                return None


async def _sleep(seconds: float, cancel_event: asyncio.Event | None) -> bool:
    """Sleep, waking early if the event fires. Returns True when cancelled."""

    if cancel_event is None:
        await asyncio.sleep(seconds)
        return False
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True
