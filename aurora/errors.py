"""Exceptions raised by the SMS bridge."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for bridge failures."""


class InvalidCommandError(BridgeError, ValueError):
    """Outbound command violates its invariants."""


class TransportError(BridgeError):
    """The gateway could not submit the outbound message."""


class StoreError(BridgeError):
    """The inbox store could not be read or written."""
