"""Outbound SMS gateway interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from aurora.models import SendResult


class SmsGateway(ABC):
    """Abstract send-capability used by the command dispatcher."""

    @abstractmethod
    async def send(self, destination: str, text: str, sender: str) -> SendResult:
        """Submit one SMS and report whether the provider accepted it."""
