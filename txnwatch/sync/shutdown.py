"""Cooperative shutdown signal shared by the scheduler, cycle and notifier."""

import asyncio
import signal
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class ShutdownSignal:
    """
    Set once to ask the engine to stop.

    Work already in flight finishes; nothing new (account, record, cycle)
    is started after the signal is set.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def set(self, reason: str = "requested") -> None:
        if not self._event.is_set():
            self.reason = reason
            logger.info("shutdown.requested", reason=reason)
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the signal; returns True if it was set, False on timeout."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def install_handlers(self) -> None:
        """Set the signal on SIGINT/SIGTERM (no-op where the loop cannot do it)."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.set, sig.name)
            except (NotImplementedError, RuntimeError):
                logger.debug("shutdown.handler_unavailable", signal=sig.name)
