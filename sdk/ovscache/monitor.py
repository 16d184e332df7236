"""
Update monitor for ovscache.

The UpdateMonitor consumes update batches from a transport and hands them to
the CacheReconciler, one at a time, in arrival order.

Invariants:
    - Exactly one batch is being applied at any moment
    - A batch that fails to apply is logged and does not stop the stream
    - The monitor stops when the transport's update stream ends
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from .reconciler import CacheReconciler
from .transport.base import OvsdbTransport

logger = logging.getLogger(__name__)


class UpdateMonitor:
    """Background task feeding update batches into the reconciler.

    Example:
        >>> monitor = UpdateMonitor(transport, reconciler)
        >>> monitor.start()
        >>> ...
        >>> await monitor.stop()
    """

    def __init__(self, transport: OvsdbTransport, reconciler: CacheReconciler) -> None:
        self.transport = transport
        self.reconciler = reconciler
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._received_count = 0
        self._error_count = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> asyncio.Task:
        """Start consuming updates in a background task."""
        if self._task is not None and not self._task.done():
            logger.warning("Update monitor already running")
            return self._task
        self._task = asyncio.create_task(self.run(), name="ovscache-update-monitor")
        return self._task

    async def run(self) -> None:
        """Apply batches until the update stream ends."""
        self._running = True
        logger.info("Starting update monitor")

        try:
            async for batch in self.transport.updates():
                self._received_count += 1
                try:
                    self.reconciler.apply(batch)
                except Exception as e:
                    self._error_count += 1
                    logger.error(f"Failed to apply update batch: {e}", exc_info=True)

        except asyncio.CancelledError:
            logger.info("Update monitor cancelled")
            raise
        finally:
            self._running = False
            logger.info("Update monitor stopped", extra={"batches": self._received_count})

    async def stop(self) -> None:
        """Stop the background task."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def stats(self) -> dict[str, Any]:
        """Monitor statistics."""
        return {
            "running": self._running,
            "received_count": self._received_count,
            "error_count": self._error_count,
            **self.reconciler.stats,
        }
