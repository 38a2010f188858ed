# src/treesync/signals.py
"""
Translation of POSIX signals into task cancellation.

A bulk transfer is interrupted by cancelling the task that awaits it. This
module provides a context manager that does exactly that on SIGINT/SIGTERM,
so a Ctrl-C surfaces as a `DataTransferError` from the running operation.
"""

import asyncio
import logging
import os
import signal
from types import FrameType
from typing import Any, Callable, Dict, Optional, Set

logger: logging.Logger = logging.getLogger(__name__)

_SignalHandler = Callable[[int, Optional[FrameType]], None]


class GracefulShutdown:
    """
    An async context manager that cancels the current task on SIGINT/SIGTERM.

    The first received signal cancels the task that entered the context. A
    second signal triggers an immediate, forceful exit. Previous signal
    handlers are restored on exit.
    """

    def __init__(self) -> None:
        """Initialize the shutdown manager."""
        self._interrupted: bool = False
        self._old_handlers: Dict[signal.Signals, _SignalHandler] = {}

    @property
    def interrupted(self) -> bool:
        """Whether a shutdown signal has been received."""
        return self._interrupted

    async def __aenter__(self) -> "GracefulShutdown":
        """
        Registers signal handlers bound to the current task.

        Returns:
            GracefulShutdown: This manager, to query `interrupted` afterwards.
        """
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        task: Optional[asyncio.Task[Any]] = asyncio.current_task()
        signals_to_handle: Set[signal.Signals] = {
            signal.SIGINT,
            signal.SIGTERM,
        }

        def _handler(sig: int, _: Optional[FrameType]) -> None:
            if self._interrupted:
                logger.critical(
                    "Received second shutdown signal. Forcing immediate exit."
                )
                os._exit(1)
            self._interrupted = True
            logger.warning(
                f"Received shutdown signal: {signal.strsignal(sig)}. "
                "Cancelling the running operation..."
            )
            if task is not None:
                loop.call_soon_threadsafe(task.cancel)

        for sig in signals_to_handle:
            try:
                # signal.signal must be called from the main thread
                self._old_handlers[sig] = signal.signal(sig, _handler)
            except (ValueError, OSError) as e:
                logger.warning(f"Could not set handler for {sig.name}: {e}")

        return self

    async def __aexit__(self, *args: Any) -> None:
        """Restores original signal handlers."""
        for sig, handler in self._old_handlers.items():
            try:
                signal.signal(sig, handler)
            except (ValueError, OSError) as e:
                logger.warning(f"Could not restore handler for {sig.name}: {e}")
        self._old_handlers.clear()
