"""
Signal handlers for graceful shutdown and status reporting
"""

import asyncio
import logging
import signal
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class SignalHandler:
    """Maps UNIX signals onto the crawl's shutdown event"""

    def __init__(self, shutdown_event: Optional[asyncio.Event] = None):
        self.shutdown_event = shutdown_event or asyncio.Event()
        self.status_callback: Optional[Callable] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._installed = []

    def setup(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Register signal handlers on the running event loop"""
        self._loop = loop or asyncio.get_running_loop()
        handlers = {
            signal.SIGINT: self._handle_shutdown,
            signal.SIGTERM: self._handle_shutdown,
        }
        if hasattr(signal, "SIGUSR1"):
            handlers[signal.SIGUSR1] = self._handle_status

        for sig, handler in handlers.items():
            try:
                self._loop.add_signal_handler(sig, handler, sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform (e.g. Windows event loops)
                logger.debug(f"Cannot install handler for {sig!r}")
                continue
            self._installed.append(sig)

    def cleanup(self):
        """Remove the installed signal handlers"""
        if self._loop is None:
            return
        for sig in self._installed:
            self._loop.remove_signal_handler(sig)
        self._installed = []

    def _handle_shutdown(self, signum):
        """Handle SIGINT/SIGTERM for graceful shutdown"""
        sig_name = signal.Signals(signum).name
        if self.shutdown_event.is_set():
            print(f"\n{sig_name} received again - shutdown already in progress")
            return
        print(f"\n{sig_name} received - initiating graceful shutdown...")
        self.shutdown_event.set()

    def _handle_status(self, signum):
        """Handle SIGUSR1 for status dump"""
        print("\n" + "=" * 60)
        print("CRAWLER STATUS DUMP (SIGUSR1)")
        print("=" * 60)
        if self.status_callback:
            try:
                status = self.status_callback()
                if isinstance(status, dict):
                    for key, value in status.items():
                        print(f"  {key}: {value}")
                else:
                    print(status)
            except Exception as e:
                print(f"Failed to get status: {e}")
        else:
            print("No status callback registered")
        print("=" * 60 + "\n")

    def on_status(self, callback: Callable):
        """Register callback for status reporting"""
        self.status_callback = callback
