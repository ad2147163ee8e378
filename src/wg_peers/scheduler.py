# src/wg_peers/scheduler.py
from __future__ import annotations

import logging
import threading
from typing import Optional

from .registry import PeerRegistry

logger = logging.getLogger(__name__)


class ExpiryScheduler:
    """
    Balayage périodique (une fois par minute par défaut) des peers expirés
    et des liens à usage unique périmés.

    Un tick qui tombe pendant qu'un balayage tourne encore est sauté.
    """

    def __init__(self, registry: PeerRegistry, interval: float = 60.0):
        self.registry = registry
        self.interval = interval
        self._busy = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self) -> bool:
        """Un balayage. False si un autre est déjà en cours ou si rien n'a changé."""
        if not self._busy.acquire(blocking=False):
            logger.debug("Previous sweep still running, tick skipped.")
            return False
        try:
            return self.registry.sweep()
        finally:
            self._busy.release()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.tick()
            except Exception:
                logger.exception("Expiry sweep failed.")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="wg-expiry", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
