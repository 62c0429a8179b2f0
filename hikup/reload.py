from __future__ import annotations

import logging
import signal
from threading import Event, Thread

from . import db
from .policy import ConfigError, PolicyStore

log = logging.getLogger("hikup.reload")


class ReloadWatcher:
    """Reloads the policy file on SIGHUP without pausing the scheduler.

    The signal handler only flags a pending reload; the file is read and
    parsed on the watcher's own thread.
    """

    def __init__(self, store: PolicyStore, path: str | None):
        self.store = store
        self.path = path
        self._pending = Event()
        self._stop = False
        self._thr: Thread | None = None
        self.reloads = 0
        self.failures = 0

    def install(self, signum: int = signal.SIGHUP) -> None:
        """Register the signal handler. Must be called from the main thread."""
        signal.signal(signum, self._on_signal)

    def _on_signal(self, signum, frame) -> None:
        self.trigger()

    def trigger(self) -> None:
        self._pending.set()

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._thr = Thread(target=self._loop, name="hikup-reload", daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop = True
        self._pending.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thr:
            self._thr.join(timeout)

    def _loop(self) -> None:
        while True:
            self._pending.wait()
            self._pending.clear()
            if self._stop:
                return
            log.info("Reload requested, reloading configuration")
            try:
                self.reload_now()
            except Exception as e:
                log.exception("Unexpected error reloading configuration")
                db.log_event("ERROR", f"Reload crashed: {type(e).__name__}: {e}")

    def reload_now(self) -> bool:
        """Load the configured file into the store. Errors are logged, not raised."""
        if not self.path:
            log.warning("Reload requested but no configuration file was given (-c)")
            return False
        try:
            self.store.load(self.path)
        except ConfigError as e:
            self.failures += 1
            log.error("Error reloading config: %s", e)
            db.log_event("ERROR", f"Reload failed, keeping previous policy: {e}")
            return False
        self.reloads += 1
        db.log_event("INFO", f"Configuration reloaded from {self.path}")
        return True
