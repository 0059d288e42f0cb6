"""
=============================================================================
SUPERVISOR
=============================================================================

Runs the two listeners of the record command side by side and waits.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          Supervisor                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   run()                                                              │
    │     │                                                                │
    │     ├──► bring-up (caller's thread, fail fast)                       │
    │     │       plain.bind()     [::]:80                                 │
    │     │       tls.bind()       cert + key, [::]:443                    │
    │     │                                                                │
    │     ├──► pool.start()                                                │
    │     │                                                                │
    │     ├──► Thread(plain.serve_forever)  ─┐                            │
    │     ├──► Thread(tls.serve_forever)    ─┤  either one ends ...       │
    │     │                                   ▼                            │
    │     └──► wait ◄──────────────────── _stopped.set()                   │
    │             │                                                        │
    │             └──► stop both, re-raise the listener's error (if any)  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Bring-up happens BEFORE any thread starts, so a bad certificate, an
unresolvable address or a port already in use surfaces as an exception
from run() within milliseconds, and the CLI can exit non-zero.

Under normal operation the listeners never return, so run() blocks
forever. stop() exists for tests and embedding; it does not drain
in-flight connections.

=============================================================================
"""

import logging
import sys
import threading
from typing import List, Optional

from .config import ServerConfig
from .core import Listener, WorkerPool


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(verbose: bool = False) -> logging.Logger:
    """
    Configure stderr logging and return the application logger.

    Verbose mode logs every connection at DEBUG; otherwise only warnings
    and errors are shown.
    """
    level = logging.DEBUG if verbose else logging.WARNING

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stderr,
    )

    app_logger = logging.getLogger("haperf")
    app_logger.setLevel(level)
    return app_logger


class Supervisor:
    """
    Launches a plain listener and a TLS listener and waits for them.

    Usage:
        supervisor = Supervisor(ServerConfig(port="8080"), log=setup_logging())
        supervisor.run()   # blocks; raises StartupError on bring-up failure
    """

    def __init__(self, config: Optional[ServerConfig] = None, log: Optional[logging.Logger] = None):
        """
        Args:
            config: Server configuration. Validated immediately.
            log: Application logger. Listeners log to its "plain" and
                 "tls" children.
        """
        self.config = config or ServerConfig()
        self.config.validate()
        self.logger = log or logging.getLogger("haperf")

        self.pool: Optional[WorkerPool] = None
        if self.config.max_workers is not None:
            self.pool = WorkerPool(
                min_workers=self.config.min_workers,
                max_workers=self.config.max_workers,
                queue_size=self.config.queue_size,
            )

        plain_spec, tls_spec = self.config.listen_specs()
        self.listeners: List[Listener] = [
            Listener(plain_spec, self.config, self.pool, self.logger.getChild("plain")),
            Listener(tls_spec, self.config, self.pool, self.logger.getChild("tls")),
        ]

        self.ready = threading.Event()
        self._stopped = threading.Event()
        self._errors: List[BaseException] = []
        self._threads: List[threading.Thread] = []

    @property
    def plain_listener(self) -> Listener:
        return self.listeners[0]

    @property
    def tls_listener(self) -> Listener:
        return self.listeners[1]

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """
        Bring up both listeners, serve, and block until one terminates.

        Raises:
            StartupError: A listener could not be brought up.
            Exception: Whatever terminated a listener's accept loop.
        """
        self._bring_up()

        if self.pool is not None:
            self.pool.start()

        for listener in self.listeners:
            thread = threading.Thread(
                target=self._serve,
                args=(listener,),
                name=f"haperf-listener-{listener.spec.port}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

        self.ready.set()

        try:
            self._stopped.wait()
        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

        if self._errors:
            raise self._errors[0]

    def stop(self):
        """End run(). Callable from any thread."""
        self._stopped.set()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return self.ready.wait(timeout)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _bring_up(self):
        bound: List[Listener] = []
        try:
            for listener in self.listeners:
                listener.bind()
                bound.append(listener)
        except Exception:
            for listener in bound:
                listener.close()
            raise

    def _serve(self, listener: Listener):
        try:
            listener.serve_forever()
        except Exception as e:
            self.logger.error(f"Listener {listener} terminated: {e}")
            self._errors.append(e)
        finally:
            if not self._stopped.is_set():
                self.logger.warning(f"Listener {listener} stopped, shutting down")
            self._stopped.set()

    def _shutdown(self):
        for listener in self.listeners:
            listener.stop()

        grace = self.config.accept_poll_interval + 1.0
        for listener in self.listeners:
            if not listener.wait_for_shutdown(grace):
                self.logger.warning(f"Listener {listener} did not stop within {grace:.1f}s")

        if self.pool is not None:
            self.pool.shutdown()

        self.logger.info("Supervisor stopped")
