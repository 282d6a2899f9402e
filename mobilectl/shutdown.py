"""A registry of cleanup functions run when the application shuts down."""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class ShutdownError(Exception):
    """Raised when one or more cleanup functions fail."""

    def __init__(self, failures: list[tuple[str, BaseException]]):
        self.failures = failures
        details = " ".join(f"{name}: {exc}" for name, exc in failures)
        super().__init__(f"shutdown failed with {len(failures)} error(s): [{details}]")


class ShutdownHook:
    """Collects named cleanup functions and runs them in registration order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hooks: list[tuple[str, Callable[[], object]]] = []

    def register(self, name: str, cleanup: Callable[[], object]) -> None:
        """Add a cleanup function under a name used in logs and errors."""
        with self._lock:
            self._hooks.append((name, cleanup))
        logger.debug("Registered shutdown hook: %s", name)

    def shutdown(self) -> None:
        """Run every hook, even after failures, then clear the registry."""
        with self._lock:
            hooks, self._hooks = self._hooks, []

        if not hooks:
            return

        logger.debug("Executing %d shutdown hook(s)", len(hooks))
        failures: list[tuple[str, BaseException]] = []
        for name, cleanup in hooks:
            logger.debug("Running shutdown hook: %s", name)
            try:
                cleanup()
            except Exception as exc:
                failures.append((name, exc))
                logger.debug("Shutdown hook %s failed: %s", name, exc)

        if failures:
            raise ShutdownError(failures)
        logger.debug("All shutdown hooks completed successfully")

    def __len__(self) -> int:
        with self._lock:
            return len(self._hooks)