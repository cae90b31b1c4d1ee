"""Cleanup callbacks run when the host server shuts down.

Each running command registers its own callback under its session
identifier, so concurrent executions never overwrite each other's cleanup.
"""

from __future__ import annotations

import atexit
import logging
from typing import Callable

__all__ = ["ShutdownHooks"]

logger = logging.getLogger(__name__)


class ShutdownHooks:
    """Registry of per-session cleanup callbacks.

    run_all() is called by the server's shutdown path; as a last resort it is
    also registered with atexit so an unexpected interpreter exit still
    signals the children.
    """

    def __init__(self, register_atexit: bool = True) -> None:
        self._hooks: dict[int, Callable[[], None]] = {}
        if register_atexit:
            atexit.register(self.run_all)

    def register(self, key: int, callback: Callable[[], None]) -> None:
        self._hooks[key] = callback

    def unregister(self, key: int) -> None:
        self._hooks.pop(key, None)

    def run_all(self) -> int:
        """Invoke and clear every registered callback.

        Returns:
            Number of callbacks invoked
        """
        hooks = list(self._hooks.items())
        self._hooks.clear()
        for key, callback in hooks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Shutdown hook for session {key} failed: {e}")
        if hooks:
            logger.info(f"Ran {len(hooks)} shutdown hook(s)")
        return len(hooks)

    def __len__(self) -> int:
        return len(self._hooks)

    def __contains__(self, key: int) -> bool:
        return key in self._hooks
