# src/core/lifecycle.py
"""Process lifecycle for long-lived components.

The bot registers its RetryExecutor here; stopping the process sets the
executor's shutdown event so a request sitting in a backoff wait ends
with ShutdownInterrupted instead of holding the event loop open.

Example:
    >>> lifecycle = get_lifecycle_manager()
    >>> lifecycle.register("retry-executor", executor)
    >>> async with lifecycle:
    ...     await handler.start_async()
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_STOP_TIMEOUT = 5.0


@dataclass(frozen=True)
class Registration:
    name: str
    component: Any


async def _invoke(component: Any, *hooks: str) -> bool:
    """Call the first hook the component defines; await it if needed."""
    for hook in hooks:
        method = getattr(component, hook, None)
        if method is None:
            continue
        result = method()
        if inspect.isawaitable(result):
            await result
        return True
    return False


class LifecycleManager:
    """Starts registered components in order and stops them in reverse.

    Args:
        stop_timeout: Seconds each component gets to stop before it is
            abandoned with an error log.
    """

    def __init__(self, stop_timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        self._registrations: list[Registration] = []
        self._started = False
        self._stop_timeout = stop_timeout

    def register(self, name: str, component: Any) -> None:
        """Add a component; registering the same object twice is a no-op."""
        if any(r.component is component for r in self._registrations):
            logger.debug("Lifecycle component already registered: %s", name)
            return
        self._registrations.append(Registration(name, component))
        logger.debug("Registered lifecycle component: %s", name)

    async def startup(self) -> None:
        """Run each component's start() or startup() hook, if any."""
        if self._started:
            return
        for registration in self._registrations:
            if await _invoke(registration.component, "start", "startup"):
                logger.info("Started %s", registration.name)
        self._started = True
        logger.info("Lifecycle started (%d components)", len(self._registrations))

    async def shutdown(self) -> None:
        """Run every shutdown() hook in reverse order.

        A component that fails or times out is logged and skipped; the
        remaining components are still stopped.
        """
        if not self._started:
            logger.debug("Lifecycle not started, nothing to stop")
            return

        for registration in reversed(self._registrations):
            try:
                await asyncio.wait_for(
                    _invoke(registration.component, "shutdown"), self._stop_timeout
                )
                logger.info("Stopped %s", registration.name)
            except asyncio.TimeoutError:
                logger.error(
                    "Timed out stopping %s after %.1fs", registration.name, self._stop_timeout
                )
            except Exception as e:
                logger.error("Error stopping %s: %s", registration.name, e)

        self._started = False
        logger.info("Lifecycle stopped")

    async def __aenter__(self) -> "LifecycleManager":
        await self.startup()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def component_count(self) -> int:
        return len(self._registrations)


_lifecycle_manager: LifecycleManager | None = None


def get_lifecycle_manager() -> LifecycleManager:
    """Get the process-wide lifecycle manager."""
    global _lifecycle_manager
    if _lifecycle_manager is None:
        _lifecycle_manager = LifecycleManager()
    return _lifecycle_manager


def reset_lifecycle_manager() -> None:
    """Reset the global lifecycle manager (for testing)."""
    global _lifecycle_manager
    _lifecycle_manager = None
