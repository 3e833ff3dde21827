"""
Refresh Coordination Module

Collapses concurrent refreshes of the same credential into one provider call.
Callers that arrive while a refresh is in flight await the same result.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable

from .error_handler import RefreshTransportError

logger = logging.getLogger("token_lifecycle")


class RefreshCoordinator:
    """
    Process-local single-flight map keyed by (store name, subject key).

    Only the first caller for a key runs the refresh; later callers wait on
    its future and receive the same value or the same exception. The entry is
    removed when the refresh finishes, so the next expiry starts a new one.
    Separate processes are not coordinated.
    """

    def __init__(self):
        self._in_flight: Dict[Hashable, asyncio.Future] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._in_flight

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def do_once(self, key: Hashable, fn: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run fn for key unless a run is already in flight, then share its outcome.

        Args:
            key: Identity of the credential being refreshed
            fn: Zero-argument coroutine function doing the refresh

        Returns:
            The result of the single in-flight call
        """
        # No await between lookup and insert, so this is atomic on the loop
        pending = self._in_flight.get(key)
        if pending is not None:
            logger.debug(f"Refresh for {key} already in flight; awaiting shared result")
            # A waiter giving up must not cancel the shared refresh
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            result = await fn()
        except Exception as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            if not future.done():
                # Leader was cancelled; waiters get a retryable failure instead
                future.set_exception(
                    RefreshTransportError(f"Refresh for {key} was interrupted before completing")
                )
            if self._in_flight.get(key) is future:
                del self._in_flight[key]
            # Mark the exception retrieved when nobody was waiting for it
            future.exception()
