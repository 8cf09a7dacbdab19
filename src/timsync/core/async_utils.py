"""Async utilities for bridging blocking HTTP calls into the sync pipeline."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

from ..errors import SyncAborted

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Does NOT acquire any limiter. Used for local file I/O.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


class RemoteLimiter:
    """Bound and gate concurrent calls against the TIM server.

    Every remote call goes through :meth:`run`, which waits for a slot in
    the semaphore and then runs the blocking call in a worker thread.
    After :meth:`abort`, calls that have not started yet raise
    ``SyncAborted``; calls already in flight finish normally.

    Args:
        max_parallel: Maximum number of concurrent remote calls.
    """

    def __init__(self, max_parallel: int = 5) -> None:
        if max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")
        self.max_parallel = max_parallel
        self._semaphore = asyncio.Semaphore(max_parallel)
        self._aborted = False
        logger.debug(
            "Remote request limiter initialized: max_parallel=%d",
            max_parallel,
        )

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self) -> None:
        """Stop issuing new remote calls."""
        if not self._aborted:
            logger.warning("Abort requested, no new remote calls will be made")
        self._aborted = True

    async def run(
        self, func: Callable[..., T], *args: Any, **kwargs: Any
    ) -> T:
        """Run a synchronous remote call in a thread pool, bounded by the limiter.

        Raises:
            SyncAborted: If the limiter was aborted before the call started.
        """
        if self._aborted:
            raise SyncAborted(f"not calling {_name_of(func)}: sync aborted")
        async with self._semaphore:
            # An abort may arrive while waiting for a slot
            if self._aborted:
                raise SyncAborted(
                    f"not calling {_name_of(func)}: sync aborted"
                )
            return await asyncio.to_thread(func, *args, **kwargs)


def _name_of(func: Callable[..., Any]) -> str:
    return getattr(func, "__name__", repr(func))
