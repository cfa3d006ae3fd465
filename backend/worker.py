"""CPU-bound task runner.

PQ training (k-means over every subspace) can take seconds on a large
store.  It runs in a bounded ThreadPoolExecutor so the event loop keeps
serving searches meanwhile; numpy releases the GIL for most of the work.

    codebook = await worker.run(train_pq_codebook, vectors, 8, 256)
"""

from __future__ import annotations

import asyncio
import atexit
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger(__name__)

_pool: ThreadPoolExecutor | None = None
_max_workers = 4


def configure(max_workers: int) -> None:
    """Set the pool size.  Takes effect the next time the pool is created."""
    global _max_workers
    _max_workers = max(1, max_workers)


def _get_pool() -> ThreadPoolExecutor:
    # Bounded pool prevents unbounded thread growth under load.
    global _pool
    if _pool is None:
        _pool = ThreadPoolExecutor(max_workers=_max_workers, thread_name_prefix="pq-worker")
    return _pool


async def run(fn: Callable[..., Any], *args) -> Any:
    """Run ``fn(*args)`` in the pool and await its result.

    Exceptions propagate to the awaiting caller.
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_get_pool(), fn, *args)


def shutdown(wait: bool = True) -> None:
    """Shut down the pool.  A later ``run`` starts a fresh one."""
    global _pool
    if _pool is None:
        return
    _pool.shutdown(wait=wait, cancel_futures=not wait)
    _pool = None
    logger.info("Worker pool shut down")


# Ensure the pool drains on normal interpreter shutdown.
atexit.register(shutdown, wait=True)
