import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, TypeVar

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# interpreters built without thread support
NO_THREAD_PLATFORMS = ("emscripten", "wasi")


def multithreading_supported() -> bool:
    return sys.platform not in NO_THREAD_PLATFORMS


def check_num_threads(num_threads: int) -> int:
    """
    Validate the worker count for one run and return the count to use.
    Raises ConfigurationError for counts below one, or above one without thread support.
    Counts above the number of CPUs are clamped.
    """
    if num_threads < 1:
        raise ConfigurationError(f"num_threads should be at least 1, got {num_threads}")
    if num_threads > 1 and not multithreading_supported():
        logger.error("Cannot set multiple threads when multithreading is not supported")
        raise ConfigurationError("Invalid number of threads")

    cpus = os.cpu_count() or 1
    if num_threads > cpus:
        logger.warning(f"num_threads={num_threads} exceeds the {cpus} available CPUs, using {cpus}")
        return cpus
    return num_threads


def split_rows(M: int, num_chunks: int) -> List[slice]:
    """Fixed contiguous partition of M rows, empty chunks dropped."""
    bounds = np.linspace(0, M, num_chunks + 1).astype(int)
    return [slice(lo, hi) for lo, hi in zip(bounds[:-1], bounds[1:]) if hi > lo]


class ChunkMap:
    """Maps a function over chunks on a fixed pool, results come back in chunk order."""

    def __init__(self, num_threads: int):
        self.num_threads = num_threads
        self._pool: Optional[ThreadPoolExecutor] = None
        if num_threads > 1:
            self._pool = ThreadPoolExecutor(max_workers=num_threads, thread_name_prefix="plmdca")

    def __call__(self, fn: Callable[[slice], T], chunks: Sequence[slice]) -> List[T]:
        if self._pool is None:
            return [fn(c) for c in chunks]
        return list(self._pool.map(fn, chunks))

    def close(self):
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None
