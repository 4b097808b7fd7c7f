import time
from contextlib import contextmanager
from typing import Iterator

from .logger import get_logger, log_debug


class Stopwatch:
    """Elapsed wall time captured by `timed_block`."""

    def __init__(self) -> None:
        self.elapsed_s: float = 0.0

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed_s * 1000.0


@contextmanager
def timed_block(name: str, **context) -> Iterator[Stopwatch]:
    """Profile execution time of a code block."""
    logger = get_logger(__name__)
    watch = Stopwatch()

    start = time.perf_counter()
    try:
        yield watch
    finally:
        watch.elapsed_s = time.perf_counter() - start
        log_debug(logger, f"[TIMER] {name}", elapsed_ms=round(watch.elapsed_ms, 3), **context)


"""
Example usage:
from automation_engine.utils.timer import timed_block

with timed_block("custom_condition", entity="orders") as watch:
    subset = fn(context)

if watch.elapsed_s > threshold:
    ...
"""
