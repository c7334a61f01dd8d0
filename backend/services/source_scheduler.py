"""Source scheduler - runs source tasks on a bounded worker pool."""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Optional

logger = logging.getLogger(__name__)

SourceTask = tuple[str, Callable[[], None]]


class SourceScheduler:
    """Runs one callable per source with bounded concurrency.

    ``run()`` returns only after every task has finished, which makes it
    the barrier between the position phase and the price phase. Tasks are
    expected to record their own outcome; anything that still escapes is
    logged and reported back, and never stops the other tasks.

    Example:
        scheduler = SourceScheduler(concurrency=2)
        escaped = scheduler.run([("aave_v3", work_a), ("kamino", work_b)])
    """

    def __init__(self, concurrency: int = 1):
        """Initialize the scheduler.

        Args:
            concurrency: Worker pool size. 1 runs sources sequentially.

        Raises:
            ValueError: If concurrency is not a positive integer.
        """
        self._concurrency = self._validate(concurrency)

    @staticmethod
    def _validate(concurrency: int) -> int:
        if not isinstance(concurrency, int) or isinstance(concurrency, bool) or concurrency < 1:
            raise ValueError(f"concurrency must be a positive integer, got {concurrency!r}")
        return concurrency

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def run(self, tasks: list[SourceTask], concurrency: Optional[int] = None) -> list[str]:
        """Execute every task and wait for all of them.

        Args:
            tasks: (source_key, work) pairs. Order of execution across
                   tasks is not guaranteed when concurrency > 1.
            concurrency: Optional per-call override of the pool size.

        Returns:
            Source keys whose work raised out of its wrapper.
        """
        if not tasks:
            return []

        workers = self._validate(concurrency) if concurrency is not None else self._concurrency
        workers = min(workers, len(tasks))
        logger.info("Running %d sources with concurrency %d", len(tasks), workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="source") as pool:
            futures = {pool.submit(work): source_key for source_key, work in tasks}
            wait(futures)

        escaped = []
        for future, source_key in futures.items():
            exc = future.exception()
            if exc is not None:
                logger.error(
                    "Source task %s raised outside its handler: %s",
                    source_key, exc, exc_info=exc,
                )
                escaped.append(source_key)
        return escaped
