"""Job-level deadline that bounds every external call."""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, TypeVar

from ..errors import DeadlineExceeded

T = TypeVar("T")


class Deadline:
    """Absolute point in time after which a job stops starting new work.

    A None timeout never expires.
    """

    def __init__(self, timeout: float | None, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.expires_at = clock() + timeout if timeout is not None else None

    def remaining(self) -> float | None:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self.clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0


class Watchdog:
    """Run calls with whatever time the deadline has left."""

    def __init__(self, deadline: Deadline):
        self.deadline = deadline

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """
        Call fn(*args, **kwargs), giving up once the deadline passes.

        An abandoned call keeps running in its worker thread; its result is ignored.

        Raises:
            DeadlineExceeded: If the deadline expired before or during the call
        """
        remaining = self.deadline.remaining()
        if remaining is None:
            return fn(*args, **kwargs)
        if remaining <= 0:
            raise DeadlineExceeded("job deadline expired")

        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=remaining)
        except FutureTimeout:
            future.cancel()
            raise DeadlineExceeded(f"call exceeded job deadline ({remaining:.1f}s left)") from None
        finally:
            executor.shutdown(wait=False)
