from __future__ import annotations

from concurrent.futures import ALL_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class TaskOutcome(Generic[T]):
    index: int
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def fan_out(
    fn: Callable[[int], T],
    indices: Iterable[int],
    *,
    max_workers: int,
    timeout: float | None = None,
) -> list[TaskOutcome[T]]:
    """Run ``fn(index)`` for each index on a bounded thread pool.

    Tasks are independent: one failure never cancels the others. Tasks still
    running when ``timeout`` expires are reported as ``TimeoutError`` and
    abandoned. Outcomes come back in index order.
    """
    idx = list(indices)
    if not idx:
        return []
    pool = ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(idx))), thread_name_prefix="fanout")
    futures: dict[Future[T], int] = {pool.submit(fn, i): i for i in idx}
    try:
        _, pending = wait(futures, timeout=timeout, return_when=ALL_COMPLETED)
    finally:
        pool.shutdown(wait=False, cancel_futures=True)

    outcomes: list[TaskOutcome[T]] = []
    for fut, i in futures.items():
        if fut in pending:
            outcomes.append(TaskOutcome(index=i, error=TimeoutError(f"task {i} did not finish before the deadline")))
            continue
        exc = fut.exception()
        if exc is not None:
            outcomes.append(TaskOutcome(index=i, error=exc))
        else:
            outcomes.append(TaskOutcome(index=i, value=fut.result()))
    outcomes.sort(key=lambda o: o.index)
    return outcomes
