"""
Settle-all fan-out for independent upstream calls.

Every task runs concurrently and every task gets a result entry, success
or failure. One failure never cancels its siblings.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, TypeVar

from scorecache.errors import UpstreamError, UpstreamTimeout, UpstreamTransportError

logger = logging.getLogger("aggregate")

T = TypeVar("T")

# Fixed ceiling for a single upstream call
DEFAULT_TIMEOUT_SECONDS = 10.0


class TaskStatus(Enum):
    FULFILLED = "fulfilled"
    FAILED = "failed"


@dataclass
class TaskResult(Generic[T]):
    """Outcome of one sub-task: a value or the error that replaced it."""
    status: TaskStatus
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status == TaskStatus.FULFILLED

    @property
    def error_reason(self) -> Optional[str]:
        if self.error is None:
            return None
        kind = getattr(self.error, "kind", type(self.error).__name__)
        return f"{kind}: {self.error}"

    @classmethod
    def fulfilled(cls, value: T) -> "TaskResult[T]":
        return cls(status=TaskStatus.FULFILLED, value=value)

    @classmethod
    def failed(cls, error: BaseException) -> "TaskResult[T]":
        return cls(status=TaskStatus.FAILED, error=error)


def aggregate_all(
    tasks: Mapping[str, Callable[[], T]],
    timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
    max_workers: Optional[int] = None,
) -> Dict[str, TaskResult[T]]:
    """
    Run named tasks concurrently and wait for all of them to settle.

    Args:
        tasks: Task name -> zero-argument callable
        timeout: Ceiling in seconds for the whole fan-out; tasks still running
            after it are reported as UpstreamTimeout failures
        max_workers: Pool size (defaults to one thread per task)

    Returns:
        Task name -> TaskResult, with exactly the submitted names, in
        submission order
    """
    if not tasks:
        return {}

    executor = ThreadPoolExecutor(
        max_workers=max_workers or len(tasks),
        thread_name_prefix="aggregate",
    )
    try:
        futures = {name: executor.submit(fn) for name, fn in tasks.items()}
        _, not_done = wait(list(futures.values()), timeout=timeout)

        results: Dict[str, TaskResult[T]] = {}
        for name, future in futures.items():
            if future in not_done:
                future.cancel()
                results[name] = TaskResult.failed(
                    UpstreamTimeout(f"Task '{name}' exceeded {timeout}s")
                )
                continue
            error = future.exception()
            if error is None:
                results[name] = TaskResult.fulfilled(future.result())
            else:
                results[name] = TaskResult.failed(error)
    finally:
        # Hung calls are abandoned, not joined
        executor.shutdown(wait=False)

    failed = [name for name, result in results.items() if not result.ok]
    if failed:
        for name in failed:
            logger.warning(f"Sub-task '{name}' failed: {results[name].error_reason}")
    logger.debug(f"Aggregated {len(results)} tasks ({len(failed)} failed)")
    return results


@dataclass
class Composed:
    """
    A response assembled from several sub-tasks.

    Failed secondary sub-tasks appear as None in `values` and are listed
    in `degraded`.
    """
    values: Dict[str, Any]
    degraded: List[str] = field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded)

    def __getitem__(self, name: str) -> Any:
        return self.values[name]


def compose(results: Mapping[str, TaskResult], primary: str) -> Composed:
    """
    Combine aggregate results around a primary sub-task.

    Args:
        results: Output of aggregate_all
        primary: Name of the sub-task the response cannot exist without

    Returns:
        Composed values with failed secondaries nulled

    Raises:
        UpstreamError: The primary sub-task failed (its own error when it was
            an UpstreamError, e.g. UpstreamNotFound)
    """
    head = results[primary]
    if not head.ok:
        if isinstance(head.error, UpstreamError):
            raise head.error
        raise UpstreamTransportError(f"Primary task '{primary}' failed: {head.error}") from head.error

    values: Dict[str, Any] = {}
    degraded: List[str] = []
    for name, result in results.items():
        if result.ok:
            values[name] = result.value
        else:
            values[name] = None
            degraded.append(name)
    return Composed(values=values, degraded=degraded)
