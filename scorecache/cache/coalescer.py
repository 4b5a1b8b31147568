"""
Single-flight upstream calls with a short replay window.

Concurrent callers asking for the same key share one upstream call. A
successful result is then replayed for `memo_ttl` seconds so a burst that
arrives just after the call finishes is served without calling again.
Turning this off changes how often upstream is called, never what callers get.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger("cache.coalescer")


@dataclass
class _Flight:
    """One upstream call that other callers can wait on."""
    done: threading.Event = field(default_factory=threading.Event)
    value: Any = None
    error: Optional[BaseException] = None
    waiters: int = 0

    def outcome(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.value


class RequestCoalescer:
    """
    Per-key single flight plus a time-bounded memo of successes.

    - The first caller for a key runs fetch_fn; later callers block on its Event
    - Errors are shared with the waiters but never memoised
    - Only a call that returned is memoised; an interrupted one leaves nothing behind
    - One lock guards both the flight map and the memo

    Usage:
        coalescer = RequestCoalescer(memo_ttl=2.0)
        standings = coalescer.get_or_fetch(
            "nba:standings:all",
            lambda: client.get_standings("nba"),
        )
    """

    def __init__(
        self,
        timeout: float = 30.0,
        memo_ttl: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            timeout: Seconds a waiter blocks on someone else's call
            memo_ttl: Seconds a success is replayed (0 turns the memo off)
            clock: Monotonic clock, injectable for tests
        """
        self._timeout = timeout
        self._memo_ttl = memo_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._flights: Dict[str, _Flight] = {}
        self._memo: Dict[str, Tuple[float, Any]] = {}
        self._stats = {"initiated": 0, "joined": 0, "memo_hits": 0}

    def get_or_fetch(self, cache_key: str, fetch_fn: Callable[[], Any]) -> Any:
        """
        Return fetch_fn()'s result, sharing it with concurrent callers.

        Raises:
            TimeoutError: Waited longer than `timeout` on another caller's call
            Exception: Whatever fetch_fn raised
        """
        with self._lock:
            self._evict_expired()
            if cache_key in self._memo:
                self._stats["memo_hits"] += 1
                return self._memo[cache_key][1]

            flight = self._flights.get(cache_key)
            owner = flight is None
            if owner:
                flight = self._flights[cache_key] = _Flight()
                self._stats["initiated"] += 1
            else:
                flight.waiters += 1
                self._stats["joined"] += 1

        if owner:
            return self._run(cache_key, flight, fetch_fn)
        return self._wait(cache_key, flight)

    def _run(self, cache_key: str, flight: _Flight, fetch_fn: Callable[[], Any]) -> Any:
        completed = False
        try:
            flight.value = fetch_fn()
            completed = True
        except Exception as e:
            flight.error = e
        finally:
            if not completed and flight.error is None:
                # Interrupted by a BaseException: waiters get an error, never a None result
                flight.error = RuntimeError(f"Shared fetch for {cache_key} was interrupted")
            with self._lock:
                del self._flights[cache_key]
                if completed and self._memo_ttl > 0:
                    self._memo[cache_key] = (self._clock() + self._memo_ttl, flight.value)
            flight.done.set()
        if flight.waiters:
            logger.debug(f"Shared fetch for {cache_key} with {flight.waiters} waiter(s)")
        return flight.outcome()

    def _wait(self, cache_key: str, flight: _Flight) -> Any:
        if not flight.done.wait(timeout=self._timeout):
            logger.error(f"Gave up waiting on shared fetch: {cache_key}")
            raise TimeoutError(f"Shared fetch for {cache_key} exceeded {self._timeout}s")
        return flight.outcome()

    def _evict_expired(self) -> None:
        """Caller holds the lock."""
        now = self._clock()
        for key in [k for k, (expires_at, _) in self._memo.items() if expires_at <= now]:
            del self._memo[key]

    def forget(self, cache_key: str) -> None:
        """Drop a replayable result so the next call goes upstream."""
        with self._lock:
            self._memo.pop(cache_key, None)

    @property
    def active_requests(self) -> int:
        with self._lock:
            return len(self._flights)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        with self._lock:
            self._evict_expired()
            return {
                **self._stats,
                "active_requests": len(self._flights),
                "memo_entries": len(self._memo),
            }
