"""
The work queue: deduplicating, rate-limited, and ordered.

The filters put work items into the queue, and a single worker takes them
out one at a time. The queue guarantees that:

* An item is never queued twice: re-adding a queued item is a no-op.
* An item is never processed concurrently with itself: an item re-added while
  being processed is marked as "dirty", and is queued once it is done.
* Failed items are re-added after a delay, which grows with every failure
  of the same item (see `ExponentialBackoff`), until the item is forgotten.

The queue is a pure asyncio structure: all the additions happen synchronously
in the informers' callbacks in the same event loop, so no locks are needed.
Only `get` is awaitable, as it waits for new items to arrive.
"""
import asyncio
import collections
import logging
from collections.abc import Hashable
from typing import Any, Generic, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T', bound=Hashable)


class RetryPolicy(Protocol):
    """
    Decides how long a failed item should wait before its next attempt.

    The policy is per-item: every item has its own history of failures.
    """

    def next_backoff(self, item: Hashable) -> float:
        """ Register one more failure of the item; return the delay before the retry. """
        raise NotImplementedError

    def failures(self, item: Hashable) -> int:
        """ How many times in a row the item has failed so far. """
        raise NotImplementedError

    def reset(self, item: Hashable) -> None:
        """ Restart the item's backoff from the base delay on the next failure. """
        raise NotImplementedError

    def forget(self, item: Hashable) -> None:
        """ Release all the state of the item; it will not be retried. """
        raise NotImplementedError


class ExponentialBackoff:
    """
    Doubles the delay with every failure, up to the maximum delay.

    With the default values, the delays go as 5ms, 10ms, 20ms, 40ms, ...,
    and reach the cap of 1000s after ~18 consecutive failures.
    """

    def __init__(
            self,
            *,
            base_delay: float = 0.005,
            max_delay: float = 1000.0,
    ) -> None:
        super().__init__()
        if base_delay <= 0 or max_delay < base_delay:
            raise ValueError(f"Inconsistent backoff delays: base={base_delay!r}, max={max_delay!r}")
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: dict[Hashable, int] = {}

    def next_backoff(self, item: Hashable) -> float:
        exponent = self._failures.get(item, 0)
        self._failures[item] = exponent + 1

        # Prevent float overflows for the long-failing items: they are capped anyway.
        if exponent >= 64:
            return self.max_delay
        return min(self.base_delay * 2 ** exponent, self.max_delay)

    def failures(self, item: Hashable) -> int:
        return self._failures.get(item, 0)

    def reset(self, item: Hashable) -> None:
        self._failures.pop(item, None)

    def forget(self, item: Hashable) -> None:
        # The failure counter is the only per-item state, so there is nothing else to release.
        self.reset(item)


class WorkQueue(Generic[T]):

    def __init__(
            self,
            *,
            name: str = 'default',
            policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__()
        self.name = name
        self._policy: RetryPolicy = policy if policy is not None else ExponentialBackoff()
        self._queue: collections.deque[T] = collections.deque()
        self._dirty: set[T] = set()
        self._processing: set[T] = set()
        self._delayed: dict[T, asyncio.TimerHandle] = {}
        self._wakeup = asyncio.Event()
        self._shutting_down = False

    def __repr__(self) -> str:
        return (f'<{self.__class__.__name__} {self.name!r}: '
                f'queued={len(self._queue)} processing={len(self._processing)} '
                f'delayed={len(self._delayed)}>')

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, item: T) -> None:
        """
        Queue the item for processing, unless it is already queued.

        If the item is being processed now, it is queued only after it is done.
        """
        if self._shutting_down:
            return
        if item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._wakeup.set()

    def add_after(self, item: T, delay: float) -> None:
        """
        Queue the item after a delay. Only the earliest of the delayed additions is kept.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        handle = self._delayed.get(item)
        if handle is not None and not handle.cancelled() and handle.when() <= when:
            return
        if handle is not None:
            handle.cancel()
        self._delayed[item] = loop.call_at(when, self._add_delayed, item)

    def add_rate_limited(self, item: T) -> None:
        """ Queue the item after its next backoff delay, as decided by the retry policy. """
        self.add_after(item, self._policy.next_backoff(item))

    def forget(self, item: T) -> None:
        """ Stop tracking the item's failures; the next failure starts from the base delay. """
        self._policy.forget(item)

    def num_requeues(self, item: T) -> int:
        return self._policy.failures(item)

    async def get(self) -> tuple[T | None, bool]:
        """
        Wait for the next item, and mark it as being processed.

        Returns a pair of the item and a shutdown flag. Once the queue is shut down,
        the pending and all future calls return ``(None, True)`` immediately,
        even if there are items left in the queue.
        """
        while not self._queue and not self._shutting_down:
            self._wakeup.clear()
            await self._wakeup.wait()
        if self._shutting_down:
            return None, True

        item = self._queue.popleft()
        self._processing.add(item)
        self._dirty.discard(item)
        return item, False

    def done(self, item: T) -> None:
        """
        Mark the item as processed. If it was re-added meanwhile, queue it again.
        """
        self._processing.discard(item)
        if item in self._dirty and not self._shutting_down:
            self._queue.append(item)
            self._wakeup.set()

    def shutdown(self) -> None:
        """
        Stop the queue: wake up all the waiting consumers, and ignore any new items.
        """
        if self._shutting_down:
            return
        self._shutting_down = True
        for handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()
        self._wakeup.set()
        logger.debug(f"The work queue {self.name!r} is shut down with {len(self._queue)} items left.")

    def _add_delayed(self, item: T) -> None:
        self._delayed.pop(item, None)
        self.add(item)

    # For logging and tests only: the items in their queued order.
    def items(self) -> list[T]:
        return list(self._queue)


def make_queue(
        *,
        name: str,
        base_delay: float,
        max_delay: float,
) -> WorkQueue[Any]:
    return WorkQueue(name=name, policy=ExponentialBackoff(base_delay=base_delay, max_delay=max_delay))
