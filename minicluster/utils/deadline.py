import dataclasses
import time
import typing as tp


@dataclasses.dataclass
class DeadlineTracker:
    """Elapsed-time gate for polling loops.

    >>> clock = iter([10.0, 12.5, 15.0])
    >>> tracker = DeadlineTracker(now_fn=lambda: next(clock))
    >>> tracker.elapsed()
    2.5
    >>> tracker.expired(5)
    True
    """

    now_fn: tp.Callable[[], float] = time.monotonic
    start: float = dataclasses.field(init=False)

    def __post_init__(self) -> None:
        self.start = self.now_fn()

    def reset(self) -> None:
        self.start = self.now_fn()

    def elapsed(self) -> float:
        """Return seconds elapsed since the tracker was created or reset."""
        return self.now_fn() - self.start

    def expired(self, deadline: float) -> bool:
        return self.elapsed() >= deadline

    def remaining(self, deadline: float) -> float:
        """Return seconds left until `deadline`, never negative."""
        return max(0.0, deadline - self.elapsed())
