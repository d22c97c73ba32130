"""Waiting for asynchronously converging state.

Writes to the cluster become visible to reads after some (bounded, but unknown) delay. Instead
of sleeping for a fixed time, tests sample the observed value repeatedly and stop as soon as it
matches the expectation, or when the time is up.
"""

import dataclasses
import logging
import time
import typing as tp

LOGGER = logging.getLogger(__name__)

T = tp.TypeVar("T")

# Value reported when no sample succeeded
NO_SAMPLE: tp.Final[int] = -1


class Clock(tp.Protocol):
    def monotonic(self) -> float: ...

    def sleep(self, secs: float) -> None: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, secs: float) -> None:
        time.sleep(secs)


class FakeClock:
    """Clock that advances only when asked to sleep."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, secs: float) -> None:
        self.sleeps.append(secs)
        self.now += secs

    def advance(self, secs: float) -> None:
        self.now += secs


SYSTEM_CLOCK = SystemClock()


@dataclasses.dataclass(frozen=True)
class PollOutcome(tp.Generic[T]):
    last_value: T | int
    succeeded: bool
    elapsed: float

    def __bool__(self) -> bool:
        return self.succeeded


def _get_predicate(
    target: tp.Any, predicate: tp.Callable[[tp.Any], bool] | None
) -> tp.Callable[[tp.Any], bool]:
    if predicate is not None:
        return predicate
    if target is None:
        return lambda v: v > 0
    return lambda v: v == target


def await_value(
    sample_func: tp.Callable[[], T],
    target: T | None = None,
    *,
    timeout: float = 20,
    poll_interval: float = 0.5,
    backoff: float = 1.0,
    max_interval: float | None = None,
    predicate: tp.Callable[[T], bool] | None = None,
    clock: Clock = SYSTEM_CLOCK,
) -> PollOutcome[T]:
    """Sample a value until it matches the target or the timeout expires.

    Args:
        sample_func: A function returning the current value. Exceptions raised by the function,
            or by the matcher when checking the value, are logged and the sample counts as
            non-matching.
        target: An expected value. When `None`, any value greater than 0 matches.
        timeout: A maximum time (seconds) to keep sampling.
        poll_interval: A time (seconds) to sleep between the first two samples.
        backoff: A factor the sleep interval is multiplied by after each sample (default 1.0,
            i.e. fixed interval).
        max_interval: An upper bound of the sleep interval (default `poll_interval * 10` when
            `backoff` is used).
        predicate: A custom matcher, takes precedence over `target`.
        clock: A source of time, replaceable in tests.

    Returns:
        PollOutcome: The last successfully sampled value (`NO_SAMPLE` when no sample succeeded),
        whether the value matched, and the time it took.
    """
    if poll_interval <= 0:
        msg = f"Poll interval must be positive, got {poll_interval}."
        raise ValueError(msg)

    matches = _get_predicate(target=target, predicate=predicate)
    if max_interval is None:
        max_interval = poll_interval * 10 if backoff > 1 else poll_interval

    start = clock.monotonic()
    interval = poll_interval
    last_value: T | int = NO_SAMPLE

    while True:
        try:
            value = sample_func()
            matched = matches(value)
        except Exception as exc:
            LOGGER.warning(f"Sampling failed, will retry: {exc!r}")
        else:
            last_value = value
            if matched:
                return PollOutcome(
                    last_value=value, succeeded=True, elapsed=clock.monotonic() - start
                )
            LOGGER.debug(f"Got value '{value}', expecting '{target}'.")

        elapsed = clock.monotonic() - start
        remaining = timeout - elapsed
        if remaining <= 0:
            return PollOutcome(last_value=last_value, succeeded=False, elapsed=elapsed)

        clock.sleep(min(interval, remaining))
        interval = min(interval * backoff, max_interval)
