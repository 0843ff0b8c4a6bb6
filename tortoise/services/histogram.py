"""Sparkline binning of relay events over a trailing window."""
import math
from dataclasses import dataclass
from typing import Iterable

from tortoise.services.metrics import DAY

# columns taken by the sparkline borders
LINE_MARGINS = 2


@dataclass(frozen=True)
class Histogram:
    # percentages of the fullest bucket, 0..100; empty when nothing happened
    series: tuple[int, ...] = ()
    # un-normalized value of the fullest bucket, for captions
    maximum: int = 0
    # un-normalized bucket values, same length as series
    raw: tuple[int, ...] = ()


def histogram_width(display_width: int, margin: int = LINE_MARGINS) -> int:
    return max(display_width - margin, 0)


def bin_events(
    events: Iterable,
    now: float,
    buckets: int,
    window: float = DAY,
    weighted: bool = False,
) -> Histogram:
    """Spread events of the last `window` seconds over `buckets` columns.

    Each event adds 1 to its column, or its received amount when `weighted`.
    The result is rescaled so the fullest column reads 100.
    """
    if buckets <= 0 or window <= 0:
        return Histogram()
    t0 = now - window
    raw = [0] * (buckets + 1)
    for event in events:
        if event.timestamp <= t0:
            continue
        index = math.floor((event.timestamp - t0) / window * buckets)
        index = min(max(index, 0), buckets)
        raw[index] += event.amount_in if weighted else 1
    # the extra slot only catches events stamped at (or after) `now`
    raw[buckets - 1] += raw.pop()

    maximum = max(raw)
    if maximum == 0:
        return Histogram()
    return Histogram(
        series=tuple(round(100 * value / maximum) for value in raw),
        maximum=maximum,
        raw=tuple(raw),
    )


def relay_lines(events: Iterable, now: float, display_width: int) -> tuple[Histogram, Histogram]:
    """Count and volume sparklines of the last day for the given terminal width."""
    events = tuple(events)
    buckets = histogram_width(display_width)
    return (
        bin_events(events, now, buckets),
        bin_events(events, now, buckets, weighted=True),
    )
