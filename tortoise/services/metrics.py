"""Small derived-metric helpers shared by the snapshot builder and the UI."""
import math
from dataclasses import dataclass
from typing import Callable, Iterable, TypeVar

DAY = 24 * 3600
MONTH = 30 * DAY
MONTHS_PER_YEAR = 12

T = TypeVar("T")


def ratio(numerator: float, denominator: float) -> float:
    """Plain division that yields inf instead of raising on a zero denominator.

    0/0 is also inf so that snapshots built from the same input compare equal.
    """
    if denominator == 0:
        return math.inf
    return numerator / denominator


def percent(part: float, whole: float) -> float:
    return 100 * ratio(part, whole)


def annual_return_rate(fee_month: int, total_volume: int) -> float:
    """Yearly return on locked liquidity in percent, extrapolated from a month of fees."""
    return MONTHS_PER_YEAR * percent(fee_month, total_volume)


@dataclass(frozen=True)
class WindowTotals:
    count: int = 0
    volume: int = 0
    fees: int = 0


def window_totals(events: Iterable, now: float, interval: float) -> WindowTotals:
    """Count, received volume and earned fees of relays with timestamp > now - interval."""
    since = now - interval
    count = volume = fees = 0
    for event in events:
        if event.timestamp > since:
            count += 1
            volume += event.amount_in
            fees += event.amount_in - event.amount_out
    return WindowTotals(count=count, volume=volume, fees=fees)


@dataclass(frozen=True)
class GroupTotals:
    count: int = 0
    balance: int = 0


@dataclass(frozen=True)
class ChannelGroups:
    active: GroupTotals = GroupTotals()
    pending: GroupTotals = GroupTotals()
    sleeping: GroupTotals = GroupTotals()

    @property
    def count(self) -> int:
        return self.active.count + self.pending.count + self.sleeping.count

    @property
    def balance(self) -> int:
        return self.active.balance + self.pending.balance + self.sleeping.balance


def partition(items: Iterable[T], state_of: Callable[[T], object], balance_of: Callable[[T], int]) -> ChannelGroups:
    """Count channels and sum local balances per display group. Closed channels are skipped."""
    sums = {"active": [0, 0], "pending": [0, 0], "sleeping": [0, 0]}
    for item in items:
        state = state_of(item)
        if state.is_active:
            bucket = sums["active"]
        elif state.is_pending:
            bucket = sums["pending"]
        elif state.is_sleeping:
            bucket = sums["sleeping"]
        else:
            continue
        bucket[0] += 1
        bucket[1] += balance_of(item)
    return ChannelGroups(**{name: GroupTotals(count=c, balance=b) for name, (c, b) in sums.items()})


def is_defined(value: float) -> bool:
    return math.isfinite(value)
