"""Derivation of a dashboard snapshot from one poll cycle's raw records.

Everything here is pure: given the same records, width and `now`, the
resulting Snapshot compares equal.
"""
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from tortoise.services.histogram import Histogram, relay_lines
from tortoise.services.metrics import (
    DAY,
    MONTH,
    ChannelGroups,
    annual_return_rate,
    partition,
    percent,
    window_totals,
)
from tortoise.services.records import (
    ChannelRecord,
    ChannelState,
    FiatChannel,
    HostedChannel,
    NodeIdentity,
    NodeRecord,
    RelayEvent,
    SecondaryChannels,
)


@dataclass(frozen=True)
class StandardExtra:
    short_channel_id: str | None = None
    fee_base_msat: int | None = None
    fee_ppm: int | None = None
    # None when the node sent no channel update
    enabled: bool | None = None

    kind = "standard"


@dataclass(frozen=True)
class HostedExtra:
    kind = "hosted"


@dataclass(frozen=True)
class FiatExtra:
    rate: int
    reverse_rate: float
    fiat_balance: float

    kind = "fiat"


ChannelExtra = StandardExtra | HostedExtra | FiatExtra


@dataclass(frozen=True)
class ChannelStatistic:
    channel_id: str
    node_id: str
    alias: str
    local: int
    remote: int
    state: ChannelState
    relays_count: int = 0
    relays_volume: int = 0
    relays_fees: int = 0
    # only meaningful for standard channels
    public: bool = False
    extra: ChannelExtra = field(default_factory=StandardExtra)

    @property
    def kind(self) -> str:
        return self.extra.kind

    @property
    def capacity(self) -> int:
        return self.local + self.remote

    @property
    def local_ratio(self) -> float:
        return self.local / self.capacity if self.capacity else 0.0


@dataclass(frozen=True)
class Snapshot:
    node: NodeIdentity
    taken_at: float
    display_width: int
    channels: ChannelGroups
    relayed_count_day: int
    relayed_count_month: int
    relayed_day: int
    relayed_month: int
    fee_day: int
    fee_month: int
    return_rate: float
    relayed_percent: float
    relays_count_line: Histogram
    relays_volume_line: Histogram
    relays: tuple[RelayEvent, ...]
    channel_stats: tuple[ChannelStatistic, ...]
    hosted_stats: tuple[ChannelStatistic, ...] = ()
    fiat_stats: tuple[ChannelStatistic, ...] = ()
    hosted_groups: ChannelGroups = ChannelGroups()
    fiat_groups: ChannelGroups = ChannelGroups()
    # active, pending, sleeping
    fiat_balances: tuple[float, float, float] = (0.0, 0.0, 0.0)

    @property
    def fiat_balance_total(self) -> float:
        return sum(self.fiat_balances)

    @property
    def active_chans(self) -> int:
        return self.channels.active.count

    @property
    def pending_chans(self) -> int:
        return self.channels.pending.count

    @property
    def sleeping_chans(self) -> int:
        return self.channels.sleeping.count

    @property
    def local_volume(self) -> int:
        return self.channels.balance


def alias_lookup(nodes: Iterable[NodeRecord]) -> dict[str, str]:
    return {n.node_id: n.alias for n in nodes if n.alias}


def _relay_figures(channel_id: str, relays: Sequence[RelayEvent], since: float) -> tuple[int, int, int]:
    count = volume = fees = 0
    for event in relays:
        if event.timestamp > since and event.touches(channel_id):
            count += 1
            volume += event.amount_in
            fees += event.fee
    return count, volume, fees


def _statistic(
    channel_id: str,
    node_id: str,
    local: int,
    remote: int,
    state: ChannelState,
    aliases: Mapping[str, str],
    relays: Sequence[RelayEvent],
    since: float,
    public: bool,
    extra: ChannelExtra,
) -> ChannelStatistic:
    count, volume, fees = _relay_figures(channel_id, relays, since)
    return ChannelStatistic(
        channel_id=channel_id,
        node_id=node_id,
        alias=aliases.get(node_id, node_id),
        local=local,
        remote=remote,
        state=state,
        relays_count=count,
        relays_volume=volume,
        relays_fees=fees,
        public=public,
        extra=extra,
    )


def _by_local_balance(stats: Iterable[ChannelStatistic]) -> tuple[ChannelStatistic, ...]:
    return tuple(sorted(stats, key=lambda s: (-s.local, s.channel_id)))


def standard_stats(
    channels: Iterable[ChannelRecord],
    aliases: Mapping[str, str],
    relays: Sequence[RelayEvent],
    since: float,
) -> tuple[ChannelStatistic, ...]:
    stats = []
    for chan in channels:
        # payload-less records are plugin channels, reported through the secondary lists
        if chan.payload is None:
            continue
        extra = StandardExtra(
            short_channel_id=chan.payload.short_channel_id,
            fee_base_msat=chan.payload.fee_base_msat,
            fee_ppm=chan.payload.fee_proportional_millionths,
            enabled=chan.payload.is_enabled,
        )
        stats.append(
            _statistic(
                chan.channel_id,
                chan.node_id,
                chan.payload.to_local,
                chan.payload.to_remote,
                chan.state,
                aliases,
                relays,
                since,
                chan.payload.announced,
                extra,
            )
        )
    return _by_local_balance(stats)


def hosted_stats(
    channels: Iterable[HostedChannel],
    aliases: Mapping[str, str],
    relays: Sequence[RelayEvent],
    since: float,
) -> tuple[ChannelStatistic, ...]:
    return _by_local_balance(
        _statistic(
            c.channel_id, c.remote_node_id, c.to_local, c.to_remote, c.state, aliases, relays, since, False, HostedExtra()
        )
        for c in channels
    )


def fiat_stats(
    channels: Iterable[FiatChannel],
    aliases: Mapping[str, str],
    relays: Sequence[RelayEvent],
    since: float,
) -> tuple[ChannelStatistic, ...]:
    stats = (
        _statistic(
            c.channel_id,
            c.remote_node_id,
            c.to_local,
            c.to_remote,
            c.state,
            aliases,
            relays,
            since,
            False,
            FiatExtra(rate=c.rate, reverse_rate=c.reverse_rate, fiat_balance=c.fiat_balance),
        )
        for c in channels
    )
    return tuple(sorted(stats, key=lambda s: (-s.extra.fiat_balance, s.channel_id)))


def fiat_group_balances(channels: Iterable[FiatChannel]) -> tuple[float, float, float]:
    """Fiat balance of active, pending and sleeping channels."""
    active = pending = sleeping = 0.0
    for chan in channels:
        if chan.state.is_active:
            active += chan.fiat_balance
        elif chan.state.is_pending:
            pending += chan.fiat_balance
        elif chan.state.is_sleeping:
            sleeping += chan.fiat_balance
    return active, pending, sleeping


def build_snapshot(
    node: NodeIdentity,
    channels: Sequence[ChannelRecord],
    relays: Sequence[RelayEvent],
    nodes: Iterable[NodeRecord],
    secondary: SecondaryChannels,
    display_width: int,
    now: float,
    channel_lookback: float = DAY,
) -> Snapshot:
    channels = tuple(channels)
    relays = tuple(relays)
    groups = partition(channels, lambda c: c.state, lambda c: c.local_balance)
    aliases = alias_lookup(nodes)

    day = window_totals(relays, now, DAY)
    month = window_totals(relays, now, MONTH)
    count_line, volume_line = relay_lines(relays, now, display_width)

    since = now - channel_lookback
    fiat = tuple(secondary.fiat.values())
    hosted = tuple(secondary.hosted.values())
    fiat_groups = partition(fiat, lambda c: c.state, lambda c: c.to_local)

    return Snapshot(
        node=node,
        taken_at=now,
        display_width=display_width,
        channels=groups,
        relayed_count_day=day.count,
        relayed_count_month=month.count,
        relayed_day=day.volume,
        relayed_month=month.volume,
        fee_day=day.fees,
        fee_month=month.fees,
        return_rate=annual_return_rate(month.fees, groups.balance),
        relayed_percent=percent(month.volume, groups.balance),
        relays_count_line=count_line,
        relays_volume_line=volume_line,
        relays=relays,
        channel_stats=standard_stats(channels, aliases, relays, since),
        hosted_stats=hosted_stats(hosted, aliases, relays, since),
        fiat_stats=fiat_stats(fiat, aliases, relays, since),
        hosted_groups=partition(hosted, lambda c: c.state, lambda c: c.to_local),
        fiat_groups=fiat_groups,
        fiat_balances=fiat_group_balances(fiat),
    )
