"""Record shapes returned by the node API and their JSON decoders.

Decoders raise KeyError/TypeError/ValueError on unexpected shapes; the client
turns those into DecodeError.
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from tortoise.services.metrics import ratio

# 1 BTC expressed in msat; fiat rates are msat per fiat unit
MSAT_PER_BTC = 100_000_000_000


class ChannelState(Enum):
    NORMAL = "NORMAL"
    OPENING = "OPENING"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"
    OFFLINE = "OFFLINE"
    SYNCING = "SYNCING"
    WAIT_FOR_FUNDING_CONFIRMED = "WAIT_FOR_FUNDING_CONFIRMED"

    @property
    def is_active(self) -> bool:
        return self is ChannelState.NORMAL

    @property
    def is_pending(self) -> bool:
        return self in _PENDING_STATES

    @property
    def is_sleeping(self) -> bool:
        return self is ChannelState.OFFLINE

    @classmethod
    def parse(cls, value: Any) -> "ChannelState":
        return cls(str(value).upper())


_PENDING_STATES = frozenset(
    {
        ChannelState.OPENING,
        ChannelState.CLOSING,
        ChannelState.SYNCING,
        ChannelState.WAIT_FOR_FUNDING_CONFIRMED,
    }
)


def _msat(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected integer msat amount, got {value!r}")
    if value < 0:
        raise ValueError(f"negative msat amount {value}")
    return value


def _unix_seconds(value: Any) -> tuple[int, str]:
    """Accept either {"iso": ..., "unix": ...} or a bare epoch number (s or ms)."""
    iso = ""
    if isinstance(value, Mapping):
        value, iso = value["unix"], str(value.get("iso", ""))
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"unexpected timestamp {value!r}")
    if not math.isfinite(value):
        raise ValueError(f"non-finite timestamp {value!r}")
    ts = int(value)
    # older nodes report milliseconds
    if ts > 10**11:
        ts //= 1000
    return ts, iso


@dataclass(frozen=True)
class NodeIdentity:
    node_id: str
    alias: str
    network: str = "-"
    block_height: int = 0
    version: str = "-"

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "NodeIdentity":
        return cls(
            node_id=str(data["nodeId"]),
            alias=str(data.get("alias") or ""),
            network=str(data.get("network") or "-"),
            block_height=int(data.get("blockHeight") or 0),
            version=str(data.get("version") or "-"),
        )


@dataclass(frozen=True)
class NodeRecord:
    node_id: str
    alias: str

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "NodeRecord":
        return cls(node_id=str(data["nodeId"]), alias=str(data.get("alias") or ""))


@dataclass(frozen=True)
class ChannelPayload:
    to_local: int
    to_remote: int
    short_channel_id: str | None = None
    announced: bool = False
    fee_base_msat: int | None = None
    fee_proportional_millionths: int | None = None
    is_enabled: bool | None = None

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "ChannelPayload":
        commitments = data["commitments"]
        # eclair >= 0.8 nests the commitment under "active"
        if "localCommit" in commitments:
            local_commit = commitments["localCommit"]
        else:
            local_commit = commitments["active"][0]["localCommit"]
        spec = local_commit["spec"]
        flags = commitments.get("channelFlags") or commitments.get("params", {}).get("channelFlags") or {}
        update = data.get("channelUpdate") or {}
        update_flags = update.get("channelFlags") or {}
        fee_base = update.get("feeBaseMsat")
        fee_ppm = update.get("feeProportionalMillionths")
        return cls(
            to_local=_msat(spec["toLocal"]),
            to_remote=_msat(spec["toRemote"]),
            short_channel_id=data.get("shortChannelId") or update.get("shortChannelId"),
            announced=bool(data.get("channelAnnouncement")) or bool(flags.get("announceChannel")),
            fee_base_msat=int(fee_base) if fee_base is not None else None,
            fee_proportional_millionths=int(fee_ppm) if fee_ppm is not None else None,
            is_enabled=update_flags.get("isEnabled"),
        )


@dataclass(frozen=True)
class ChannelRecord:
    node_id: str
    channel_id: str
    state: ChannelState
    # None for channels owned by a node plugin (hosted/fiat)
    payload: ChannelPayload | None = None

    @property
    def local_balance(self) -> int:
        return self.payload.to_local if self.payload is not None else 0

    @property
    def remote_balance(self) -> int:
        return self.payload.to_remote if self.payload is not None else 0

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "ChannelRecord":
        raw = data.get("data")
        return cls(
            node_id=str(data["nodeId"]),
            channel_id=str(data["channelId"]),
            state=ChannelState.parse(data["state"]),
            payload=ChannelPayload.from_json(raw) if raw else None,
        )


@dataclass(frozen=True)
class RelayEvent:
    amount_in: int
    amount_out: int
    from_channel_id: str
    to_channel_id: str
    timestamp: int
    timestamp_iso: str = ""

    @property
    def fee(self) -> int:
        return self.amount_in - self.amount_out

    def touches(self, channel_id: str) -> bool:
        return channel_id in (self.from_channel_id, self.to_channel_id)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "RelayEvent":
        ts, iso = _unix_seconds(data["timestamp"])
        return cls(
            amount_in=_msat(data["amountIn"]),
            amount_out=_msat(data["amountOut"]),
            from_channel_id=str(data["fromChannelId"]),
            to_channel_id=str(data["toChannelId"]),
            timestamp=ts,
            timestamp_iso=iso,
        )


@dataclass(frozen=True)
class AuditLog:
    relayed: tuple[RelayEvent, ...] = ()
    sent_count: int = 0
    received_count: int = 0

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "AuditLog":
        return cls(
            relayed=tuple(RelayEvent.from_json(r) for r in data["relayed"]),
            sent_count=len(data.get("sent") or ()),
            received_count=len(data.get("received") or ()),
        )


def _secondary_commitments(data: Mapping[str, Any]) -> tuple[Mapping[str, Any], Mapping[str, Any]]:
    commitments = data["data"]["commitments"]
    return commitments, commitments["localSpec"]


@dataclass(frozen=True)
class HostedChannel:
    channel_id: str
    remote_node_id: str
    state: ChannelState
    to_local: int
    to_remote: int

    @classmethod
    def from_json(cls, channel_id: str, data: Mapping[str, Any]) -> "HostedChannel":
        commitments, spec = _secondary_commitments(data)
        return cls(
            channel_id=str(commitments.get("channelId") or channel_id),
            remote_node_id=str(commitments["remoteNodeId"]),
            state=ChannelState.parse(data["state"]),
            to_local=_msat(spec["toLocal"]),
            to_remote=_msat(spec["toRemote"]),
        )


@dataclass(frozen=True)
class FiatChannel:
    channel_id: str
    remote_node_id: str
    state: ChannelState
    to_local: int
    to_remote: int
    # msat per one fiat unit
    rate: int

    @property
    def reverse_rate(self) -> float:
        """Fiat units per BTC."""
        return ratio(MSAT_PER_BTC, self.rate)

    @property
    def fiat_balance(self) -> float:
        return ratio(self.to_local, self.rate)

    @classmethod
    def from_json(cls, channel_id: str, data: Mapping[str, Any]) -> "FiatChannel":
        commitments, spec = _secondary_commitments(data)
        inner = data["data"]
        rate = commitments.get("rate")
        if rate is None:
            rate = inner.get("lastOracleState") or 0
        return cls(
            channel_id=str(commitments.get("channelId") or channel_id),
            remote_node_id=str(commitments["remoteNodeId"]),
            state=ChannelState.parse(data["state"]),
            to_local=_msat(spec["toLocal"]),
            to_remote=_msat(spec["toRemote"]),
            rate=_msat(rate),
        )


@dataclass(frozen=True)
class SecondaryChannels:
    hosted: Mapping[str, HostedChannel] = field(default_factory=dict)
    fiat: Mapping[str, FiatChannel] = field(default_factory=dict)

    def counterpart_ids(self) -> set[str]:
        ids = {c.remote_node_id for c in self.hosted.values()}
        ids.update(c.remote_node_id for c in self.fiat.values())
        return ids


def decode_secondary(payload: Mapping[str, Any], factory) -> dict:
    channels = payload["channels"]
    return {str(cid): factory(str(cid), raw) for cid, raw in channels.items()}
