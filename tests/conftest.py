"""
Pytest fixtures for eclair-tortoise tests.

Provides record builders, a frozen clock and a scriptable fake node.
"""

import pytest

from tortoise.services.errors import TransportError
from tortoise.services.records import (
    AuditLog,
    ChannelPayload,
    ChannelRecord,
    ChannelState,
    FiatChannel,
    HostedChannel,
    NodeIdentity,
    NodeRecord,
    RelayEvent,
)
from tortoise.services.rpc import NodePlugin

NOW = 1_700_000_000


def relay(ts, amount_in=1_000_000, amount_out=999_000, from_chan="chan-a", to_chan="chan-b"):
    return RelayEvent(
        amount_in=amount_in,
        amount_out=amount_out,
        from_channel_id=from_chan,
        to_channel_id=to_chan,
        timestamp=int(ts),
    )


def channel(channel_id, state=ChannelState.NORMAL, local=0, remote=0, node_id=None, announced=True):
    return ChannelRecord(
        node_id=node_id or f"node-{channel_id}",
        channel_id=channel_id,
        state=state,
        payload=ChannelPayload(to_local=local, to_remote=remote, announced=announced),
    )


class FakeNode:
    """In-memory node API. Set `fail_on` to a method name to make it raise."""

    def __init__(self):
        self.info = NodeIdentity(node_id="03" + "a" * 64, alias="tortoise-test", network="regtest")
        self.channels = []
        self.relays = []
        self.nodes = []
        self.hosted = {}
        self.fiat = {}
        self.plugins = set()
        self.fail_on = None
        self.calls = []

    def _hit(self, method):
        self.calls.append(method)
        if self.fail_on == method:
            raise TransportError(method, "500 Server Error", status=500)

    def get_info(self):
        self._hit("getinfo")
        return self.info

    def get_channels(self):
        self._hit("channels")
        return list(self.channels)

    def get_audit(self, since, until):
        self._hit("audit")
        return AuditLog(relayed=tuple(self.relays))

    def get_nodes(self, ids):
        self._hit("nodes")
        ids = set(ids)
        return [n for n in self.nodes if n.node_id in ids]

    def get_hosted_channels(self):
        self._hit("hc-all")
        return dict(self.hosted)

    def get_fiat_channels(self):
        self._hit("fc-all")
        return dict(self.fiat)

    def get_supported_plugins(self):
        self._hit("plugins")
        return set(self.plugins)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def fake_node():
    return FakeNode()


@pytest.fixture
def node_identity():
    return NodeIdentity(node_id="03" + "a" * 64, alias="tortoise-test", network="regtest", block_height=2500)


@pytest.fixture
def sample_channels():
    return [
        channel("chan-a", ChannelState.NORMAL, local=1000, remote=9000, node_id="peer-a"),
        channel("chan-b", ChannelState.OFFLINE, local=500, remote=500, node_id="peer-b"),
        channel("chan-c", ChannelState.OPENING, local=250, remote=0, node_id="peer-c"),
    ]


@pytest.fixture
def sample_relays():
    return [
        relay(NOW - 60, amount_in=2_000_000, amount_out=1_998_000, from_chan="chan-a", to_chan="chan-b"),
        relay(NOW - 3_600, amount_in=1_000_000, amount_out=999_500, from_chan="chan-b", to_chan="chan-c"),
        relay(NOW - 5 * 86_400, amount_in=4_000_000, amount_out=3_996_000, from_chan="chan-a", to_chan="chan-c"),
    ]


@pytest.fixture
def sample_nodes():
    return [NodeRecord("peer-a", "Alice"), NodeRecord("peer-b", "Bob")]


@pytest.fixture
def hosted_channel():
    return HostedChannel(
        channel_id="hosted-1",
        remote_node_id="peer-h",
        state=ChannelState.NORMAL,
        to_local=3_000_000,
        to_remote=7_000_000,
    )


@pytest.fixture
def fiat_channel():
    # 1 EUR = 4_000_000 msat
    return FiatChannel(
        channel_id="fiat-1",
        remote_node_id="peer-f",
        state=ChannelState.NORMAL,
        to_local=40_000_000,
        to_remote=10_000_000,
        rate=4_000_000,
    )


@pytest.fixture
def all_plugins():
    return {NodePlugin.HOSTED_CHANNELS, NodePlugin.FIAT_CHANNELS}
