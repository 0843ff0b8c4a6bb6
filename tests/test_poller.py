"""
Tests for the poll loop.

Tests:
- A successful cycle publishes a snapshot
- A failed cycle keeps the previous snapshot and logs an error
- Plugin probing and secondary channel fetches
- Loop shutdown
"""

from unittest.mock import MagicMock

import requests

from tortoise.services.poller import Poller, PollerStatus
from tortoise.services.records import NodeRecord
from tortoise.services.rpc import EclairClient, NodePlugin
from tortoise.services.state import SharedState

from conftest import NOW, channel


def make_poller(fake_node, clock, width=80):
    state = SharedState(display_width=width)
    return Poller(fake_node, state, clock=clock, interval=0.01), state


class TestCycle:
    """One fetch-build-publish round."""

    def test_publishes_snapshot(self, fake_node, clock, sample_channels, sample_relays):
        fake_node.channels = sample_channels
        fake_node.relays = sample_relays
        poller, state = make_poller(fake_node, clock)

        assert poller.run_cycle() is True
        snap = state.read()
        assert snap.taken_at == NOW
        assert snap.active_chans == 1
        assert snap.relayed_count_day == 2
        assert state.errors() == ()
        assert poller.status is PollerStatus.IDLE

    def test_uses_current_display_width(self, fake_node, clock, sample_relays):
        fake_node.relays = sample_relays
        poller, state = make_poller(fake_node, clock, width=30)
        poller.run_cycle()
        assert len(state.read().relays_count_line.series) == 28

    def test_node_info_fetched_once(self, fake_node, clock):
        poller, _ = make_poller(fake_node, clock)
        poller.run_cycle()
        poller.run_cycle()
        assert fake_node.calls.count("getinfo") == 1
        assert fake_node.calls.count("channels") == 2

    def test_aliases_requested_for_counterparts(self, fake_node, clock, hosted_channel, all_plugins):
        fake_node.plugins = all_plugins
        fake_node.channels = [channel("chan-a", local=10, node_id="peer-a")]
        fake_node.hosted = {"hosted-1": hosted_channel}
        fake_node.nodes = [NodeRecord("peer-a", "Alice"), NodeRecord("peer-h", "Hosty")]
        poller, state = make_poller(fake_node, clock)
        poller.run_cycle()
        snap = state.read()
        assert snap.channel_stats[0].alias == "Alice"
        assert snap.hosted_stats[0].alias == "Hosty"


class TestFailures:
    """Errors drop the cycle, never the previous snapshot."""

    def test_failed_cycle_keeps_snapshot(self, fake_node, sample_channels):
        fake_node.channels = sample_channels
        ticks = iter([NOW, NOW + 20, NOW + 40])
        poller, state = make_poller(fake_node, lambda: next(ticks))
        assert poller.run_cycle() is True
        before = state.read()

        fake_node.fail_on = "channels"
        assert poller.run_cycle() is False
        assert state.read() is before
        errors = state.errors()
        assert len(errors) == 1
        assert errors[0].message.startswith("Poll failed at ")
        assert "channels" in errors[0].message

    def test_failure_before_first_snapshot(self, fake_node, clock):
        fake_node.fail_on = "audit"
        poller, state = make_poller(fake_node, clock)
        assert poller.run_cycle() is False
        assert state.read() is None
        assert len(state.errors()) == 1

    def test_recovers_next_cycle(self, fake_node, clock):
        fake_node.fail_on = "getinfo"
        poller, state = make_poller(fake_node, clock)
        poller.run_cycle()
        fake_node.fail_on = None
        assert poller.run_cycle() is True
        assert state.read() is not None
        # the error stays until the user dismisses it
        assert len(state.errors()) == 1

    def test_undecodable_audit_is_recorded(self, clock):
        """A relay stamped Infinity fails the cycle with an error entry instead of killing the loop."""
        payloads = {
            "getinfo": {"nodeId": "03ab", "alias": "me"},
            "channels": [],
            "audit": {
                "relayed": [
                    {"amountIn": 2, "amountOut": 1, "fromChannelId": "a", "toChannelId": "b", "timestamp": float("inf")}
                ]
            },
        }

        def post(url, **kwargs):
            method = url.rsplit("/", 1)[-1]
            resp = MagicMock()
            if method in payloads:
                resp.json.return_value = payloads[method]
            else:
                resp.raise_for_status.side_effect = requests.HTTPError("404", response=MagicMock(status_code=404))
            return resp

        client = EclairClient("http://node:8080", "secret")
        client.session = MagicMock()
        client.session.post.side_effect = post
        state = SharedState()
        poller = Poller(client, state, clock=clock)

        assert poller.run_cycle() is False
        assert state.read() is None
        errors = state.errors()
        assert len(errors) == 1
        assert "audit" in errors[0].message

    def test_capability_failure_is_retried(self, fake_node, clock):
        fake_node.fail_on = "plugins"
        poller, _ = make_poller(fake_node, clock)
        assert poller.run_cycle() is False
        assert poller.plugins is None
        fake_node.fail_on = None
        assert poller.run_cycle() is True
        assert poller.plugins == set()


class TestPlugins:
    """Secondary channel lists depend on detected plugins."""

    def test_no_plugins_skips_secondary_calls(self, fake_node, clock):
        poller, _ = make_poller(fake_node, clock)
        poller.run_cycle()
        assert "hc-all" not in fake_node.calls
        assert "fc-all" not in fake_node.calls

    def test_capabilities_detected_once(self, fake_node, clock, all_plugins):
        fake_node.plugins = all_plugins
        poller, _ = make_poller(fake_node, clock)
        poller.run_cycle()
        poller.run_cycle()
        assert fake_node.calls.count("plugins") == 1
        assert fake_node.calls.count("hc-all") == 2
        assert fake_node.calls.count("fc-all") == 2

    def test_only_hosted(self, fake_node, clock, hosted_channel):
        fake_node.plugins = {NodePlugin.HOSTED_CHANNELS}
        fake_node.hosted = {"hosted-1": hosted_channel}
        poller, state = make_poller(fake_node, clock)
        poller.run_cycle()
        assert "fc-all" not in fake_node.calls
        assert len(state.read().hosted_stats) == 1
        assert state.read().fiat_stats == ()

    def test_fiat_failure_drops_cycle(self, fake_node, clock, all_plugins):
        fake_node.plugins = all_plugins
        fake_node.fail_on = "fc-all"
        poller, state = make_poller(fake_node, clock)
        assert poller.run_cycle() is False
        assert state.read() is None


class TestLoop:
    """Background loop control."""

    def test_stop_ends_loop(self, fake_node, clock):
        poller, state = make_poller(fake_node, clock)
        original = fake_node.get_channels

        def channels_then_stop():
            if len(fake_node.calls) > 10:
                poller.stop()
            return original()

        fake_node.get_channels = channels_then_stop
        poller.run()
        assert poller.cycles >= 2
        assert state.read() is not None

    def test_thread_stops(self, fake_node, clock):
        poller, state = make_poller(fake_node, clock)
        poller.interval = 60
        thread = poller.start()
        poller.stop()
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert thread.daemon

    def test_refresh_now_wakes_loop(self, fake_node, clock):
        poller, state = make_poller(fake_node, clock)
        poller.interval = 60
        cycles = []
        original = poller.run_cycle

        def counted():
            cycles.append(1)
            if len(cycles) >= 2:
                poller.stop()
            return original()

        poller.run_cycle = counted
        thread = poller.start()
        poller.refresh_now()
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert len(cycles) >= 2
