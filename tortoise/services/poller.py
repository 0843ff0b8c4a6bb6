"""Background refresh loop feeding SharedState."""
import logging
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Protocol

from tortoise.services.errors import NodeApiError
from tortoise.services.metrics import MONTH
from tortoise.services.records import (
    AuditLog,
    ChannelRecord,
    FiatChannel,
    HostedChannel,
    NodeIdentity,
    NodeRecord,
    SecondaryChannels,
)
from tortoise.services.rpc import NodePlugin
from tortoise.services.snapshot import Snapshot, build_snapshot
from tortoise.services.state import SharedState

log = logging.getLogger(__name__)

POLL_INTERVAL = 20.0


class NodeSource(Protocol):
    def get_info(self) -> NodeIdentity: ...

    def get_channels(self) -> list[ChannelRecord]: ...

    def get_audit(self, since: int, until: int) -> AuditLog: ...

    def get_nodes(self, ids: Iterable[str]) -> list[NodeRecord]: ...

    def get_hosted_channels(self) -> dict[str, HostedChannel]: ...

    def get_fiat_channels(self) -> dict[str, FiatChannel]: ...

    def get_supported_plugins(self) -> set[NodePlugin]: ...


class PollerStatus(Enum):
    IDLE = "idle"
    FETCHING = "fetching"


class Poller:
    def __init__(
        self,
        source: NodeSource,
        state: SharedState,
        clock: Callable[[], float] = time.time,
        interval: float = POLL_INTERVAL,
    ) -> None:
        self.source = source
        self.state = state
        self.clock = clock
        self.interval = interval
        self.status = PollerStatus.IDLE
        # None until plugin detection succeeded
        self.plugins: set[NodePlugin] | None = None
        self.node: NodeIdentity | None = None
        self.cycles = 0
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None

    def _record_failure(self, error: Exception) -> None:
        now = self.clock()
        stamp = datetime.fromtimestamp(now, tz=timezone.utc).isoformat(timespec="seconds")
        message = f"Poll failed at {stamp}: {error}"
        log.warning(message)
        self.state.append_error(message, now)

    def detect_capabilities(self) -> set[NodePlugin]:
        plugins = self.source.get_supported_plugins()
        for plugin in NodePlugin:
            log.info("Node plugin %s: %s", plugin, "enabled" if plugin in plugins else "not found")
        self.plugins = plugins
        return plugins

    def _fetch_secondary(self) -> SecondaryChannels:
        plugins = self.plugins or set()
        hosted = self.source.get_hosted_channels() if NodePlugin.HOSTED_CHANNELS in plugins else {}
        fiat = self.source.get_fiat_channels() if NodePlugin.FIAT_CHANNELS in plugins else {}
        return SecondaryChannels(hosted=hosted, fiat=fiat)

    def _fetch_and_build(self) -> Snapshot:
        if self.plugins is None:
            self.detect_capabilities()
        if self.node is None:
            self.node = self.source.get_info()
        now = self.clock()
        channels = self.source.get_channels()
        audit = self.source.get_audit(int(now - MONTH), int(now))
        secondary = self._fetch_secondary()
        counterparts = {c.node_id for c in channels} | secondary.counterpart_ids()
        nodes = self.source.get_nodes(counterparts)
        return build_snapshot(
            self.node,
            channels,
            audit.relayed,
            nodes,
            secondary,
            self.state.display_width,
            now,
        )

    def run_cycle(self) -> bool:
        """Fetch, build and publish one snapshot. Returns False if the cycle failed."""
        self.status = PollerStatus.FETCHING
        try:
            snapshot = self._fetch_and_build()
        except NodeApiError as e:
            self._record_failure(e)
            return False
        finally:
            self.status = PollerStatus.IDLE
            self.cycles += 1
        self.state.replace_snapshot(snapshot)
        log.info(
            "Snapshot published: %d channels, %d relays in the last day",
            snapshot.channels.count,
            snapshot.relayed_count_day,
        )
        return True

    def run(self) -> None:
        """Poll until stop() is called; cycles never overlap."""
        while not self._stop.is_set():
            try:
                self.run_cycle()
            except Exception:
                log.exception("Poller crashed")
                raise
            self._wake.wait(self.interval)
            self._wake.clear()

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, daemon=True, name="tortoise-poller")
        self._thread.start()
        return self._thread

    def refresh_now(self) -> None:
        """Cut the current idle period short."""
        self._wake.set()

    def stop(self) -> None:
        self._stop.set()
        self._wake.set()
