import logging
from datetime import datetime
from typing import Sequence

from textual import events
from textual.app import App, ComposeResult
from textual.containers import Container, VerticalScroll
from textual.widgets import Footer, Sparkline, Static, TabbedContent, TabPane
from rich.console import Group
from rich.text import Text

from tortoise import __version__ as TORTOISE_VERSION
from tortoise.config import Settings, parse_settings
from tortoise.services.histogram import Histogram
from tortoise.services.logs import LogTailer, setup_logging
from tortoise.services.metrics import ChannelGroups, is_defined
from tortoise.services.poller import Poller
from tortoise.services.rpc import EclairClient
from tortoise.services.snapshot import ChannelStatistic, Snapshot
from tortoise.services.state import ErrorRecord, SharedState

log = logging.getLogger(__name__)

RENDER_INTERVAL = 1.0
GAUGE_WIDTH = 12
ALIAS_WIDTH = 24


def format_sats(msat: int) -> str:
    return f"{msat // 1000:,}"


def format_percent(value: float) -> str:
    return f"{value:.2f}%" if is_defined(value) else "-"


def format_fiat(value: float) -> str:
    return f"{value:,.2f} €" if is_defined(value) else "-"


def gauge(ratio: float, width: int = GAUGE_WIDTH) -> str:
    filled = min(max(round(ratio * width), 0), width)
    return "█" * filled + "░" * (width - filled)


def stats_lines(snapshot: Snapshot) -> list[str]:
    node = snapshot.node
    groups = snapshot.channels
    return [
        f"Alias:       {node.alias or node.node_id[:16]}",
        f"Network:     {node.network}",
        f"Height:      {node.block_height:,}",
        "",
        f"Channels:    {groups.active.count}/{groups.pending.count}/{groups.sleeping.count}",
        f"  active:    {format_sats(groups.active.balance)} sats",
        f"  pending:   {format_sats(groups.pending.balance)} sats",
        f"  sleeping:  {format_sats(groups.sleeping.balance)} sats",
        "",
        "Relayed",
        f"  per day:   {snapshot.relayed_count_day:,}",
        f"  per month: {snapshot.relayed_count_month:,}",
        f"  per day:   {format_sats(snapshot.relayed_day)} sats",
        f"  per month: {format_sats(snapshot.relayed_month)} sats",
        f"  percent:   {format_percent(snapshot.relayed_percent)}",
        "",
        "Fees",
        f"  per day:   {format_sats(snapshot.fee_day)} sats",
        f"  per month: {format_sats(snapshot.fee_month)} sats",
        f"  ARP year:  {format_percent(snapshot.return_rate)}",
    ]


def group_lines(groups: ChannelGroups) -> list[str]:
    return [
        f"Active:    {groups.active.count} ({format_sats(groups.active.balance)} sats)",
        f"Suspended: {groups.pending.count} ({format_sats(groups.pending.balance)} sats)",
        f"Offline:   {groups.sleeping.count} ({format_sats(groups.sleeping.balance)} sats)",
    ]


def channel_line(stat: ChannelStatistic) -> str:
    alias = stat.alias[:ALIAS_WIDTH].ljust(ALIAS_WIDTH)
    line = f"{alias} {gauge(stat.local_ratio)} {format_sats(stat.local)}/{format_sats(stat.remote)}"
    if stat.kind == "fiat":
        extra = stat.extra
        return (
            f"{line}  rate {format_sats(extra.rate)} sats"
            f"  balance {format_fiat(extra.fiat_balance)}"
            f"  r.rate {format_fiat(extra.reverse_rate)}"
        )
    line = f"{line}  relays {stat.relays_count}  fees {format_sats(stat.relays_fees)}"
    line += f"  volume {format_sats(stat.relays_volume)}"
    if stat.kind == "standard":
        extra = stat.extra
        if extra.fee_base_msat is not None and extra.fee_ppm is not None:
            line += f"  policy {extra.fee_base_msat}msat+{extra.fee_ppm}ppm"
        line += "  public" if stat.public else "  private"
        if extra.enabled is False:
            line += "  disabled"
    return line


def fiat_lines(snapshot: Snapshot) -> list[str]:
    active, pending, sleeping = snapshot.fiat_balances
    return group_lines(snapshot.fiat_groups) + [
        "",
        f"Active balance:    {format_fiat(active)}",
        f"Suspended balance: {format_fiat(pending)}",
        f"Offline balance:   {format_fiat(sleeping)}",
        f"Total balance:     {format_fiat(snapshot.fiat_balance_total)}",
    ]


def log_subtitle(counts: dict[str, int]) -> str:
    return " ".join(f"{level}:{counts[level]}" for level in ("ERROR", "WARNING") if counts.get(level))


class StatusBar(Static):
    def __init__(self) -> None:
        super().__init__()
        self.node_status = "connecting"
        self.last_update = "-"
        self.error_count = 0

    def render(self) -> str:
        errors = f" | Errors: {self.error_count} (enter to dismiss)" if self.error_count else ""
        return f"Node: {self.node_status} | Updated: {self.last_update} | v{TORTOISE_VERSION}{errors}"


class CardPanel(Static):
    def __init__(self, title: str, accent_class: str, alternating_rows: bool = False, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.title = title
        self.alternating_rows = alternating_rows
        self.border_title = title
        self.lines: list[str] = []
        self.add_class("card")
        self.add_class(accent_class)

    def update_lines(self, lines: list[str]) -> None:
        self.lines = lines
        self.update(self.render())

    def render(self) -> str | Group:
        if not self.lines:
            return "... loading"
        if self.alternating_rows:
            texts = [Text(line, style="dim" if i % 2 == 1 else "") for i, line in enumerate(self.lines)]
            return Group(*texts)
        return "\n".join(self.lines)


class ChannelListPanel(VerticalScroll):
    def __init__(self, title: str, accent_class: str, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.border_title = title
        self.border_title_align = ("left", "top")
        self.add_class("card")
        self.add_class(accent_class)
        self._content = Static("... loading")

    def compose(self) -> ComposeResult:
        yield self._content

    def update_channels(self, stats: Sequence[ChannelStatistic], empty: str = "no channels") -> None:
        self.border_subtitle = str(len(stats))
        self.border_subtitle_align = ("right", "top")
        if not stats:
            self._content.update(empty)
            return
        texts = [Text(channel_line(s), style="dim" if i % 2 == 1 else "") for i, s in enumerate(stats)]
        self._content.update(Group(*texts))


class RelayChartPanel(Container):
    """Card with a sparkline of the last day's relays."""

    def __init__(self, title: str, unit: str = "", **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.title = title
        self.unit = unit
        self.border_title = title
        self.border_title_align = ("left", "top")
        self.add_class("card")
        self.add_class("activity")
        self._sparkline = Sparkline([], summary_function=max)

    def compose(self) -> ComposeResult:
        yield self._sparkline

    def update_histogram(self, histogram: Histogram, scale: int = 1) -> None:
        self._sparkline.data = [float(v) for v in histogram.series]
        maximum = f"{histogram.maximum // scale:,}"
        self.border_subtitle = f"max: {maximum}{self.unit}"
        self.border_subtitle_align = ("right", "bottom")


class ErrorOverlay(Static):
    def update_errors(self, errors: Sequence[ErrorRecord]) -> None:
        self.display = bool(errors)
        if errors:
            self.update("\n".join(str(e) for e in errors) + "\n\nPress enter to dismiss")


class TortoiseApp(App):
    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh_all", "Refresh"),
        ("enter", "dismiss_errors", "Dismiss errors"),
        ("d", "show_tab('dashboard')", "Dashboard"),
        ("c", "show_tab('channels')", "Channels"),
        ("h", "show_tab('hosted')", "Hosted"),
        ("f", "show_tab('fiat')", "Fiat"),
        ("l", "show_tab('log')", "Log"),
    ]

    CSS = """
    Screen {
        layout: vertical;
    }
    #body {
        width: 1fr;
        height: 1fr;
    }
    .card {
        border: round $primary;
        padding: 0 1;
    }
    .row {
        layout: horizontal;
        height: 1fr;
    }
    #dashboard-stats {
        width: 40;
        height: 1fr;
    }
    #dashboard-top {
        width: 1fr;
        height: 1fr;
    }
    .chart {
        height: 5;
    }
    .chart Sparkline {
        width: 1fr;
        height: 3;
    }
    .column {
        width: 1fr;
        height: 1fr;
    }
    #errors {
        dock: top;
        margin: 4 8;
        padding: 1 2;
        border: heavy $error;
        background: $panel;
        display: none;
    }
    """

    def __init__(self, settings: Settings, state: SharedState, poller: Poller) -> None:
        super().__init__()
        self.settings = settings
        self.shared_state = state
        self.poller = poller
        self.logs = LogTailer(settings.logfile)
        self.title = "eclair-tortoise"
        self._rendered_version = -1

        self.status_bar = StatusBar()
        self.error_overlay = ErrorOverlay(id="errors")
        self.dashboard_stats = CardPanel("📊 Stats", "node", id="dashboard-stats")
        self.dashboard_top = ChannelListPanel("⚡ Top channels", "network", id="dashboard-top")
        self.count_chart = RelayChartPanel("24h relay count", classes="chart")
        self.volume_chart = RelayChartPanel("24h relay volume", unit=" sats", classes="chart")
        self.active_list = ChannelListPanel("Active", "network", classes="column")
        self.pending_list = ChannelListPanel("Pending", "sync", classes="column")
        self.sleeping_list = ChannelListPanel("Sleeping", "wallet", classes="column")
        self.hosted_info = CardPanel("🏠 Hosted channels", "node", alternating_rows=True)
        self.hosted_list = ChannelListPanel("Hosted", "network", classes="column")
        self.fiat_info = CardPanel("💶 Fiat channels", "pricing", alternating_rows=True)
        self.fiat_list = ChannelListPanel("Fiat", "network", classes="column")
        self.log_panel = CardPanel("📜 Log", "node", id="log-panel")

    def compose(self) -> ComposeResult:
        yield self.error_overlay
        with Container(id="body"):
            with TabbedContent(initial="dashboard"):
                with TabPane("Dashboard", id="dashboard"):
                    with Container(classes="row"):
                        yield self.dashboard_stats
                        yield self.dashboard_top
                    yield self.count_chart
                    yield self.volume_chart
                with TabPane("Channels", id="channels"):
                    with Container(classes="row"):
                        yield self.active_list
                        yield self.pending_list
                        yield self.sleeping_list
                with TabPane("Hosted", id="hosted"):
                    yield self.hosted_info
                    yield self.hosted_list
                with TabPane("Fiat", id="fiat"):
                    yield self.fiat_info
                    yield self.fiat_list
                with TabPane("Log", id="log"):
                    with VerticalScroll():
                        yield self.log_panel
        yield self.status_bar
        yield Footer()

    def on_mount(self) -> None:
        self.shared_state.on_resize(self.size.width)
        self.poller.start()
        self.refresh_view()
        self.set_interval(RENDER_INTERVAL, self.refresh_view)

    def on_unmount(self) -> None:
        self.poller.stop()

    def on_resize(self, event: events.Resize) -> None:
        self.shared_state.on_resize(event.size.width)

    def refresh_view(self) -> None:
        errors = self.shared_state.errors()
        self.error_overlay.update_errors(errors)
        self.status_bar.error_count = len(errors)
        self.status_bar.node_status = self.poller.status.value
        self.log_panel.update_lines(self.logs.tail_lines())
        self.log_panel.border_subtitle = log_subtitle(self.logs.level_counts())

        version = self.shared_state.version
        snapshot = self.shared_state.read()
        if snapshot is not None and version != self._rendered_version:
            self._rendered_version = version
            self.render_snapshot(snapshot)
        self.status_bar.refresh()

    def render_snapshot(self, snapshot: Snapshot) -> None:
        self.sub_title = f"{snapshot.node.alias} @ {snapshot.node.network}"
        self.status_bar.last_update = datetime.fromtimestamp(snapshot.taken_at).strftime("%H:%M:%S")

        self.dashboard_stats.update_lines(stats_lines(snapshot))
        self.dashboard_top.update_channels(snapshot.channel_stats)
        self.count_chart.update_histogram(snapshot.relays_count_line)
        self.volume_chart.update_histogram(snapshot.relays_volume_line, scale=1000)

        stats = snapshot.channel_stats
        self.active_list.update_channels([s for s in stats if s.state.is_active])
        self.pending_list.update_channels([s for s in stats if s.state.is_pending])
        self.sleeping_list.update_channels([s for s in stats if s.state.is_sleeping])

        self.hosted_info.update_lines(group_lines(snapshot.hosted_groups))
        self.hosted_list.update_channels(snapshot.hosted_stats, empty="hosted channels plugin not detected")
        self.fiat_info.update_lines(fiat_lines(snapshot))
        self.fiat_list.update_channels(snapshot.fiat_stats, empty="fiat channels plugin not detected")

    def action_refresh_all(self) -> None:
        self.poller.refresh_now()

    def action_dismiss_errors(self) -> None:
        self.shared_state.clear_errors()
        self.refresh_view()

    def action_show_tab(self, tab: str) -> None:
        self.query_one(TabbedContent).active = tab


def run(argv: Sequence[str] | None = None) -> None:
    settings = parse_settings(argv)
    setup_logging(settings.logfile, settings.level)
    log.info("Starting eclair-tortoise %s against %s", TORTOISE_VERSION, settings.url)
    client = EclairClient(settings.url, settings.password, user=settings.user)
    state = SharedState()
    poller = Poller(client, state, interval=settings.interval)
    TortoiseApp(settings, state, poller).run()
