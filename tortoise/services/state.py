import dataclasses
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from tortoise.services.histogram import relay_lines
from tortoise.services.snapshot import Snapshot

log = logging.getLogger(__name__)

DEFAULT_DISPLAY_WIDTH = 80


@dataclass(frozen=True)
class ErrorRecord:
    at: float
    message: str

    def __str__(self) -> str:
        stamp = datetime.fromtimestamp(self.at, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        return f"[{stamp} UTC] {self.message}"


class SharedState:
    """Latest snapshot plus the error log, shared by the poller thread and the UI.

    The poller is the only writer of snapshots; the UI reads, resizes and clears
    errors. Nothing slow happens while the lock is held.
    """

    def __init__(self, display_width: int = DEFAULT_DISPLAY_WIDTH) -> None:
        self._lock = threading.Lock()
        self._snapshot: Snapshot | None = None
        self._errors: list[ErrorRecord] = []
        self._display_width = display_width
        self._version = 0

    @property
    def display_width(self) -> int:
        with self._lock:
            return self._display_width

    @property
    def version(self) -> int:
        """Bumped on every snapshot swap, including resizes."""
        with self._lock:
            return self._version

    def read(self) -> Snapshot | None:
        with self._lock:
            return self._snapshot

    def replace_snapshot(self, snapshot: Snapshot) -> None:
        with self._lock:
            if snapshot.display_width != self._display_width:
                # width changed while the snapshot was being built
                snapshot = self._rebinned(snapshot, self._display_width)
            self._snapshot = snapshot
            self._version += 1

    def errors(self) -> tuple[ErrorRecord, ...]:
        with self._lock:
            return tuple(self._errors)

    def append_error(self, message: str, at: float) -> ErrorRecord:
        record = ErrorRecord(at=at, message=message)
        with self._lock:
            self._errors.append(record)
        return record

    def clear_errors(self) -> None:
        with self._lock:
            self._errors.clear()

    def on_resize(self, width: int) -> bool:
        """Rebin the current snapshot's sparklines for a new terminal width.

        Uses the relays already held by the snapshot; returns False when the
        width did not change.
        """
        with self._lock:
            if width == self._display_width:
                return False
            self._display_width = width
            if self._snapshot is not None:
                self._snapshot = self._rebinned(self._snapshot, width)
                self._version += 1
        log.debug("Display width changed to %s", width)
        return True

    @staticmethod
    def _rebinned(snapshot: Snapshot, width: int) -> Snapshot:
        count_line, volume_line = relay_lines(snapshot.relays, snapshot.taken_at, width)
        return dataclasses.replace(
            snapshot,
            display_width=width,
            relays_count_line=count_line,
            relays_volume_line=volume_line,
        )
