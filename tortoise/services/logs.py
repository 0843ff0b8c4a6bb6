import logging
import re
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

_LEVEL_RE = re.compile(r"\s(DEBUG|INFO|WARNING|ERROR|CRITICAL)\s")


def setup_logging(logfile: str | Path, level: str = "WARNING") -> logging.Handler:
    """Send all log records to a file; the terminal belongs to the UI."""
    handler = logging.FileHandler(logfile, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level.upper())
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(max(root.level, logging.INFO))
    return handler


class LogTailer:
    def __init__(self, log_path: str | Path, max_lines: int = 200) -> None:
        self.log_path = Path(log_path)
        self.max_lines = max_lines

    def tail_lines(self) -> list[str]:
        if not self.log_path.exists():
            return [f"{self.log_path.name} not found"]
        try:
            lines = self.log_path.read_text(errors="ignore").splitlines()
        except OSError:
            return [f"Unable to read {self.log_path.name}"]
        return lines[-self.max_lines :]

    def level_counts(self) -> dict[str, int]:
        """Number of tailed lines per log level, for the log card subtitle."""
        counts: dict[str, int] = {}
        for line in self.tail_lines():
            match = _LEVEL_RE.search(line)
            if match:
                counts[match.group(1)] = counts.get(match.group(1), 0) + 1
        return counts
