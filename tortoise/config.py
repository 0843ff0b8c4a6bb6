import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from tortoise import __version__
from tortoise.services.poller import POLL_INTERVAL

DEFAULT_API_PORT = "8080"
DEFAULT_API_HOST = "127.0.0.1"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Settings:
    url: str
    password: str
    user: str = ""
    level: str = "WARNING"
    logfile: str = "./eclair-tortoise.log"
    interval: float = POLL_INTERVAL


def default_conf_path() -> Path:
    datadir = os.environ.get("ECLAIR_DATADIR", str(Path.home() / ".eclair"))
    return Path(os.environ.get("ECLAIR_CONF", f"{datadir}/eclair.conf"))


def load_eclair_conf(path: str | Path) -> dict[str, str]:
    """Pick the API keys out of an eclair.conf (flat HOCON `key = value` lines only)."""
    path = Path(path)
    values: dict[str, str] = {}
    if not path.exists():
        return values
    for line in path.read_text(errors="ignore").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or line.startswith("//") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip().lower()
        value = value.strip().strip('"')
        if key == "eclair.api.password":
            values["password"] = value
        elif key == "eclair.api.port":
            values["port"] = value
        elif key == "eclair.api.binding-ip":
            values["host"] = value
    return values


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tortoise",
        description="Terminal dashboard for an Eclair lightning node.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-u",
        "--url",
        default=os.environ.get("ECLAIR_TORTOISE_URL"),
        help="Full url of the node API (default: from eclair.conf, else http://127.0.0.1:8080)",
    )
    parser.add_argument("--user", default=os.environ.get("ECLAIR_TORTOISE_API_USER", ""), help="API user name")
    parser.add_argument(
        "--password",
        default=os.environ.get("ECLAIR_TORTOISE_API_PASSWORD"),
        help="API password; prefer the ECLAIR_TORTOISE_API_PASSWORD environment variable",
    )
    parser.add_argument("--conf", default=None, help="eclair.conf to read API settings from")
    parser.add_argument(
        "-l",
        "--level",
        default=os.environ.get("ECLAIR_TORTOISE_LOG_LEVEL", "WARNING"),
        type=str.upper,
        choices=LOG_LEVELS,
        help="Log level for the log file",
    )
    parser.add_argument("--logfile", default="./eclair-tortoise.log", help="Log file location")
    parser.add_argument(
        "--interval",
        default=POLL_INTERVAL,
        type=float,
        help="Seconds between two polls of the node",
    )
    return parser


def parse_settings(argv: Sequence[str] | None = None) -> Settings:
    parser = build_parser()
    args = parser.parse_args(argv)
    conf = load_eclair_conf(args.conf or default_conf_path())

    url = args.url
    if not url:
        host = conf.get("host", DEFAULT_API_HOST)
        if host in ("0.0.0.0", "::"):
            host = DEFAULT_API_HOST
        url = f"http://{host}:{conf.get('port', DEFAULT_API_PORT)}"
    password = args.password or conf.get("password")
    if not password:
        parser.error("API password is required (--password, ECLAIR_TORTOISE_API_PASSWORD or eclair.conf)")
    if args.interval <= 0:
        parser.error("--interval must be positive")
    return Settings(
        url=url,
        password=password,
        user=args.user,
        level=args.level,
        logfile=args.logfile,
        interval=args.interval,
    )
