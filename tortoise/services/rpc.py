import logging
from enum import Enum
from typing import Any, Callable, Iterable, Optional, TypeVar

import requests

from tortoise.services.errors import DecodeError, TransportError
from tortoise.services.records import (
    AuditLog,
    ChannelRecord,
    FiatChannel,
    HostedChannel,
    NodeIdentity,
    NodeRecord,
    decode_secondary,
)

log = logging.getLogger(__name__)

T = TypeVar("T")

REQUEST_TIMEOUT = 10


class NodePlugin(Enum):
    """Optional Eclair plugins adding their own channel kinds."""

    # https://github.com/engenegr/plugin-hosted-channels
    HOSTED_CHANNELS = "hc-all"
    # https://github.com/standardsats/plugin-fiat-channels
    FIAT_CHANNELS = "fc-all"

    def __str__(self) -> str:
        return "hosted channels" if self is NodePlugin.HOSTED_CHANNELS else "fiat channels"


class EclairClient:
    def __init__(self, url: str, password: str, user: str = "", timeout: float = REQUEST_TIMEOUT) -> None:
        self.url = url.rstrip("/")
        self.user = user
        self.password = password
        self.timeout = timeout
        self.session = requests.Session()

    def _post(self, method: str, params: Optional[dict] = None) -> requests.Response:
        log.debug("Requesting %s %s", method, params or "")
        try:
            response = self.session.post(
                f"{self.url}/{method}",
                data=params or None,
                auth=(self.user, self.password),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise TransportError(method, str(e), status=status) from e
        except requests.RequestException as e:
            raise TransportError(method, str(e)) from e
        return response

    def _call(self, method: str, decode: Callable[[Any], T], params: Optional[dict] = None) -> T:
        response = self._post(method, params)
        log.debug("Response from %s: %s", method, response.text)
        try:
            return decode(response.json())
        except (ValueError, KeyError, TypeError, AttributeError, IndexError, OverflowError) as e:
            raise DecodeError(method, repr(e)) from e

    def get_info(self) -> NodeIdentity:
        return self._call("getinfo", NodeIdentity.from_json)

    def get_channels(self) -> list[ChannelRecord]:
        return self._call("channels", lambda data: [ChannelRecord.from_json(c) for c in data])

    def get_audit(self, since: int, until: int) -> AuditLog:
        return self._call("audit", AuditLog.from_json, {"from": int(since), "to": int(until)})

    def get_nodes(self, ids: Iterable[str]) -> list[NodeRecord]:
        ids = sorted(set(ids))
        if not ids:
            return []
        return self._call("nodes", lambda data: [NodeRecord.from_json(n) for n in data], {"nodeIds": ",".join(ids)})

    def get_hosted_channels(self) -> dict[str, HostedChannel]:
        return self._call("hc-all", lambda data: decode_secondary(data, HostedChannel.from_json))

    def get_fiat_channels(self) -> dict[str, FiatChannel]:
        return self._call("fc-all", lambda data: decode_secondary(data, FiatChannel.from_json))

    def support_plugin(self, plugin: NodePlugin) -> bool:
        """Hit the plugin's endpoint; a 404 means the plugin is not installed."""
        log.debug("Checking if %s is enabled at node", plugin)
        try:
            self._post(plugin.value)
        except TransportError as e:
            if e.not_found:
                return False
            raise
        return True

    def get_supported_plugins(self) -> set[NodePlugin]:
        return {plugin for plugin in NodePlugin if self.support_plugin(plugin)}
