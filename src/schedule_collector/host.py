"""
Host traffic hooks.

The host (a browser page, an extension, a headless driver) reports its own
outbound traffic here; observers subscribe to it. Nothing in this module
patches or wraps the host's request primitives, and the events are frozen
snapshots, so observing never changes what the host sends or receives.

Usage:
    hooks = HostTrafficHooks()
    hooks.subscribe(observer)

    # host side, after each request/response/socket open
    hooks.emit_response(ObservedResponse("GET", url, 200, request_headers))
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Protocol
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)


def _freeze(headers: Mapping[str, str] | None) -> Mapping[str, str]:
    return MappingProxyType(dict(headers or {}))


@dataclass(frozen=True)
class ObservedRequest:
    """An outbound request as the host is about to send it."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "headers", _freeze(self.headers))

    @property
    def hostname(self) -> str:
        return urlsplit(self.url).hostname or ""


@dataclass(frozen=True)
class ObservedResponse:
    """A completed request: its status plus the headers the host sent with it."""

    method: str
    url: str
    status: int
    request_headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "request_headers", _freeze(self.request_headers))

    @property
    def hostname(self) -> str:
        return urlsplit(self.url).hostname or ""


@dataclass(frozen=True)
class ObservedConnection:
    """A persistent connection (e.g. websocket/event stream) the host opened."""

    url: str
    opened: bool = True

    @property
    def hostname(self) -> str:
        return urlsplit(self.url).hostname or ""


class TrafficObserver(Protocol):
    """Anything that wants to see host traffic."""

    def on_request(self, event: ObservedRequest) -> None: ...

    def on_response(self, event: ObservedResponse) -> None: ...

    def on_connection(self, event: ObservedConnection) -> None: ...


class HostTrafficHooks:
    """
    Registry the host reports traffic to.

    emit_* never raise: an observer failure is logged and the remaining
    observers still run, so the host's own traffic is unaffected.
    """

    def __init__(self):
        self._observers: list[TrafficObserver] = []

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def subscribe(self, observer: TrafficObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: TrafficObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def emit_request(self, event: ObservedRequest) -> None:
        self._dispatch("on_request", event)

    def emit_response(self, event: ObservedResponse) -> None:
        self._dispatch("on_response", event)

    def emit_connection(self, event: ObservedConnection) -> None:
        self._dispatch("on_connection", event)

    def _dispatch(self, method: str, event: object) -> None:
        # Copy so observers may unsubscribe while being notified
        for observer in list(self._observers):
            handler = getattr(observer, method, None)
            if handler is None:
                continue
            try:
                handler(event)
            except Exception as e:
                logger.warning(
                    "Traffic observer failed",
                    extra={
                        "operation": method,
                        "error_type": type(e).__name__,
                        "error_message": str(e)[:200],
                    },
                )
