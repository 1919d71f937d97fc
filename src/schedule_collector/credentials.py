"""
Credential model and the observer that captures credentials from host traffic.

The agent is never handed a credential. It watches the host's own traffic
(see schedule_collector.host) and copies what the host already uses:

- header capture: a 200 response from the handshake endpoint means the
  headers sent with that request are good; keep them.
- token extraction: a streaming connection opened with ?access_token=...
  carries a bearer token in its URL; keep that.

Static headers from config are the explicit alternative to both and go
through the same interface, so the rest of the pipeline never knows where
the credential came from.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlsplit

from config.config import CredentialConfig
from schedule_collector.host import ObservedConnection, ObservedRequest, ObservedResponse
from schedule_collector.store import PersistentStore

logger = logging.getLogger(__name__)

# Persisted keys
AUTH_TOKEN_KEY = "auth_token"
TOKEN_EXPIRY_KEY = "token_expiry"

# Requests seen but not yet answered; bounded so a chatty host can't grow it
MAX_PENDING_REQUESTS = 64


@dataclass
class Credential:
    """
    Header bag and/or bearer token used to authenticate upstream queries.

    Attributes:
        headers: Captured request headers (full bag unless an allowlist applies)
        token: Bearer token extracted from a connection URL
        expires_at: Epoch seconds after which the credential is unusable
        source: Which strategy produced it (header_capture, token_extraction, static, persisted)
        acquired_at: Epoch seconds when it was captured
    """

    headers: dict[str, str] = field(default_factory=dict)
    token: str | None = None
    expires_at: float | None = None
    source: str = "unknown"
    acquired_at: float = field(default_factory=time.time)

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (time.time() if now is None else now)

    def as_headers(self) -> dict[str, str]:
        """Headers to send upstream."""
        headers = dict(self.headers)
        has_auth = any(name.lower() == "authorization" for name in headers)
        if self.token and not has_auth:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def to_dict(self) -> dict[str, Any]:
        return {
            "headers": dict(self.headers),
            "token": self.token,
            "expires_at": self.expires_at,
            "source": self.source,
            "acquired_at": self.acquired_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        return cls(
            headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
            token=data.get("token"),
            expires_at=data.get("expires_at"),
            source=data.get("source", "persisted"),
            acquired_at=data.get("acquired_at") or time.time(),
        )


class CredentialObserver:
    """
    Captures credentials from host traffic and hands the current one out.

    Register with HostTrafficHooks.subscribe(). on_credential_available
    callbacks fire when the observer goes from "no credential" to "has one";
    replacing an existing credential does not fire them again, invalidating
    re-arms them.
    """

    def __init__(
        self,
        config: CredentialConfig,
        store: PersistentStore | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.store = store
        self._clock = clock
        self._credential: Credential | None = None
        self._available = asyncio.Event()
        self._pending: OrderedDict[str, dict[str, str]] = OrderedDict()
        self._allowlist = {name.lower() for name in config.header_allowlist}
        self.on_credential_available: list[Callable[[Credential], None]] = []

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def current_credential(self) -> Credential | None:
        """The active credential, or None when absent or expired."""
        credential = self._credential
        if credential is not None and credential.is_expired(self._clock()):
            self.invalidate("expired")
            return None
        if credential is None and self.config.static_headers:
            credential = self._seed_static()
        return credential

    async def wait_for_credential(self, timeout: float) -> Credential | None:
        """Return the credential, waiting up to timeout seconds for one to be observed."""
        credential = self.current_credential()
        if credential is not None:
            return credential

        try:
            await asyncio.wait_for(self._available.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

        return self.current_credential()

    def invalidate(self, reason: str) -> None:
        """Drop the current credential and its persisted copy."""
        had_credential = self._credential is not None
        self._credential = None
        self._available.clear()

        if self.store is not None:
            self.store.delete(AUTH_TOKEN_KEY)
            self.store.delete(TOKEN_EXPIRY_KEY)

        if had_credential:
            logger.warning("Credential invalidated, waiting for re-acquisition", extra={"reason": reason})

    def load_persisted(self) -> Credential | None:
        """Restore a credential saved by a previous process, if it has not expired."""
        if self.store is None:
            return None

        data = self.store.get(AUTH_TOKEN_KEY)
        if not isinstance(data, dict):
            return None

        credential = Credential.from_dict(data)
        expiry = self.store.get(TOKEN_EXPIRY_KEY)
        if expiry is not None:
            credential.expires_at = float(expiry)

        if credential.is_expired(self._clock()):
            self.store.delete(AUTH_TOKEN_KEY)
            self.store.delete(TOKEN_EXPIRY_KEY)
            return None

        self._acquire(credential, persist=False)
        return credential

    # ------------------------------------------------------------------
    # Host traffic (TrafficObserver protocol)
    # ------------------------------------------------------------------

    def on_request(self, event: ObservedRequest) -> None:
        if "header_capture" not in self.config.strategies:
            return
        if not self._host_allowed(event.hostname) or not self._is_handshake(event.url):
            return

        self._pending[event.url] = dict(event.headers)
        self._pending.move_to_end(event.url)
        while len(self._pending) > MAX_PENDING_REQUESTS:
            self._pending.popitem(last=False)

    def on_response(self, event: ObservedResponse) -> None:
        if "header_capture" not in self.config.strategies:
            return
        if not self._host_allowed(event.hostname) or not self._is_handshake(event.url):
            return

        pending = self._pending.pop(event.url, None)
        if event.status != 200:
            logger.debug(
                "Handshake response not usable",
                extra={"url": event.url, "http_status": event.status},
            )
            return

        headers = dict(event.request_headers) or pending or {}
        headers = self._filter_headers(headers)
        if not headers:
            logger.debug("Handshake response carried no headers", extra={"url": event.url})
            return

        self._acquire(
            Credential(
                headers=headers,
                expires_at=self._default_expiry(),
                source="header_capture",
                acquired_at=self._clock(),
            )
        )

    def on_connection(self, event: ObservedConnection) -> None:
        if "token_extraction" not in self.config.strategies or not event.opened:
            return
        if not self._host_allowed(event.hostname):
            return

        token = self._extract_token(event.url)
        if not token:
            return

        self._acquire(
            Credential(
                token=token,
                expires_at=self._default_expiry(),
                source="token_extraction",
                acquired_at=self._clock(),
            )
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _acquire(self, credential: Credential, persist: bool = True) -> None:
        first = self._credential is None
        self._credential = credential

        if persist and self.store is not None:
            self._persist(credential)

        self._available.set()

        logger.info(
            "Credential acquired" if first else "Credential replaced",
            extra={
                "credential_source": credential.source,
                "header_count": len(credential.headers),
                "expires_at": credential.expires_at,
            },
        )

        if not first:
            return

        for callback in list(self.on_credential_available):
            try:
                callback(credential)
            except Exception as e:
                logger.warning(
                    "on_credential_available callback failed",
                    extra={"error_type": type(e).__name__, "error_message": str(e)[:200]},
                )

    def _persist(self, credential: Credential) -> None:
        ttl = None
        if credential.expires_at is not None:
            ttl = credential.expires_at - self._clock()
            if ttl <= 0:
                return
        self.store.set(AUTH_TOKEN_KEY, credential.to_dict(), ttl=ttl)
        self.store.set(TOKEN_EXPIRY_KEY, credential.expires_at, ttl=ttl)

    def _seed_static(self) -> Credential:
        credential = Credential(
            headers=dict(self.config.static_headers),
            source="static",
            acquired_at=self._clock(),
        )
        self._acquire(credential, persist=False)
        return credential

    def _default_expiry(self) -> float | None:
        if self.config.default_ttl_seconds is None:
            return None
        return self._clock() + self.config.default_ttl_seconds

    def _filter_headers(self, headers: dict[str, str]) -> dict[str, str]:
        if not self._allowlist:
            return headers
        return {name: value for name, value in headers.items() if name.lower() in self._allowlist}

    def _is_handshake(self, url: str) -> bool:
        return self.config.handshake_marker in url

    def _host_allowed(self, hostname: str) -> bool:
        allowed = self.config.allowed_hosts
        if not allowed:
            return True
        hostname = hostname.lower()
        return any(hostname == host.lower() or hostname.endswith("." + host.lower()) for host in allowed)

    def _extract_token(self, url: str) -> str | None:
        values = parse_qs(urlsplit(url).query).get(self.config.token_param)
        if not values or not values[0]:
            return None
        return values[0]
