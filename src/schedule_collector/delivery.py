"""Delivery of accepted snapshots to the remote collector."""

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

import aiohttp

from core.errors import CollectorError, DeliveryError, HttpError, NetworkError
from core.resilience import DELIVERY_POLICY, retry_async
from schedule_collector.change_detector import ChangePolicy

logger = logging.getLogger(__name__)


@dataclass
class DeliveryAttempt:
    """State of one deliver() call; discarded when it returns."""

    payload: list[Any]
    retries_left: int
    attempts: int = 0
    last_error: Exception | None = None


class DeliveryPipeline:
    """
    POSTs snapshots to the collector with a bounded, fixed-delay retry.

    The gate is only committed after the collector answers 200. A delivery
    that exhausts its attempts leaves the gate untouched, so the same
    snapshot is offered again on the next cycle.
    """

    def __init__(
        self,
        url: str,
        gate: ChangePolicy,
        source_tag: str = "schedule-collector",
        authorization: str = "",
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        timeout_seconds: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ):
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"DeliveryPipeline url must start with http:// or https://, got: {url!r}")

        self.url = url
        self.gate = gate
        self.source_tag = source_tag
        self.authorization = authorization
        self.timeout_seconds = timeout_seconds
        self.retry_policy = replace(
            DELIVERY_POLICY,
            max_attempts=max_attempts,
            delay_seconds=retry_delay_seconds,
            max_delay_seconds=max(retry_delay_seconds, 1.0),
        )
        self._session = session
        self._owns_session = session is None

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Data-Source": self.source_tag,
        }
        if self.authorization:
            headers["Authorization"] = self.authorization
        return headers

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post(self, attempt: DeliveryAttempt) -> None:
        session = await self._ensure_session()
        attempt.attempts += 1
        attempt.retries_left -= 1

        try:
            async with session.post(
                self.url,
                data=json.dumps(attempt.payload, ensure_ascii=False),
                headers=self._headers(),
            ) as response:
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            attempt.last_error = NetworkError(
                f"Collector request failed: {type(e).__name__}", cause=e, context={"url": self.url}
            )
            raise attempt.last_error from e

        if status != 200:
            attempt.last_error = HttpError(status, self.url)
            raise attempt.last_error

    async def deliver(
        self,
        snapshot: list[Any],
        is_alive: Callable[[], bool] | None = None,
    ) -> bool:
        """
        Send snapshot to the collector and, on success, commit it to the gate.

        Args:
            snapshot: Event records to send
            is_alive: Checked after the collector answers; when it returns
                False the result is discarded and nothing is committed

        Returns:
            True if the snapshot was committed as last delivered

        Raises:
            DeliveryError: every attempt failed; gate state is unchanged
        """
        attempt = DeliveryAttempt(payload=snapshot, retries_left=self.retry_policy.max_attempts)

        try:
            await retry_async(
                lambda: self._post(attempt),
                policy=self.retry_policy,
                operation="deliver_snapshot",
            )
        except CollectorError as e:
            raise DeliveryError(
                f"Collector did not accept snapshot after {attempt.attempts} attempt(s)",
                attempts=attempt.attempts,
                last_error=attempt.last_error or e,
                context={"url": self.url, "event_count": len(snapshot)},
            ) from e

        logger.info(
            "Snapshot delivered",
            extra={
                "url": self.url,
                "event_count": len(snapshot),
                "attempt": attempt.attempts,
            },
        )

        if is_alive is not None and not is_alive():
            logger.info("Agent stopped during delivery, not recording snapshot")
            return False

        self.gate.commit(snapshot)
        return True
