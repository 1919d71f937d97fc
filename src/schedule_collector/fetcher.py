"""Upstream schedule API client.

One POST per day offset, classified into a snapshot or a typed error.
Retry policy lives in the scheduler, not here.
"""

import asyncio
import json
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

from core.errors import AuthError, HttpError, MalformedResponse, NetworkError
from schedule_collector.credentials import Credential

logger = logging.getLogger(__name__)

Snapshot = list[Any]


class ScheduleQuery(BaseModel):
    """Fixed shape of the upstream schedule query.

    Everything defaults to empty/false; the search date is always computed
    at request time (UTC now plus the day offset).

    Example:
        >>> ScheduleQuery(show_live=True).to_request_body(
        ...     datetime(2026, 1, 5, tzinfo=UTC), day_offset=1
        ... )["filters"]["searchDate"]
        '2026-01-06T00:00:00.000Z'
    """

    model_config = ConfigDict(extra="forbid")

    search_word: str = Field(default="", description="Free-text search term")
    only_new: bool = False
    show_vod: bool = False
    show_live: bool = False
    sports_criteria: list[Any] = Field(default_factory=list)
    countries_criteria: list[Any] = Field(default_factory=list)
    services_criteria: list[Any] = Field(default_factory=list)
    timezone_offset: int = Field(default=0, description="Minutes, as reported by the host")

    def to_request_body(self, now: datetime, day_offset: int = 0) -> dict[str, Any]:
        search_date = (now.astimezone(UTC) + timedelta(days=day_offset)).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
        return {
            "filters": {
                "searchDate": search_date,
                "searchWord": self.search_word,
                "onlyNew": self.only_new,
                "showVOD": self.show_vod,
                "showLive": self.show_live,
                "sportsCriteria": list(self.sports_criteria),
                "countriesCriteria": list(self.countries_criteria),
                "servicesCriteria": list(self.services_criteria),
            },
            "timezoneOffset": self.timezone_offset,
        }


class SnapshotFetcher:
    """Async client for the upstream schedule endpoint."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ):
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"SnapshotFetcher url must start with http:// or https://, got: {url!r}")

        self.url = url
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "SnapshotFetcher":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

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

    async def fetch(
        self,
        query: ScheduleQuery,
        credential: Credential | None,
        day_offset: int = 0,
        now: datetime | None = None,
    ) -> Snapshot:
        """
        Fetch one snapshot.

        Args:
            query: Query shape to send
            credential: Current credential (None sends the request unauthenticated)
            day_offset: Days added to the search date
            now: Reference instant (defaults to UTC now)

        Returns:
            Decoded JSON array of event records

        Raises:
            AuthError: 401/403, the credential should be invalidated
            HttpError: any other non-200 status
            MalformedResponse: body is not a JSON array
            NetworkError: transport failure or timeout
        """
        session = await self._ensure_session()
        body = query.to_request_body(now or datetime.now(UTC), day_offset)
        headers = {**(credential.as_headers() if credential else {}), "Content-Type": "application/json"}

        start = asyncio.get_running_loop().time()
        try:
            async with session.post(self.url, json=body, headers=headers) as response:
                status = response.status
                raw = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(
                f"Upstream request failed: {type(e).__name__}",
                cause=e,
                context={"url": self.url, "day_offset": day_offset},
            ) from e

        duration_ms = (asyncio.get_running_loop().time() - start) * 1000
        logger.debug(
            "Upstream responded",
            extra={
                "url": self.url,
                "http_status": status,
                "day_offset": day_offset,
                "duration_ms": round(duration_ms, 1),
            },
        )

        if status in (401, 403):
            raise AuthError(f"Upstream rejected credential ({status})", status=status)
        if status != 200:
            raise HttpError(status, self.url)

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedResponse("Invalid JSON response", cause=e, context={"url": self.url}) from e

        if not isinstance(data, list):
            raise MalformedResponse(
                f"Expected a JSON array, got {type(data).__name__}",
                context={"url": self.url},
            )

        return data
