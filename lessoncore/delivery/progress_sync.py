"""
Debounced remote progress sync.

Learner progress is pushed to a remote endpoint after changes settle: each
change re-arms a short window and only the latest snapshot is sent once the
window passes. On teardown the pending snapshot can be flushed or dropped.

Time comes only from the injected clock, so tests drive the debounce
without sleeping.

Usage:
    client = ProgressSyncClient(base_url="https://api.example.com", api_key="...")
    sync = DebouncedProgressSync(client, window_seconds=1.0)
    sync.schedule(snapshot)
    await sync.poll()    # sends once the window has passed
    await sync.flush()   # sends now, if anything is pending
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, Generic, TypeVar

import httpx
from loguru import logger
from pydantic import BaseModel, Field

T = TypeVar("T")

Clock = Callable[[], float]


class ProgressSnapshot(BaseModel):
    """Payload posted to the progress endpoint."""

    user_id: str
    skills: dict[str, float] = Field(default_factory=dict)
    completed_lessons: list[str] = Field(default_factory=list)
    total_pulls: int = 0
    total_xp: int = 0
    updated_at: datetime


class Debouncer(Generic[T]):
    """
    Holds the latest payload until `window_seconds` pass without a new trigger.

    poll() and flush() return the payload that should be sent, or None.
    """

    def __init__(self, window_seconds: float, clock: Clock = time.monotonic):
        self.window_seconds = window_seconds
        self.clock = clock
        self._pending: T | None = None
        self._deadline: float | None = None

    @property
    def pending(self) -> bool:
        return self._deadline is not None

    def trigger(self, payload: T) -> None:
        self._pending = payload
        self._deadline = self.clock() + self.window_seconds

    def poll(self) -> T | None:
        if self._deadline is None or self.clock() < self._deadline:
            return None
        return self._take()

    def flush(self) -> T | None:
        if self._deadline is None:
            return None
        return self._take()

    def cancel(self) -> None:
        self._pending = None
        self._deadline = None

    def _take(self) -> T | None:
        payload = self._pending
        self.cancel()
        return payload


class ProgressSyncClient:
    """HTTP client for the remote progress endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        endpoint: str = "/progress",
        timeout_seconds: float = 10.0,
    ):
        """
        Initialize the sync client.

        Args:
            base_url: Base URL of the progress API
            api_key: Optional bearer token
            endpoint: Path the snapshot is posted to
            timeout_seconds: Request timeout
        """
        self.base_url = base_url.rstrip("/")
        self.endpoint = endpoint if endpoint.startswith("/") else f"/{endpoint}"
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
            follow_redirects=True,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def push(self, snapshot: ProgressSnapshot) -> bool:
        """
        Post a snapshot.

        Returns:
            True on a 2xx response; failures are logged and return False
        """
        try:
            response = await self.client.post(
                f"{self.base_url}{self.endpoint}",
                json=snapshot.model_dump(mode="json"),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Progress sync rejected for {}: HTTP {}",
                snapshot.user_id,
                e.response.status_code,
            )
            return False
        except httpx.HTTPError as e:
            logger.warning("Progress sync failed for {}: {}", snapshot.user_id, e)
            return False

        logger.debug("Progress synced for {}", snapshot.user_id)
        return True


class DebouncedProgressSync:
    """ProgressSyncClient behind a Debouncer."""

    def __init__(
        self,
        client: ProgressSyncClient,
        window_seconds: float = 1.0,
        clock: Clock = time.monotonic,
    ):
        self.client = client
        self.debouncer: Debouncer[ProgressSnapshot] = Debouncer(window_seconds, clock)

    def schedule(self, snapshot: ProgressSnapshot) -> None:
        self.debouncer.trigger(snapshot)

    async def poll(self) -> bool:
        snapshot = self.debouncer.poll()
        if snapshot is None:
            return False
        return await self.client.push(snapshot)

    async def flush(self) -> bool:
        snapshot = self.debouncer.flush()
        if snapshot is None:
            return False
        return await self.client.push(snapshot)

    def cancel(self) -> None:
        self.debouncer.cancel()

    async def close(self, flush: bool = True) -> None:
        """Flush (or drop) the pending snapshot and close the client."""
        if flush:
            await self.flush()
        else:
            self.cancel()
        await self.client.close()
