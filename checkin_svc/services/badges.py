"""
Badge-evaluation handoff.

The badge engine lives in another service. After a new check-in the
recorder puts the volunteer on an in-process queue; a single worker task
drains it and calls the configured ``BadgeEvaluator`` under a timeout.
Nothing here ever raises back into the request path.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

import httpx

from ..core.config import Settings, get_settings
from ..core.metrics import BADGE_FAILURES
from ..core.nats import publish_activity

logger = logging.getLogger(__name__)


class BadgeEvaluator(Protocol):
    async def on_volunteer_activity(self, volunteer_id: str, *, event_id: str | None = None, token: str | None = None) -> None: ...


class NatsBadgeEvaluator:
    """Publishes a volunteer-activity event; the badge engine consumes it."""

    async def on_volunteer_activity(self, volunteer_id: str, *, event_id: str | None = None, token: str | None = None) -> None:
        await publish_activity({
            "volunteer_id": volunteer_id,
            "activity": "event_checkin",
            "event_id": event_id,
            "occurred_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "idempotency_key": f"{event_id}:{volunteer_id}",
        })


class HttpBadgeEvaluator:
    """Calls the badge engine's check endpoint directly.

    Authenticates with the service token when one is configured. Otherwise
    the volunteer's own bearer token is forwarded, best-effort: it may have
    expired by the time the queued job is delivered.
    """

    def __init__(self, base_url: str, service_token: str | None = None):
        self.base_url = base_url.rstrip("/")
        self.service_token = service_token

    async def on_volunteer_activity(self, volunteer_id: str, *, event_id: str | None = None, token: str | None = None) -> None:
        headers = {"Content-Type": "application/json"}
        bearer = self.service_token or token
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        async with httpx.AsyncClient() as client:
            r = await client.post(f"{self.base_url}/badges/check", headers=headers, json={"userId": volunteer_id})
            r.raise_for_status()


@dataclass(frozen=True)
class BadgeJob:
    volunteer_id: str
    event_id: str | None = None
    token: str | None = None


class BadgeDispatcher:
    def __init__(self, evaluator: BadgeEvaluator, *, timeout: float, maxsize: int = 1000):
        self.evaluator = evaluator
        self.timeout = timeout
        self._queue: asyncio.Queue[BadgeJob] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def enqueue(self, volunteer_id: str, *, event_id: str | None = None, token: str | None = None) -> bool:
        try:
            self._queue.put_nowait(BadgeJob(volunteer_id=volunteer_id, event_id=event_id, token=token))
        except asyncio.QueueFull:
            BADGE_FAILURES.labels(reason="queue_full").inc()
            logger.warning("badge queue full, dropping activity for volunteer %s", volunteer_id)
            return False
        return True

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run(), name="badge-dispatcher")

    async def drain(self) -> None:
        await self._queue.join()

    async def stop(self, grace_seconds: float = 5.0) -> None:
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("badge queue not drained on shutdown, %d jobs dropped", self._queue.qsize())
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.deliver(job)
            finally:
                self._queue.task_done()

    async def deliver(self, job: BadgeJob) -> None:
        try:
            await asyncio.wait_for(
                self.evaluator.on_volunteer_activity(job.volunteer_id, event_id=job.event_id, token=job.token),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            BADGE_FAILURES.labels(reason="timeout").inc()
            logger.warning("badge evaluation timed out after %.1fs for volunteer %s", self.timeout, job.volunteer_id)
        except Exception:
            BADGE_FAILURES.labels(reason="error").inc()
            logger.exception("badge evaluation failed for volunteer %s", job.volunteer_id)


def build_badge_evaluator(settings: Settings) -> BadgeEvaluator:
    if settings.use_nats_for_badges:
        return NatsBadgeEvaluator()
    return HttpBadgeEvaluator(settings.badges_base_url, service_token=settings.badges_service_token)


_dispatcher: BadgeDispatcher | None = None
def get_dispatcher() -> BadgeDispatcher:
    global _dispatcher
    if _dispatcher is None:
        settings = get_settings()
        _dispatcher = BadgeDispatcher(
            build_badge_evaluator(settings),
            timeout=settings.badge_timeout_seconds,
            maxsize=settings.badge_queue_maxsize,
        )
    return _dispatcher
