from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from ..core.nats import publish_audit

logger = logging.getLogger(__name__)


class AuditSink:
    """Best-effort structured audit events; publishing never fails a request."""

    def __init__(self, publisher: Callable[[dict], Awaitable[None]] = publish_audit, timeout: float = 2.0):
        self.publisher = publisher
        self.timeout = timeout

    async def emit(self, action: str, **fields: Any) -> None:
        evt = {"action": action, "occurred_at": datetime.now(timezone.utc).isoformat(), **fields}
        try:
            await asyncio.wait_for(self.publisher(evt), timeout=self.timeout)
        except Exception as exc:
            logger.warning("audit event %s not published: %r", action, exc)


_audit: AuditSink | None = None
def get_audit_sink() -> AuditSink:
    global _audit
    if _audit is None:
        _audit = AuditSink()
    return _audit
