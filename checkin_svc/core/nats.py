from __future__ import annotations
import json
from typing import Sequence
from nats.aio.client import Client as NATS
from .config import get_settings

_settings = get_settings()
_nats = NATS()

async def nats_connect():
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers, connect_timeout=2, max_reconnect_attempts=3)

async def nats_close():
    if _nats.is_connected:
        await _nats.drain()

async def _publish(subject: str, evt: dict):
    await nats_connect()
    await _nats.publish(subject, json.dumps(evt, default=str).encode("utf-8"))

async def publish_activity(evt: dict):
    """
    evt = {
      "volunteer_id": str,
      "activity": "event_checkin",
      "event_id": str,
      "occurred_at": iso8601,
      "idempotency_key": "event_id:volunteer_id"
    }
    """
    await _publish(_settings.nats_subject_activity, evt)

async def publish_audit(evt: dict):
    """evt = {"action": "checkin.recorded", "occurred_at": iso8601, ...fields}"""
    await _publish(_settings.nats_subject_audit, evt)
