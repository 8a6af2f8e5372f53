import asyncio
import json
import logging

import httpx
import pytest

from checkin_svc.services.audit import AuditSink
from checkin_svc.services.badges import BadgeDispatcher, HttpBadgeEvaluator


class FakeEvaluator:
    def __init__(self, fail=False, delay=0.0):
        self.fail = fail
        self.delay = delay
        self.calls = []

    async def on_volunteer_activity(self, volunteer_id, *, event_id=None, token=None):
        self.calls.append((volunteer_id, event_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("badge engine down")


async def test_dispatcher_delivers_in_background():
    evaluator = FakeEvaluator()
    dispatcher = BadgeDispatcher(evaluator, timeout=1.0)
    dispatcher.start()
    try:
        assert dispatcher.enqueue("auth0|v1", event_id="e1")
        assert dispatcher.enqueue("auth0|v2", event_id="e1")
        await asyncio.wait_for(dispatcher.drain(), timeout=1)
    finally:
        await dispatcher.stop()
    assert evaluator.calls == [("auth0|v1", "e1"), ("auth0|v2", "e1")]
    assert not dispatcher.running


async def test_failures_are_logged_and_swallowed(caplog):
    evaluator = FakeEvaluator(fail=True)
    dispatcher = BadgeDispatcher(evaluator, timeout=1.0)
    dispatcher.start()
    with caplog.at_level(logging.ERROR, logger="checkin_svc.services.badges"):
        dispatcher.enqueue("auth0|v1")
        dispatcher.enqueue("auth0|v2")
        await asyncio.wait_for(dispatcher.drain(), timeout=1)
    # the worker survives a failing call and keeps going
    assert [c[0] for c in evaluator.calls] == ["auth0|v1", "auth0|v2"]
    assert dispatcher.running
    assert "badge evaluation failed" in caplog.text
    await dispatcher.stop()


async def test_slow_badge_engine_times_out(caplog):
    evaluator = FakeEvaluator(delay=5)
    dispatcher = BadgeDispatcher(evaluator, timeout=0.05)
    dispatcher.start()
    with caplog.at_level(logging.WARNING, logger="checkin_svc.services.badges"):
        dispatcher.enqueue("auth0|v1")
        await asyncio.wait_for(dispatcher.drain(), timeout=1)
    assert "timed out" in caplog.text
    await dispatcher.stop()


def test_full_queue_drops_instead_of_blocking():
    dispatcher = BadgeDispatcher(FakeEvaluator(), timeout=1.0, maxsize=1)
    assert dispatcher.enqueue("auth0|v1")
    assert not dispatcher.enqueue("auth0|v2")


async def test_http_evaluator_posts_to_badge_check(monkeypatch):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = request.read()
        return httpx.Response(200, json={"success": True})

    transport = httpx.MockTransport(handler)
    real_client = httpx.AsyncClient
    monkeypatch.setattr(httpx, "AsyncClient", lambda *a, **kw: real_client(*a, transport=transport, **kw))

    await HttpBadgeEvaluator("http://badges.test/api/").on_volunteer_activity("auth0|v1", token="tok")
    assert seen["url"] == "http://badges.test/api/badges/check"
    assert seen["auth"] == "Bearer tok"
    assert json.loads(seen["body"]) == {"userId": "auth0|v1"}


async def test_http_evaluator_raises_on_error_status(monkeypatch):
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    real_client = httpx.AsyncClient
    monkeypatch.setattr(httpx, "AsyncClient", lambda *a, **kw: real_client(*a, transport=transport, **kw))
    with pytest.raises(httpx.HTTPStatusError):
        await HttpBadgeEvaluator("http://badges.test/api").on_volunteer_activity("auth0|v1")


async def test_audit_sink_swallows_publisher_errors(caplog):
    async def broken(evt):
        raise ConnectionError("nats down")

    sink = AuditSink(publisher=broken)
    with caplog.at_level(logging.WARNING, logger="checkin_svc.services.audit"):
        await sink.emit("checkin.recorded", event_id="e1")
    assert "not published" in caplog.text


async def test_audit_sink_publishes_structured_event():
    published = []

    async def publisher(evt):
        published.append(evt)

    await AuditSink(publisher=publisher).emit("checkin.denied", volunteer_id="auth0|v1", distance_meters=612.3)
    assert published[0]["action"] == "checkin.denied"
    assert published[0]["volunteer_id"] == "auth0|v1"
    assert "occurred_at" in published[0]


async def test_http_evaluator_prefers_service_token(monkeypatch):
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200)

    transport = httpx.MockTransport(handler)
    real_client = httpx.AsyncClient
    monkeypatch.setattr(httpx, "AsyncClient", lambda *a, **kw: real_client(*a, transport=transport, **kw))

    evaluator = HttpBadgeEvaluator("http://badges.test/api", service_token="svc")
    await evaluator.on_volunteer_activity("auth0|v1", token="volunteer-token")
    assert seen["auth"] == "Bearer svc"
