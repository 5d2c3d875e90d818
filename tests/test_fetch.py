from __future__ import annotations

import json

import httpx
import pytest

from config.constants import AlertChannel
from config.settings import FetchSettings
from monitoring.fetch import FetchOptions, ResilientFetch, decode_body

from tests.conftest import FakeSleep, RecordingSink, Router


TARGET = "https://client.test/api"
RELAY = "https://relay.test/bypass"


def _settings(**overrides) -> FetchSettings:
    values = dict(
        default_timeout=30.0,
        timeout_increment=5.0,
        max_retries=3,
        backoff_base=0.5,
        backoff_cap=30.0,
        backoff_jitter=0.2,
        bypass_url=RELAY,
    )
    values.update(overrides)
    return FetchSettings(_env_file=None, **values)


def _fetcher(router: Router, sink: RecordingSink, sleep: FakeSleep, **overrides) -> ResilientFetch:
    return ResilientFetch(
        _settings(**overrides),
        sink,
        instance_name="test",
        transport=router.transport(),
        sleep=sleep,
        rng=lambda: 0.0,
    )


def test_backoff_grows_exponentially_and_is_capped() -> None:
    low = ResilientFetch(_settings(), rng=lambda: 0.0)
    high = ResilientFetch(_settings(), rng=lambda: 1.0)

    assert [low.calculate_backoff(a) for a in range(3)] == [0.5, 1.0, 2.0]
    assert low.calculate_backoff(5) == 16.0
    assert low.calculate_backoff(10) == 30.0

    assert high.calculate_backoff(0) == pytest.approx(0.6)
    assert high.calculate_backoff(5) == pytest.approx(19.2)
    assert high.calculate_backoff(10) == pytest.approx(36.0)


def test_backoff_stays_within_jitter_bounds() -> None:
    fetcher = ResilientFetch(_settings())
    for attempt in range(12):
        base = min(0.5 * 2 ** attempt, 30.0)
        delay = fetcher.calculate_backoff(attempt)
        assert base <= delay <= base * 1.2


def test_attempt_timeout_escalates() -> None:
    fetcher = ResilientFetch(_settings())
    assert [fetcher.attempt_timeout(a) for a in range(4)] == [30.0, 35.0, 40.0, 45.0]
    assert fetcher.attempt_timeout(2, base=10.0) == 20.0


@pytest.mark.asyncio
async def test_success_returns_response(router: Router, sink: RecordingSink, fake_sleep: FakeSleep) -> None:
    router.add(TARGET, json={"ok": True})
    fetcher = _fetcher(router, sink, fake_sleep)

    response = await fetcher.fetch(TARGET)

    assert response is not None
    assert decode_body(response) == {"ok": True}
    assert sink.alerts == []
    assert fake_sleep.calls == []


@pytest.mark.asyncio
async def test_timeouts_are_retried_with_escalating_timeouts(
    router: Router, sink: RecordingSink, fake_sleep: FakeSleep
) -> None:
    router.add(TARGET, raises=httpx.ReadTimeout("timed out"))
    fetcher = _fetcher(router, sink, fake_sleep)

    assert await fetcher.fetch(TARGET) is None

    calls = router.calls(TARGET)
    assert len(calls) == 4
    assert [r.extensions["timeout"]["read"] for r in calls] == [30.0, 35.0, 40.0, 45.0]
    assert fake_sleep.calls == [0.5, 1.0, 2.0]

    texts = sink.texts(AlertChannel.HTTP_FAILURES)
    assert texts[:3] == [f"test: Timeout on attempt {n} for {TARGET}" for n in (1, 2, 3)]
    assert len(texts) == 4
    assert texts[-1].startswith(f"test: All 4 attempts failed for {TARGET}")


@pytest.mark.asyncio
async def test_server_error_then_success(router: Router, sink: RecordingSink, fake_sleep: FakeSleep) -> None:
    responses = [httpx.Response(503, text="busy"), httpx.Response(200, text="fine")]
    router.routes[("GET", TARGET)] = lambda request: responses.pop(0)
    fetcher = _fetcher(router, sink, fake_sleep)

    response = await fetcher.fetch(TARGET, FetchOptions(response_type="text"))

    assert response is not None
    assert response.text == "fine"
    assert len(fake_sleep.calls) == 1
    assert len(sink.alerts) == 1
    assert sink.alerts[0][2] == 503


@pytest.mark.asyncio
async def test_rate_limited_is_retried_but_never_alerted(
    router: Router, sink: RecordingSink, fake_sleep: FakeSleep
) -> None:
    router.add(TARGET, 429, text="slow down")
    fetcher = _fetcher(router, sink, fake_sleep)

    assert await fetcher.fetch(TARGET) is None
    assert len(router.calls(TARGET)) == 4
    assert sink.alerts == []


@pytest.mark.asyncio
async def test_connection_refused_is_retried_silently(
    router: Router, sink: RecordingSink, fake_sleep: FakeSleep
) -> None:
    router.add(TARGET, raises=httpx.ConnectError("[Errno 111] Connection refused"))
    fetcher = _fetcher(router, sink, fake_sleep)

    assert await fetcher.fetch(TARGET) is None
    assert len(router.calls(TARGET)) == 4
    assert sink.alerts == []


@pytest.mark.asyncio
@pytest.mark.parametrize("max_retries", [None, 0, 10])
async def test_edge_blocked_goes_through_bypass_once(
    max_retries, router: Router, sink: RecordingSink, fake_sleep: FakeSleep
) -> None:
    router.add(TARGET, 403, text="blocked")
    router.add(RELAY, method="POST", json={"relayed": True})
    fetcher = _fetcher(router, sink, fake_sleep)

    response = await fetcher.fetch(
        TARGET,
        FetchOptions(headers={"X-Token": "abc"}, params={"q": "1"}),
        max_retries=max_retries,
    )

    assert response is not None
    assert response.json() == {"relayed": True}
    assert len(router.calls(TARGET)) == 1
    assert fake_sleep.calls == []

    (relay_request,) = router.calls(RELAY, "POST")
    payload = json.loads(relay_request.content)
    assert payload["url"] == TARGET
    assert payload["method"] == "GET"
    assert payload["params"] == {"q": "1"}
    assert payload["timeout"] == 30_000
    assert relay_request.headers["content-type"] == "application/json"
    assert relay_request.headers["x-token"] == "abc"
    assert fetcher.get_stats()["bypassed"] == 1


@pytest.mark.asyncio
async def test_bypass_failure_is_final(router: Router, sink: RecordingSink, fake_sleep: FakeSleep) -> None:
    router.add(TARGET, 495)
    router.add(RELAY, 500, method="POST", text="relay down")
    fetcher = _fetcher(router, sink, fake_sleep)

    assert await fetcher.fetch(TARGET) is None
    assert len(router.calls(TARGET)) == 1
    assert len(router.calls(RELAY)) == 1
    (text,) = sink.texts(AlertChannel.HTTP_FAILURES)
    assert text.startswith(f"test: Bypass failed for {TARGET}")


@pytest.mark.asyncio
async def test_edge_blocked_without_relay(router: Router, sink: RecordingSink, fake_sleep: FakeSleep) -> None:
    router.add(TARGET, 403)
    fetcher = _fetcher(router, sink, fake_sleep, bypass_url=None)

    assert await fetcher.fetch(TARGET) is None
    (text,) = sink.texts()
    assert "Bypass relay URL is not configured" in text


@pytest.mark.asyncio
async def test_other_errors_are_reported_once(router: Router, sink: RecordingSink, fake_sleep: FakeSleep) -> None:
    router.add(TARGET, 400, json={"message": "bad payload"})
    fetcher = _fetcher(router, sink, fake_sleep)

    assert await fetcher.fetch(TARGET) is None
    assert len(router.calls(TARGET)) == 1
    assert fake_sleep.calls == []
    assert sink.alerts == [
        (f"test: Request to {TARGET} failed: HTTP 400 Bad Request: bad payload", AlertChannel.HTTP_FAILURES, 400)
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["", "   ", "not a url", "ftp://files.test/x", None])
async def test_invalid_url_is_rejected_without_request(
    url, router: Router, sink: RecordingSink, fake_sleep: FakeSleep
) -> None:
    fetcher = _fetcher(router, sink, fake_sleep)

    assert await fetcher.fetch(url) is None
    assert router.requests == []
    assert fetcher.get_stats()["failed"] == 1


@pytest.mark.asyncio
async def test_max_retries_override(router: Router, sink: RecordingSink, fake_sleep: FakeSleep) -> None:
    router.add(TARGET, 502)
    fetcher = _fetcher(router, sink, fake_sleep)

    assert await fetcher.fetch(TARGET, max_retries=1) is None
    assert len(router.calls(TARGET)) == 2
    texts = sink.texts(AlertChannel.HTTP_FAILURES)
    assert len(texts) == 2
    assert texts[0].startswith(f"test: Attempt 1 failed for {TARGET}")
    assert texts[1].startswith(f"test: All 2 attempts failed for {TARGET}")


@pytest.mark.asyncio
async def test_probe_is_single_attempt_without_alerts(
    router: Router, sink: RecordingSink, fake_sleep: FakeSleep
) -> None:
    router.add(TARGET, 503)
    fetcher = _fetcher(router, sink, fake_sleep)

    assert await fetcher.probe(TARGET, timeout=5) is None
    assert len(router.calls(TARGET)) == 1
    assert sink.alerts == []

    router.add(TARGET, 204)
    response = await fetcher.probe(TARGET, timeout=5)
    assert response is not None
    assert response.status_code == 204


def test_decode_body_keeps_binary_as_bytes() -> None:
    pdf = httpx.Response(200, content=b"%PDF-1.4", headers={"content-type": "application/pdf"})
    assert decode_body(pdf) == b"%PDF-1.4"

    text = httpx.Response(200, text="plain words")
    assert decode_body(text) == "plain words"
    assert decode_body(text, "arraybuffer") == b"plain words"
