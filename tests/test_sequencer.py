from __future__ import annotations

import asyncio

import pytest

from config.settings import FetchSettings, SequencerSettings
from monitoring.fetch import ResilientFetch
from monitoring.registry import ClientRegistry
from monitoring.sequencer import ConnectionQueueEntry, ConnectionSequencer

from tests.conftest import FakeSleep, GatedSleep, RecordingSink, Router


def _registry(*client_ids: str) -> ClientRegistry:
    registry = ClientRegistry()
    registry.upsert_all({"clientId": cid, "repl": f"https://{cid}.test"} for cid in client_ids)
    return registry


def _sequencer(router: Router, registry: ClientRegistry, sleep) -> ConnectionSequencer:
    fetcher = ResilientFetch(
        FetchSettings(_env_file=None, max_retries=0),
        RecordingSink(),
        transport=router.transport(),
        sleep=sleep,
    )
    return ConnectionSequencer(
        registry, fetcher, SequencerSettings(_env_file=None), sleep=sleep
    )


def test_enqueue_overwrites_in_place(router: Router, fake_sleep: FakeSleep) -> None:
    sequencer = _sequencer(router, _registry("a", "b"), fake_sleep)

    sequencer.enqueue("a", "p1")
    sequencer.enqueue("b", "p2")
    sequencer.enqueue("a", "p3")

    assert sequencer.pending == [
        ConnectionQueueEntry("a", "p3"),
        ConnectionQueueEntry("b", "p2"),
    ]
    assert len(sequencer) == 2


@pytest.mark.asyncio
async def test_drain_processes_in_fifo_order(router: Router, fake_sleep: FakeSleep) -> None:
    for cid in ("a", "b", "c"):
        router.add(f"https://{cid}.test/tryToConnect/p-{cid}")
    sequencer = _sequencer(router, _registry("a", "b", "c"), fake_sleep)
    for cid in ("c", "a", "b"):
        sequencer.enqueue(cid, f"p-{cid}")

    assert await sequencer.drain_tick() == 3

    connects = [r.url.host for r in router.requests if "tryToConnect" in r.url.path]
    assert connects == ["c.test", "a.test", "b.test"]
    assert len(sequencer) == 0
    # item delay only between entries
    assert fake_sleep.calls.count(5.0) == 2
    await sequencer.stop()


@pytest.mark.asyncio
async def test_empty_queue_is_a_noop(router: Router, fake_sleep: FakeSleep) -> None:
    sequencer = _sequencer(router, _registry("a"), fake_sleep)
    assert await sequencer.drain_tick() == 0
    assert router.requests == []


@pytest.mark.asyncio
async def test_second_drain_is_rejected_while_draining(router: Router) -> None:
    router.add("https://a.test/tryToConnect/p1")
    router.add("https://b.test/tryToConnect/p2")
    sleep = GatedSleep()
    sequencer = _sequencer(router, _registry("a", "b"), sleep)
    sequencer.enqueue("a", "p1")
    sequencer.enqueue("b", "p2")

    first = asyncio.create_task(sequencer.drain_tick())
    for _ in range(100):
        await asyncio.sleep(0)
        if sleep.calls:
            break

    assert sequencer.is_draining
    assert await sequencer.drain_tick() == 0

    sleep.release()
    assert await first == 2
    assert not sequencer.is_draining
    await sequencer.stop()


@pytest.mark.asyncio
async def test_failed_handshake_does_not_stall_the_queue(router: Router, fake_sleep: FakeSleep) -> None:
    router.add("https://a.test/tryToConnect/p1", 500)
    router.add("https://b.test/tryToConnect/p2")
    sequencer = _sequencer(router, _registry("a", "b"), fake_sleep)
    sequencer.enqueue("a", "p1")
    sequencer.enqueue("b", "p2")

    assert await sequencer.drain_tick() == 2

    stats = sequencer.get_stats()
    assert stats["handshakes_failed"] == 1
    assert stats["handshakes_ok"] == 1
    await sequencer.stop()


@pytest.mark.asyncio
async def test_followups_are_sent_after_failed_handshake(router: Router, fake_sleep: FakeSleep) -> None:
    router.add("https://a.test/tryToConnect/p1", 500)
    router.add("https://a.test/promote")
    router.add("https://a.test/markasread")
    sequencer = _sequencer(router, _registry("a"), fake_sleep)
    sequencer.enqueue("a", "p1")

    await sequencer.drain_tick()
    await asyncio.gather(*sequencer.followup_tasks)

    assert router.paths() == ["/tryToConnect/p1", "/promote", "/markasread"]
    assert sequencer.get_stats()["handshakes_failed"] == 1


@pytest.mark.asyncio
async def test_retired_client_is_skipped(router: Router, fake_sleep: FakeSleep) -> None:
    sequencer = _sequencer(router, _registry("a"), fake_sleep)
    sequencer.enqueue("ghost", "p1")

    assert await sequencer.drain_tick() == 1
    assert router.requests == []


@pytest.mark.asyncio
async def test_followups_run_after_successful_handshake(router: Router, fake_sleep: FakeSleep) -> None:
    router.add("https://a.test/tryToConnect/p1")
    router.add("https://a.test/promote")
    router.add("https://a.test/markasread")
    sequencer = _sequencer(router, _registry("a"), fake_sleep)
    sequencer.enqueue("a", "p1")

    await sequencer.drain_tick()
    await asyncio.gather(*sequencer.followup_tasks)

    assert router.paths() == ["/tryToConnect/p1", "/promote", "/markasread"]
    assert fake_sleep.calls == [35.0, 35.0]


@pytest.mark.asyncio
async def test_stop_cancels_followups(router: Router) -> None:
    router.add("https://a.test/tryToConnect/p1")
    sleep = GatedSleep()
    sequencer = _sequencer(router, _registry("a"), sleep)
    sequencer.enqueue("a", "p1")

    await sequencer.drain_tick()
    tasks = sequencer.followup_tasks
    assert len(tasks) == 1

    await sequencer.stop()

    assert all(task.cancelled() for task in tasks)
    assert router.paths() == ["/tryToConnect/p1"]
