import asyncio

import pytest

from inbox_sync.models import Label
from inbox_sync.sync.snapshot import ConversationSnapshotCache

from .utils import conv, snap


def _cache(responses):
    queue = list(responses)

    async def fetcher():
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    cache = ConversationSnapshotCache(fetcher)
    seen = []
    cache.add_listener(seen.append)
    return cache, seen


def test_fetch_notifies_only_on_meaningful_change():
    base = snap(conv("c1", last_active_at="t1"), conv("c2", last_active_at="t1"))
    same = snap(conv("c1", last_active_at="t1"), conv("c2", last_active_at="t1"))
    relabelled = snap(
        conv("c1", last_active_at="t1", content="otro texto", labels=[Label(id="l1", name="VIP")]),
        conv("c2", last_active_at="t1"),
    )
    resolved = snap(conv("c1", last_active_at="t1", status="resuelto"), conv("c2", last_active_at="t1"))
    shorter = snap(conv("c1", last_active_at="t1", status="resuelto"))

    cache, seen = _cache([base, same, relabelled, resolved, shorter])

    async def scenario():
        for _ in range(5):
            await cache.fetch()

    asyncio.run(scenario())
    assert seen == [base, resolved, shorter]
    assert cache.get_last() is shorter
    assert cache.fetch_count == 5
    assert cache.change_count == 3


def test_assignment_and_reordering_count_as_changes():
    a = snap(conv("c1", last_active_at="t1"), conv("c2", last_active_at="t1"))
    assigned = snap(conv("c1", last_active_at="t1", assigned="u2"), conv("c2", last_active_at="t1"))
    reordered = snap(conv("c2", last_active_at="t1"), conv("c1", last_active_at="t1", assigned="u2"))
    cache, seen = _cache([a, assigned, reordered])

    async def scenario():
        for _ in range(3):
            await cache.fetch()

    asyncio.run(scenario())
    assert seen == [a, assigned, reordered]


def test_refresh_always_notifies():
    s = snap(conv("c1", last_active_at="t1"))
    cache, seen = _cache([s, s, s])

    async def scenario():
        await cache.fetch()
        await cache.refresh()
        await cache.fetch()

    asyncio.run(scenario())
    assert len(seen) == 2


def test_fetch_error_propagates_and_keeps_last_snapshot():
    s = snap(conv("c1", last_active_at="t1"))
    cache, seen = _cache([s, RuntimeError("boom")])

    async def scenario():
        await cache.fetch()
        with pytest.raises(RuntimeError):
            await cache.fetch()

    asyncio.run(scenario())
    assert cache.get_last() is s
    assert seen == [s]


def test_first_empty_fetch_does_not_notify_but_marks_loaded():
    cache, seen = _cache([snap()])
    asyncio.run(cache.fetch())
    assert cache.loaded
    assert seen == []
    assert len(cache.get_last()) == 0


def test_result_after_close_is_discarded():
    release = {}
    late = snap(conv("c9", last_active_at="t9"))

    async def scenario():
        release["event"] = asyncio.Event()

        async def fetcher():
            await release["event"].wait()
            return late

        cache = ConversationSnapshotCache(fetcher)
        seen = []
        cache.add_listener(seen.append)
        pending = asyncio.ensure_future(cache.refresh())
        await asyncio.sleep(0)
        cache.close()
        release["event"].set()
        await pending
        return cache, seen

    cache, seen = asyncio.run(scenario())
    assert seen == []
    assert len(cache.get_last()) == 0


def test_last_completed_fetch_wins():
    older = snap(conv("c1", last_active_at="t1"))
    newer = snap(conv("c1", last_active_at="t2"))

    async def scenario():
        gates = [asyncio.Event(), asyncio.Event()]
        results = [older, newer]
        calls = {"n": 0}

        async def fetcher():
            i = calls["n"]
            calls["n"] += 1
            await gates[i].wait()
            return results[i]

        cache = ConversationSnapshotCache(fetcher)
        first = asyncio.ensure_future(cache.refresh())
        await asyncio.sleep(0)
        second = asyncio.ensure_future(cache.refresh())
        await asyncio.sleep(0)
        gates[1].set()
        await second
        gates[0].set()
        await first
        return cache.get_last()

    assert asyncio.run(scenario()) is older


def test_listener_removal_and_find_by_phone():
    s = snap(conv("c1", phone="5215550001111", last_active_at="t1"))
    cache, seen = _cache([s, snap()])
    extra = []
    remove = cache.add_listener(extra.append)
    remove()
    remove()

    asyncio.run(cache.refresh())
    assert extra == []
    assert cache.find_by_phone("5215550001111").id == "c1"
    assert cache.find_by_phone("000") is None
