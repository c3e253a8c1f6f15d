"""Tests for the in-memory session store."""

import asyncio
from datetime import timedelta

import pytest

from airlink.errors import StoreError
from airlink.session import DataType, SessionStatus
from airlink.store import MemorySessionStore

from paths import FakeClock


def session_fields(clock, signature="0123456789", ttl=60, **overrides):
    fields = {
        "gesture_signature": signature,
        "sender_id": "device-a",
        "data_type": DataType.TEXT,
        "plaintext_content": "hello",
        "status": SessionStatus.WAITING,
        "expires_at": clock() + timedelta(seconds=ttl),
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemorySessionStore(clock=clock)


class TestInsert:
    def test_assigns_id_and_created_at(self, store, clock):
        async def run():
            return await store.insert(session_fields(clock))

        s = asyncio.run(run())
        assert s.id
        assert s.created_at == clock()
        assert len(store) == 1

    def test_ids_unique(self, store, clock):
        async def run():
            a = await store.insert(session_fields(clock))
            b = await store.insert(session_fields(clock))
            return a, b

        a, b = asyncio.run(run())
        assert a.id != b.id

    def test_requires_expiry(self, store, clock):
        fields = session_fields(clock)
        del fields["expires_at"]
        with pytest.raises(StoreError):
            asyncio.run(store.insert(fields))

    def test_unknown_field(self, store, clock):
        with pytest.raises(StoreError):
            asyncio.run(store.insert(session_fields(clock, colour="blue")))

    def test_get(self, store, clock):
        async def run():
            s = await store.insert(session_fields(clock))
            return s, await store.get(s.id), await store.get("missing")

        inserted, fetched, missing = asyncio.run(run())
        assert fetched == inserted
        assert missing is None


class TestQueryWaiting:
    def test_newest_wins(self, store, clock):
        async def run():
            await store.insert(session_fields(clock))
            clock.advance(1)
            newer = await store.insert(session_fields(clock))
            return newer, await store.query_waiting("0123456789", clock())

        newer, found = asyncio.run(run())
        assert found.id == newer.id

    def test_insertion_order_breaks_ties(self, store, clock):
        async def run():
            await store.insert(session_fields(clock))
            second = await store.insert(session_fields(clock))
            return second, await store.query_waiting("0123456789", clock())

        second, found = asyncio.run(run())
        assert found.id == second.id

    def test_signature_must_match(self, store, clock):
        async def run():
            await store.insert(session_fields(clock))
            return await store.query_waiting("7654321076", clock())

        assert asyncio.run(run()) is None

    def test_expired_sessions_ignored(self, store, clock):
        async def run():
            await store.insert(session_fields(clock, ttl=60))
            clock.advance(60)
            return await store.query_waiting("0123456789", clock())

        assert asyncio.run(run()) is None

    def test_non_waiting_ignored(self, store, clock):
        async def run():
            s = await store.insert(session_fields(clock))
            await store.update(s.id, SessionStatus.MATCHED, clock())
            return await store.query_waiting("0123456789", clock())

        assert asyncio.run(run()) is None


class TestUpdate:
    def test_conditional_update(self, store, clock):
        async def run():
            s = await store.insert(session_fields(clock))
            first = await store.update(s.id, SessionStatus.MATCHED, clock(), expected=SessionStatus.WAITING)
            second = await store.update(s.id, SessionStatus.MATCHED, clock(), expected=SessionStatus.WAITING)
            return first, second, await store.get(s.id)

        first, second, s = asyncio.run(run())
        assert first is True
        assert second is False
        assert s.status is SessionStatus.MATCHED
        assert s.matched_at == clock()

    def test_live_at_rejects_expired(self, store, clock):
        async def run():
            s = await store.insert(session_fields(clock, ttl=60))
            late = await store.update(
                s.id, SessionStatus.MATCHED, clock(),
                expected=SessionStatus.WAITING, live_at=clock() + timedelta(seconds=60),
            )
            in_time = await store.update(
                s.id, SessionStatus.MATCHED, clock(),
                expected=SessionStatus.WAITING, live_at=clock() + timedelta(seconds=59),
            )
            return late, in_time

        late, in_time = asyncio.run(run())
        assert late is False
        assert in_time is True

    def test_illegal_transition_refused(self, store, clock):
        async def run():
            s = await store.insert(session_fields(clock))
            ok = await store.update(s.id, SessionStatus.COMPLETED, clock())
            return ok, await store.get(s.id)

        ok, s = asyncio.run(run())
        assert ok is False
        assert s.status is SessionStatus.WAITING

    def test_terminal_states_are_final(self, store, clock):
        async def run():
            s = await store.insert(session_fields(clock))
            await store.update(s.id, SessionStatus.EXPIRED, clock())
            return await store.update(s.id, SessionStatus.MATCHED, clock())

        assert asyncio.run(run()) is False

    def test_unknown_session(self, store, clock):
        assert asyncio.run(store.update("missing", SessionStatus.MATCHED, clock())) is False


class TestSubscribe:
    def test_sync_and_async_callbacks(self, store, clock):
        seen = []

        async def on_async(session):
            seen.append(("async", session.status))

        async def run():
            s = await store.insert(session_fields(clock))
            store.subscribe(s.id, lambda session: seen.append(("sync", session.status)))
            store.subscribe(s.id, on_async)
            await store.update(s.id, SessionStatus.MATCHED, clock())

        asyncio.run(run())
        assert ("sync", SessionStatus.MATCHED) in seen
        assert ("async", SessionStatus.MATCHED) in seen

    def test_unsubscribe(self, store, clock):
        seen = []

        async def run():
            s = await store.insert(session_fields(clock))
            unsubscribe = store.subscribe(s.id, seen.append)
            await store.update(s.id, SessionStatus.MATCHED, clock())
            unsubscribe()
            unsubscribe()
            await store.update(s.id, SessionStatus.COMPLETED, clock())
            return s.id

        session_id = asyncio.run(run())
        assert [s.status for s in seen] == [SessionStatus.MATCHED]
        assert store.subscriber_count(session_id) == 0

    def test_only_own_session(self, store, clock):
        seen = []

        async def run():
            a = await store.insert(session_fields(clock))
            b = await store.insert(session_fields(clock))
            store.subscribe(a.id, seen.append)
            await store.update(b.id, SessionStatus.MATCHED, clock())

        asyncio.run(run())
        assert seen == []

    def test_failing_callback_does_not_break_update(self, store, clock):
        def boom(session):
            raise RuntimeError("subscriber bug")

        async def run():
            s = await store.insert(session_fields(clock))
            store.subscribe(s.id, boom)
            return await store.update(s.id, SessionStatus.MATCHED, clock())

        assert asyncio.run(run()) is True

    def test_rejected_update_not_pushed(self, store, clock):
        seen = []

        async def run():
            s = await store.insert(session_fields(clock))
            store.subscribe(s.id, seen.append)
            await store.update(s.id, SessionStatus.COMPLETED, clock())

        asyncio.run(run())
        assert seen == []
