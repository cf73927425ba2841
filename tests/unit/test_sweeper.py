"""Unit tests for session expiry.

Tests the background sweep, client notification on expiry and the
lookup-triggered eviction used by the HTTP API.
"""

import asyncio
from unittest.mock import patch

import pytest

from ordersync.metrics import MetricsCollector
from ordersync.registry import ConnectionRegistry
from ordersync.store import LookupStatus, SessionStore
from ordersync.sweeper import ExpirySweeper
from tests.helpers.ws_fakes import SESSION_TIMEOUT_S, FakeClock, make_connection, sent_messages


@pytest.mark.asyncio
async def test_sweep_removes_only_expired_sessions(
    store: SessionStore, sweeper: ExpirySweeper, clock: FakeClock
) -> None:
    old = store.create()
    clock.advance(SESSION_TIMEOUT_S - 60)
    young = store.create()
    clock.advance(120)

    expired = await sweeper.sweep_once()

    assert expired == [old.code]
    assert old.code not in store
    assert young.code in store


@pytest.mark.asyncio
async def test_sweep_keeps_sessions_within_timeout(
    store: SessionStore, sweeper: ExpirySweeper, clock: FakeClock
) -> None:
    session = store.create()
    clock.advance(SESSION_TIMEOUT_S)

    assert await sweeper.sweep_once() == []
    assert session.code in store


@pytest.mark.asyncio
async def test_expiry_notifies_then_closes_members(
    store: SessionStore,
    registry: ConnectionRegistry,
    sweeper: ExpirySweeper,
    clock: FakeClock,
    metrics: MetricsCollector,
) -> None:
    session = store.create()
    members = [make_connection("a"), make_connection("b")]
    for connection in members:
        registry.bind(connection, session)
    clock.advance(SESSION_TIMEOUT_S + 1)

    await sweeper.sweep_once()

    for connection in members:
        assert sent_messages(connection) == [
            {"type": "session_expired", "message": "Session has expired"}
        ]
        connection._websocket.close.assert_awaited_once_with(
            code=1000, reason="Session has expired"
        )
        assert registry.session_for(connection) is None

    assert session.connections == set()
    summary = metrics.get_summary()
    assert summary["sessions_expired"] == 1
    assert summary["sessions_active"] == 0


@pytest.mark.asyncio
async def test_expire_waits_for_in_flight_mutation(
    store: SessionStore, sweeper: ExpirySweeper
) -> None:
    """Test expiry cannot interleave with a mutation holding the session lock."""
    session = store.create()
    events: list[str] = []

    async def mutation() -> None:
        async with session.lock:
            events.append("mutation-start")
            await asyncio.sleep(0.01)
            events.append("mutation-end")

    task = asyncio.create_task(mutation())
    await asyncio.sleep(0)
    assert await sweeper.expire(session) is True
    events.append("expired")
    await task

    assert events == ["mutation-start", "mutation-end", "expired"]


@pytest.mark.asyncio
async def test_expire_already_removed_session(
    store: SessionStore, sweeper: ExpirySweeper, metrics: MetricsCollector
) -> None:
    session = store.create()
    store.delete(session.code)

    assert await sweeper.expire(session) is False
    assert metrics.get_summary()["sessions_expired"] == 0


@pytest.mark.asyncio
async def test_failure_on_one_session_does_not_stop_sweep(
    store: SessionStore, sweeper: ExpirySweeper, clock: FakeClock
) -> None:
    first = store.create()
    second = store.create()
    clock.advance(SESSION_TIMEOUT_S + 1)

    real_expire = sweeper.expire

    async def flaky_expire(session):
        if session is first:
            raise RuntimeError("boom")
        return await real_expire(session)

    with patch.object(sweeper, "expire", side_effect=flaky_expire):
        expired = await sweeper.sweep_once()

    assert expired == [second.code]
    assert first.code in store


@pytest.mark.asyncio
async def test_lookup_statuses(
    store: SessionStore,
    registry: ConnectionRegistry,
    sweeper: ExpirySweeper,
    clock: FakeClock,
) -> None:
    session = store.create()
    member = make_connection("a")
    registry.bind(member, session)

    assert await sweeper.lookup(session.code) is LookupStatus.EXISTS
    assert await sweeper.lookup("NOPE00") is LookupStatus.NOT_FOUND

    clock.advance(SESSION_TIMEOUT_S + 1)
    assert await sweeper.lookup(session.code) is LookupStatus.EXPIRED
    assert sent_messages(member)[-1]["type"] == "session_expired"
    assert await sweeper.lookup(session.code) is LookupStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_background_loop(
    store: SessionStore, sweeper: ExpirySweeper, clock: FakeClock
) -> None:
    session = store.create()
    clock.advance(SESSION_TIMEOUT_S + 1)

    sweeper.start()
    assert sweeper.is_running
    with pytest.raises(RuntimeError, match="already running"):
        sweeper.start()

    for _ in range(100):
        if session.code not in store:
            break
        await asyncio.sleep(0.01)

    await sweeper.stop()
    assert not sweeper.is_running
    assert session.code not in store


@pytest.mark.asyncio
async def test_stop_without_start(sweeper: ExpirySweeper) -> None:
    await sweeper.stop()
    assert not sweeper.is_running


def test_interval_defaults_to_config(store: SessionStore, registry: ConnectionRegistry) -> None:
    sweeper = ExpirySweeper(store, registry, metrics=MetricsCollector())
    assert sweeper.interval_seconds == store.session_config.sweep_interval_seconds


@pytest.mark.asyncio
async def test_expire_spares_one_member(
    store: SessionStore, registry: ConnectionRegistry, sweeper: ExpirySweeper
) -> None:
    session = store.create()
    kept = make_connection("kept")
    dropped = make_connection("dropped")
    registry.bind(kept, session)
    registry.bind(dropped, session)

    assert await sweeper.expire(session, spare=kept) is True

    assert sent_messages(kept) == []
    kept._websocket.close.assert_not_awaited()
    assert registry.session_for(kept) is None
    assert sent_messages(dropped)[-1]["type"] == "session_expired"
    assert dropped.is_connected is False
