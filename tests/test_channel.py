"""Tests for the resilient overlay channel."""

import asyncio
import random

import pytest

from services.overlay.channel import ResilientChannel
from tests.conftest import FakeConnector, settle


def make_channel(connector, namespace="alpha", *, min_ms=1000, max_ms=10000, seed=7):
    selections = []
    channel = ResilientChannel(
        "wss://overlay.test",
        namespace,
        selections.append,
        reconnect_min_ms=min_ms,
        reconnect_max_ms=max_ms,
        connector=connector,
        rng=random.Random(seed),
    )
    return channel, selections


@pytest.mark.asyncio
async def test_connects_to_namespaced_endpoint():
    connector = FakeConnector()
    channel, _ = make_channel(connector)

    assert await channel.connect() is True
    assert channel.is_open
    assert connector.urls == ["wss://overlay.test/alpha/extension"]

    await channel.close()


@pytest.mark.asyncio
async def test_failed_connect_schedules_jittered_reconnect():
    connector = FakeConnector(failures=1)
    channel, _ = make_channel(connector)

    assert await channel.connect() is False
    assert channel.reconnect_pending
    assert 1.0 <= channel.last_reconnect_delay <= 10.0

    await channel.close()
    assert not channel.reconnect_pending


def test_delay_range():
    channel, _ = make_channel(FakeConnector(), seed=1)
    delays = [channel.next_reconnect_delay_ms() for _ in range(500)]
    assert min(delays) >= 1000
    assert max(delays) <= 10000
    assert len(set(delays)) > 1


def test_rejects_inverted_range():
    with pytest.raises(ValueError):
        make_channel(FakeConnector(), min_ms=5000, max_ms=1000)


@pytest.mark.asyncio
async def test_single_pending_reconnect_timer():
    connector = FakeConnector()
    channel, _ = make_channel(connector)

    channel.schedule_reconnect()
    first = channel._reconnect_handle
    channel.schedule_reconnect()
    second = channel._reconnect_handle

    assert first is not second
    assert first.cancelled()
    assert not second.cancelled()

    await channel.close()


@pytest.mark.asyncio
async def test_reconnect_fires_after_failure():
    connector = FakeConnector(failures=2)
    channel, _ = make_channel(connector, min_ms=5, max_ms=10)

    await channel.connect()
    for _ in range(50):
        if channel.is_open:
            break
        await asyncio.sleep(0.01)

    assert channel.is_open
    assert len(connector.urls) == 3
    assert not channel.reconnect_pending

    await channel.close()


@pytest.mark.asyncio
async def test_server_close_triggers_reconnect():
    connector = FakeConnector()
    channel, _ = make_channel(connector, min_ms=5, max_ms=10)
    await channel.connect()

    connector.last.drop()
    await settle()
    assert not channel.is_open
    assert channel.reconnect_pending

    for _ in range(50):
        if channel.is_open:
            break
        await asyncio.sleep(0.01)

    assert channel.is_open
    assert len(connector.sockets) == 2

    await channel.close()


@pytest.mark.asyncio
async def test_namespace_change_reconnects_immediately():
    connector = FakeConnector()
    channel, _ = make_channel(connector, namespace="alpha")
    await channel.connect()
    old = connector.last

    assert await channel.set_namespace("beta") is True

    assert old.closed
    assert channel.is_open
    assert connector.urls == [
        "wss://overlay.test/alpha/extension",
        "wss://overlay.test/beta/extension",
    ]
    assert not channel.reconnect_pending

    await channel.close()


@pytest.mark.asyncio
async def test_same_namespace_is_noop():
    connector = FakeConnector()
    channel, _ = make_channel(connector, namespace="alpha")
    await channel.connect()

    assert await channel.set_namespace("alpha") is False
    assert len(connector.urls) == 1

    await channel.close()


@pytest.mark.asyncio
async def test_inbound_selection_and_clear():
    connector = FakeConnector()
    channel, selections = make_channel(connector)
    await channel.connect()

    connector.last.feed_text('{"id":"msg-99"}')
    connector.last.feed_binary(b'{"id":"msg-7"}')
    connector.last.feed_text("{}")
    await settle()

    assert selections == ["msg-99", "msg-7", None]

    await channel.close()


@pytest.mark.asyncio
async def test_malformed_frame_keeps_connection():
    connector = FakeConnector()
    channel, selections = make_channel(connector)
    await channel.connect()

    connector.last.feed_text("garbage{")
    connector.last.feed_text('{"id":"after"}')
    await settle()

    assert selections == ["after"]
    assert channel.is_open
    assert len(connector.urls) == 1
    assert not channel.reconnect_pending

    await channel.close()


@pytest.mark.asyncio
async def test_send_encodes_json():
    connector = FakeConnector()
    channel, _ = make_channel(connector)
    await channel.connect()

    assert await channel.send({}) is True
    assert await channel.send({"id": "a", "amount": None}) is True
    assert connector.last.sent == ["{}", '{"id":"a","amount":null}']

    await channel.close()


@pytest.mark.asyncio
async def test_send_dropped_when_not_open():
    connector = FakeConnector(failures=1)
    channel, _ = make_channel(connector)
    await channel.connect()

    assert await channel.send({"id": "a"}) is False

    await channel.close()


@pytest.mark.asyncio
async def test_close_is_final():
    connector = FakeConnector()
    channel, _ = make_channel(connector, min_ms=5, max_ms=10)
    await channel.connect()
    ws = connector.last

    await channel.close()
    await asyncio.sleep(0.03)

    assert ws.closed
    assert not channel.is_open
    assert not channel.reconnect_pending
    assert await channel.connect() is False
    assert len(connector.urls) == 1


@pytest.mark.asyncio
async def test_namespace_change_replaces_stalled_attempt():
    connector = FakeConnector(stall_on=("/alpha/",))
    channel, _ = make_channel(connector, namespace="alpha")

    first = asyncio.create_task(channel.connect())
    await settle()
    assert channel.connecting

    assert await asyncio.wait_for(channel.set_namespace("beta"), 1.0) is True

    assert connector.urls == [
        "wss://overlay.test/alpha/extension",
        "wss://overlay.test/beta/extension",
    ]
    assert connector.cancelled == ["wss://overlay.test/alpha/extension"]
    assert channel.is_open
    assert connector.last.url == "wss://overlay.test/beta/extension"
    assert await first is False

    await channel.close()


@pytest.mark.asyncio
async def test_background_namespace_switch_returns_at_once():
    connector = FakeConnector(stall_on=("/beta/",))
    channel, _ = make_channel(connector, namespace="alpha")
    await channel.connect()

    assert await asyncio.wait_for(channel.set_namespace("beta", wait=False), 0.1) is True
    await settle()

    assert channel.connecting
    assert not channel.is_open
    assert connector.urls[-1] == "wss://overlay.test/beta/extension"

    await channel.close()
    assert not channel.connecting
    assert connector.cancelled == ["wss://overlay.test/beta/extension"]


@pytest.mark.asyncio
async def test_immediate_reconnect_supersedes_attempt():
    connector = FakeConnector(stall_on=("/alpha/",))
    channel, _ = make_channel(connector, namespace="alpha")

    stalled = channel.start_connect()
    await settle()
    replacement = channel.start_connect()
    await settle()

    assert stalled.cancelled()
    assert not replacement.done()
    assert connector.cancelled == ["wss://overlay.test/alpha/extension"]
    assert len(connector.urls) == 2

    await channel.close()
    assert replacement.cancelled()
