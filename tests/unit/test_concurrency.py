"""Tests for the RWLock, Channel and CancelToken primitives."""

from __future__ import annotations

import queue
import threading
import time

import pytest

from perceive.concurrency import CancelToken, Channel, ChannelClosed, RWLock


# ------------------------------------------------------------------
# RWLock
# ------------------------------------------------------------------


def test_readers_share_the_lock():
    lock = RWLock()
    inside = threading.Barrier(3, timeout=2)

    def reader():
        with lock.read():
            inside.wait()

    threads = [threading.Thread(target=reader) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=3)
    assert not any(t.is_alive() for t in threads)


def test_writer_excludes_readers():
    lock = RWLock()
    events: list[str] = []

    with lock.write():
        t = threading.Thread(target=lambda: _hold(lock.read(), events, "read"))
        t.start()
        time.sleep(0.1)
        events.append("write-done")
    t.join(timeout=2)
    assert events == ["write-done", "read"]


def test_waiting_writer_blocks_new_readers():
    lock = RWLock()
    order: list[str] = []
    first_reader = lock.read()
    first_reader.__enter__()

    writer = threading.Thread(target=lambda: _hold(lock.write(), order, "write"))
    writer.start()
    time.sleep(0.1)
    reader = threading.Thread(target=lambda: _hold(lock.read(), order, "read"))
    reader.start()
    time.sleep(0.1)
    assert order == []

    first_reader.__exit__(None, None, None)
    writer.join(timeout=2)
    reader.join(timeout=2)
    assert order == ["write", "read"]


def _hold(ctx, order: list[str], label: str) -> None:
    with ctx:
        order.append(label)


# ------------------------------------------------------------------
# Channel
# ------------------------------------------------------------------


def test_channel_fifo():
    ch: Channel[int] = Channel(4)
    for i in range(3):
        ch.put(i)
    assert [ch.get(), ch.get(), ch.get()] == [0, 1, 2]


def test_channel_get_timeout_raises_empty():
    with pytest.raises(queue.Empty):
        Channel(1).get(timeout=0.01)


def test_channel_put_blocks_when_full():
    ch: Channel[int] = Channel(1)
    ch.put(1)
    with pytest.raises(queue.Full):
        ch.put(2, timeout=0.05)


def test_channel_close_drains_then_raises():
    ch: Channel[int] = Channel(4)
    ch.put(1)
    ch.close()
    assert ch.closed
    assert ch.get() == 1
    with pytest.raises(ChannelClosed):
        ch.get()
    with pytest.raises(ChannelClosed):
        ch.get()


def test_channel_put_after_close_raises():
    ch: Channel[int] = Channel(2)
    ch.close()
    with pytest.raises(ChannelClosed):
        ch.put(1)


def test_channel_rejects_zero_size():
    with pytest.raises(ValueError):
        Channel(0)


# ------------------------------------------------------------------
# CancelToken
# ------------------------------------------------------------------


def test_cancel_token():
    token = CancelToken()
    assert not token.cancelled
    token.cancel()
    assert token.cancelled
