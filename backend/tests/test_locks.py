import asyncio

import pytest

from symposium.core.locks import KeyedLock


async def test_same_key_runs_in_arrival_order():
    locks = KeyedLock()
    order = []

    async def worker(n):
        async with locks.hold("attempt-1"):
            order.append(("enter", n))
            await asyncio.sleep(0)
            order.append(("exit", n))

    await asyncio.gather(*(worker(n) for n in range(5)))

    # Never interleaved, and FIFO
    assert order == [step for n in range(5) for step in (("enter", n), ("exit", n))]


async def test_different_keys_do_not_block_each_other():
    locks = KeyedLock()
    inside = asyncio.Event()

    async def holder():
        async with locks.hold("a"):
            inside.set()
            await asyncio.sleep(0.05)

    task = asyncio.create_task(holder())
    await inside.wait()
    async with locks.hold("b"):
        assert locks.is_held("a")
    await task


async def test_entries_are_dropped_when_idle():
    locks = KeyedLock()
    async with locks.hold("x"):
        assert len(locks) == 1
    assert len(locks) == 0


async def test_lock_released_on_error():
    locks = KeyedLock()
    with pytest.raises(RuntimeError):
        async with locks.hold("x"):
            raise RuntimeError("boom")

    assert not locks.is_held("x")
    assert len(locks) == 0
