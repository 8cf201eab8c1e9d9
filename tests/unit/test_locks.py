import asyncio

import pytest

from capital.locks import ChallengeLockRegistry

@pytest.mark.asyncio
async def test_same_challenge_is_serialized():
    """A read-check-write on one challenge never interleaves with another."""
    registry = ChallengeLockRegistry()
    events = []

    async def worker(name):
        async with registry.hold("ch-1"):
            events.append(f"{name}:in")
            await asyncio.sleep(0.01)
            events.append(f"{name}:out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events in (["a:in", "a:out", "b:in", "b:out"], ["b:in", "b:out", "a:in", "a:out"])
    assert len(registry) == 0

@pytest.mark.asyncio
async def test_different_challenges_run_concurrently():
    registry = ChallengeLockRegistry()
    inside = asyncio.Event()
    release = asyncio.Event()

    async def holder():
        async with registry.hold("ch-1"):
            inside.set()
            await release.wait()

    task = asyncio.create_task(holder())
    await inside.wait()

    assert registry.is_locked("ch-1")
    async with registry.hold("ch-2"):
        assert registry.is_locked("ch-2")

    release.set()
    await task
    assert not registry.is_locked("ch-1")

@pytest.mark.asyncio
async def test_lock_released_on_error():
    registry = ChallengeLockRegistry()
    with pytest.raises(RuntimeError):
        async with registry.hold("ch-1"):
            raise RuntimeError("boom")
    assert not registry.is_locked("ch-1")
    assert len(registry) == 0
