"""Tests for the per-dialog lock registry."""

import asyncio

import pytest

from history_store.storage.locks import DialogLocks


class TestRunExclusive:
    """Tests for DialogLocks.run_exclusive."""

    @pytest.mark.asyncio
    async def test_same_key_runs_in_submission_order(self) -> None:
        """A slow first operation still finishes before a fast second one starts."""
        locks = DialogLocks()
        order: list[int] = []

        async def slow() -> None:
            await asyncio.sleep(0.03)
            order.append(1)

        async def fast() -> None:
            order.append(2)

        await asyncio.gather(locks.run_exclusive("k1", slow), locks.run_exclusive("k1", fast))

        assert order == [1, 2]

    @pytest.mark.asyncio
    async def test_many_operations_keep_order(self) -> None:
        locks = DialogLocks()
        order: list[int] = []

        def make(i: int):
            async def op() -> None:
                await asyncio.sleep(0.001 * (10 - i))
                order.append(i)

            return op

        await asyncio.gather(*(locks.run_exclusive("k", make(i)) for i in range(10)))

        assert order == list(range(10))

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self) -> None:
        locks = DialogLocks()
        order: list[str] = []

        async def slow() -> None:
            await asyncio.sleep(0.05)
            order.append("slow")

        async def fast() -> None:
            order.append("fast")

        await asyncio.gather(locks.run_exclusive("a", slow), locks.run_exclusive("b", fast))

        assert order == ["fast", "slow"]

    @pytest.mark.asyncio
    async def test_returns_operation_result(self) -> None:
        locks = DialogLocks()

        async def op() -> int:
            return 42

        assert await locks.run_exclusive("k", op) == 42

    @pytest.mark.asyncio
    async def test_error_propagates_and_releases_lock(self) -> None:
        locks = DialogLocks()
        ran: list[str] = []

        async def failing() -> None:
            raise RuntimeError("boom")

        async def after() -> None:
            ran.append("after")

        results = await asyncio.gather(
            locks.run_exclusive("k", failing),
            locks.run_exclusive("k", after),
            return_exceptions=True,
        )

        assert isinstance(results[0], RuntimeError)
        assert results[1] is None
        assert ran == ["after"]


class TestRegistryLifetime:
    """Tests for registry entry cleanup."""

    @pytest.mark.asyncio
    async def test_entries_removed_when_drained(self) -> None:
        locks = DialogLocks()

        async def op() -> None:
            assert locks.pending("k") >= 1
            assert locks.active_keys() == ["k"]

        await locks.run_exclusive("k", op)

        assert locks.pending("k") == 0
        assert locks.active_keys() == []

    @pytest.mark.asyncio
    async def test_entry_removed_after_failure(self) -> None:
        locks = DialogLocks()

        async def failing() -> None:
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await locks.run_exclusive("k", failing)

        assert locks.active_keys() == []

    @pytest.mark.asyncio
    async def test_pending_counts_queued_operations(self) -> None:
        locks = DialogLocks()
        release = asyncio.Event()

        async def blocker() -> None:
            await release.wait()

        async def noop() -> None:
            return None

        first = asyncio.create_task(locks.run_exclusive("k", blocker))
        second = asyncio.create_task(locks.run_exclusive("k", noop))
        await asyncio.sleep(0)

        assert locks.pending("k") == 2

        release.set()
        await asyncio.gather(first, second)

        assert locks.pending("k") == 0

    @pytest.mark.asyncio
    async def test_registries_are_independent(self) -> None:
        """Two registries never block each other, even for the same key."""
        one = DialogLocks()
        two = DialogLocks()
        release = asyncio.Event()

        async def blocker() -> None:
            await release.wait()

        async def quick() -> str:
            return "done"

        blocked = asyncio.create_task(one.run_exclusive("k", blocker))
        await asyncio.sleep(0)

        assert await asyncio.wait_for(two.run_exclusive("k", quick), timeout=0.5) == "done"

        release.set()
        await blocked
