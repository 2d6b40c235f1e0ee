"""Unit tests for RunRegistry and CancellationToken."""

import pytest

from services.collector.run_registry import CancellationToken, RunRegistry
from services.storage.kv_store import InMemoryKVStore
from shared.models import COLLECTION_STATUS_KEY


class TestRunRegistry:
    """Test run lifecycle transitions."""

    @pytest.fixture
    def store(self) -> InMemoryKVStore:
        return InMemoryKVStore()

    @pytest.fixture
    def registry(self, store: InMemoryKVStore) -> RunRegistry:
        return RunRegistry(store)

    def test_status_without_run(self, registry: RunRegistry) -> None:
        assert registry.status() == {"status": "none"}

    @pytest.mark.asyncio
    async def test_begin_persists_active_run(self, registry, store) -> None:
        """Test a new run is active and mirrored to the store."""
        run, token = await registry.begin()

        assert run.status == "active"
        assert token.run_id == run.run_id
        assert not token.cancelled
        stored = await store.get(COLLECTION_STATUS_KEY)
        assert stored["run_id"] == run.run_id
        assert stored["status"] == "active"

    @pytest.mark.asyncio
    async def test_cancel_matching_run(self, registry, store) -> None:
        """Test cancelling the current run trips its token."""
        run, token = await registry.begin()

        assert await registry.cancel(run.run_id) is True
        assert token.cancelled
        assert registry.status()["status"] == "cancelled"
        assert (await store.get(COLLECTION_STATUS_KEY))["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_current_without_id(self, registry) -> None:
        """Test cancel with no run id targets the current run."""
        _, token = await registry.begin()

        assert await registry.cancel() is True
        assert token.cancelled

    @pytest.mark.asyncio
    async def test_cancel_without_run(self, registry) -> None:
        assert await registry.cancel() is False

    @pytest.mark.asyncio
    async def test_stale_cancel_is_noop(self, registry) -> None:
        """Test a cancel for a replaced run leaves the new run alone."""
        first, first_token = await registry.begin()
        second, second_token = await registry.begin()

        assert await registry.cancel(first.run_id) is False
        assert not first_token.cancelled
        assert not second_token.cancelled
        assert registry.current.run_id == second.run_id

    @pytest.mark.asyncio
    async def test_finish_does_not_override_cancel(self, registry) -> None:
        """Test transitions only apply from the active state."""
        run, _ = await registry.begin()
        await registry.cancel(run.run_id)

        assert await registry.finish(run.run_id) is False
        assert registry.status()["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_finish_failed(self, registry) -> None:
        run, _ = await registry.begin()

        assert await registry.finish(run.run_id, failed=True) is True
        assert registry.status()["status"] == "failed"
        assert await registry.cancel(run.run_id) is False


class TestCancellationToken:

    def test_cancel_is_sticky(self) -> None:
        token = CancellationToken("r1")
        token.cancel()
        token.cancel()
        assert token.cancelled
