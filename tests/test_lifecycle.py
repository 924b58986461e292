# tests/test_lifecycle.py
"""Tests for lifecycle management and executor shutdown."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.lifecycle import LifecycleManager, get_lifecycle_manager, reset_lifecycle_manager
from src.core.retry import RetryExecutor, RetryPolicy


class TestLifecycleManager:
    """Test component registration, startup and shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_in_reverse_order(self):
        order: list[str] = []
        first = MagicMock(spec=["shutdown"])
        first.shutdown.side_effect = lambda: order.append("first")
        second = MagicMock(spec=["shutdown"])
        second.shutdown = AsyncMock(side_effect=lambda: order.append("second"))

        manager = LifecycleManager()
        manager.register("first", first)
        manager.register("second", second)
        await manager.startup()
        await manager.shutdown()

        assert order == ["second", "first"]
        assert not manager.is_started

    @pytest.mark.asyncio
    async def test_start_hooks_called(self):
        component = MagicMock(spec=["start", "shutdown"])
        component.start.return_value = None
        manager = LifecycleManager()
        manager.register("c", component)
        await manager.startup()
        component.start.assert_called_once()
        assert manager.is_started

    def test_duplicate_registration_ignored(self):
        component = MagicMock(spec=["shutdown"])
        manager = LifecycleManager()
        manager.register("a", component)
        manager.register("b", component)
        assert manager.component_count == 1

    @pytest.mark.asyncio
    async def test_shutdown_without_startup_is_noop(self):
        component = MagicMock(spec=["shutdown"])
        manager = LifecycleManager()
        manager.register("a", component)
        await manager.shutdown()
        component.shutdown.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_component_does_not_stop_others(self):
        bad = MagicMock(spec=["shutdown"])
        bad.shutdown.side_effect = RuntimeError("stuck")
        good = MagicMock(spec=["shutdown"])
        good.shutdown.return_value = None

        manager = LifecycleManager()
        manager.register("good", good)
        manager.register("bad", bad)
        await manager.startup()
        await manager.shutdown()

        good.shutdown.assert_called_once()

    @pytest.mark.asyncio
    async def test_shutdown_stops_retry_executor(self):
        executor = RetryExecutor(RetryPolicy())
        manager = LifecycleManager()
        manager.register("retry-executor", executor)
        await manager.startup()

        await manager.shutdown()

        assert executor.is_shutting_down

    def test_singleton(self, reset_singletons):
        assert get_lifecycle_manager() is get_lifecycle_manager()
        first = get_lifecycle_manager()
        reset_lifecycle_manager()
        assert get_lifecycle_manager() is not first


class TestLifecycleContextManager:
    """Test async-with usage and stop timeouts."""

    @pytest.mark.asyncio
    async def test_async_with_starts_and_stops(self):
        executor = RetryExecutor(RetryPolicy())
        manager = LifecycleManager()
        manager.register("retry-executor", executor)

        async with manager:
            assert manager.is_started
            assert not executor.is_shutting_down

        assert not manager.is_started
        assert executor.is_shutting_down

    @pytest.mark.asyncio
    async def test_hung_component_times_out(self):
        class Hung:
            async def shutdown(self):
                await asyncio.sleep(10)

        other = MagicMock(spec=["shutdown"])
        other.shutdown.return_value = None
        manager = LifecycleManager(stop_timeout=0.05)
        manager.register("other", other)
        manager.register("hung", Hung())
        await manager.startup()

        await manager.shutdown()

        other.shutdown.assert_called_once()
