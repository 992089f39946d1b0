import asyncio

from chatrelay.agent.tools.cache import ToolResponseCache

TTL = 24 * 60 * 60


class TestExpiry:
    def test_entry_is_returned_until_ttl(self, clock):
        cache = ToolResponseCache(ttl=TTL, clock=clock)
        cache.store("call_1", "order_sandwich", "ordered")

        clock.advance(TTL - 0.001)
        entry = cache.get("call_1")
        assert entry is not None
        assert entry.tool_name == "order_sandwich"
        assert entry.content == "ordered"

    def test_entry_past_ttl_is_gone_and_deleted(self, clock):
        cache = ToolResponseCache(ttl=TTL, clock=clock)
        cache.store("call_1", "order_sandwich", "ordered")

        clock.advance(TTL + 0.001)
        assert cache.get("call_1") is None
        assert "call_1" not in cache

    def test_store_overwrites_same_id(self, clock):
        cache = ToolResponseCache(clock=clock)
        cache.store("call_1", "a", "first")
        cache.store("call_1", "b", "second")

        assert len(cache) == 1
        assert cache.get("call_1").content == "second"


class TestSweep:
    def test_sweep_removes_only_expired_entries(self, clock):
        cache = ToolResponseCache(ttl=10, clock=clock)
        cache.store("old", "t", "x")
        clock.advance(8)
        cache.store("new", "t", "y")
        clock.advance(3)

        assert cache.sweep() == 1
        assert "old" not in cache
        assert "new" in cache

    async def test_background_sweeper_removes_without_get(self, clock):
        cache = ToolResponseCache(ttl=10, sweep_interval=0.01, clock=clock)
        cache.store("call_1", "t", "x")
        clock.advance(11)

        cache.start()
        try:
            for _ in range(50):
                if "call_1" not in cache:
                    break
                await asyncio.sleep(0.01)
        finally:
            await cache.stop()

        assert "call_1" not in cache
