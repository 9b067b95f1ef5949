import hashlib

import pytest

from opti_context.memory.cache import PromptCache
from opti_context.memory.session import SessionMemory
from opti_context.types import ProductId


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_cache_entries_expire_lazily() -> None:
    clock = FakeClock()
    cache: PromptCache[str] = PromptCache(ttl_seconds=10, clock=clock)

    cache.set("a", "alpha")
    clock.now += 9
    assert cache.get("a") == "alpha"

    clock.now += 1
    assert len(cache) == 1
    assert cache.get("a") is None
    assert len(cache) == 0


def test_cache_per_entry_ttl_and_purge() -> None:
    clock = FakeClock()
    cache: PromptCache[int] = PromptCache(ttl_seconds=100, clock=clock)

    cache.set("short", 1, ttl_seconds=1)
    cache.set("long", 2)
    clock.now += 5

    assert cache.purge_expired() == 1
    assert cache.get("long") == 2
    cache.clear()
    assert len(cache) == 0


def test_cache_is_bounded() -> None:
    cache: PromptCache[str] = PromptCache(ttl_seconds=60, max_entries=2)

    cache.set("a", "1")
    cache.set("b", "2")
    cache.set("c", "3")

    assert len(cache) == 2
    assert cache.get("a") is None
    assert cache.get("c") == "3"


def test_cache_rejects_invalid_bounds() -> None:
    with pytest.raises(ValueError):
        PromptCache(ttl_seconds=0)
    with pytest.raises(ValueError):
        PromptCache(max_entries=0)


def test_prompt_hash_is_content_addressed() -> None:
    prompt = "How do I create a block?"

    assert PromptCache.hash_prompt(prompt) == hashlib.sha256(prompt.encode("utf-8")).hexdigest()
    assert PromptCache.hash_prompt(prompt) == PromptCache.hash_prompt(prompt)
    assert PromptCache.hash_prompt(prompt, "/srv/site") != PromptCache.hash_prompt(prompt)
    assert PromptCache.hash_prompt(prompt, None, ["- use tabs"]) != PromptCache.hash_prompt(prompt, "/srv/site")


def test_session_memory_overwrites_oldest() -> None:
    clock = FakeClock()
    session = SessionMemory(max_items=2, clock=clock)

    session.record([ProductId.CMS_PAAS], ["Startup.cs"], "optidev_context_analyzer")
    session.record([ProductId.DXP], [], "optidev_debug_helper")
    session.record([ProductId.CMS_PAAS, ProductId.CMS_PAAS], ["BlockController.cs"], None)

    snapshot = session.snapshot()
    assert len(session) == 2
    assert snapshot.entries[0].files == ("BlockController.cs",)
    assert snapshot.entries[0].products == (ProductId.CMS_PAAS,)
    assert snapshot.recent_products == (ProductId.CMS_PAAS, ProductId.DXP)
    assert snapshot.recent_files == ("BlockController.cs",)
    assert snapshot.recent_tools == ("optidev_debug_helper",)

    session.clear()
    assert session.snapshot().entries == ()


def test_session_snapshot_is_immutable_copy() -> None:
    session = SessionMemory()
    session.record([ProductId.CMP])
    snapshot = session.snapshot()

    session.record([ProductId.DXP])

    assert snapshot.recent_products == (ProductId.CMP,)
    with pytest.raises(ValueError):
        SessionMemory(max_items=0)


def test_cache_values_are_isolated_from_callers() -> None:
    cache: PromptCache[dict[str, list[str]]] = PromptCache(ttl_seconds=10, clock=FakeClock())
    original = {"steps": ["one"]}

    cache.set("k", original)
    original["steps"].append("mutated before read")
    first = cache.get("k")
    assert first == {"steps": ["one"]}

    first["steps"].append("mutated after read")
    assert cache.get("k") == {"steps": ["one"]}
