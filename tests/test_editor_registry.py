import asyncio

import pytest

from chartpad.renderers.diagram_renderer import DiagramRenderer
from chartpad.services.editor_registry import EditorRegistry
from chartpad.services.identity import AuthSession
from chartpad.services.session_provider import SessionProvider

from tests.fakes import FakeStore, fake_render


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _registry(stores, clock, idle_timeout=60.0):
    def provider_factory():
        store = FakeStore()
        stores.append(store)
        return SessionProvider(lambda access_token: store)

    return EditorRegistry(
        idle_timeout=idle_timeout,
        provider_factory=provider_factory,
        renderer_factory=lambda: DiagramRenderer(fake_render),
        clock=clock,
    )


def test_idle_editor_is_closed_and_forgotten():
    stores = []
    clock = FakeClock()

    async def scenario():
        registry = _registry(stores, clock)
        stale = await registry.open(AuthSession("user_1", "token"))
        clock.now += 30
        active = await registry.open(AuthSession("user_2", "token"))
        clock.now += 40
        evicted = await registry.evict_idle()
        return registry, stale, active, evicted

    registry, stale, active, evicted = asyncio.run(scenario())
    assert evicted == [stale.id]
    assert stores[0].closed is True
    assert stores[1].closed is False
    assert registry.ids() == [active.id]
    with pytest.raises(KeyError):
        registry.get(stale.id)


def test_access_keeps_editor_alive():
    stores = []
    clock = FakeClock()

    async def scenario():
        registry = _registry(stores, clock)
        screen = await registry.open(AuthSession("user_1", "token"))
        clock.now += 50
        registry.get(screen.id)
        clock.now += 50
        return registry, screen, await registry.evict_idle()

    registry, screen, evicted = asyncio.run(scenario())
    assert evicted == []
    assert registry.ids() == [screen.id]


def test_eviction_disabled_without_timeout():
    stores = []
    clock = FakeClock()

    async def scenario():
        registry = _registry(stores, clock, idle_timeout=0)
        await registry.open(None)
        clock.now += 10_000
        return registry, await registry.evict_idle()

    registry, evicted = asyncio.run(scenario())
    assert evicted == []
    assert len(registry.ids()) == 1


def test_close_and_close_all_release_editors():
    stores = []
    clock = FakeClock()

    async def scenario():
        registry = _registry(stores, clock)
        first = await registry.open(AuthSession("user_1", "token"))
        await registry.open(AuthSession("user_2", "token"))
        await registry.close(first.id)
        with pytest.raises(KeyError):
            await registry.close(first.id)
        await registry.close_all()
        return registry

    registry = asyncio.run(scenario())
    assert registry.ids() == []
    assert all(store.closed for store in stores)
