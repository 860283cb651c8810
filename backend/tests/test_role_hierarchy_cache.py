import pytest

from app.auth.role_hierarchy import SUPER_ADMIN_ROLE
from app.services.admin.role_hierarchy_cache import RoleHierarchyCache


class FakeLoader:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.roles = [
            {"name": SUPER_ADMIN_ROLE, "order": 0, "permissions": []},
            {"name": "Helper", "order": 3, "permissions": []},
        ]
        self.error: Exception | None = None

    async def __call__(self, server_name: str):
        self.calls.append(server_name)
        if self.error is not None:
            raise self.error
        return list(self.roles)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def loader() -> FakeLoader:
    return FakeLoader()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(loader, clock) -> RoleHierarchyCache:
    return RoleHierarchyCache(loader, ttl_seconds=300, clock=clock)


@pytest.mark.anyio
async def test_same_table_within_ttl(cache, loader, clock) -> None:
    first = await cache.get_role_hierarchy("alpha")
    clock.now += 299
    second = await cache.get_role_hierarchy("alpha")

    assert first is second
    assert loader.calls == ["alpha"]


@pytest.mark.anyio
async def test_rebuilds_after_ttl(cache, loader, clock) -> None:
    first = await cache.get_role_hierarchy("alpha")
    clock.now += 300
    loader.roles.append({"name": "Moderator", "order": 2})

    second = await cache.get_role_hierarchy("alpha")

    assert first is not second
    assert "Moderator" in second
    assert loader.calls == ["alpha", "alpha"]


@pytest.mark.anyio
async def test_tenants_cached_separately(cache, loader) -> None:
    await cache.get_role_hierarchy("alpha")
    await cache.get_role_hierarchy("beta")
    await cache.get_role_hierarchy("alpha")

    assert loader.calls == ["alpha", "beta"]


@pytest.mark.anyio
async def test_clear_forces_rebuild_for_one_tenant(cache, loader) -> None:
    await cache.get_role_hierarchy("alpha")
    await cache.get_role_hierarchy("beta")

    cache.clear("alpha")
    await cache.get_role_hierarchy("alpha")
    await cache.get_role_hierarchy("beta")

    assert loader.calls == ["alpha", "beta", "alpha"]


@pytest.mark.anyio
async def test_clear_all(cache, loader) -> None:
    await cache.get_role_hierarchy("alpha")
    cache.clear()
    await cache.get_role_hierarchy("alpha")

    assert loader.calls == ["alpha", "alpha"]


@pytest.mark.anyio
async def test_failed_rebuild_serves_stale_table(cache, loader, clock, caplog) -> None:
    stale = await cache.get_role_hierarchy("alpha")
    clock.now += 301
    loader.error = RuntimeError("database down")

    with caplog.at_level("ERROR", logger="modl.roles.cache"):
        table = await cache.get_role_hierarchy("alpha")

    assert table is stale
    assert "hierarchy_rebuild_failed" in caplog.text


@pytest.mark.anyio
async def test_failed_first_build_returns_empty_table(cache, loader) -> None:
    loader.error = RuntimeError("database down")

    assert await cache.get_role_hierarchy("alpha") == {}
