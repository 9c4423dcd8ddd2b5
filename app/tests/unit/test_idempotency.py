import pytest

from app.utils.idempotency import get_idempotent, set_idempotent


@pytest.mark.asyncio
async def test_idemp_flow(fake_redis):
    key = "pytest-idemp"
    assert await get_idempotent(key) is None
    await set_idempotent(key, {"ok": True})
    found = await get_idempotent(key)
    assert found == {"ok": True}
    assert b'{"ok": true}' == fake_redis.store[f"idemp:{key}"]


@pytest.mark.asyncio
async def test_scopes_do_not_collide(fake_redis):
    await set_idempotent("same-key", {"scope": "a"}, scope="direct-link")

    assert await get_idempotent("same-key") is None
    assert await get_idempotent("same-key", scope="direct-link") == {"scope": "a"}


@pytest.mark.asyncio
async def test_without_redis_nothing_is_replayed():
    await set_idempotent("no-redis", {"ok": True})

    assert await get_idempotent("no-redis") is None


@pytest.mark.asyncio
async def test_missing_key_is_ignored(fake_redis):
    await set_idempotent(None, {"ok": True})

    assert await get_idempotent(None) is None
    assert fake_redis.store == {}
