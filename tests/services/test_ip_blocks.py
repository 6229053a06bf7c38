import pytest
from sqlalchemy.exc import OperationalError

from gatehouse.services.ip_blocks import (
    SOURCE_ADMIN,
    SOURCE_AUTO,
    SOURCE_PERSISTED,
    IPBlockRegistry,
)


@pytest.mark.asyncio
async def test_block_reports_reason_and_remaining_time(registry, clock):
    await registry.block("8.8.8.8", 300, "Manual test")
    clock.advance(100)

    status = await registry.status("8.8.8.8")

    assert status.blocked
    assert status.reason == "Manual test"
    assert status.remaining_seconds == pytest.approx(200)
    assert status.as_dict()["remainingSeconds"] == 200


@pytest.mark.asyncio
async def test_unknown_client_is_not_blocked(registry):
    status = await registry.status("1.1.1.1")
    assert not status.blocked
    assert status.as_dict() == {
        "blocked": False,
        "reason": None,
        "blockedUntil": None,
        "remainingSeconds": 0,
    }


@pytest.mark.asyncio
async def test_reblocking_extends_and_keeps_creation_time(registry, clock):
    first = await registry.block("8.8.8.8", 60, "first", source=SOURCE_AUTO)
    clock.advance(30)
    second = await registry.block("8.8.8.8", 600, "second", source=SOURCE_ADMIN)

    assert second.created_at == first.created_at
    assert second.blocked_until == clock.now() + 600
    assert second.source == SOURCE_ADMIN


@pytest.mark.asyncio
async def test_unblock_lifts_ban_before_expiry(registry):
    await registry.block("8.8.8.8", 600, "reason")

    assert await registry.unblock("8.8.8.8") is True
    assert (await registry.status("8.8.8.8")).blocked is False
    assert await registry.unblock("8.8.8.8") is False


@pytest.mark.asyncio
async def test_expired_bans_are_evicted_from_memory_and_database(registry, repository, clock):
    await registry.block("8.8.8.8", 60, "short")
    await registry.block("1.1.1.1", 600, "long")
    clock.advance(61)

    assert await registry.sweep() == 1

    assert len(registry) == 1
    assert [row.address for row in repository.load_blocks()] == ["1.1.1.1"]


@pytest.mark.asyncio
async def test_restart_hydrates_active_bans_and_drops_expired(registry, repository, clock):
    await registry.block("8.8.8.8", 60, "short")
    await registry.block("1.1.1.1", 600, "long")
    clock.advance(120)

    restarted = IPBlockRegistry(clock, repository)
    assert await restarted.load() == 1

    status = await restarted.status("1.1.1.1")
    assert status.blocked and status.reason == "long"
    assert (await restarted.get("1.1.1.1")).source == SOURCE_PERSISTED
    assert (await restarted.status("8.8.8.8")).blocked is False
    assert [row.address for row in repository.load_blocks()] == ["1.1.1.1"]


@pytest.mark.asyncio
async def test_active_lists_longest_ban_first(registry):
    await registry.block("8.8.8.8", 60, "a")
    await registry.block("1.1.1.1", 600, "b")

    assert [entry.address for entry in await registry.active()] == ["1.1.1.1", "8.8.8.8"]


@pytest.mark.asyncio
async def test_persistence_failure_keeps_memory_authoritative(clock, repository, mocker):
    failure = OperationalError("INSERT", {}, Exception("disk I/O error"))
    mocker.patch.object(repository, "save_block", side_effect=failure)
    on_error = mocker.AsyncMock()
    registry = IPBlockRegistry(clock, repository, on_persist_error=on_error)

    await registry.block("8.8.8.8", 600, "reason")

    assert (await registry.status("8.8.8.8")).blocked
    on_error.assert_awaited_once()
    title, exc = on_error.await_args.args
    assert "save" in title
    assert exc is failure
