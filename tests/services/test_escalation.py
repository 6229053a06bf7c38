import pytest

from gatehouse.services.escalation import (
    RATE_LIMIT_BLOCK_REASON,
    ViolationEscalator,
    register_violation,
)
from gatehouse.services.ip_blocks import SOURCE_AUTO


@pytest.fixture()
def escalator(memory_store, registry, clock):
    return ViolationEscalator(
        "rate_limit",
        memory_store,
        registry,
        clock,
        threshold=3,
        window_seconds=600,
        block_duration_seconds=1200,
        reason=RATE_LIMIT_BLOCK_REASON,
    )


@pytest.mark.asyncio
async def test_register_violation_restarts_after_window(clock, memory_store):
    assert await register_violation(memory_store, "v", 600, clock.now()) == 1
    clock.advance(100)
    assert await register_violation(memory_store, "v", 600, clock.now()) == 2
    clock.advance(601)
    assert await register_violation(memory_store, "v", 600, clock.now()) == 1


@pytest.mark.asyncio
async def test_threshold_violations_ban_the_client(escalator, registry, clock):
    first = await escalator.escalate("8.8.8.8")
    second = await escalator.escalate("8.8.8.8")
    assert not first.blocked and not second.blocked
    assert (await registry.status("8.8.8.8")).blocked is False

    third = await escalator.escalate("8.8.8.8")

    assert third.blocked
    assert third.violations == 3
    assert third.block.source == SOURCE_AUTO
    status = await registry.status("8.8.8.8")
    assert status.blocked
    assert status.reason == RATE_LIMIT_BLOCK_REASON
    assert status.blocked_until == clock.now() + 1200


@pytest.mark.asyncio
async def test_ban_expires_and_status_is_stable(escalator, registry, clock):
    for _ in range(3):
        await escalator.escalate("8.8.8.8")

    clock.advance(1200)

    assert (await registry.status("8.8.8.8")).blocked is False
    assert (await registry.status("8.8.8.8")).blocked is False


@pytest.mark.asyncio
async def test_escalation_clears_the_violation_record(escalator):
    for _ in range(3):
        await escalator.escalate("8.8.8.8")

    assert (await escalator.escalate("8.8.8.8")).violations == 1


@pytest.mark.asyncio
async def test_reset_forgets_violations(escalator):
    await escalator.escalate("8.8.8.8")
    await escalator.reset("8.8.8.8")
    assert (await escalator.escalate("8.8.8.8")).violations == 1
