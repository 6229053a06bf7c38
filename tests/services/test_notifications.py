import pytest
from sqlalchemy.exc import OperationalError

from gatehouse.services.notifications import (
    CATEGORY_ERROR,
    CATEGORY_SECURITY,
    CATEGORY_WARNING,
    MAX_MESSAGE_LENGTH,
    AuditLog,
    truncate,
)


def test_truncate_clips_then_strips():
    assert truncate("  padded value  ", 9) == "padded"
    assert truncate(None, 10) == ""
    assert truncate(42, 10) == ""


@pytest.mark.asyncio
async def test_record_and_read_back(audit):
    notification_id = await audit.record(
        CATEGORY_SECURITY,
        "Login Success",
        "Admin login from IP: 8.8.8.8",
        client_address="8.8.8.8",
        metadata={"source": "test"},
    )

    stored = await audit.get(notification_id)
    assert stored["title"] == "Login Success"
    assert stored["clientAddress"] == "8.8.8.8"
    assert stored["metadata"] == {"source": "test"}
    assert stored["read"] is False
    assert stored["timestamp"].endswith("Z")


@pytest.mark.asyncio
async def test_messages_are_capped(audit):
    notification_id = await audit.record(CATEGORY_WARNING, "Long", "x" * 2000)
    assert len((await audit.get(notification_id))["message"]) == MAX_MESSAGE_LENGTH


@pytest.mark.asyncio
async def test_entries_recorded_in_one_tick_keep_their_order(audit):
    for index in range(3):
        await audit.record(CATEGORY_WARNING, f"entry {index}", "same instant")

    assert [item["title"] for item in await audit.recent()] == ["entry 2", "entry 1", "entry 0"]


@pytest.mark.asyncio
async def test_log_is_capped_to_most_recent_entries(repository, clock):
    audit = AuditLog(repository, clock, limit=3)
    for index in range(5):
        clock.advance(1)
        await audit.record(CATEGORY_WARNING, f"entry {index}", "message")

    assert [item["title"] for item in await audit.recent()] == ["entry 4", "entry 3", "entry 2"]


@pytest.mark.asyncio
async def test_mark_read_merge_and_delete(audit):
    notification_id = await audit.record(
        CATEGORY_SECURITY, "Appeal", "pending", metadata={"status": "pending"}
    )

    assert await audit.mark_read(notification_id)
    assert await audit.merge_metadata(notification_id, {"status": "resolved", "decision": "keep"})
    stored = await audit.get(notification_id)
    assert stored["read"] is True
    assert stored["metadata"] == {"status": "resolved", "decision": "keep"}

    assert await audit.delete(notification_id)
    assert await audit.get(notification_id) is None
    assert not await audit.mark_read(notification_id)


@pytest.mark.asyncio
async def test_clear_removes_everything(audit):
    await audit.record(CATEGORY_WARNING, "a", "a")
    await audit.record(CATEGORY_WARNING, "b", "b")

    assert await audit.clear() == 2
    assert await audit.recent() == []


@pytest.mark.asyncio
async def test_report_error_names_the_exception(audit):
    notification_id = await audit.report_error("Persist Error", ValueError("bad row"))
    stored = await audit.get(notification_id)
    assert stored["category"] == CATEGORY_ERROR
    assert stored["message"] == "ValueError: bad row"


@pytest.mark.asyncio
async def test_database_failure_is_swallowed(repository, clock, mocker):
    mocker.patch.object(
        repository,
        "add_notification",
        side_effect=OperationalError("INSERT", {}, Exception("locked")),
    )
    audit = AuditLog(repository, clock)

    assert await audit.record(CATEGORY_WARNING, "title", "message") is None
