"""Tests for ActivityLog."""

import pytest

from schemas.user import UserAccount
from utils.activity_log import ActivityLog


@pytest.fixture
def activity_log(document_store, clock):
    return ActivityLog(document_store, clock)


def test_describe():
    assert (
        ActivityLog.describe(
            {"eventType": "ClassEnrolled", "classCode": "ABC123", "timestamp": "2024-03-01T12:00:00+00:00"}
        )
        == "ClassEnrolled: ABC123 - 2024-03-01 12:00:00"
    )
    assert ActivityLog.describe({"eventType": "AppQuit"}) == "AppQuit - N/A"
    assert ActivityLog.describe({}) == "Unknown Event - N/A"


@pytest.mark.asyncio
async def test_entries_newest_first(activity_log, clock):
    await activity_log.record("u1", "SceneLoaded", sceneName="MainMenu")
    clock.advance(60)
    await activity_log.record("u1", "ButtonClick", buttonName="Fire")
    clock.advance(60)
    await activity_log.record("u1", "AppQuit")

    entries = await activity_log.list_entries("u1")
    assert [e.event_type for e in entries] == ["AppQuit", "ButtonClick", "SceneLoaded"]
    assert entries[1].description.startswith("ButtonClick: Fire - ")
    assert len(await activity_log.list_entries("u1", limit=1)) == 1


@pytest.mark.asyncio
async def test_none_context_is_not_stored(activity_log):
    await activity_log.record("u1", "AppQuit", sceneName=None)
    entries = await activity_log.list_entries("u1")
    assert entries[0].context == {}


@pytest.mark.asyncio
async def test_statistics(activity_log):
    account = UserAccount(
        user_id="u1",
        email="ana@example.com",
        display_name="Ana",
        enrolled_classes=["ABC", "DEF", "ABC"],
        created_at="2023-09-15T08:00:00+00:00",
        last_login="2024-03-01T12:00:00+00:00",
    )
    await activity_log.record("u1", "ClassEnrolled", classCode="ABC")

    stats = await activity_log.build_statistics(account)

    assert stats.enrolled_classes == ["ABC", "DEF"]
    assert stats.total_classes == 2
    assert stats.member_since == "September 2023"
    assert stats.login_data == "Available"
    assert len(stats.history) == 1


@pytest.mark.asyncio
async def test_statistics_without_dates(activity_log):
    stats = await activity_log.build_statistics(UserAccount(user_id="u1"))
    assert stats.member_since == "Unknown"
    assert stats.login_data == "No login data"
    assert stats.history == []
