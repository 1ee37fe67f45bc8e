"""Tests for EnrollmentResolver."""

import asyncio
from datetime import timedelta

import pydantic
import pytest

from config import CLASSES_COLLECTION, USERS_COLLECTION
from conftest import seed_class, seed_user, wait_until
from core.exceptions import (
    ClassExpiredError,
    ClassFullError,
    ClassInactiveError,
    ClassNotFoundError,
    DuplicateClassCodeError,
    EnrollmentStoreError,
    NoUserError,
    ResolveStoreError,
    ValidationError,
)
from utils.activity_log import ActivityLog
from utils.enrollment_resolver import EnrollmentResolver


@pytest.fixture
def resolver(document_store, clock):
    return EnrollmentResolver(document_store, activity_log=ActivityLog(document_store, clock), clock=clock)


class TestResolveUnlockedCourses:
    @pytest.mark.asyncio
    async def test_union_is_lowercased_and_deduplicated(self, resolver, document_store):
        await seed_class(document_store, "c1", "C1", ["A", "b"])
        await seed_class(document_store, "c2", "C2", ["B", "C"])
        await seed_user(document_store, "u1", ["C1", "C2"])
        assert await resolver.resolve_unlocked_courses("u1") == {"a", "b", "c"}

    @pytest.mark.asyncio
    async def test_union_does_not_depend_on_completion_order(self, gated_store, clock):
        await seed_class(gated_store, "c1", "C1", ["A", "b"])
        await seed_class(gated_store, "c2", "C2", ["B", "C"])
        await seed_user(gated_store, "u1", ["C1", "C2"])
        resolver = EnrollmentResolver(gated_store, clock=clock)

        release_c1 = gated_store.hold("C1")
        pending = asyncio.ensure_future(resolver.resolve_unlocked_courses("u1"))
        await wait_until(lambda: "C2" in gated_store.finished_queries)
        assert not pending.done()
        release_c1.set()

        assert await pending == {"a", "b", "c"}
        assert gated_store.finished_queries == ["C2", "C1"]

    @pytest.mark.asyncio
    async def test_empty_enrollment(self, resolver, document_store):
        await seed_user(document_store, "u1", [])
        assert await resolver.resolve_unlocked_courses("u1") == frozenset()

    @pytest.mark.asyncio
    async def test_dangling_class_reference_is_skipped(self, resolver, document_store):
        await seed_class(document_store, "c1", "C1", ["fire"])
        await seed_user(document_store, "u1", ["GONE", "C1"])
        assert await resolver.resolve_unlocked_courses("u1") == {"fire"}

    @pytest.mark.asyncio
    async def test_code_is_not_the_document_id(self, resolver, document_store):
        await seed_class(document_store, "ABC123", "OTHER", ["fire"])
        await seed_class(document_store, "x9", "ABC123", ["photography"])
        await seed_user(document_store, "u1", ["ABC123"])
        assert await resolver.resolve_unlocked_courses("u1") == {"photography"}

    @pytest.mark.asyncio
    async def test_legacy_unlock_field(self, resolver, document_store):
        await document_store.set_document(
            CLASSES_COLLECTION, "c1", {"code": "C1", "unlockCourse": ["Microscopy"]}
        )
        await seed_user(document_store, "u1", ["C1"])
        assert await resolver.resolve_unlocked_courses("u1") == {"microscopy"}

    @pytest.mark.asyncio
    async def test_missing_user(self, resolver):
        with pytest.raises(NoUserError):
            await resolver.resolve_unlocked_courses("nobody")

    @pytest.mark.asyncio
    async def test_user_fetch_failure(self, gated_store, clock):
        resolver = EnrollmentResolver(gated_store, clock=clock)
        gated_store.fail_user_reads = True
        with pytest.raises(ResolveStoreError):
            await resolver.resolve_unlocked_courses("u1")

    @pytest.mark.asyncio
    async def test_per_class_failure_is_skipped(self, gated_store, clock):
        await seed_class(gated_store, "c1", "C1", ["fire"])
        await seed_class(gated_store, "c2", "C2", ["surveillance"])
        await seed_user(gated_store, "u1", ["C1", "C2"])
        gated_store.failing_codes.add("C1")
        resolver = EnrollmentResolver(gated_store, clock=clock)
        assert await resolver.resolve_unlocked_courses("u1") == {"surveillance"}

    @pytest.mark.asyncio
    async def test_malformed_class_document_propagates(self, resolver, document_store):
        await seed_class(document_store, "c1", "C1", ["fire"])
        await seed_class(document_store, "c2", "C2", ["surveillance"], students="u1")
        await seed_user(document_store, "u1", ["C1", "C2"])
        with pytest.raises(pydantic.ValidationError):
            await resolver.resolve_unlocked_courses("u1")

    @pytest.mark.asyncio
    async def test_duplicate_codes_fetched_once(self, gated_store, clock):
        await seed_class(gated_store, "c1", "C1", ["fire"])
        await seed_user(gated_store, "u1", ["C1", "C1"])
        resolver = EnrollmentResolver(gated_store, clock=clock)
        assert await resolver.resolve_unlocked_courses("u1") == {"fire"}
        assert gated_store.class_queries == ["C1"]


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_fetch(self, gated_store, clock):
        await seed_class(gated_store, "c1", "C1", ["fire"])
        await seed_user(gated_store, "u1", ["C1"])
        resolver = EnrollmentResolver(gated_store, clock=clock)

        gated_store.gate.clear()
        first = asyncio.ensure_future(resolver.resolve_unlocked_courses("u1"))
        second = asyncio.ensure_future(resolver.resolve_unlocked_courses("u1"))
        await wait_until(lambda: gated_store.class_queries)
        assert resolver.is_resolving("u1")
        gated_store.gate.set()

        assert await first == {"fire"}
        assert await second == {"fire"}
        assert gated_store.user_reads == 1

    @pytest.mark.asyncio
    async def test_completed_call_is_not_cached(self, gated_store, clock):
        await seed_class(gated_store, "c1", "C1", ["fire"])
        await seed_user(gated_store, "u1", ["C1"])
        resolver = EnrollmentResolver(gated_store, clock=clock)

        assert await resolver.resolve_unlocked_courses("u1") == {"fire"}
        await seed_class(gated_store, "c1", "C1", ["fire", "photography"])
        assert await resolver.resolve_unlocked_courses("u1") == {"fire", "photography"}
        assert gated_store.user_reads == 2

    @pytest.mark.asyncio
    async def test_stuck_fetch_is_not_joined_after_cooldown(self, gated_store, clock):
        await seed_class(gated_store, "c1", "C1", ["fire"])
        await seed_user(gated_store, "u1", ["C1"])
        ticks = [100.0]
        resolver = EnrollmentResolver(
            gated_store, clock=clock, cooldown=5.0, monotonic=lambda: ticks[0]
        )

        gated_store.gate.clear()
        first = asyncio.ensure_future(resolver.resolve_unlocked_courses("u1"))
        await wait_until(lambda: len(gated_store.class_queries) == 1)
        ticks[0] += 6.0
        second = asyncio.ensure_future(resolver.resolve_unlocked_courses("u1"))
        await wait_until(lambda: len(gated_store.class_queries) == 2)
        gated_store.gate.set()

        assert await first == {"fire"}
        assert await second == {"fire"}
        assert gated_store.user_reads == 2

    @pytest.mark.asyncio
    async def test_different_users_do_not_share(self, gated_store, clock):
        await seed_class(gated_store, "c1", "C1", ["fire"])
        await seed_user(gated_store, "u1", ["C1"])
        await seed_user(gated_store, "u2", [])
        resolver = EnrollmentResolver(gated_store, clock=clock)
        results = await asyncio.gather(
            resolver.resolve_unlocked_courses("u1"),
            resolver.resolve_unlocked_courses("u2"),
        )
        assert results == [frozenset({"fire"}), frozenset()]


class TestIsCourseUnlocked:
    def test_case_insensitive(self):
        assert EnrollmentResolver.is_course_unlocked({"photography"}, "Photography")
        assert EnrollmentResolver.is_course_unlocked({"Photography"}, " photography ")

    def test_absent_or_blank(self):
        assert not EnrollmentResolver.is_course_unlocked({"photography"}, "fire")
        assert not EnrollmentResolver.is_course_unlocked({"photography"}, "")
        assert not EnrollmentResolver.is_course_unlocked(set(), "fire")


class TestEnrollUserInClass:
    @pytest.mark.asyncio
    async def test_scenario_enroll_then_resolve(self, resolver, document_store):
        await seed_class(document_store, "k1", "ABC123", ["fingerprint", "photography"], isActive=True)
        await seed_user(document_store, "u1", [])

        result = await resolver.enroll_user_in_class("u1", "ABC123")
        assert result.already_enrolled is False
        assert await resolver.resolve_unlocked_courses("u1") == {"fingerprint", "photography"}

    @pytest.mark.asyncio
    async def test_idempotent(self, resolver, document_store):
        await seed_class(document_store, "k1", "ABC123", ["fire"])
        await seed_user(document_store, "u1", [])

        await resolver.enroll_user_in_class("u1", "ABC123")
        class_after_first = (await document_store.get_document(CLASSES_COLLECTION, "k1")).data
        user_after_first = (await document_store.get_document(USERS_COLLECTION, "u1")).data

        second = await resolver.enroll_user_in_class("u1", "ABC123")
        assert second.already_enrolled is True
        class_doc = (await document_store.get_document(CLASSES_COLLECTION, "k1")).data
        user_doc = (await document_store.get_document(USERS_COLLECTION, "u1")).data
        assert class_doc["students"] == class_after_first["students"] == ["u1"]
        assert class_doc["currentEnrollment"] == 1
        assert user_doc["enrolledClasses"] == user_after_first["enrolledClasses"] == ["ABC123"]

    @pytest.mark.asyncio
    async def test_class_not_found(self, resolver, document_store):
        await seed_user(document_store, "u1", [])
        with pytest.raises(ClassNotFoundError):
            await resolver.enroll_user_in_class("u1", "NOPE")

    @pytest.mark.asyncio
    async def test_code_locks_are_released(self, resolver, document_store):
        await seed_class(document_store, "k1", "ABC123", ["fire"])
        await seed_user(document_store, "u1", [])
        for i in range(20):
            with pytest.raises(ClassNotFoundError):
                await resolver.enroll_user_in_class("u1", f"BOGUS{i}")
        await resolver.enroll_user_in_class("u1", "ABC123")
        assert len(resolver._class_locks) == 0

    @pytest.mark.asyncio
    async def test_concurrent_joins_are_serialized_per_code(self, resolver, document_store):
        await seed_class(document_store, "k1", "ABC123", ["fire"], maxStudents=30)
        for user_id in ("u1", "u2", "u3"):
            await seed_user(document_store, user_id, [])

        await asyncio.gather(
            *(resolver.enroll_user_in_class(u, "ABC123") for u in ("u1", "u2", "u3"))
        )

        class_doc = (await document_store.get_document(CLASSES_COLLECTION, "k1")).data
        assert sorted(class_doc["students"]) == ["u1", "u2", "u3"]
        assert class_doc["currentEnrollment"] == 3
        assert len(resolver._class_locks) == 0

    @pytest.mark.asyncio
    async def test_blank_code(self, resolver):
        with pytest.raises(ValidationError):
            await resolver.enroll_user_in_class("u1", "   ")

    @pytest.mark.asyncio
    async def test_expired(self, resolver, document_store, clock):
        due = (clock.now - timedelta(days=1)).isoformat()
        await seed_class(document_store, "k1", "OLD", ["fire"], dueDate=due)
        await seed_user(document_store, "u1", [])
        with pytest.raises(ClassExpiredError):
            await resolver.enroll_user_in_class("u1", "OLD")

    @pytest.mark.asyncio
    async def test_due_date_in_future_is_joinable(self, resolver, document_store, clock):
        due = (clock.now + timedelta(days=1)).isoformat()
        await seed_class(document_store, "k1", "NEW", ["fire"], dueDate=due)
        await seed_user(document_store, "u1", [])
        await resolver.enroll_user_in_class("u1", "NEW")

    @pytest.mark.asyncio
    async def test_full(self, resolver, document_store):
        await seed_class(
            document_store, "k1", "FULL", ["fire"],
            students=["a", "b"], maxStudents=2, currentEnrollment=2,
        )
        await seed_user(document_store, "u1", [])
        with pytest.raises(ClassFullError):
            await resolver.enroll_user_in_class("u1", "FULL")

    @pytest.mark.asyncio
    async def test_inactive(self, resolver, document_store):
        await seed_class(document_store, "k1", "OFF", ["fire"], isActive=False)
        await seed_user(document_store, "u1", [])
        with pytest.raises(ClassInactiveError):
            await resolver.enroll_user_in_class("u1", "OFF")

    @pytest.mark.asyncio
    async def test_failure_priority(self, resolver, document_store, clock):
        due = (clock.now - timedelta(days=1)).isoformat()
        await seed_class(
            document_store, "k1", "ALL", ["fire"],
            dueDate=due, isActive=False, maxStudents=1, students=["a"],
        )
        await seed_class(
            document_store, "k2", "TWO", ["fire"],
            isActive=False, maxStudents=1, students=["a"],
        )
        await seed_user(document_store, "u1", [])
        with pytest.raises(ClassExpiredError):
            await resolver.enroll_user_in_class("u1", "ALL")
        with pytest.raises(ClassFullError):
            await resolver.enroll_user_in_class("u1", "TWO")

    @pytest.mark.asyncio
    async def test_existing_student_is_not_revalidated(self, resolver, document_store, clock):
        due = (clock.now - timedelta(days=1)).isoformat()
        await seed_class(document_store, "k1", "OLD", ["fire"], dueDate=due, students=["u1"])
        await seed_user(document_store, "u1", ["OLD"])
        result = await resolver.enroll_user_in_class("u1", "OLD")
        assert result.already_enrolled is True
        assert await resolver.resolve_unlocked_courses("u1") == {"fire"}

    @pytest.mark.asyncio
    async def test_user_side_is_repaired(self, resolver, document_store):
        await seed_class(document_store, "k1", "ABC", ["fire"], students=["u1"])
        await seed_user(document_store, "u1", [])
        result = await resolver.enroll_user_in_class("u1", "ABC")
        assert result.already_enrolled is True
        user_doc = (await document_store.get_document(USERS_COLLECTION, "u1")).data
        assert user_doc["enrolledClasses"] == ["ABC"]

    @pytest.mark.asyncio
    async def test_user_write_failure_then_retry_heals(self, gated_store, clock):
        await seed_class(gated_store, "k1", "ABC", ["fire"])
        await seed_user(gated_store, "u1", [])
        resolver = EnrollmentResolver(gated_store, clock=clock)

        gated_store.fail_writes_to.add(USERS_COLLECTION)
        with pytest.raises(EnrollmentStoreError):
            await resolver.enroll_user_in_class("u1", "ABC")
        gated_store.fail_writes_to.clear()

        result = await resolver.enroll_user_in_class("u1", "ABC")
        assert result.already_enrolled is True
        user_doc = (await gated_store.get_document(USERS_COLLECTION, "u1")).data
        assert user_doc["enrolledClasses"] == ["ABC"]

    @pytest.mark.asyncio
    async def test_records_activity(self, resolver, document_store):
        await seed_class(document_store, "k1", "ABC", ["fire"])
        await seed_user(document_store, "u1", [])
        await resolver.enroll_user_in_class("u1", "ABC")
        entries = await resolver.activity_log.list_entries("u1")
        assert [e.event_type for e in entries] == ["ClassEnrolled"]
        assert entries[0].context == {"classCode": "ABC"}

    @pytest.mark.asyncio
    async def test_active_class_wins_shared_code(self, resolver, document_store):
        await seed_class(document_store, "a1", "SAME", ["fire"], isActive=False)
        await seed_class(document_store, "b1", "SAME", ["photography"], isActive=True)
        await seed_user(document_store, "u1", [])
        result = await resolver.enroll_user_in_class("u1", "SAME")
        assert result.class_record.class_id == "b1"


class TestUnenroll:
    @pytest.mark.asyncio
    async def test_removes_both_sides(self, resolver, document_store, clock):
        await seed_class(document_store, "k1", "ABC", ["fire"])
        await seed_user(document_store, "u1", [])
        await resolver.enroll_user_in_class("u1", "ABC")
        clock.advance(1)

        assert await resolver.unenroll_user_from_class("u1", "ABC") is True
        class_doc = (await document_store.get_document(CLASSES_COLLECTION, "k1")).data
        user_doc = (await document_store.get_document(USERS_COLLECTION, "u1")).data
        assert class_doc["students"] == []
        assert class_doc["currentEnrollment"] == 0
        assert user_doc["enrolledClasses"] == []
        assert await resolver.resolve_unlocked_courses("u1") == frozenset()
        entries = await resolver.activity_log.list_entries("u1")
        assert [e.event_type for e in entries] == ["ClassUnenrolled", "ClassEnrolled"]

    @pytest.mark.asyncio
    async def test_not_enrolled_is_noop(self, resolver, document_store):
        await seed_class(document_store, "k1", "ABC", ["fire"])
        await seed_user(document_store, "u1", [])
        assert await resolver.unenroll_user_from_class("u1", "ABC") is False


class TestClassListingAndCreation:
    @pytest.mark.asyncio
    async def test_list_enrolled_classes(self, resolver, document_store):
        await seed_class(document_store, "k1", "ABC", ["Fire"])
        await seed_user(document_store, "u1", ["ABC", "GONE", "ABC"])
        records = await resolver.list_enrolled_classes("u1")
        assert [r.code for r in records] == ["ABC"]
        assert records[0].unlocked_courses == ["fire"]

    @pytest.mark.asyncio
    async def test_create_class_normalizes_unlocks(self, resolver, document_store):
        record = await resolver.create_class("NEW1", name="Intro", unlocked_courses=["Fire", "fire", " Photography "])
        assert record.unlocked_courses == ["fire", "photography"]
        found = await resolver.find_class_by_code("NEW1")
        assert found.class_id == record.class_id
        assert found.enrollment_count == 0

    @pytest.mark.asyncio
    async def test_create_class_duplicate_active_code(self, resolver):
        await resolver.create_class("DUP")
        with pytest.raises(DuplicateClassCodeError):
            await resolver.create_class("DUP")
        # an inactive class may reuse the code
        await resolver.create_class("DUP", is_active=False)

    @pytest.mark.asyncio
    async def test_create_class_rejects_bad_capacity(self, resolver):
        with pytest.raises(ValidationError):
            await resolver.create_class("CAP", max_students=0)
