"""Tests for CourseAccessProjector and CourseBoard."""

import pytest

from schemas.course import CourseCatalogEntry, load_catalog
from utils.course_access import CourseAccessProjector, CourseBoard, CourseState, status_message


def _catalog(*ids):
    return [CourseCatalogEntry(course_id=course_id, display_name=course_id) for course_id in ids]


@pytest.fixture
def projector():
    return CourseAccessProjector(_catalog("fingerprint", "fire", "photography"))


class TestProjectAccess:
    def test_scenario_projection(self, projector):
        mapping = projector.project_access({"fingerprint", "photography"})
        assert mapping == {"fingerprint": True, "fire": False, "photography": True}

    def test_empty_set_locks_everything(self, projector):
        mapping = projector.project_access(set())
        assert mapping == {"fingerprint": False, "fire": False, "photography": False}

    def test_locked_access_matches_empty_projection(self, projector):
        assert projector.locked_access() == projector.project_access(set())

    def test_case_insensitive(self, projector):
        assert projector.project_access({"PHOTOGRAPHY"})["photography"] is True

    def test_case_duplicates_collapse_to_first_entry(self):
        projector = CourseAccessProjector(
            [
                CourseCatalogEntry(course_id="Fire", display_name="Fire Equipment"),
                CourseCatalogEntry(course_id="fire", display_name="fire (old)"),
                CourseCatalogEntry(course_id="Microscopy", display_name="Microscopy"),
            ]
        )
        assert projector.project_access({"fire"}) == {"fire": True, "microscopy": False}
        entries = projector.canonical_catalog()
        assert [e.display_name for e in entries] == ["Fire Equipment", "Microscopy"]

    def test_unknown_unlocks_are_ignored(self, projector):
        mapping = projector.project_access({"astronomy"})
        assert set(mapping) == {"fingerprint", "fire", "photography"}
        assert not any(mapping.values())

    def test_explicit_catalog_argument(self, projector):
        assert projector.project_access({"fire"}, _catalog("Fire")) == {"fire": True}

    def test_default_catalog(self):
        projector = CourseAccessProjector()
        assert list(projector.locked_access()) == [
            "evidencekit", "surveillance", "fire", "fingerprint", "photography", "microscopy",
        ]
        assert projector.catalog[0].scene_name == "EvidenceKitModels"
        assert load_catalog(["Fire"])[0].scene_name == "FireEquipmentModels"


class TestSummarize:
    def test_counts(self, projector):
        summary = projector.summarize({"a": True, "b": False, "c": True})
        assert (summary.unlocked_count, summary.total_count) == (2, 3)

    def test_status_messages(self, projector):
        locked = projector.report(projector.locked_access())
        assert locked.status == "No courses available"
        partial = projector.report(projector.project_access({"fire"}))
        assert partial.status == "1/3 courses available"
        assert partial.unlocked_courses == ["fire"]

    def test_status_message_for_empty_catalog(self):
        summary = CourseAccessProjector.summarize({})
        assert status_message(summary) == "No courses available"

    def test_locked_and_unlocked_lists(self, projector):
        mapping = projector.project_access({"fire"})
        assert projector.unlocked_courses(mapping) == ["fire"]
        assert projector.locked_courses(mapping) == ["fingerprint", "photography"]


class TestCourseBoard:
    def test_starts_locked(self):
        board = CourseBoard(["Fire", "photography"])
        assert board.state("fire") == CourseState.LOCKED
        assert board.snapshot() == {"fire": False, "photography": False}

    def test_apply_unlocks_and_relocks(self):
        board = CourseBoard(["fire", "photography"])
        board.apply({"fire": True, "photography": False})
        assert board.is_unlocked("FIRE")
        assert not board.is_unlocked("photography")
        board.apply({"fire": False})
        assert not board.is_unlocked("fire")

    def test_lock_all_is_idempotent(self):
        board = CourseBoard(["fire"])
        board.apply({"fire": True})
        board.lock_all()
        board.lock_all()
        assert board.state("fire") == CourseState.LOCKED

    def test_unknown_course_is_locked(self):
        board = CourseBoard(["fire"])
        board.apply({"astronomy": True})
        assert board.state("astronomy") == CourseState.LOCKED
