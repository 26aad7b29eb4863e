"""Test cases for the SQLite store and its error classification."""

import pytest

import mock_data
from db import SQLiteStore, ensure_seed_courses
from engines.errors import ConstraintViolation, NotFound, StoreUnavailable


def _create(store, user_id="user_1", email="ana@example.com"):
    return store.create_user(user_id, email, "hash", "salt", "Ana Lopez", "Ana", "Lopez", {"preferences": {"pace": "normal"}})


def test_create_and_read_user(temp_store):
    created = _create(temp_store)
    assert created["id"] == "user_1"
    assert created["profile"] == {"preferences": {"pace": "normal"}}
    assert "pw_hash" not in created and "pw_salt" not in created
    assert temp_store.get_user_by_email("ana@example.com")["id"] == "user_1"
    assert temp_store.get_user_by_email("nobody@example.com") is None
    assert temp_store.count_users() == 1


def test_duplicate_email_is_constraint_violation(temp_store):
    _create(temp_store)
    with pytest.raises(ConstraintViolation):
        _create(temp_store, user_id="user_2")


def test_missing_user_is_not_found(temp_store):
    with pytest.raises(NotFound):
        temp_store.get_user("ghost")
    with pytest.raises(NotFound):
        temp_store.update_user_profile("ghost", {})


def test_update_profile_merges_fields(temp_store):
    _create(temp_store)
    updated = temp_store.update_user_profile("user_1", {"current_streak": 2})
    assert updated["profile"] == {"preferences": {"pace": "normal"}, "current_streak": 2}
    assert updated["display_name"] == "Ana Lopez"
    assert temp_store.get_user("user_1")["profile"] == updated["profile"]


def test_update_profile_renames_user(temp_store):
    _create(temp_store)
    updated = temp_store.update_user_profile(
        "user_1", {"preferences": {"pace": "fast"}}, "Ana María", "López"
    )
    assert (updated["first_name"], updated["last_name"]) == ("Ana María", "López")
    assert updated["display_name"] == "Ana María López"
    stored = temp_store.get_user("user_1")
    assert stored["display_name"] == "Ana María López"
    assert stored["profile"] == {"preferences": {"pace": "fast"}}


def test_seeded_courses_and_progress(temp_store):
    assert ensure_seed_courses(temp_store, mock_data.courses()) == 5
    courses = temp_store.list_courses()
    assert [c["id"] for c in courses][0] == "course-ml-fundamentals"
    assert courses[0]["total_lessons"] == 8

    _create(temp_store)
    temp_store.record_progress("user_1", "course-ml-fundamentals", "course-ml-fundamentals-lesson-1", "completed", 0.9)
    temp_store.record_progress("user_1", "course-ml-fundamentals", "course-ml-fundamentals-lesson-2", "started")
    # Upsert replaces the earlier status for the same lesson.
    temp_store.record_progress("user_1", "course-ml-fundamentals", "course-ml-fundamentals-lesson-2", "completed")

    assert temp_store.completed_lessons_by_course("user_1") == {"course-ml-fundamentals": 2}
    progress = temp_store.list_progress("user_1")
    assert len(progress) == 2
    assert {row["course_id"] for row in progress} == {"course-ml-fundamentals"}


def test_progress_rejects_lesson_from_other_course(temp_store):
    ensure_seed_courses(temp_store, mock_data.courses())
    _create(temp_store)
    with pytest.raises(NotFound):
        temp_store.record_progress("user_1", "course-ai-ethics", "course-ml-fundamentals-lesson-1", "completed")


def test_progress_for_unknown_user_violates_foreign_key(temp_store):
    ensure_seed_courses(temp_store, mock_data.courses())
    with pytest.raises(ConstraintViolation):
        temp_store.record_progress("ghost", "course-ai-ethics", "course-ai-ethics-lesson-1", "completed")


def test_closed_store_is_unavailable(tmp_path):
    store = SQLiteStore(str(tmp_path / "closed.db"))
    store.init()
    assert store.ping() is True
    store.close()
    with pytest.raises(StoreUnavailable):
        store.ping()


def test_unopenable_database_is_unavailable(tmp_path):
    store = SQLiteStore(str(tmp_path / "missing-dir" / "x.db"))
    with pytest.raises(StoreUnavailable):
        store.init()
