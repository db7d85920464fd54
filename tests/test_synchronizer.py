import pytest

from models import GradeRecord, grade_key
from utils.errors import NotFoundError, StoreUnavailable
from utils.gradebook_edits import add_assessment, remove_assessment, set_score
from utils.grading_types import Section


def _projection(services, user_id, section_id="sec-1"):
    return [g.to_dict() for g in services.projections.query(user_id, section_id)]


def test_connect_seeds_projection(connected, services):
    ana = _projection(services, "user-ana")
    assert len(ana) == 1
    assert ana[0]["subject"] == "English"
    assert ana[0]["subjectId"] == "subj-eng"
    assert ana[0]["quarter"] == 1
    assert ana[0]["score"] == 96.0
    assert ana[0]["hidden"] is False
    assert ana[0]["id"] == grade_key("user-ana", "sec-1", "subj-eng", 1)

    ben = _projection(services, "user-ben")
    assert [g["score"] for g in ben] == [89.0]


def test_recompute_is_idempotent(connected, services, sync):
    first = _projection(services, "user-ana")
    sync.recompute_and_replace(connected, connected.student("stu-ana"))
    second = _projection(services, "user-ana")
    assert first == second


def test_ungraded_quarters_are_not_projected(connected, services, sync):
    section, _ = add_assessment(connected, "subj-eng", "writtenWork", 2, 10)
    sync.save_section(section)
    assert [g["quarter"] for g in _projection(services, "user-ana")] == [1]


def test_all_zero_quarter_is_not_projected(connected, services, sync):
    section, extra = add_assessment(connected, "subj-eng", "writtenWork", 2, 10)
    section = set_score(section, "stu-ana", "subj-eng", extra.id, 0)
    sync.save_section(section)
    assert [g["quarter"] for g in _projection(services, "user-ana")] == [1]


def test_deleted_assessment_leaves_no_projection(connected, services, sync):
    section, extra = add_assessment(connected, "subj-eng", "writtenWork", 2, 10)
    section = set_score(section, "stu-ana", "subj-eng", extra.id, 9)
    sync.save_section(section)
    assert [g["quarter"] for g in _projection(services, "user-ana")] == [1, 2]

    section = remove_assessment(section, "subj-eng", extra.id)
    report = sync.save_section(section)
    assert report.ok
    assert [g["quarter"] for g in _projection(services, "user-ana")] == [1]


def test_score_edit_updates_projection_and_cache(connected, sync):
    assert [g["score"] for g in sync.grades_for_user("user-ana")] == [96.0]

    section = set_score(connected, "stu-ana", "subj-eng", "a-ww1", 10)
    sync.save_section(section)

    assert [g["score"] for g in sync.grades_for_user("user-ana")] == [98.0]


def test_visibility_toggle_never_changes_scores(connected, services, sync):
    before = {g["id"]: g["score"] for g in _projection(services, "user-ana") + _projection(services, "user-ben")}

    report = sync.set_section_visibility("sec-1", True)

    assert report.ok
    assert sorted(report.succeeded) == ["stu-ana", "stu-ben"]
    after = _projection(services, "user-ana") + _projection(services, "user-ben")
    assert all(g["hidden"] for g in after)
    assert {g["id"]: g["score"] for g in after} == before


def test_hidden_grades_are_filtered_from_learner_view(connected, sync):
    assert len(sync.grades_for_user("user-ana")) == 1
    sync.set_student_visibility("user-ana", "sec-1", True)

    assert sync.grades_for_user("user-ana") == []
    assert len(sync.grades_for_user("user-ana", include_hidden=True)) == 1


def test_recompute_keeps_existing_visibility(connected, services, sync):
    sync.set_student_visibility("user-ana", "sec-1", True)

    section = set_score(connected, "stu-ana", "subj-eng", "a-ww1", 10)
    sync.save_section(section)

    assert [(g["score"], g["hidden"]) for g in _projection(services, "user-ana")] == [(98.0, True)]
    assert [g["hidden"] for g in _projection(services, "user-ben")] == [False]


def test_recompute_with_explicit_hidden_flag(connected, services, sync):
    sync.recompute_and_replace(connected, connected.student("stu-ana"), hidden=True)
    assert [g["hidden"] for g in _projection(services, "user-ana")] == [True]


def test_bulk_visibility_reports_partial_failure(connected, services, sync, monkeypatch):
    original = services.projections.batch_set_hidden

    def flaky(user_id, section_id, hidden):
        if user_id == "user-ben":
            raise StoreUnavailable("database went away")
        return original(user_id, section_id, hidden)

    monkeypatch.setattr(services.projections, "batch_set_hidden", flaky)
    report = sync.set_section_visibility("sec-1", True)

    assert report.succeeded == ["stu-ana"]
    assert report.failure_count == 1
    assert report.failed[0].student_id == "stu-ben"
    assert report.failed[0].user_id == "user-ben"
    assert [g["hidden"] for g in _projection(services, "user-ana")] == [True]
    assert [g["hidden"] for g in _projection(services, "user-ben")] == [False]


def test_sync_section_reports_partial_failure(connected, sync, monkeypatch):
    original = sync.recompute_and_replace

    def flaky(section, student, user_id=None, hidden=None):
        if student.id == "stu-ana":
            raise StoreUnavailable("database went away")
        return original(section, student, user_id, hidden)

    monkeypatch.setattr(sync, "recompute_and_replace", flaky)
    report = sync.sync_section(connected)

    assert report.succeeded == ["stu-ben"]
    assert [f.student_id for f in report.failed] == ["stu-ana"]


def test_failed_replace_keeps_previous_projection(connected, services, sync, monkeypatch):
    before = _projection(services, "user-ana")
    good_rows = sync.build_projection(connected, connected.student("stu-ana"), "user-ana", False)
    bad_row = dict(good_rows[0], id="broken", quarter=2, score=None)
    monkeypatch.setattr(sync, "build_projection", lambda *args: good_rows + [bad_row])

    with pytest.raises(TypeError):
        sync.recompute_and_replace(connected, connected.student("stu-ana"))

    assert _projection(services, "user-ana") == before


def test_local_only_student_is_never_projected(sync, gradebook):
    sync.save_section(gradebook)
    section = set_score(gradebook, "stu-ben", "subj-eng", "a-ww1", 10)

    report = sync.save_section(section)

    assert report.ok
    assert report.succeeded == []
    assert sync.recompute_and_replace(section, section.student("stu-ben")) == []
    assert GradeRecord.query.count() == 0


def test_disconnect_removes_projection_but_keeps_scores(connected, services, sync):
    removed = sync.disconnect("sec-1", "stu-ana", "user-ana")

    assert removed == 1
    assert _projection(services, "user-ana") == []
    assert services.registry.for_student("stu-ana", "sec-1") == []
    section = sync.get_section("sec-1")
    student = section.student("stu-ana")
    assert not student.is_connected
    assert student.grades_for("subj-eng").period(1).written_work[0].score == 8
    assert len(_projection(services, "user-ben")) == 1


def test_leave_section(connected, services, sync):
    assert sync.leave_section("user-ana", "sec-1") == ["stu-ana"]

    assert _projection(services, "user-ana") == []
    assert not sync.get_section("sec-1").student("stu-ana").is_connected
    assert sync.connections_for_user("user-ana") == []


def test_delete_section_cascades(connected, services, sync):
    sync.delete_section("sec-1")

    assert _projection(services, "user-ana") == []
    assert _projection(services, "user-ben") == []
    assert services.registry.for_section("sec-1", active_only=False) == []
    with pytest.raises(NotFoundError):
        sync.get_section("sec-1")
    assert sync.sections_for_teacher("teacher-1") == []


def test_delete_missing_section(sync):
    with pytest.raises(NotFoundError):
        sync.delete_section("nope")


def test_delete_account_data_for_teacher(connected, services, sync):
    result = sync.delete_account_data("teacher-1")

    assert result == {"sectionsDeleted": 1, "gradesDeleted": 0, "connectionsDeleted": 0}
    assert services.sections.find("sec-1") is None
    assert _projection(services, "user-ana") == []


def test_delete_account_data_for_learner(connected, services, sync):
    result = sync.delete_account_data("user-ana")

    assert result == {"sectionsDeleted": 0, "gradesDeleted": 1, "connectionsDeleted": 1}
    assert services.sections.find("sec-1") is not None
    assert len(_projection(services, "user-ben")) == 1


def test_grade_cache_expires_after_ttl(connected, services, sync, clock):
    assert len(sync.grades_for_user("user-ana")) == 1

    # write behind the synchronizer's back: the cached list is served until it expires
    services.projections.batch_set_hidden("user-ana", "sec-1", True)
    assert len(sync.grades_for_user("user-ana")) == 1

    clock.advance(61)
    assert sync.grades_for_user("user-ana") == []


def test_stale_section_list_only_on_request(connected, services, sync, clock, monkeypatch):
    assert [s.id for s in sync.sections_for_teacher("teacher-1")] == ["sec-1"]
    clock.advance(61)

    def down(teacher_id):
        raise StoreUnavailable("database went away")

    monkeypatch.setattr(services.sections, "list_for_teacher", down)

    assert [s.id for s in sync.sections_for_teacher("teacher-1", allow_stale=True)] == ["sec-1"]
    with pytest.raises(StoreUnavailable):
        sync.sections_for_teacher("teacher-1")


def test_section_write_invalidates_teacher_lists(connected, sync):
    assert [s.name for s in sync.sections_for_teacher("teacher-1")] == ["Rizal"]
    sync.save_section(Section.from_dict(dict(connected.to_dict(), name="Bonifacio")), sync=False)
    assert [s.name for s in sync.sections_for_teacher("teacher-1")] == ["Bonifacio"]


def test_debug_sync(connected, sync):
    sync.set_student_visibility("user-ana", "sec-1", True)
    info = sync.debug_sync("user-ana", "sec-1")
    assert info["totalGrades"] == 1
    assert info["sectionGrades"] == 1
    assert info["hiddenGrades"] == 1
