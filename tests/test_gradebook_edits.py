import pytest

from utils.errors import NotFoundError, ValidationError
from utils.gradebook_edits import (
    add_assessment,
    add_student,
    add_subject,
    clear_connection,
    create_section,
    mark_connected,
    remove_assessment,
    remove_student,
    remove_subject,
    set_score,
    set_scores,
    update_assessment,
    update_subject,
)
from utils.grading_types import Section


def _entry_ids(section, student_id, subject_id):
    grades = section.student(student_id).grades_for(subject_id)
    return sorted(e.id for _, scores in grades.periods() for e in scores.all_entries())


def test_edits_do_not_mutate_the_original(gradebook):
    before = gradebook.to_dict()
    set_score(gradebook, "stu-ana", "subj-eng", "a-ww1", 10)
    remove_assessment(gradebook, "subj-eng", "a-pt1")
    add_student(gradebook, "Carla")
    assert gradebook.to_dict() == before


def test_new_assessment_reaches_every_student(gradebook):
    section, assessment = add_assessment(gradebook, "subj-eng", "writtenWork", 1, 20)

    assert assessment.name == "WW#2"
    for student_id in ("stu-ana", "stu-ben"):
        entries = section.student(student_id).grades_for("subj-eng").period(1).written_work
        assert [e.id for e in entries] == ["a-ww1", assessment.id]
        assert entries[1].score is None
        assert entries[1].total_points == 20


def test_new_student_gets_entries_for_existing_assessments(gradebook):
    section, student = add_student(gradebook, "Carla")
    assert _entry_ids(section, student.id, "subj-eng") == ["a-pt1", "a-qe1", "a-ww1"]


def test_deleting_an_assessment_removes_it_from_every_student(gradebook):
    section = remove_assessment(gradebook, "subj-eng", "a-pt1")

    assert section.subject("subj-eng").assessment("a-pt1") is None
    for student_id in ("stu-ana", "stu-ben"):
        assert _entry_ids(section, student_id, "subj-eng") == ["a-qe1", "a-ww1"]


def test_renaming_an_assessment_keeps_scores(gradebook):
    section = update_assessment(gradebook, "subj-eng", "a-ww1", name="Quiz 1", total_points=12)
    entry = section.student("stu-ana").grades_for("subj-eng").period(1).written_work[0]
    assert entry.name == "Quiz 1"
    assert entry.total_points == 12
    assert entry.score == 8


def test_lowering_total_points_below_a_recorded_score_is_rejected(gradebook):
    with pytest.raises(ValidationError) as excinfo:
        update_assessment(gradebook, "subj-eng", "a-ww1", total_points=6)
    assert excinfo.value.details["studentIds"] == ["stu-ana"]

    section = update_assessment(gradebook, "subj-eng", "a-ww1", total_points=8)
    assert section.subject("subj-eng").assessment("a-ww1").total_points == 8


def test_set_score_validation(gradebook):
    with pytest.raises(ValidationError):
        set_score(gradebook, "stu-ana", "subj-eng", "a-ww1", -1)
    with pytest.raises(ValidationError):
        set_score(gradebook, "stu-ana", "subj-eng", "a-ww1", 11)
    with pytest.raises(ValidationError):
        set_score(gradebook, "stu-ana", "subj-eng", "a-ww1", "eight")
    with pytest.raises(NotFoundError):
        set_score(gradebook, "stu-ana", "subj-eng", "missing", 5)
    with pytest.raises(NotFoundError):
        set_score(gradebook, "nobody", "subj-eng", "a-ww1", 5)


def test_set_scores_and_clear(gradebook):
    section = set_scores(gradebook, "stu-ben", "subj-eng", {"a-ww1": 10, "a-pt1": None})
    q1 = section.student("stu-ben").grades_for("subj-eng").period(1)
    assert q1.written_work[0].score == 10
    assert q1.performance_task[0].score is None


def test_subject_weights_must_sum_to_100(gradebook):
    with pytest.raises(ValidationError):
        add_subject(gradebook, "Science", 40, 40, 40)
    with pytest.raises(ValidationError):
        update_subject(gradebook, "subj-eng", written_work_weight=50)


def test_subject_without_weights_uses_defaults(gradebook):
    section, subject = add_subject(gradebook, "Math", subject_type="Math")
    assert subject.weights == {"writtenWork": 40.0, "performanceTask": 40.0, "quarterlyExam": 20.0}
    assert "subj-eng" in section.student("stu-ana").grade_data
    assert subject.id in section.student("stu-ana").grade_data


def test_remove_subject_drops_student_grades(gradebook):
    section = remove_subject(gradebook, "subj-eng")
    assert section.subjects == ()
    assert "subj-eng" not in section.student("stu-ana").grade_data


def test_remove_student(gradebook):
    section = remove_student(gradebook, "stu-ben")
    assert [s.id for s in section.students] == ["stu-ana"]
    with pytest.raises(NotFoundError):
        remove_student(section, "stu-ben")


def test_connection_reference_round_trip(gradebook):
    section = mark_connected(gradebook, "stu-ana", "user-ana", "100000000001", "ana@example.com")
    student = section.student("stu-ana")
    assert student.is_connected
    assert student.connected_user_email == "ana@example.com"

    section = clear_connection(section, "stu-ana")
    assert not section.student("stu-ana").is_connected


def test_section_document_round_trip(gradebook):
    section = mark_connected(gradebook, "stu-ana", "user-ana", "100000000001")
    assert Section.from_dict(section.to_dict()) == section


def test_create_section_validation():
    with pytest.raises(ValidationError):
        create_section("  ", "7", "teacher-1")
    with pytest.raises(ValidationError):
        create_section("Rizal", "7", "")
    with pytest.raises(ValidationError):
        create_section("Rizal", "7", "teacher-1", transmutation_revision="1999")
