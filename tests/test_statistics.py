import pytest

from utils.gradebook_edits import add_assessment, add_student, set_score
from utils.statistics_utils import (
    calculate_assessment_difficulty_analysis,
    calculate_grade_distribution,
    section_statistics,
)


def test_distribution_ignores_ungraded():
    assert calculate_grade_distribution([]) is None
    assert calculate_grade_distribution([0.0, None]) is None


def test_distribution_summary():
    result = calculate_grade_distribution([91.0, 73.0, 0.0])

    assert result["count"] == 2
    assert result["mean"] == 82.0
    assert result["median"] == 82.0
    assert result["std_dev"] == 9.0
    assert result["min"] == 73.0
    assert result["max"] == 91.0
    assert result["passing_rate"] == 50.0
    assert result["descriptor_distribution"]["Outstanding"] == 1
    assert result["descriptor_distribution"]["Did Not Meet Expectations"] == 1
    assert result["skewness"] is None


def test_distribution_shape_for_larger_samples():
    result = calculate_grade_distribution([75.0, 80.0, 85.0, 90.0, 95.0])
    assert result["skewness"] == pytest.approx(0.0)
    assert result["iqr"] == 10.0


def test_assessment_difficulty(gradebook):
    analysis = calculate_assessment_difficulty_analysis(gradebook, gradebook.subject("subj-eng"))
    by_id = {a["assessment_id"]: a for a in analysis}

    assert by_id["a-ww1"]["responses"] == 2
    assert by_id["a-ww1"]["mean_percentage"] == 65.0
    assert by_id["a-ww1"]["difficulty_index"] == 35.0
    assert by_id["a-ww1"]["pass_rate"] == 50.0


def test_unscored_assessments_are_left_out(gradebook):
    section, extra = add_assessment(gradebook, "subj-eng", "writtenWork", 2, 10)
    analysis = calculate_assessment_difficulty_analysis(section, section.subject("subj-eng"))
    assert extra.id not in {a["assessment_id"] for a in analysis}


def test_section_statistics(gradebook):
    stats = section_statistics(gradebook)

    assert stats["section_id"] == "sec-1"
    assert stats["student_count"] == 2
    english = stats["subjects"][0]
    assert english["graded_students"] == 2
    assert english["distribution"]["mean"] == 92.5
    assert english["quarters"]["quarter_means"]["quarter1"] == 92.5
    assert english["quarters"]["quarter_means"]["quarter2"] is None
    assert english["quarters"]["trend"] is None
    assert stats["general_average"]["count"] == 2


def test_quarter_trend_slope(gradebook):
    section, ww2 = add_assessment(gradebook, "subj-eng", "writtenWork", 2, 10)
    section, qe2 = add_assessment(section, "subj-eng", "quarterlyExam", 2, 20)
    section, pt2 = add_assessment(section, "subj-eng", "performanceTask", 2, 50)
    for student_id in ("stu-ana", "stu-ben"):
        section = set_score(section, student_id, "subj-eng", ww2.id, 10)
        section = set_score(section, student_id, "subj-eng", pt2.id, 50)
        section = set_score(section, student_id, "subj-eng", qe2.id, 20)

    trend = section_statistics(section)["subjects"][0]["quarters"]

    assert trend["quarter_means"]["quarter2"] == 100.0
    assert trend["trend"]["slope"] == 7.5


def test_students_without_scores_do_not_count(gradebook):
    section, _ = add_student(gradebook, "Carla")
    stats = section_statistics(section)
    assert stats["student_count"] == 3
    assert stats["subjects"][0]["graded_students"] == 2
    assert stats["general_average"]["count"] == 2
