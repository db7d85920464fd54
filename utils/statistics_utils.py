import numpy as np
from scipy.stats import kurtosis, linregress, skew

from utils.grade_calculation import (
    final_subject_grade,
    general_average,
    grade_descriptor,
    subject_quarter_results,
)
from utils.grading_types import CATEGORIES, Section, Subject
from utils.transmutation import DEFAULT_REVISION

DESCRIPTORS = (
    "Outstanding",
    "Very Satisfactory",
    "Satisfactory",
    "Fairly Satisfactory",
    "Did Not Meet Expectations",
)


def get_section_grades(section: Section, default_revision: str = DEFAULT_REVISION):
    """Per subject: {student_id: (quarter results, final grade)} for every student."""
    grades = {}
    for subject in section.subjects:
        per_student = {}
        for student in section.students:
            results = subject_quarter_results(section, student, subject, default_revision)
            per_student[student.id] = (results, final_subject_grade(results))
        grades[subject.id] = per_student
    return grades


def calculate_grade_distribution(grades):
    """Descriptive statistics over a list of graded (> 0) final grades."""
    scores = [float(g) for g in grades if g and g > 0]
    if not scores:
        return None

    mean_score = float(np.mean(scores))
    std_dev = float(np.std(scores))
    q1 = float(np.percentile(scores, 25))
    q3 = float(np.percentile(scores, 75))

    distribution = {label: 0 for label in DESCRIPTORS}
    for s in scores:
        distribution[grade_descriptor(s)] += 1

    result = {
        "count": len(scores),
        "mean": round(mean_score, 2),
        "median": round(float(np.median(scores)), 2),
        "std_dev": round(std_dev, 2),
        "min": round(min(scores), 2),
        "max": round(max(scores), 2),
        "q1": round(q1, 2),
        "q3": round(q3, 2),
        "iqr": round(q3 - q1, 2),
        "passing_rate": round(len([s for s in scores if s >= 75]) / len(scores) * 100, 1),
        "descriptor_distribution": distribution,
        "skewness": None,
        "kurtosis": None,
    }
    # skew/kurtosis are undefined for tiny or constant samples
    if len(scores) >= 3 and std_dev > 0:
        result["skewness"] = round(float(skew(scores)), 3)
        result["kurtosis"] = round(float(kurtosis(scores)), 3)
    return result


def calculate_assessment_difficulty_analysis(section: Section, subject: Subject):
    """Mean percentage, difficulty index and pass rate of each assessment of a subject."""
    analytics = []
    for assessment in subject.assessments:
        if assessment.total_points <= 0:
            continue
        percentages = []
        for student in section.students:
            scores = student.grades_for(subject.id).period(assessment.quarter).entries(assessment.category)
            for entry in scores:
                if entry.id == assessment.id and entry.is_graded:
                    percentages.append(entry.score / entry.total_points * 100)
        if not percentages:
            continue

        mean_pct = float(np.mean(percentages))
        analytics.append(
            {
                "assessment_id": assessment.id,
                "name": assessment.name,
                "category": assessment.category,
                "quarter": assessment.quarter,
                "responses": len(percentages),
                "mean_percentage": round(mean_pct, 1),
                "std_percentage": round(float(np.std(percentages)), 2),
                "difficulty_index": round(100 - mean_pct, 1),
                "pass_rate": round(len([p for p in percentages if p >= 60]) / len(percentages) * 100, 1),
            }
        )
    return analytics


def calculate_quarter_trend(section: Section, per_student: dict):
    """Mean transmuted grade per quarter and the slope across populated quarters."""
    quarter_means = {}
    for q in range(1, 5):
        values = [results[q - 1].transmuted_grade for results, _ in per_student.values() if results[q - 1].transmuted_grade > 0]
        quarter_means[f"quarter{q}"] = round(float(np.mean(values)), 2) if values else None

    populated = [(q, m) for q, m in enumerate(quarter_means.values(), start=1) if m is not None]
    trend = None
    if len(populated) > 1:
        x = [q for q, _ in populated]
        y = [m for _, m in populated]
        if len(set(y)) > 1:
            regression = linregress(x, y)
            trend = {"slope": round(float(regression.slope), 4), "r2": round(float(regression.rvalue**2), 4)}
        else:
            trend = {"slope": 0.0, "r2": None}
    return {"quarter_means": quarter_means, "trend": trend}


def section_statistics(section: Section, default_revision: str = DEFAULT_REVISION) -> dict:
    """Statistics for every subject of a section plus the general averages."""
    grades = get_section_grades(section, default_revision)

    subjects = []
    for subject in section.subjects:
        per_student = grades[subject.id]
        finals = [final for _, final in per_student.values()]
        subjects.append(
            {
                "subject_id": subject.id,
                "subject_name": subject.name,
                "weights": {c: subject.weights[c] for c in CATEGORIES},
                "graded_students": len([f for f in finals if f > 0]),
                "distribution": calculate_grade_distribution(finals),
                "quarters": calculate_quarter_trend(section, per_student),
                "assessments": calculate_assessment_difficulty_analysis(section, subject),
            }
        )

    averages = []
    for student in section.students:
        avg = general_average(grades[s.id][student.id][1] for s in section.subjects)
        if avg > 0:
            averages.append(avg)

    return {
        "section_id": section.id,
        "section_name": section.name,
        "student_count": len(section.students),
        "subjects": subjects,
        "general_average": calculate_grade_distribution(averages),
    }
