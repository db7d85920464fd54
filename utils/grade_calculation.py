import logging
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional

from utils.errors import ValidationError
from utils.grading_types import CategoryScores, ScoreEntry, Section, Student, Subject
from utils.transmutation import DEFAULT_REVISION, resolve_revision, rule_label, transmute

logger = logging.getLogger(__name__)

# DepEd default category weights (WW, PT, QE), DO 8 s. 2015 and the 2025 SHS revision
DEPED_WEIGHTS = {
    "Languages": (30, 50, 20),
    "AP": (30, 50, 20),
    "EsP": (30, 50, 20),
    "Science": (40, 40, 20),
    "Math": (40, 40, 20),
    "MAPEH": (20, 60, 20),
    "EPP/TLE": (20, 60, 20),
    "SHS-Core": (25, 50, 25),
    "SHS-Academic": (25, 45, 30),
    "SHS-TVL": (35, 40, 25),
    "SHS-Sports/Arts": (20, 60, 20),
}

WEIGHT_TOLERANCE = 0.01


@dataclass(frozen=True)
class QuarterResult:
    written_work_percentage: float
    performance_task_percentage: float
    quarterly_exam_percentage: float
    initial_grade: float
    transmuted_grade: float
    revision_used: str = DEFAULT_REVISION
    graded: bool = True

    def to_dict(self) -> dict:
        return {
            "writtenWorkPercentage": self.written_work_percentage,
            "performanceTaskPercentage": self.performance_task_percentage,
            "quarterlyExamPercentage": self.quarterly_exam_percentage,
            "initialGrade": self.initial_grade,
            "transmutedGrade": self.transmuted_grade,
            "revisionUsed": self.revision_used,
        }


def category_percentage(entries: Iterable[ScoreEntry]) -> float:
    """Percentage score of one category.

    Only graded entries (score set and total points > 0) count; ungraded
    entries are left out of both the raw total and the maximum possible score.
    """
    graded = []
    for entry in entries or ():
        if entry.total_points < 0:
            raise ValidationError(f"Score entry {entry.name or entry.id} has negative total points")
        if entry.is_graded:
            graded.append(entry)
    if not graded:
        return 0.0
    total_raw = math.fsum(e.score for e in graded)
    max_possible = math.fsum(e.total_points for e in graded)
    return 100.0 * total_raw / max_possible


def validate_weights(written_work, performance_task, quarterly_exam) -> List[str]:
    """Return a list of problems with a subject's category weights (empty if fine)."""
    errors = []
    values = {
        "writtenWorkWeight": written_work,
        "performanceTaskWeight": performance_task,
        "quarterlyExamWeight": quarterly_exam,
    }
    total = 0.0
    for name, value in values.items():
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(f"{name} must be a number")
            continue
        if number < 0:
            errors.append(f"{name} must not be negative")
        total += number
    if not errors and abs(total - 100.0) > WEIGHT_TOLERANCE:
        errors.append(f"Category weights must sum to 100 (got {total})")
    return errors


def default_weights(
    subject_type: Optional[str] = None,
    grade_level: str = "",
    track: Optional[str] = None,
    school_year: Optional[int] = None,
) -> Dict[str, float]:
    """DepEd default weights for a subject that was created without its own."""
    if str(grade_level).strip() in ("11", "12") and school_year and school_year >= 2025:
        key = f"SHS-{track}" if track and f"SHS-{track}" in DEPED_WEIGHTS else "SHS-Core"
    elif subject_type in DEPED_WEIGHTS and not subject_type.startswith("SHS-"):
        key = subject_type
    else:
        key = "Languages"
    ww, pt, qe = DEPED_WEIGHTS[key]
    return {
        "writtenWorkWeight": float(ww),
        "performanceTaskWeight": float(pt),
        "quarterlyExamWeight": float(qe),
    }


def quarter_grade(
    category_scores: CategoryScores,
    subject: Subject,
    grade_level: str = "",
    revision: Optional[str] = None,
    school_year: Optional[int] = None,
    default_revision: str = DEFAULT_REVISION,
) -> QuarterResult:
    """Compute one grading period for one subject.

    initial = sum(percentage_c * weight_c / 100) over the three categories,
    transmuted through the resolved revision. A period where no entry in any
    category is graded is reported as ungraded (initial and transmuted 0).
    """
    revision_used = resolve_revision(grade_level, school_year, revision, default_revision)
    ww = category_percentage(category_scores.written_work)
    pt = category_percentage(category_scores.performance_task)
    qe = category_percentage(category_scores.quarterly_exam)

    if not category_scores.has_graded_entries:
        return QuarterResult(0.0, 0.0, 0.0, 0.0, 0.0, revision_used, graded=False)

    weights = subject.weights
    initial = math.fsum(
        [
            ww * weights["writtenWork"] / 100.0,
            pt * weights["performanceTask"] / 100.0,
            qe * weights["quarterlyExam"] / 100.0,
        ]
    )
    transmuted = transmute(initial, grade_level, revision_used)
    return QuarterResult(ww, pt, qe, initial, transmuted, revision_used, graded=True)


def subject_quarter_results(
    section: Section,
    student: Student,
    subject: Subject,
    default_revision: str = DEFAULT_REVISION,
) -> List[QuarterResult]:
    """The four quarter results of a student in a subject, in quarter order."""
    grades = student.grades_for(subject.id)
    return [
        quarter_grade(
            scores,
            subject,
            section.grade_level,
            section.transmutation_revision,
            section.school_year,
            default_revision,
        )
        for _, scores in grades.periods()
    ]


def final_subject_grade(period_results: Iterable[Optional[QuarterResult]]) -> float:
    """Average transmuted grade over populated periods; 0 means ungraded."""
    grades = [r.transmuted_grade for r in period_results if r is not None and r.transmuted_grade > 0]
    if not grades:
        return 0.0
    return math.fsum(grades) / len(grades)


def general_average(subject_final_grades: Iterable[float]) -> float:
    grades = [float(g) for g in subject_final_grades if g and g > 0]
    if not grades:
        return 0.0
    return math.fsum(grades) / len(grades)


def projected_general_average(records: Iterable[dict]) -> float:
    """General average of projected grade records.

    Each subject's quarterly scores are averaged into its final grade first,
    so a subject with more graded quarters does not weigh more.
    """
    by_subject = {}
    for record in records:
        by_subject.setdefault(record["subjectId"], []).append(record["score"])
    return general_average(general_average(scores) for scores in by_subject.values())


def quarterly_general_average(
    section: Section, student: Student, default_revision: str = DEFAULT_REVISION
) -> float:
    """General average taken over every populated quarterly grade of every subject."""
    quarterly = []
    for subject in section.subjects:
        for result in subject_quarter_results(section, student, subject, default_revision):
            if result.transmuted_grade > 0:
                quarterly.append(result.transmuted_grade)
    if not quarterly:
        return 0.0
    return math.fsum(quarterly) / len(quarterly)


def semester_grades(period_results: List[Optional[QuarterResult]]) -> List[float]:
    """Senior high semesters: first = Q1-Q2, second = Q3-Q4."""
    results = list(period_results) + [None] * (4 - len(period_results))
    return [final_subject_grade(results[0:2]), final_subject_grade(results[2:4])]


def grade_descriptor(grade: float) -> Optional[str]:
    if not grade or grade <= 0:
        return None
    # descriptors apply to the reported (whole number) grade
    grade = float(_round_half_up(grade, 0))
    if grade >= 90:
        return "Outstanding"
    if grade >= 85:
        return "Very Satisfactory"
    if grade >= 80:
        return "Satisfactory"
    if grade >= 75:
        return "Fairly Satisfactory"
    return "Did Not Meet Expectations"


def _round_half_up(value: float, places: int) -> Decimal:
    quantum = Decimal(1).scaleb(-places)
    return Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)


def format_grade(value: float, places: int = 0) -> Optional[str]:
    """Display form of a grade. Ungraded (0) renders as None, never as "0"."""
    if not value or value <= 0:
        return None
    return str(_round_half_up(value, places))


def format_percentage(value: float) -> str:
    return str(_round_half_up(value or 0.0, 1))


def student_summary(
    section: Section, student: Student, default_revision: str = DEFAULT_REVISION
) -> dict:
    """Report-card view of one student: quarters, finals, descriptors, average."""
    subjects = []
    finals = []
    for subject in section.subjects:
        results = subject_quarter_results(section, student, subject, default_revision)
        final = final_subject_grade(results)
        finals.append(final)
        entry = {
            "subjectId": subject.id,
            "subjectName": subject.name,
            "quarters": {
                f"quarter{n}": (
                    dict(
                        r.to_dict(),
                        display={
                            "writtenWork": format_percentage(r.written_work_percentage),
                            "performanceTask": format_percentage(r.performance_task_percentage),
                            "quarterlyExam": format_percentage(r.quarterly_exam_percentage),
                            "transmutedGrade": format_grade(r.transmuted_grade),
                        },
                    )
                    if r.graded
                    else None
                )
                for n, r in enumerate(results, start=1)
            },
            "finalGrade": final,
            "finalGradeDisplay": format_grade(final),
            "descriptor": grade_descriptor(final),
        }
        if section.is_senior_high:
            entry["semesters"] = [format_grade(g) for g in semester_grades(results)]
        subjects.append(entry)

    average = general_average(finals)
    revision = resolve_revision(
        section.grade_level, section.school_year, section.transmutation_revision, default_revision
    )
    return {
        "studentId": student.id,
        "studentName": student.name,
        "sectionId": section.id,
        "sectionName": section.name,
        "gradeLevel": section.grade_level,
        "transmutation": {"revision": revision, "label": rule_label(revision)},
        "subjects": subjects,
        "generalAverage": average,
        "generalAverageDisplay": format_grade(average),
        "descriptor": grade_descriptor(average),
    }
