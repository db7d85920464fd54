"""Edits on a section document.

Every function takes a Section and returns a new Section; nothing is mutated
in place. Assessment definitions live on the subject and each student's score
entries mirror them: after any edit, every student holds exactly one entry per
assessment, in the assessment's quarter and category, carrying its current
name and total points.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from utils.errors import NotFoundError, ValidationError
from utils.grade_calculation import default_weights, validate_weights
from utils.grading_types import (
    CATEGORIES,
    CATEGORY_PREFIX,
    QUARTERS,
    Assessment,
    CategoryScores,
    QuarterGrades,
    ScoreEntry,
    Section,
    Student,
    Subject,
    check_category,
    quarter_key,
    to_number,
)
from utils.transmutation import get_rule

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _require_subject(section: Section, subject_id: str) -> Subject:
    subject = section.subject(subject_id)
    if subject is None:
        raise NotFoundError(f"Subject {subject_id} not found in section {section.id}")
    return subject


def _require_student(section: Section, student_id: str) -> Student:
    student = section.student(student_id)
    if student is None:
        raise NotFoundError(f"Student {student_id} not found in section {section.id}")
    return student


def mirror_assessments(grades: QuarterGrades, subject: Subject) -> QuarterGrades:
    """Rebuild a student's entries for one subject from the assessment list.

    Existing scores are kept by entry id; entries whose assessment no longer
    exists are dropped, and missing ones are added ungraded.
    """
    existing = {}
    for _, scores in grades.periods():
        for entry in scores.all_entries():
            existing[entry.id] = entry

    slots = {(q, c): [] for q in QUARTERS for c in CATEGORIES}
    for a in subject.assessments:
        old = existing.get(a.id)
        slots[(a.quarter, a.category)].append(
            ScoreEntry(
                id=a.id,
                name=a.name,
                score=old.score if old is not None else None,
                total_points=a.total_points,
            )
        )

    rebuilt = QuarterGrades()
    for q in QUARTERS:
        scores = CategoryScores()
        for c in CATEGORIES:
            scores = scores.with_entries(c, slots[(q, c)])
        rebuilt = rebuilt.with_period(q, scores)
    return rebuilt


def _with_subject(section: Section, subject: Subject) -> Section:
    """Replace one subject and re-mirror every student's entries for it."""
    subjects = tuple(subject if s.id == subject.id else s for s in section.subjects)
    students = tuple(
        replace(
            st,
            grade_data={
                **st.grade_data,
                subject.id: mirror_assessments(st.grades_for(subject.id), subject),
            },
        )
        for st in section.students
    )
    return replace(section, subjects=subjects, students=students)


def _map_student(section: Section, student_id: str, fn: Callable[[Student], Student]) -> Section:
    _require_student(section, student_id)
    return replace(
        section,
        students=tuple(fn(s) if s.id == student_id else s for s in section.students),
    )


# --- sections ---


def create_section(
    name: str,
    grade_level: str,
    created_by: str,
    school_year: Optional[int] = None,
    transmutation_revision: Optional[str] = None,
    section_id: Optional[str] = None,
) -> Section:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Section name must be a non-empty string")
    if not created_by:
        raise ValidationError("Section owner is required")
    if transmutation_revision:
        get_rule(transmutation_revision)
    return Section(
        id=section_id or new_id(),
        name=name.strip(),
        grade_level=str(grade_level or "").strip(),
        created_by=str(created_by),
        created_at=_now_iso(),
        school_year=int(to_number(school_year, "schoolYear")) if school_year else None,
        transmutation_revision=transmutation_revision or None,
    )


def update_section_details(section: Section, **fields) -> Section:
    allowed = {"name", "grade_level", "school_year", "transmutation_revision"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f"Cannot update section fields: {', '.join(sorted(unknown))}")
    if "name" in fields and not str(fields["name"] or "").strip():
        raise ValidationError("Section name must be a non-empty string")
    if fields.get("transmutation_revision"):
        get_rule(fields["transmutation_revision"])
    return replace(section, **fields)


# --- roster ---


def add_student(
    section: Section,
    name: str,
    lrn: Optional[str] = None,
    gender: Optional[str] = None,
    student_id: Optional[str] = None,
) -> Tuple[Section, Student]:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Student name must be a non-empty string")
    if gender and gender not in ("male", "female"):
        raise ValidationError("Gender must be 'male' or 'female'")
    student = Student(
        id=student_id or new_id(),
        name=name.strip(),
        lrn=lrn or None,
        gender=gender or None,
        grade_data={s.id: mirror_assessments(QuarterGrades(), s) for s in section.subjects},
    )
    if section.student(student.id) is not None:
        raise ValidationError(f"Student {student.id} already exists in section {section.id}")
    return replace(section, students=section.students + (student,)), student


def update_student(section: Section, student_id: str, **fields) -> Section:
    allowed = {"name", "lrn", "gender"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f"Cannot update student fields: {', '.join(sorted(unknown))}")
    return _map_student(section, student_id, lambda s: replace(s, **fields))


def remove_student(section: Section, student_id: str) -> Section:
    _require_student(section, student_id)
    return replace(section, students=tuple(s for s in section.students if s.id != student_id))


def mark_connected(
    section: Section,
    student_id: str,
    user_id: str,
    user_lrn: Optional[str] = None,
    user_email: Optional[str] = None,
) -> Section:
    return _map_student(
        section,
        student_id,
        lambda s: replace(
            s,
            connected_user_id=str(user_id),
            connected_user_lrn=user_lrn or None,
            connected_user_email=user_email or None,
        ),
    )


def clear_connection(section: Section, student_id: str) -> Section:
    return _map_student(
        section,
        student_id,
        lambda s: replace(
            s, connected_user_id=None, connected_user_lrn=None, connected_user_email=None
        ),
    )


# --- subjects ---


def add_subject(
    section: Section,
    name: str,
    written_work_weight=None,
    performance_task_weight=None,
    quarterly_exam_weight=None,
    subject_type: Optional[str] = None,
    track: Optional[str] = None,
    subject_id: Optional[str] = None,
) -> Tuple[Section, Subject]:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Subject name must be a non-empty string")
    weights = (written_work_weight, performance_task_weight, quarterly_exam_weight)
    if all(w is None for w in weights):
        defaults = default_weights(subject_type, section.grade_level, track, section.school_year)
        weights = (
            defaults["writtenWorkWeight"],
            defaults["performanceTaskWeight"],
            defaults["quarterlyExamWeight"],
        )
    errors = validate_weights(*weights)
    if errors:
        raise ValidationError("Invalid subject weights", {"errors": errors})

    subject = Subject(
        id=subject_id or new_id(),
        name=name.strip(),
        written_work_weight=float(weights[0]),
        performance_task_weight=float(weights[1]),
        quarterly_exam_weight=float(weights[2]),
        subject_type=subject_type or None,
        track=track or None,
    )
    if section.subject(subject.id) is not None:
        raise ValidationError(f"Subject {subject.id} already exists in section {section.id}")
    section = replace(section, subjects=section.subjects + (subject,))
    return _with_subject(section, subject), subject


def update_subject(section: Section, subject_id: str, **fields) -> Section:
    subject = _require_subject(section, subject_id)
    allowed = {
        "name",
        "written_work_weight",
        "performance_task_weight",
        "quarterly_exam_weight",
        "subject_type",
        "track",
    }
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f"Cannot update subject fields: {', '.join(sorted(unknown))}")
    updated = replace(subject, **fields)
    errors = validate_weights(
        updated.written_work_weight,
        updated.performance_task_weight,
        updated.quarterly_exam_weight,
    )
    if errors:
        raise ValidationError("Invalid subject weights", {"errors": errors})
    return _with_subject(section, updated)


def remove_subject(section: Section, subject_id: str) -> Section:
    _require_subject(section, subject_id)
    students = tuple(
        replace(s, grade_data={k: v for k, v in s.grade_data.items() if k != subject_id})
        for s in section.students
    )
    return replace(
        section,
        subjects=tuple(s for s in section.subjects if s.id != subject_id),
        students=students,
    )


# --- assessments ---


def add_assessment(
    section: Section,
    subject_id: str,
    category: str,
    quarter,
    total_points=0,
    name: Optional[str] = None,
    assessment_id: Optional[str] = None,
) -> Tuple[Section, Assessment]:
    """Define an assessment and give every student an ungraded entry for it."""
    subject = _require_subject(section, subject_id)
    category = check_category(category)
    quarter = quarter_key(quarter)
    if not name:
        count = sum(1 for a in subject.assessments if a.category == category and a.quarter == quarter)
        name = f"{CATEGORY_PREFIX[category]}#{count + 1}"
    assessment = Assessment(
        id=assessment_id or new_id(),
        name=name,
        category=category,
        quarter=quarter,
        total_points=to_number(total_points, "totalPoints"),
    )
    if subject.assessment(assessment.id) is not None:
        raise ValidationError(f"Assessment {assessment.id} already exists")
    subject = replace(subject, assessments=subject.assessments + (assessment,))
    return _with_subject(section, subject), assessment


def update_assessment(
    section: Section,
    subject_id: str,
    assessment_id: str,
    name: Optional[str] = None,
    total_points=None,
) -> Section:
    """Rename an assessment or change its maximum points for every student."""
    subject = _require_subject(section, subject_id)
    assessment = subject.assessment(assessment_id)
    if assessment is None:
        raise NotFoundError(f"Assessment {assessment_id} not found in subject {subject_id}")
    changes = {}
    if name is not None:
        if not str(name).strip():
            raise ValidationError("Assessment name must be a non-empty string")
        changes["name"] = str(name).strip()
    if total_points is not None:
        new_total = to_number(total_points, "totalPoints")
        if new_total > 0:
            over = [
                student.id
                for student in section.students
                for e in student.grades_for(subject_id).period(assessment.quarter).entries(assessment.category)
                if e.id == assessment_id and e.score is not None and e.score > new_total
            ]
            if over:
                raise ValidationError(
                    f"Recorded scores for {assessment.name} exceed the new total points ({new_total})",
                    {"studentIds": over},
                )
        changes["total_points"] = new_total
    updated = replace(assessment, **changes)
    subject = replace(
        subject,
        assessments=tuple(updated if a.id == assessment_id else a for a in subject.assessments),
    )
    return _with_subject(section, subject)


def remove_assessment(section: Section, subject_id: str, assessment_id: str) -> Section:
    """Delete an assessment and its entry from every student's scores."""
    subject = _require_subject(section, subject_id)
    if subject.assessment(assessment_id) is None:
        raise NotFoundError(f"Assessment {assessment_id} not found in subject {subject_id}")
    subject = replace(
        subject, assessments=tuple(a for a in subject.assessments if a.id != assessment_id)
    )
    return _with_subject(section, subject)


# --- scores ---


def set_score(
    section: Section,
    student_id: str,
    subject_id: str,
    assessment_id: str,
    score,
) -> Section:
    """Record (or clear, with None) one student's raw score for an assessment."""
    subject = _require_subject(section, subject_id)
    assessment = subject.assessment(assessment_id)
    if assessment is None:
        raise NotFoundError(f"Assessment {assessment_id} not found in subject {subject_id}")
    value = to_number(score, "score", allow_none=True)
    if value is not None:
        if value < 0:
            raise ValidationError(f"Score for {assessment.name} must not be negative")
        if assessment.total_points > 0 and value > assessment.total_points:
            raise ValidationError(
                f"Score for {assessment.name} exceeds its total points ({assessment.total_points})"
            )

    def apply(student: Student) -> Student:
        grades = mirror_assessments(student.grades_for(subject_id), subject)
        scores = grades.period(assessment.quarter)
        entries = [
            replace(e, score=value) if e.id == assessment_id else e
            for e in scores.entries(assessment.category)
        ]
        grades = grades.with_period(
            assessment.quarter, scores.with_entries(assessment.category, entries)
        )
        return replace(student, grade_data={**student.grade_data, subject_id: grades})

    return _map_student(section, student_id, apply)


def set_scores(section: Section, student_id: str, subject_id: str, scores: dict) -> Section:
    """Apply several ``{assessment_id: score}`` updates for one student and subject."""
    for assessment_id, value in (scores or {}).items():
        section = set_score(section, student_id, subject_id, str(assessment_id), value)
    return section
