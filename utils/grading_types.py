"""Value types for the section document.

A section is stored as one JSON document holding its subjects, assessment
definitions and every student's raw scores. These dataclasses are frozen:
edits build new values (see utils.gradebook_edits) instead of mutating the
document in place.

Serialized field names follow the stored document format (camelCase).
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

from utils.errors import ValidationError

CATEGORIES = ("writtenWork", "performanceTask", "quarterlyExam")
QUARTERS = ("quarter1", "quarter2", "quarter3", "quarter4")

CATEGORY_PREFIX = {
    "writtenWork": "WW",
    "performanceTask": "PT",
    "quarterlyExam": "QE",
}


def to_number(value, field_name: str, allow_none: bool = False):
    if value is None or value == "":
        if allow_none:
            return None
        return 0.0
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number (got {value!r})")
    if number != number or number in (float("inf"), float("-inf")):
        raise ValidationError(f"{field_name} must be a finite number")
    return number


def quarter_key(quarter) -> str:
    """Accept 1-4, "1"-"4" or "quarter1".."quarter4" and return the slot key."""
    if isinstance(quarter, str) and quarter in QUARTERS:
        return quarter
    try:
        number = int(quarter)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid quarter: {quarter!r}")
    if number < 1 or number > 4:
        raise ValidationError(f"Quarter must be between 1 and 4 (got {number})")
    return QUARTERS[number - 1]


def check_category(category: str) -> str:
    if category not in CATEGORIES:
        raise ValidationError(
            f"Invalid category: {category!r}. Expected one of {', '.join(CATEGORIES)}"
        )
    return category


@dataclass(frozen=True)
class ScoreEntry:
    id: str
    name: str
    score: Optional[float] = None
    total_points: float = 0.0

    def __post_init__(self):
        if self.total_points < 0:
            raise ValidationError(
                f"Score entry {self.name or self.id} has negative total points"
            )
        if self.score is not None and self.score < 0:
            raise ValidationError(f"Score entry {self.name or self.id} has a negative score")

    @property
    def is_graded(self) -> bool:
        return self.score is not None and self.total_points > 0

    @classmethod
    def from_dict(cls, data: dict) -> "ScoreEntry":
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            score=to_number(data.get("score"), "score", allow_none=True),
            total_points=to_number(data.get("totalPoints"), "totalPoints"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "score": self.score,
            "totalPoints": self.total_points,
        }


@dataclass(frozen=True)
class CategoryScores:
    written_work: Tuple[ScoreEntry, ...] = ()
    performance_task: Tuple[ScoreEntry, ...] = ()
    quarterly_exam: Tuple[ScoreEntry, ...] = ()

    _FIELDS = {
        "writtenWork": "written_work",
        "performanceTask": "performance_task",
        "quarterlyExam": "quarterly_exam",
    }

    def entries(self, category: str) -> Tuple[ScoreEntry, ...]:
        return getattr(self, self._FIELDS[check_category(category)])

    def with_entries(self, category: str, entries) -> "CategoryScores":
        return replace(self, **{self._FIELDS[check_category(category)]: tuple(entries)})

    def all_entries(self):
        return self.written_work + self.performance_task + self.quarterly_exam

    @property
    def has_graded_entries(self) -> bool:
        return any(e.is_graded for e in self.all_entries())

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CategoryScores":
        data = data or {}
        return cls(
            **{
                attr: tuple(ScoreEntry.from_dict(e) for e in (data.get(key) or []))
                for key, attr in cls._FIELDS.items()
            }
        )

    def to_dict(self) -> dict:
        return {
            key: [e.to_dict() for e in getattr(self, attr)]
            for key, attr in self._FIELDS.items()
        }


@dataclass(frozen=True)
class QuarterGrades:
    quarter1: CategoryScores = field(default_factory=CategoryScores)
    quarter2: CategoryScores = field(default_factory=CategoryScores)
    quarter3: CategoryScores = field(default_factory=CategoryScores)
    quarter4: CategoryScores = field(default_factory=CategoryScores)

    def period(self, quarter) -> CategoryScores:
        return getattr(self, quarter_key(quarter))

    def with_period(self, quarter, scores: CategoryScores) -> "QuarterGrades":
        return replace(self, **{quarter_key(quarter): scores})

    def periods(self):
        return [(number, self.period(number)) for number in range(1, 5)]

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "QuarterGrades":
        data = data or {}
        return cls(**{q: CategoryScores.from_dict(data.get(q)) for q in QUARTERS})

    def to_dict(self) -> dict:
        return {q: getattr(self, q).to_dict() for q in QUARTERS}


@dataclass(frozen=True)
class Assessment:
    id: str
    name: str
    category: str
    quarter: str
    total_points: float = 0.0

    def __post_init__(self):
        check_category(self.category)
        quarter_key(self.quarter)
        if self.total_points < 0:
            raise ValidationError(f"Assessment {self.name} has negative total points")

    @classmethod
    def from_dict(cls, data: dict) -> "Assessment":
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            category=data.get("category") or "",
            quarter=quarter_key(data.get("quarter")),
            total_points=to_number(data.get("totalPoints"), "totalPoints"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "quarter": self.quarter,
            "totalPoints": self.total_points,
        }


@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    written_work_weight: float
    performance_task_weight: float
    quarterly_exam_weight: float
    assessments: Tuple[Assessment, ...] = ()
    subject_type: Optional[str] = None
    track: Optional[str] = None

    def __post_init__(self):
        for label, weight in self.weights.items():
            if weight < 0:
                raise ValidationError(f"Subject {self.name}: {label} weight is negative")

    @property
    def weights(self) -> Dict[str, float]:
        return {
            "writtenWork": self.written_work_weight,
            "performanceTask": self.performance_task_weight,
            "quarterlyExam": self.quarterly_exam_weight,
        }

    def assessment(self, assessment_id: str) -> Optional[Assessment]:
        for a in self.assessments:
            if a.id == assessment_id:
                return a
        return None

    @classmethod
    def from_dict(cls, data: dict) -> "Subject":
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            written_work_weight=to_number(data.get("writtenWorkWeight"), "writtenWorkWeight"),
            performance_task_weight=to_number(
                data.get("performanceTaskWeight"), "performanceTaskWeight"
            ),
            quarterly_exam_weight=to_number(
                data.get("quarterlyExamWeight"), "quarterlyExamWeight"
            ),
            assessments=tuple(Assessment.from_dict(a) for a in (data.get("assessments") or [])),
            subject_type=data.get("type"),
            track=data.get("track"),
        )

    def to_dict(self) -> dict:
        payload = {
            "id": self.id,
            "name": self.name,
            "writtenWorkWeight": self.written_work_weight,
            "performanceTaskWeight": self.performance_task_weight,
            "quarterlyExamWeight": self.quarterly_exam_weight,
            "assessments": [a.to_dict() for a in self.assessments],
        }
        if self.subject_type:
            payload["type"] = self.subject_type
        if self.track:
            payload["track"] = self.track
        return payload


@dataclass(frozen=True)
class Student:
    id: str
    name: str
    lrn: Optional[str] = None
    gender: Optional[str] = None
    grade_data: Dict[str, QuarterGrades] = field(default_factory=dict)
    connected_user_id: Optional[str] = None
    connected_user_lrn: Optional[str] = None
    connected_user_email: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return bool(self.connected_user_id)

    def grades_for(self, subject_id: str) -> QuarterGrades:
        return self.grade_data.get(subject_id) or QuarterGrades()

    @classmethod
    def from_dict(cls, data: dict) -> "Student":
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            lrn=data.get("lrn") or None,
            gender=data.get("gender") or None,
            grade_data={
                str(sid): QuarterGrades.from_dict(q)
                for sid, q in (data.get("gradeData") or {}).items()
            },
            connected_user_id=data.get("connectedUserId") or None,
            connected_user_lrn=data.get("connectedUserLRN") or None,
            connected_user_email=data.get("connectedUserEmail") or None,
        )

    def to_dict(self) -> dict:
        payload = {
            "id": self.id,
            "name": self.name,
            "gradeData": {sid: q.to_dict() for sid, q in self.grade_data.items()},
        }
        for key, value in (
            ("lrn", self.lrn),
            ("gender", self.gender),
            ("connectedUserId", self.connected_user_id),
            ("connectedUserLRN", self.connected_user_lrn),
            ("connectedUserEmail", self.connected_user_email),
        ):
            if value:
                payload[key] = value
        return payload


@dataclass(frozen=True)
class Section:
    id: str
    name: str
    grade_level: str
    created_by: str
    subjects: Tuple[Subject, ...] = ()
    students: Tuple[Student, ...] = ()
    created_at: Optional[str] = None
    school_year: Optional[int] = None
    transmutation_revision: Optional[str] = None

    def subject(self, subject_id: str) -> Optional[Subject]:
        for s in self.subjects:
            if s.id == subject_id:
                return s
        return None

    def student(self, student_id: str) -> Optional[Student]:
        for s in self.students:
            if s.id == student_id:
                return s
        return None

    def connected_students(self):
        return [s for s in self.students if s.is_connected]

    @property
    def is_senior_high(self) -> bool:
        return str(self.grade_level).strip() in ("11", "12")

    @classmethod
    def from_dict(cls, data: dict) -> "Section":
        school_year = data.get("schoolYear")
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            grade_level=str(data.get("gradeLevel") or ""),
            created_by=str(data.get("createdBy") or ""),
            subjects=tuple(Subject.from_dict(s) for s in (data.get("subjects") or [])),
            students=tuple(Student.from_dict(s) for s in (data.get("students") or [])),
            created_at=data.get("createdAt"),
            school_year=int(school_year) if school_year else None,
            transmutation_revision=data.get("transmutationRevision") or None,
        )

    def to_dict(self) -> dict:
        payload = {
            "id": self.id,
            "name": self.name,
            "gradeLevel": self.grade_level,
            "createdBy": self.created_by,
            "createdAt": self.created_at,
            "subjects": [s.to_dict() for s in self.subjects],
            "students": [s.to_dict() for s in self.students],
        }
        if self.school_year:
            payload["schoolYear"] = self.school_year
        if self.transmutation_revision:
            payload["transmutationRevision"] = self.transmutation_revision
        return payload
