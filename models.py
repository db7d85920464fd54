import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Namespace for deterministic projection and connection ids
GRADE_ID_NAMESPACE = uuid.UUID("6f1d2a8e-3c4b-5d6e-8f70-a1b2c3d4e5f6")


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def grade_key(user_id, section_id, subject_id, quarter) -> str:
    """Stable id of a projection record for (user, section, subject, quarter)."""
    natural = f"{user_id}|{section_id}|{subject_id}|{int(quarter)}"
    return str(uuid.uuid5(GRADE_ID_NAMESPACE, natural))


def connection_key(student_id, section_id) -> str:
    """Stable id of the connection row for a roster entry in a section."""
    return str(uuid.uuid5(GRADE_ID_NAMESPACE, f"connection|{student_id}|{section_id}"))


def _iso(value):
    return value.isoformat() if value is not None else None


class SectionRecord(db.Model):
    """Authoritative section document (roster, subjects, assessments, scores)."""

    __tablename__ = "sections"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    grade_level = db.Column(db.String(10), nullable=False, default="")
    created_by = db.Column(db.String(64), nullable=False, index=True)
    document = db.Column(db.JSON, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<SectionRecord {self.id} {self.name} (grade {self.grade_level})>"


class GradeRecord(db.Model):
    """Per-learner projection of one transmuted quarter grade."""

    __tablename__ = "grades"

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    section_id = db.Column(db.String(64), nullable=False, index=True)
    subject_id = db.Column(db.String(64), nullable=False)
    subject = db.Column(db.String(120), nullable=False)
    quarter = db.Column(db.Integer, nullable=False)  # 1..4
    score = db.Column(db.Float, nullable=False)
    hidden = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "section_id", "subject_id", "quarter", name="unique_user_section_subject_quarter"
        ),
        db.Index("ix_grades_user_section", "user_id", "section_id"),
    )

    def __repr__(self):
        return f"<GradeRecord user:{self.user_id} {self.subject} Q{self.quarter}={self.score}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "subject": self.subject,
            "subjectId": self.subject_id,
            "quarter": self.quarter,
            "score": self.score,
            "sectionId": self.section_id,
            "createdAt": _iso(self.created_at),
            "hidden": bool(self.hidden),
        }


class StudentConnection(db.Model):
    """Link between a roster entry in a section and a platform account."""

    __tablename__ = "student_connections"

    id = db.Column(db.String(64), primary_key=True)
    student_id = db.Column(db.String(64), nullable=False)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    user_lrn = db.Column(db.String(20), nullable=True, index=True)
    user_email = db.Column(db.String(120), nullable=True)
    section_id = db.Column(db.String(64), nullable=False, index=True)
    section_name = db.Column(db.String(120), nullable=True)
    grade_level = db.Column(db.String(10), nullable=True)
    connected_at = db.Column(db.DateTime, default=utcnow)
    connected_by = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (db.Index("ix_connections_student_section", "student_id", "section_id"),)

    def __repr__(self):
        state = "active" if self.is_active else "inactive"
        return f"<StudentConnection student:{self.student_id} user:{self.user_id} section:{self.section_id} ({state})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "studentId": self.student_id,
            "userId": self.user_id,
            "userLRN": self.user_lrn,
            "userEmail": self.user_email,
            "sectionId": self.section_id,
            "sectionName": self.section_name,
            "gradeLevel": self.grade_level,
            "connectedAt": _iso(self.connected_at),
            "connectedBy": self.connected_by,
            "isActive": bool(self.is_active),
        }
