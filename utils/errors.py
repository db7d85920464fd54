from dataclasses import dataclass, field
from typing import List, Optional


class GradingError(Exception):
    """Base class for errors raised by the grading core."""

    code = "grading_error"
    status = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(GradingError):
    code = "validation_failed"
    status = 400


class NotFoundError(GradingError):
    code = "not_found"
    status = 404


class ConflictError(GradingError):
    code = "conflict"
    status = 409


class StoreUnavailable(GradingError):
    code = "store_unavailable"
    status = 503


@dataclass
class FailedStudent:
    student_id: str
    user_id: Optional[str]
    error: str

    def to_dict(self) -> dict:
        return {
            "studentId": self.student_id,
            "userId": self.user_id,
            "error": self.error,
        }


@dataclass
class SyncReport:
    """Outcome of a per-student bulk operation (visibility toggle or resync).

    A bulk operation never throws because one student failed; the failures
    are collected here so callers can retry them individually.
    """

    section_id: str
    succeeded: List[str] = field(default_factory=list)
    failed: List[FailedStudent] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    def record_failure(self, student_id, user_id, exc: Exception):
        self.failed.append(FailedStudent(student_id, user_id, str(exc)))

    def to_dict(self) -> dict:
        return {
            "sectionId": self.section_id,
            "succeeded": list(self.succeeded),
            "failed": [f.to_dict() for f in self.failed],
            "failureCount": self.failure_count,
        }
