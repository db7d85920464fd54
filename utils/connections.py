import logging
from dataclasses import dataclass
from typing import List, Optional

from models import StudentConnection, connection_key, utcnow
from utils.db_conn import transaction
from utils.errors import ConflictError, ValidationError
from utils.grading_types import Section, Student
from utils.repositories import ConnectionStore, GradeProjectionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountIdentity:
    """The platform account a roster entry is linked to."""

    id: str
    lrn: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "AccountIdentity":
        data = data or {}
        user_id = data.get("id") or data.get("userId")
        if not user_id:
            raise ValidationError("Account id is required")
        return cls(
            id=str(user_id),
            lrn=data.get("lrn") or data.get("userLRN") or None,
            email=data.get("email") or data.get("userEmail") or None,
        )


@dataclass
class RepairOutcome:
    connection: StudentConnection
    created: bool
    activated: bool

    def to_dict(self) -> dict:
        return {
            "connection": self.connection.to_dict(),
            "created": self.created,
            "activated": self.activated,
        }


class ConnectionRegistry:
    """Links roster entries to accounts.

    The row id is derived from (student_id, section_id), so the primary key
    itself guarantees a single connection row per roster entry.
    """

    def __init__(
        self,
        connections: Optional[ConnectionStore] = None,
        projections: Optional[GradeProjectionStore] = None,
    ):
        self.connections = connections or ConnectionStore()
        self.projections = projections or GradeProjectionStore()

    def _bind(self, connection: StudentConnection, account: AccountIdentity, section: Section, actor):
        connection.user_id = account.id
        connection.user_lrn = account.lrn
        connection.user_email = account.email
        connection.section_name = section.name
        connection.grade_level = section.grade_level
        connection.connected_at = utcnow()
        connection.connected_by = str(actor) if actor is not None else None
        connection.is_active = True
        return connection

    def _new(self, student_id: str, account: AccountIdentity, section: Section, actor) -> StudentConnection:
        connection = StudentConnection(
            id=connection_key(student_id, section.id),
            student_id=str(student_id),
            section_id=section.id,
        )
        return self._bind(connection, account, section, actor)

    def _ensure_unlinked_elsewhere(self, student_id: str, account: AccountIdentity, section: Section):
        """An account stands for one learner per section."""
        linked = {c.student_id for c in self.connections.for_user(account.id) if c.section_id == section.id}
        linked.update(s.id for s in section.students if s.connected_user_id == account.id)
        linked.discard(str(student_id))
        if linked:
            other = sorted(linked)[0]
            raise ConflictError(
                f"User {account.id} is already connected to student {other} in section {section.id}",
                details={"studentId": other, "sectionId": section.id, "userId": account.id},
            )

    def connect(self, student: Student, account: AccountIdentity, section: Section, actor) -> StudentConnection:
        """Create the connection for ``student``.

        Connecting the same account again returns the existing row; an active
        connection to another account is a ConflictError.
        """
        existing = self.connections.for_student(student.id, section.id)
        active = [c for c in existing if c.is_active]
        if active and active[0].user_id == account.id:
            return active[0]
        if active:
            raise ConflictError(
                f"Student {student.id} is already connected in section {section.id}",
                details={
                    "studentId": student.id,
                    "sectionId": section.id,
                    "userId": active[0].user_id,
                },
            )
        self._ensure_unlinked_elsewhere(student.id, account, section)

        with transaction(f"connect student {student.id} in section {section.id}"):
            if existing:
                connection = self._bind(existing[0], account, section, actor)
            else:
                connection = self.connections.stage_add(self._new(student.id, account, section, actor))

        logger.info(f"Connected student {student.id} in section {section.id} to user {account.id}")
        return connection

    def repair(
        self,
        user_lrn: Optional[str],
        student_id: str,
        section_id: str,
        account: AccountIdentity,
        section: Section,
        actor=None,
    ) -> RepairOutcome:
        """Find, reactivate or create the connection for a roster entry.

        Safe to call repeatedly: a second call finds the row the first one
        wrote and reports ``created=False, activated=False``.
        """
        if section.id != str(section_id):
            raise ValidationError(f"Section {section.id} does not match {section_id}")
        lrn = user_lrn or account.lrn
        existing = self.connections.for_student(student_id, section_id)

        if not existing:
            if lrn and not account.lrn:
                account = AccountIdentity(account.id, lrn, account.email)
            self._ensure_unlinked_elsewhere(student_id, account, section)
            with transaction(f"repair connection for student {student_id}"):
                connection = self.connections.stage_add(self._new(student_id, account, section, actor))
            logger.info(f"Repair created connection for student {student_id} in section {section_id}")
            return RepairOutcome(connection, created=True, activated=False)

        connection = existing[0]
        same_account = connection.user_id == account.id or bool(lrn and connection.user_lrn == lrn)
        if connection.is_active:
            if not same_account:
                raise ConflictError(
                    f"Student {student_id} is connected to another account in section {section_id}",
                    details={"studentId": student_id, "sectionId": section_id, "userId": connection.user_id},
                )
            return RepairOutcome(connection, created=False, activated=False)

        self._ensure_unlinked_elsewhere(student_id, account, section)
        with transaction(f"reactivate connection for student {student_id}"):
            if not same_account:
                self._bind(connection, account, section, actor)
            connection.is_active = True
        logger.info(f"Repair reactivated connection for student {student_id} in section {section_id}")
        return RepairOutcome(connection, created=False, activated=True)

    def disconnect(self, student_id: str, user_id: str, section_id: str, linked: bool = False) -> int:
        """Drop the connection and the user's projection for the section together.

        The projection is only removed when ``user_id`` really was linked to
        this roster entry, either by a connection row or by ``linked``.
        """
        with transaction(f"disconnect student {student_id} from user {user_id}"):
            removed = self.connections.stage_delete(student_id, user_id, section_id)
            grades = 0
            if removed or linked:
                grades = self.projections.stage_delete_all(user_id, section_id)
        logger.info(
            f"Disconnected student {student_id} (user {user_id}) from section {section_id}: "
            f"{removed} connection(s), {grades} grade record(s) removed"
        )
        return removed

    def leave(self, user_id: str, section_id: str) -> List[str]:
        """Remove every connection of ``user_id`` in a section; returns the roster ids freed."""
        student_ids = [
            c.student_id for c in self.connections.for_user(user_id, active_only=False) if c.section_id == str(section_id)
        ]
        with transaction(f"user {user_id} leaving section {section_id}"):
            self.connections.stage_delete_for_user_in_section(user_id, section_id)
            self.projections.stage_delete_all(user_id, section_id)
        logger.info(f"User {user_id} left section {section_id}")
        return student_ids

    def for_section(self, section_id: str, active_only: bool = True) -> List[StudentConnection]:
        return self.connections.for_section(section_id, active_only=active_only)

    def for_user(self, user_id: str, active_only: bool = True) -> List[StudentConnection]:
        return self.connections.for_user(user_id, active_only=active_only)

    def for_lrn(self, user_lrn: str, active_only: bool = True) -> List[StudentConnection]:
        return self.connections.for_lrn(user_lrn, active_only=active_only)

    def for_student(self, student_id: str, section_id: str) -> List[StudentConnection]:
        return self.connections.for_student(student_id, section_id)
