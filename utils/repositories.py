"""Flask-SQLAlchemy backed stores.

``stage_*`` methods only queue work on the current session so that callers
can group several of them into one ``transaction``; the public methods wrap a
single operation in its own transaction.
"""

import logging
from typing import Iterable, List, Optional

from models import GradeRecord, SectionRecord, StudentConnection, db, utcnow
from utils.db_conn import reading, transaction
from utils.errors import NotFoundError
from utils.grading_types import Section

logger = logging.getLogger(__name__)


class SectionRepository:
    def find(self, section_id: str) -> Optional[Section]:
        with reading("load section"):
            record = db.session.get(SectionRecord, str(section_id))
        if record is None:
            return None
        return Section.from_dict(record.document)

    def get(self, section_id: str) -> Section:
        section = self.find(section_id)
        if section is None:
            raise NotFoundError(f"Section {section_id} not found")
        return section

    def list(self, created_by: Optional[str] = None) -> List[Section]:
        with reading("list sections"):
            query = SectionRecord.query
            if created_by is not None:
                query = query.filter_by(created_by=str(created_by))
            records = query.order_by(SectionRecord.created_at.desc(), SectionRecord.id).all()
        return [Section.from_dict(r.document) for r in records]

    def list_for_teacher(self, teacher_id: str) -> List[Section]:
        return self.list(created_by=teacher_id)

    def stage_save(self, section: Section):
        record = db.session.get(SectionRecord, section.id)
        if record is None:
            record = SectionRecord(id=section.id, created_by=section.created_by)
            db.session.add(record)
        record.name = section.name
        record.grade_level = section.grade_level
        record.created_by = section.created_by
        record.document = section.to_dict()
        record.updated_at = utcnow()

    def save(self, section: Section):
        with transaction(f"save section {section.id}"):
            self.stage_save(section)

    def stage_delete(self, section_id: str) -> bool:
        record = db.session.get(SectionRecord, str(section_id))
        if record is None:
            return False
        db.session.delete(record)
        return True

    def delete(self, section_id: str):
        with transaction(f"delete section {section_id}"):
            if not self.stage_delete(section_id):
                raise NotFoundError(f"Section {section_id} not found")


class GradeProjectionStore:
    def query(
        self, user_id: str, section_id: Optional[str] = None, include_hidden: bool = True
    ) -> List[GradeRecord]:
        with reading("query grades"):
            query = GradeRecord.query.filter_by(user_id=str(user_id))
            if section_id is not None:
                query = query.filter_by(section_id=str(section_id))
            if not include_hidden:
                query = query.filter_by(hidden=False)
            return query.order_by(
                GradeRecord.section_id, GradeRecord.subject, GradeRecord.quarter
            ).all()

    def stage_replace(self, user_id: str, section_id: str, rows: Iterable[dict]) -> List[GradeRecord]:
        existing = GradeRecord.query.filter_by(user_id=str(user_id), section_id=str(section_id)).all()
        created = {r.id: r.created_at for r in existing}
        for r in existing:
            db.session.delete(r)
        db.session.flush()

        now = utcnow()
        records = []
        for row in rows:
            record = GradeRecord(
                id=row["id"],
                user_id=str(user_id),
                section_id=str(section_id),
                subject_id=row["subject_id"],
                subject=row["subject"],
                quarter=int(row["quarter"]),
                score=float(row["score"]),
                hidden=bool(row.get("hidden", False)),
                created_at=created.get(row["id"], now),
            )
            db.session.add(record)
            records.append(record)
        return records

    def batch_replace(self, user_id: str, section_id: str, rows: Iterable[dict]) -> List[GradeRecord]:
        """Delete every record for (user, section) and insert ``rows``, atomically."""
        with transaction(f"replace grades for user {user_id} in section {section_id}"):
            records = self.stage_replace(user_id, section_id, rows)
        return records

    def batch_set_hidden(self, user_id: str, section_id: str, hidden: bool) -> int:
        with transaction(f"set grade visibility for user {user_id} in section {section_id}"):
            count = GradeRecord.query.filter_by(
                user_id=str(user_id), section_id=str(section_id)
            ).update({"hidden": bool(hidden)}, synchronize_session="fetch")
        return count

    def current_hidden(self, user_id: str, section_id: str) -> Optional[bool]:
        """Visibility of the existing (user, section) set; None when there is none."""
        with reading("read grade visibility"):
            flags = [
                row.hidden
                for row in db.session.query(GradeRecord.hidden)
                .filter_by(user_id=str(user_id), section_id=str(section_id))
                .all()
            ]
        if not flags:
            return None
        return any(flags)

    def stage_delete_all(self, user_id: str, section_id: str) -> int:
        return GradeRecord.query.filter_by(user_id=str(user_id), section_id=str(section_id)).delete(
            synchronize_session="fetch"
        )

    def delete_all(self, user_id: str, section_id: str) -> int:
        with transaction(f"delete grades for user {user_id} in section {section_id}"):
            count = self.stage_delete_all(user_id, section_id)
        return count

    def stage_delete_for_section(self, section_id: str) -> int:
        return GradeRecord.query.filter_by(section_id=str(section_id)).delete(synchronize_session="fetch")

    def stage_delete_for_user(self, user_id: str) -> int:
        return GradeRecord.query.filter_by(user_id=str(user_id)).delete(synchronize_session="fetch")


class ConnectionStore:
    def _query(self, active_only: bool, **filters):
        query = StudentConnection.query.filter_by(
            **{k: str(v) for k, v in filters.items() if v is not None}
        )
        if active_only:
            query = query.filter_by(is_active=True)
        return query.order_by(StudentConnection.connected_at, StudentConnection.id)

    def for_student(self, student_id: str, section_id: str, active_only: bool = False) -> List[StudentConnection]:
        with reading("query connections by student"):
            return self._query(active_only, student_id=student_id, section_id=section_id).all()

    def for_section(self, section_id: str, active_only: bool = True) -> List[StudentConnection]:
        with reading("query connections by section"):
            return self._query(active_only, section_id=section_id).all()

    def for_user(self, user_id: str, active_only: bool = True) -> List[StudentConnection]:
        with reading("query connections by user"):
            return self._query(active_only, user_id=user_id).all()

    def for_lrn(self, user_lrn: str, active_only: bool = True) -> List[StudentConnection]:
        with reading("query connections by LRN"):
            return self._query(active_only, user_lrn=user_lrn).all()

    def find_active(self, student_id: str, section_id: str) -> Optional[StudentConnection]:
        matches = self.for_student(student_id, section_id, active_only=True)
        return matches[0] if matches else None

    def stage_add(self, connection: StudentConnection) -> StudentConnection:
        db.session.add(connection)
        return connection

    def stage_delete(self, student_id: str, user_id: str, section_id: str) -> int:
        return StudentConnection.query.filter_by(
            student_id=str(student_id), user_id=str(user_id), section_id=str(section_id)
        ).delete(synchronize_session="fetch")

    def stage_delete_for_user_in_section(self, user_id: str, section_id: str) -> int:
        return StudentConnection.query.filter_by(user_id=str(user_id), section_id=str(section_id)).delete(
            synchronize_session="fetch"
        )

    def stage_delete_for_section(self, section_id: str) -> int:
        return StudentConnection.query.filter_by(section_id=str(section_id)).delete(
            synchronize_session="fetch"
        )

    def stage_delete_for_user(self, user_id: str) -> int:
        return StudentConnection.query.filter_by(user_id=str(user_id)).delete(synchronize_session="fetch")
