"""Keeps the per-learner grade projection in step with section documents.

Every write that touches a section goes through ``GradeSynchronizer`` so the
cache invalidation and projection refresh happen in one place:

* section writes drop ``section:<id>``, every ``sections:teacher:*`` list and
  ``connections:section:<id>``;
* a recompute drops both ``grades:<uid>:hidden=*`` entries of the learner.
"""

import logging
from typing import List, Optional

from models import GradeRecord, grade_key
from utils import live
from utils.cache import TTLCache, cache_keys
from utils.connections import AccountIdentity, ConnectionRegistry, RepairOutcome
from utils.db_conn import transaction
from utils.errors import GradingError, NotFoundError, StoreUnavailable, SyncReport
from utils.grade_calculation import subject_quarter_results
from utils.gradebook_edits import clear_connection, mark_connected
from utils.grading_types import Section, Student
from utils.repositories import GradeProjectionStore, SectionRepository
from utils.transmutation import DEFAULT_REVISION

logger = logging.getLogger(__name__)


class GradeSynchronizer:
    def __init__(
        self,
        sections: SectionRepository,
        projections: GradeProjectionStore,
        registry: ConnectionRegistry,
        cache: TTLCache,
        default_revision: str = DEFAULT_REVISION,
    ):
        self.sections = sections
        self.projections = projections
        self.registry = registry
        self.cache = cache
        self.default_revision = default_revision

    # --- cache bookkeeping ---

    def _invalidate_section(self, section_id: str):
        self.cache.invalidate(cache_keys.section(section_id))
        self.cache.invalidate_prefix(cache_keys.TEACHER_SECTIONS_PREFIX)
        self.cache.invalidate(cache_keys.section_connections(section_id))

    def _invalidate_user(self, user_id: str):
        self.cache.invalidate_prefix(cache_keys.user_grades_prefix(user_id))
        self.cache.invalidate(cache_keys.user_connections(user_id))

    # --- reads ---

    def get_section(self, section_id: str) -> Section:
        key = cache_keys.section(section_id)
        section = self.cache.get(key)
        if section is None:
            section = self.sections.get(section_id)
            self.cache.set(key, section)
        return section

    def sections_for_teacher(self, teacher_id: str, allow_stale: bool = False) -> List[Section]:
        """Sections created by ``teacher_id``.

        With ``allow_stale`` a store outage is answered from the last list
        that was served, if there is one.
        """
        key = cache_keys.teacher_sections(teacher_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            sections = self.sections.list_for_teacher(teacher_id)
        except StoreUnavailable:
            stale = self.cache.get_stale(key) if allow_stale else None
            if stale is None:
                raise
            logger.warning(f"Serving stale section list for teacher {teacher_id}: store unavailable")
            return stale
        self.cache.set(key, sections, retain=True)
        return sections

    def grades_for_user(self, user_id: str, include_hidden: bool = False) -> List[dict]:
        key = cache_keys.user_grades(user_id, include_hidden)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        grades = [g.to_dict() for g in self.projections.query(user_id, include_hidden=include_hidden)]
        self.cache.set(key, grades)
        return grades

    def connections_for_section(self, section_id: str) -> List[dict]:
        key = cache_keys.section_connections(section_id)
        cached = self.cache.get(key)
        if cached is None:
            cached = [c.to_dict() for c in self.registry.for_section(section_id)]
            self.cache.set(key, cached)
        return cached

    def connections_for_user(self, user_id: str) -> List[dict]:
        key = cache_keys.user_connections(user_id)
        cached = self.cache.get(key)
        if cached is None:
            cached = [c.to_dict() for c in self.registry.for_user(user_id)]
            self.cache.set(key, cached)
        return cached

    def debug_sync(self, user_id: str, section_id: str) -> dict:
        everything = self.projections.query(user_id, include_hidden=True)
        in_section = [g for g in everything if g.section_id == str(section_id)]
        return {
            "userId": user_id,
            "sectionId": section_id,
            "totalGrades": len(everything),
            "sectionGrades": len(in_section),
            "hiddenGrades": sum(1 for g in in_section if g.hidden),
            "grades": [g.to_dict() for g in in_section],
        }

    # --- projection ---

    def build_projection(self, section: Section, student: Student, user_id: str, hidden: bool) -> List[dict]:
        """Target projection rows for one learner; ungraded quarters are left out."""
        rows = []
        for subject in section.subjects:
            results = subject_quarter_results(section, student, subject, self.default_revision)
            for quarter, result in enumerate(results, start=1):
                if result.transmuted_grade <= 0:
                    continue
                rows.append(
                    {
                        "id": grade_key(user_id, section.id, subject.id, quarter),
                        "subject_id": subject.id,
                        "subject": subject.name,
                        "quarter": quarter,
                        "score": result.transmuted_grade,
                        "hidden": hidden,
                    }
                )
        return rows

    def recompute_and_replace(
        self,
        section: Section,
        student: Student,
        user_id: Optional[str] = None,
        hidden: Optional[bool] = None,
    ) -> List[GradeRecord]:
        """Rebuild the learner's projection for ``section`` from scratch.

        Existing records for (user, section) are deleted and the new set is
        inserted in the same transaction. ``hidden=None`` keeps whatever
        visibility the learner's records had.
        """
        user_id = user_id or student.connected_user_id
        if not user_id:
            logger.debug(f"Student {student.id} in section {section.id} is local-only, nothing to project")
            return []

        if hidden is None:
            hidden = bool(self.projections.current_hidden(user_id, section.id))
        rows = self.build_projection(section, student, user_id, hidden)
        records = self.projections.batch_replace(user_id, section.id, rows)

        self.cache.invalidate_prefix(cache_keys.user_grades_prefix(user_id))
        live.emit_grades_updated(user_id, section.id)
        logger.info(
            f"Projected {len(records)} grade(s) for user {user_id} (student {student.id}) in section {section.id}"
        )
        return records

    def sync_section(self, section: Section, hidden: Optional[bool] = None) -> SyncReport:
        """Recompute every connected student; one student's failure does not stop the rest."""
        report = SyncReport(section_id=section.id)
        for student in section.connected_students():
            try:
                self.recompute_and_replace(section, student, hidden=hidden)
            except GradingError as e:
                logger.error(
                    f"Grade sync failed for student {student.id} (user {student.connected_user_id}) "
                    f"in section {section.id}: {str(e)}"
                )
                report.record_failure(student.id, student.connected_user_id, e)
            else:
                report.succeeded.append(student.id)
        if report.failed:
            logger.warning(f"Section {section.id} sync finished with {report.failure_count} failure(s)")
        return report

    def save_section(self, section: Section, sync: bool = True) -> Optional[SyncReport]:
        """Persist the section document, then refresh the projections it feeds."""
        self.sections.save(section)
        self._invalidate_section(section.id)
        live.emit_section_version(section)
        if not sync:
            return None
        return self.sync_section(section)

    # --- visibility ---

    def set_student_visibility(self, user_id: str, section_id: str, hidden: bool) -> int:
        """Flip the hidden flag on the learner's records; scores are not touched."""
        count = self.projections.batch_set_hidden(user_id, section_id, hidden)
        self.cache.invalidate_prefix(cache_keys.user_grades_prefix(user_id))
        live.emit_grades_updated(user_id, section_id)
        logger.info(f"Set hidden={hidden} on {count} grade(s) for user {user_id} in section {section_id}")
        return count

    def set_section_visibility(self, section_id: str, hidden: bool) -> SyncReport:
        section = self.get_section(section_id)
        report = SyncReport(section_id=section.id)
        for student in section.connected_students():
            try:
                self.set_student_visibility(student.connected_user_id, section.id, hidden)
            except GradingError as e:
                logger.error(
                    f"Visibility update failed for student {student.id} (user {student.connected_user_id}) "
                    f"in section {section.id}: {str(e)}"
                )
                report.record_failure(student.id, student.connected_user_id, e)
            else:
                report.succeeded.append(student.id)
        return report

    # --- connections ---

    def _require_student(self, section: Section, student_id: str) -> Student:
        student = section.student(student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found in section {section.id}")
        return student

    def _link_roster(self, section: Section, student_id: str, account: AccountIdentity) -> Section:
        student = section.student(student_id)
        if (
            student.connected_user_id == account.id
            and student.connected_user_lrn == account.lrn
            and student.connected_user_email == account.email
        ):
            return section
        section = mark_connected(section, student_id, account.id, account.lrn, account.email)
        self.sections.save(section)
        self._invalidate_section(section.id)
        live.emit_section_version(section)
        return section

    def connect(self, section_id: str, student_id: str, account: AccountIdentity, actor) -> dict:
        """Connect a roster entry to an account and seed its projection."""
        section = self.get_section(section_id)
        student = self._require_student(section, student_id)
        connection = self.registry.connect(student, account, section, actor)

        section = self._link_roster(section, student_id, account)
        self._invalidate_user(account.id)
        self.cache.invalidate(cache_keys.section_connections(section.id))
        records = self.recompute_and_replace(section, section.student(student_id), account.id)
        return {"connection": connection.to_dict(), "gradesSynced": len(records)}

    def repair(
        self,
        section_id: str,
        student_id: str,
        account: AccountIdentity,
        actor=None,
        user_lrn: Optional[str] = None,
    ) -> RepairOutcome:
        section = self.get_section(section_id)
        previous = self._require_student(section, student_id).connected_user_id
        outcome = self.registry.repair(user_lrn, student_id, section.id, account, section, actor)

        connected = AccountIdentity(
            outcome.connection.user_id, outcome.connection.user_lrn, outcome.connection.user_email
        )
        if previous and previous != connected.id:
            # the roster entry moved to another account
            self.projections.delete_all(previous, section.id)
            self._invalidate_user(previous)
        section = self._link_roster(section, student_id, connected)
        self._invalidate_user(connected.id)
        self.cache.invalidate(cache_keys.section_connections(section.id))
        self.recompute_and_replace(section, section.student(student_id), connected.id)
        return outcome

    def disconnect(self, section_id: str, student_id: str, user_id: str) -> int:
        """Unlink a roster entry. The instructor's copy of the scores stays."""
        section = self.sections.find(section_id)
        student = section.student(student_id) if section is not None else None
        linked = student is not None and student.connected_user_id == str(user_id)
        removed = self.registry.disconnect(student_id, user_id, section_id, linked=linked)

        if section is not None:
            if linked:
                section = clear_connection(section, student_id)
                self.sections.save(section)
                live.emit_section_version(section)
            self._invalidate_section(section_id)
        self._invalidate_user(user_id)
        live.emit_grades_updated(user_id, section_id)
        return removed

    def leave_section(self, user_id: str, section_id: str) -> List[str]:
        """The learner side of disconnect: drop every link of ``user_id`` to the section."""
        student_ids = self.registry.leave(user_id, section_id)

        section = self.sections.find(section_id)
        if section is not None:
            linked = [s.id for s in section.students if s.connected_user_id == str(user_id)]
            for student_id in linked:
                section = clear_connection(section, student_id)
            if linked:
                self.sections.save(section)
                live.emit_section_version(section)
            self._invalidate_section(section_id)
        self._invalidate_user(user_id)
        return student_ids

    # --- deletion ---

    def _stage_section_cascade(self, section_id: str):
        self.projections.stage_delete_for_section(section_id)
        self.registry.connections.stage_delete_for_section(section_id)
        self.sections.stage_delete(section_id)

    def _affected_users(self, section: Section) -> set:
        users = {s.connected_user_id for s in section.connected_students()}
        users.update(c.user_id for c in self.registry.for_section(section.id, active_only=False))
        return users

    def delete_section(self, section_id: str):
        """Remove the section with its projections and connections, all or nothing."""
        section = self.sections.get(section_id)
        users = self._affected_users(section)

        with transaction(f"delete section {section_id} with projections and connections"):
            self._stage_section_cascade(section.id)

        self._invalidate_section(section.id)
        for user_id in users:
            self._invalidate_user(user_id)
        live.emit_section_deleted(section.id)
        logger.info(f"Deleted section {section.id} ({len(users)} connected account(s))")

    def delete_account_data(self, user_id: str) -> dict:
        """Remove a user's projections, connections and every section they created."""
        owned = self.sections.list(created_by=user_id)
        users = {str(user_id)}
        for section in owned:
            users.update(self._affected_users(section))

        with transaction(f"delete account data for user {user_id}"):
            for section in owned:
                self._stage_section_cascade(section.id)
            grades = self.projections.stage_delete_for_user(user_id)
            connections = self.registry.connections.stage_delete_for_user(user_id)

        for section in owned:
            self._invalidate_section(section.id)
            live.emit_section_deleted(section.id)
        self.cache.invalidate_prefix(cache_keys.TEACHER_SECTIONS_PREFIX)
        for uid in users:
            self._invalidate_user(uid)
        logger.info(
            f"Deleted account data for user {user_id}: {len(owned)} section(s), "
            f"{grades} grade record(s), {connections} connection(s)"
        )
        return {
            "sectionsDeleted": len(owned),
            "gradesDeleted": grades,
            "connectionsDeleted": connections,
        }
