import logging

from flask import Blueprint, jsonify, request

from utils.auth_utils import current_user_id, login_required
from utils.errors import GradingError, NotFoundError
from utils.grade_calculation import student_summary
from utils.gradebook_edits import (
    add_assessment,
    add_student,
    add_subject,
    create_section,
    remove_assessment,
    remove_student,
    remove_subject,
    set_scores,
    update_assessment,
    update_section_details,
    update_student,
    update_subject,
)
from utils.grading_types import Section
from utils.live import section_version
from utils.services import get_services

logger = logging.getLogger(__name__)

sections_bp = Blueprint("sections", __name__)

# request field -> keyword argument of the edit functions
SECTION_FIELDS = {
    "name": "name",
    "gradeLevel": "grade_level",
    "schoolYear": "school_year",
    "transmutationRevision": "transmutation_revision",
}
STUDENT_FIELDS = {"name": "name", "lrn": "lrn", "gender": "gender"}
SUBJECT_FIELDS = {
    "name": "name",
    "writtenWorkWeight": "written_work_weight",
    "performanceTaskWeight": "performance_task_weight",
    "quarterlyExamWeight": "quarterly_exam_weight",
    "type": "subject_type",
    "track": "track",
}


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _pick(data: dict, fields: dict) -> dict:
    return {kwarg: data[key] for key, kwarg in fields.items() if key in data}


def owned_section(section_id):
    """Load a section the current user created, or return a 403 response."""
    section = get_services().synchronizer.get_section(section_id)
    if section.created_by != current_user_id():
        return jsonify({"error": "Access denied. Only the section owner can do this."}), 403
    return section


def _section_response(section: Section, report=None, status: int = 200):
    body = {"section": section.to_dict(), "version": section_version(section)}
    if report is not None:
        body["sync"] = report.to_dict()
        if not report.ok:
            status = 207
    return jsonify(body), status


@sections_bp.route("/api/sections", methods=["GET"])
@login_required
def list_sections():
    """Sections created by the current user; a stale list is served if the store is down."""
    try:
        sections = get_services().synchronizer.sections_for_teacher(current_user_id(), allow_stale=True)
        return jsonify({"sections": [s.to_dict() for s in sections]})
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error listing sections: {str(e)}")
        return jsonify({"error": "Failed to list sections"}), 500


@sections_bp.route("/api/sections", methods=["POST"])
@login_required
def create_section_route():
    data = _payload()
    try:
        section = create_section(
            data.get("name"),
            data.get("gradeLevel"),
            current_user_id(),
            school_year=data.get("schoolYear"),
            transmutation_revision=data.get("transmutationRevision"),
        )
        get_services().synchronizer.save_section(section, sync=False)
        logger.info(f"Section {section.id} created by {section.created_by}")
        return _section_response(section, status=201)
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error creating section: {str(e)}")
        return jsonify({"error": "Failed to create section"}), 500


@sections_bp.route("/api/sections/<section_id>", methods=["GET"])
@login_required
def get_section(section_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    return _section_response(section)


@sections_bp.route("/api/sections/<section_id>", methods=["PATCH"])
@login_required
def update_section_route(section_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    try:
        section = update_section_details(section, **_pick(_payload(), SECTION_FIELDS))
        # grade level and revision both change transmuted grades
        report = get_services().synchronizer.save_section(section)
        return _section_response(section, report)
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error updating section {section_id}: {str(e)}")
        return jsonify({"error": "Failed to update section"}), 500


@sections_bp.route("/api/sections/<section_id>", methods=["DELETE"])
@login_required
def delete_section_route(section_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    try:
        get_services().synchronizer.delete_section(section.id)
        return jsonify({"success": True, "sectionId": section.id})
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error deleting section {section_id}: {str(e)}")
        return jsonify({"error": "Failed to delete section"}), 500


# --- roster ---


@sections_bp.route("/api/sections/<section_id>/students", methods=["POST"])
@login_required
def add_student_route(section_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    data = _payload()
    try:
        section, student = add_student(section, data.get("name"), data.get("lrn"), data.get("gender"))
        get_services().synchronizer.save_section(section, sync=False)
        body = {"student": student.to_dict(), "version": section_version(section)}
        return jsonify(body), 201
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error adding student to section {section_id}: {str(e)}")
        return jsonify({"error": "Failed to add student"}), 500


@sections_bp.route("/api/sections/<section_id>/students/<student_id>", methods=["PATCH"])
@login_required
def update_student_route(section_id, student_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    try:
        section = update_student(section, student_id, **_pick(_payload(), STUDENT_FIELDS))
        get_services().synchronizer.save_section(section, sync=False)
        return jsonify({"student": section.student(student_id).to_dict(), "version": section_version(section)})
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error updating student {student_id}: {str(e)}")
        return jsonify({"error": "Failed to update student"}), 500


@sections_bp.route("/api/sections/<section_id>/students/<student_id>", methods=["DELETE"])
@login_required
def remove_student_route(section_id, student_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    try:
        sync = get_services().synchronizer
        student = section.student(student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found in section {section_id}")
        if student.is_connected:
            sync.disconnect(section.id, student.id, student.connected_user_id)
            section = sync.get_section(section.id)
        section = remove_student(section, student_id)
        sync.save_section(section, sync=False)
        return jsonify({"success": True, "studentId": student_id, "version": section_version(section)})
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error removing student {student_id}: {str(e)}")
        return jsonify({"error": "Failed to remove student"}), 500


# --- subjects and assessments ---


@sections_bp.route("/api/sections/<section_id>/subjects", methods=["POST"])
@login_required
def add_subject_route(section_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    data = _payload()
    try:
        section, subject = add_subject(
            section,
            data.get("name"),
            data.get("writtenWorkWeight"),
            data.get("performanceTaskWeight"),
            data.get("quarterlyExamWeight"),
            subject_type=data.get("type"),
            track=data.get("track"),
        )
        get_services().synchronizer.save_section(section, sync=False)
        return jsonify({"subject": subject.to_dict(), "version": section_version(section)}), 201
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error adding subject to section {section_id}: {str(e)}")
        return jsonify({"error": "Failed to add subject"}), 500


@sections_bp.route("/api/sections/<section_id>/subjects/<subject_id>", methods=["PATCH"])
@login_required
def update_subject_route(section_id, subject_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    try:
        section = update_subject(section, subject_id, **_pick(_payload(), SUBJECT_FIELDS))
        report = get_services().synchronizer.save_section(section)
        return _section_response(section, report)
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error updating subject {subject_id}: {str(e)}")
        return jsonify({"error": "Failed to update subject"}), 500


@sections_bp.route("/api/sections/<section_id>/subjects/<subject_id>", methods=["DELETE"])
@login_required
def remove_subject_route(section_id, subject_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    try:
        section = remove_subject(section, subject_id)
        report = get_services().synchronizer.save_section(section)
        return _section_response(section, report)
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error removing subject {subject_id}: {str(e)}")
        return jsonify({"error": "Failed to remove subject"}), 500


@sections_bp.route("/api/sections/<section_id>/subjects/<subject_id>/assessments", methods=["POST"])
@login_required
def add_assessment_route(section_id, subject_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    data = _payload()
    try:
        section, assessment = add_assessment(
            section,
            subject_id,
            data.get("category"),
            data.get("quarter"),
            total_points=data.get("totalPoints", 0),
            name=data.get("name"),
        )
        get_services().synchronizer.save_section(section, sync=False)
        return jsonify({"assessment": assessment.to_dict(), "version": section_version(section)}), 201
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error adding assessment to subject {subject_id}: {str(e)}")
        return jsonify({"error": "Failed to add assessment"}), 500


@sections_bp.route(
    "/api/sections/<section_id>/subjects/<subject_id>/assessments/<assessment_id>", methods=["PATCH"]
)
@login_required
def update_assessment_route(section_id, subject_id, assessment_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    data = _payload()
    try:
        section = update_assessment(
            section, subject_id, assessment_id, name=data.get("name"), total_points=data.get("totalPoints")
        )
        report = get_services().synchronizer.save_section(section)
        return _section_response(section, report)
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error updating assessment {assessment_id}: {str(e)}")
        return jsonify({"error": "Failed to update assessment"}), 500


@sections_bp.route(
    "/api/sections/<section_id>/subjects/<subject_id>/assessments/<assessment_id>", methods=["DELETE"]
)
@login_required
def remove_assessment_route(section_id, subject_id, assessment_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    try:
        section = remove_assessment(section, subject_id, assessment_id)
        report = get_services().synchronizer.save_section(section)
        return _section_response(section, report)
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error removing assessment {assessment_id}: {str(e)}")
        return jsonify({"error": "Failed to remove assessment"}), 500


# --- scores ---


@sections_bp.route(
    "/api/sections/<section_id>/students/<student_id>/subjects/<subject_id>/scores", methods=["PUT"]
)
@login_required
def set_scores_route(section_id, student_id, subject_id):
    """Record raw scores ``{"scores": {assessment_id: score|null}}`` for one student."""
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    scores = _payload().get("scores")
    if not isinstance(scores, dict):
        return jsonify({"error": "validation_failed", "message": "scores must be an object"}), 400
    try:
        sync = get_services().synchronizer
        section = set_scores(section, student_id, subject_id, scores)
        sync.save_section(section, sync=False)
        student = section.student(student_id)
        records = sync.recompute_and_replace(section, student)
        return jsonify(
            {
                "summary": student_summary(section, student, sync.default_revision),
                "gradesSynced": len(records),
                "version": section_version(section),
            }
        )
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error saving scores for student {student_id}: {str(e)}")
        return jsonify({"error": "Failed to save scores"}), 500


@sections_bp.route("/api/sections/<section_id>/students/<student_id>/summary", methods=["GET"])
@login_required
def student_summary_route(section_id, student_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    student = section.student(student_id)
    if student is None:
        raise NotFoundError(f"Student {student_id} not found in section {section_id}")
    return jsonify(student_summary(section, student, get_services().synchronizer.default_revision))
