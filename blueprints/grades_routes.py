import logging

from flask import Blueprint, jsonify, request

from blueprints.sections_routes import owned_section
from utils.auth_utils import current_user_id, login_required
from utils.errors import GradingError, NotFoundError, ValidationError
from utils.grade_calculation import projected_general_average
from utils.grading_types import Section
from utils.services import get_services

logger = logging.getLogger(__name__)

grades_bp = Blueprint("grades", __name__)


def _hidden_flag(data: dict) -> bool:
    hidden = data.get("hidden")
    if not isinstance(hidden, bool):
        raise ValidationError("hidden must be true or false")
    return hidden


def _report_response(report):
    return jsonify(report.to_dict()), (200 if report.ok else 207)


@grades_bp.route("/api/grades", methods=["GET"])
@login_required
def my_grades():
    """Projected grades of the current user, without hidden records."""
    try:
        grades = get_services().synchronizer.grades_for_user(current_user_id(), include_hidden=False)
        by_section = {}
        for g in grades:
            by_section.setdefault(g["sectionId"], []).append(g)
        return jsonify(
            {
                "grades": grades,
                "sections": {
                    sid: {
                        "count": len(rows),
                        "subjects": len({r["subjectId"] for r in rows}),
                        "generalAverage": projected_general_average(rows),
                    }
                    for sid, rows in by_section.items()
                },
            }
        )
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error loading grades for user {current_user_id()}: {str(e)}")
        return jsonify({"error": "Failed to load grades"}), 500


@grades_bp.route("/api/sections/<section_id>/visibility", methods=["PUT"])
@login_required
def set_section_visibility(section_id):
    """Hide or show every connected student's grades; per-student failures give 207."""
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    hidden = _hidden_flag(request.get_json(silent=True) or {})
    try:
        report = get_services().synchronizer.set_section_visibility(section.id, hidden)
        return _report_response(report)
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error toggling visibility for section {section_id}: {str(e)}")
        return jsonify({"error": "Failed to update visibility"}), 500


@grades_bp.route("/api/sections/<section_id>/students/<student_id>/visibility", methods=["PUT"])
@login_required
def set_student_visibility(section_id, student_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    hidden = _hidden_flag(request.get_json(silent=True) or {})
    student = section.student(student_id)
    if student is None:
        raise NotFoundError(f"Student {student_id} not found in section {section_id}")
    if not student.is_connected:
        raise ValidationError(f"Student {student_id} is not connected to an account")
    try:
        count = get_services().synchronizer.set_student_visibility(
            student.connected_user_id, section.id, hidden
        )
        return jsonify({"studentId": student.id, "userId": student.connected_user_id, "updated": count})
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error toggling visibility for student {student_id}: {str(e)}")
        return jsonify({"error": "Failed to update visibility"}), 500


@grades_bp.route("/api/sections/<section_id>/sync", methods=["POST"])
@login_required
def sync_section(section_id):
    """Recompute every connected student's projection from the stored section."""
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    try:
        report = get_services().synchronizer.sync_section(section)
        return _report_response(report)
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error syncing section {section_id}: {str(e)}")
        return jsonify({"error": "Failed to sync section"}), 500


@grades_bp.route("/api/sections/<section_id>/sync-debug/<user_id>", methods=["GET"])
@login_required
def sync_debug(section_id, user_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    return jsonify(get_services().synchronizer.debug_sync(user_id, section.id))
