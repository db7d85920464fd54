import logging

from flask import Blueprint, jsonify, request, session

from blueprints.sections_routes import owned_section
from utils.auth_utils import current_user_id, login_required
from utils.connections import AccountIdentity
from utils.errors import GradingError, NotFoundError, ValidationError
from utils.grading_types import Section
from utils.services import get_services

logger = logging.getLogger(__name__)

connections_bp = Blueprint("connections", __name__)


def _account_from(data: dict) -> AccountIdentity:
    account = data.get("account")
    if not isinstance(account, dict):
        raise ValidationError("account must be an object with at least an id")
    return AccountIdentity.from_dict(account)


@connections_bp.route("/api/sections/<section_id>/students/<student_id>/connect", methods=["POST"])
@login_required
def connect_student(section_id, student_id):
    """Link a roster entry to a platform account and project its grades."""
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    account = _account_from(request.get_json(silent=True) or {})
    try:
        result = get_services().synchronizer.connect(section.id, student_id, account, current_user_id())
        return jsonify(result), 201
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error connecting student {student_id} in section {section_id}: {str(e)}")
        return jsonify({"error": "Failed to connect student"}), 500


@connections_bp.route("/api/sections/<section_id>/students/<student_id>/repair", methods=["POST"])
@login_required
def repair_connection(section_id, student_id):
    """Idempotent reconnect: finds, reactivates or creates the connection."""
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    data = request.get_json(silent=True) or {}
    account = _account_from(data)
    try:
        outcome = get_services().synchronizer.repair(
            section.id, student_id, account, current_user_id(), user_lrn=data.get("userLRN")
        )
        return jsonify(outcome.to_dict()), (201 if outcome.created else 200)
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error repairing connection for student {student_id}: {str(e)}")
        return jsonify({"error": "Failed to repair connection"}), 500


@connections_bp.route("/api/sections/<section_id>/students/<student_id>/connection", methods=["DELETE"])
@login_required
def disconnect_student(section_id, student_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    student = section.student(student_id)
    if student is None:
        raise NotFoundError(f"Student {student_id} not found in section {section_id}")
    user_id = student.connected_user_id
    requested = (request.get_json(silent=True) or {}).get("userId")
    if requested and str(requested) != user_id:
        rows = get_services().registry.for_student(student.id, section.id)
        if not any(c.user_id == str(requested) for c in rows):
            raise NotFoundError(f"Student {student_id} is not connected to user {requested}")
        user_id = str(requested)
    if not user_id:
        raise ValidationError(f"Student {student_id} is not connected to an account")
    try:
        removed = get_services().synchronizer.disconnect(section.id, student.id, str(user_id))
        return jsonify({"success": True, "studentId": student.id, "userId": str(user_id), "removed": removed})
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error disconnecting student {student_id}: {str(e)}")
        return jsonify({"error": "Failed to disconnect student"}), 500


@connections_bp.route("/api/sections/<section_id>/leave", methods=["POST"])
@login_required
def leave_section(section_id):
    """The signed-in learner leaves a section; the teacher's scores stay."""
    try:
        student_ids = get_services().synchronizer.leave_section(current_user_id(), section_id)
        return jsonify({"success": True, "sectionId": section_id, "studentIds": student_ids})
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error leaving section {section_id}: {str(e)}")
        return jsonify({"error": "Failed to leave section"}), 500


@connections_bp.route("/api/sections/<section_id>/connections", methods=["GET"])
@login_required
def section_connections(section_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    return jsonify({"connections": get_services().synchronizer.connections_for_section(section.id)})


@connections_bp.route("/api/connections", methods=["GET"])
@login_required
def my_connections():
    return jsonify({"connections": get_services().synchronizer.connections_for_user(current_user_id())})


@connections_bp.route("/api/connections/lrn/<lrn>", methods=["GET"])
@login_required
def connections_by_lrn(lrn):
    """Active connections for an LRN, limited to sections the current user owns."""
    services = get_services()
    owned = {s.id for s in services.synchronizer.sections_for_teacher(current_user_id())}
    connections = [c.to_dict() for c in services.registry.for_lrn(lrn) if c.section_id in owned]
    return jsonify({"connections": connections})


@connections_bp.route("/api/account/data", methods=["DELETE"])
@login_required
def delete_account_data():
    """Delete everything stored for the signed-in account."""
    user_id = current_user_id()
    try:
        result = get_services().synchronizer.delete_account_data(user_id)
        session.pop("user_id", None)
        return jsonify(dict(result, success=True))
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error deleting account data for user {user_id}: {str(e)}")
        return jsonify({"error": "Failed to delete account data"}), 500
