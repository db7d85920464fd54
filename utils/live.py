import hashlib
import json
import logging

from flask_socketio import SocketIO, emit, join_room, leave_room

from utils.errors import GradingError
from utils.grading_types import Section

_socketio: SocketIO | None = None
_logger = logging.getLogger(__name__)


def initialize_live(socketio: SocketIO | None, logger: logging.Logger | None = None):
    """Provide socketio and optional logger to this module."""
    global _socketio, _logger
    _socketio = socketio
    if logger is not None:
        _logger = logger


def section_room(section_id) -> str:
    return f"section-{section_id}"


def user_room(user_id) -> str:
    return f"user-{user_id}"


def section_version(section: Section) -> str:
    """Content hash of a section document; changes whenever anything in it does."""
    payload = json.dumps(section.to_dict(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def register_socketio_handlers(socketio: SocketIO):
    """Register Socket.IO event handlers. Call this after SocketIO(app) in app.py."""

    @socketio.on("connect")
    def _on_connect():
        emit("connected", {"message": "connected"})

    @socketio.on("subscribe_section")
    def _on_subscribe_section(data):
        from utils.services import get_services

        section_id = str((data or {}).get("section_id") or "")
        if not section_id:
            emit("error", {"message": "invalid section_id"})
            return
        join_room(section_room(section_id))
        try:
            section = get_services().synchronizer.get_section(section_id)
        except GradingError as e:
            emit("error", e.to_dict())
            return
        emit("section_version", {"section_id": section_id, "version": section_version(section)})

    @socketio.on("unsubscribe_section")
    def _on_unsubscribe_section(data):
        section_id = (data or {}).get("section_id")
        if section_id:
            leave_room(section_room(section_id))

    @socketio.on("subscribe_grades")
    def _on_subscribe_grades(data):
        user_id = (data or {}).get("user_id")
        if not user_id:
            emit("error", {"message": "invalid user_id"})
            return
        join_room(user_room(user_id))


def emit_section_version(section: Section):
    """Emit the latest version of a section to its room."""
    if _socketio is None:
        return
    try:
        version = section_version(section)
        _socketio.emit(
            "section_version",
            {"section_id": section.id, "version": version},
            room=section_room(section.id),
        )
    except Exception as e:
        _logger.error(f"Failed to emit section version for section {section.id}: {str(e)}")


def emit_section_deleted(section_id: str):
    if _socketio is None:
        return
    try:
        _socketio.emit("section_deleted", {"section_id": section_id}, room=section_room(section_id))
    except Exception as e:
        _logger.error(f"Failed to emit deletion of section {section_id}: {str(e)}")


def emit_grades_updated(user_id: str, section_id: str):
    """Tell a learner's clients that their grade list for a section changed."""
    if _socketio is None:
        return
    try:
        _socketio.emit(
            "grades_updated",
            {"user_id": user_id, "section_id": section_id},
            room=user_room(user_id),
        )
    except Exception as e:
        _logger.error(f"Failed to emit grade update for user {user_id}: {str(e)}")
