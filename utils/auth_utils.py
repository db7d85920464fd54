import logging
from functools import wraps

from flask import jsonify, request, session

logger = logging.getLogger(__name__)


def login_required(f):
    """Decorator to ensure a valid session exists before accessing an API route.

    Login itself happens elsewhere; this only checks that ``user_id`` is in the
    session and answers 401 JSON otherwise.
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if "user_id" not in session:
            logger.info(f"Unauthenticated request to {request.path}")
            return jsonify({"error": "unauthorized", "message": "Please log in to access this page."}), 401
        return f(*args, **kwargs)

    return decorated_function


def current_user_id():
    user_id = session.get("user_id")
    return str(user_id) if user_id is not None else None
