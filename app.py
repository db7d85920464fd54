import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_socketio import SocketIO
from flask_wtf.csrf import CSRFError, CSRFProtect, generate_csrf

from blueprints.connections_routes import connections_bp
from blueprints.grades_routes import grades_bp
from blueprints.reports_routes import reports_bp
from blueprints.sections_routes import sections_bp
from utils.db_conn import DatabaseConnection, resolve_database_uri
from utils.errors import GradingError
from utils.live import initialize_live, register_socketio_handlers
from utils.services import init_services
from utils.transmutation import DEFAULT_REVISION

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

csrf = CSRFProtect()
socketio = SocketIO()
register_socketio_handlers(socketio)


def create_app(config_overrides=None):
    """Build the Flask app: config from the environment, then database, services and routes."""
    load_dotenv()
    app = Flask(__name__)

    app.secret_key = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
    app.config["ENVIRONMENT"] = os.getenv("ENVIRONMENT", "local").lower()
    app.config["GRADES_CACHE_TTL_SECONDS"] = float(os.getenv("GRADES_CACHE_TTL_SECONDS", "300"))
    app.config["TRANSMUTATION_REVISION"] = os.getenv("TRANSMUTATION_REVISION", DEFAULT_REVISION)
    app.config["CREATE_TABLES"] = True
    if config_overrides:
        app.config.update(config_overrides)
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        app.config["SQLALCHEMY_DATABASE_URI"] = resolve_database_uri(app.config["ENVIRONMENT"])

    csrf.init_app(app)

    db_connection = DatabaseConnection(app)
    app.extensions["db_connection"] = db_connection
    if app.config["CREATE_TABLES"] and not db_connection.create_tables():
        logger.error("Database tables could not be created; requests will fail until the database is reachable")

    init_services(app)

    socketio.init_app(app, cors_allowed_origins="*")
    initialize_live(socketio, logger)

    app.register_blueprint(sections_bp)
    app.register_blueprint(grades_bp)
    app.register_blueprint(connections_bp)
    app.register_blueprint(reports_bp)

    @app.errorhandler(GradingError)
    def handle_grading_error(e):
        if e.status >= 500:
            logger.error(f"{e.code}: {e.message}")
        else:
            logger.info(f"{e.code}: {e.message}")
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        logger.warning(f"CSRF validation failed: {e.description}")
        return jsonify({"error": "csrf_failed", "message": e.description}), 400

    # Route: GET "/api/csrf-token"
    # Used by: API clients before any POST/PUT/PATCH/DELETE; send it back as X-CSRFToken.
    @app.route("/api/csrf-token", methods=["GET"])
    def csrf_token():
        return jsonify({"csrf_token": generate_csrf()})

    logger.info(f"Application created (environment: {app.config['ENVIRONMENT']})")
    return app


app = create_app()


if __name__ == "__main__":
    logger.info("Application startup initiated")

    # Only start the reloader in development
    use_reloader = os.environ.get("WERKZEUG_RUN_MAIN") != "true"

    socketio.run(app, host="127.0.0.1", port=5000, debug=True, use_reloader=use_reloader)
