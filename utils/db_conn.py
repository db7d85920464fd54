import os
import logging
import time
from contextlib import contextmanager
from typing import Optional

from dotenv import load_dotenv
from flask import Flask
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from utils.errors import ConflictError, StoreUnavailable

# Configure logging for database operations
logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = "local"


def resolve_database_uri(environment: Optional[str] = None) -> str:
    """Build the SQLAlchemy URI for the configured environment.

    DATABASE_URL wins when set. ``test`` uses an in-memory SQLite database.
    """
    explicit = os.getenv("DATABASE_URL")
    if explicit:
        return explicit

    environment = (environment or os.getenv("ENVIRONMENT", DEFAULT_ENVIRONMENT)).lower()
    if environment == "test":
        return os.getenv("TEST_DATABASE_URL", "sqlite://")

    if environment == "local":
        db_host = os.getenv("LOCAL_DB_HOST", "localhost")
        db_port = os.getenv("LOCAL_DB_PORT", "3306")
        db_user = os.getenv("LOCAL_DB_USER", "root")
        db_password = os.getenv("LOCAL_DB_PASSWORD", "")
        db_name = os.getenv("LOCAL_DB_NAME", "e_class_record")
    elif environment == "production" or environment == "online":
        db_host = os.getenv("ONLINE_DB_HOST")
        db_port = os.getenv("ONLINE_DB_PORT", "3306")
        db_user = os.getenv("ONLINE_DB_USER")
        db_password = os.getenv("ONLINE_DB_PASSWORD")
        db_name = os.getenv("ONLINE_DB_NAME")
        if not (db_host and db_user and db_name):
            raise ValueError("ONLINE_DB_HOST, ONLINE_DB_USER and ONLINE_DB_NAME must be set")
    else:
        raise ValueError(
            f"Invalid ENVIRONMENT value: {environment}. Must be 'local', 'test' or 'production'/'online'"
        )

    return f"mysql+pymysql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"


def _mask(uri: str) -> str:
    if "@" not in uri or "://" not in uri:
        return uri
    scheme, rest = uri.split("://", 1)
    creds, host = rest.rsplit("@", 1)
    user = creds.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


class DatabaseConnection:
    """Handles database connection, initialization, and management."""

    def __init__(self, app: Optional[Flask] = None):
        self.app = app
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        """Initialize database connection with Flask app."""
        self.app = app
        load_dotenv()
        logger.info("Environment variables loaded from .env file")

        if not app.config.get("SQLALCHEMY_DATABASE_URI"):
            app.config["SQLALCHEMY_DATABASE_URI"] = resolve_database_uri()
        db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
        app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)

        if db_uri.startswith("mysql"):
            # Connection pool settings to handle connection timeouts
            app.config.setdefault(
                "SQLALCHEMY_ENGINE_OPTIONS",
                {
                    "pool_size": 10,
                    "max_overflow": 20,
                    "pool_recycle": 3600,  # Recycle connections after 1 hour
                    "pool_pre_ping": True,
                    "pool_timeout": 30,
                    "connect_args": {
                        "connect_timeout": 30,
                        "read_timeout": 60,
                        "write_timeout": 30,
                    },
                },
            )
        logger.info(f"Database URI configured: {_mask(db_uri)}")

        # Check if SQLAlchemy is already registered with this app
        if "sqlalchemy" not in app.extensions:
            db.init_app(app)
            logger.info("Database initialized with Flask app")
        else:
            logger.info("Database already initialized with Flask app - skipping re-initialization")

    def test_connection(self, max_retries: int = 3) -> bool:
        """Test database connection with retry mechanism."""
        if self.app is None:
            logger.error("Database connection not initialized with Flask app")
            return False

        retry_delay = 1
        for attempt in range(max_retries):
            try:
                logger.info(f"Testing database connection... (attempt {attempt + 1}/{max_retries})")
                with self.app.app_context():
                    with db.engine.connect() as connection:
                        connection.execute(db.text("SELECT 1"))
                logger.info("Database connection successful")
                return True
            except SQLAlchemyError as e:
                logger.warning(f"Database connection failed (attempt {attempt + 1}): {str(e)}")
                if attempt < max_retries - 1:
                    time.sleep(retry_delay)
                    retry_delay *= 2  # Exponential backoff
        logger.error(f"Database connection failed after {max_retries} attempts")
        return False

    def create_tables(self) -> bool:
        """Create all database tables."""
        if self.app is None:
            logger.error("Database connection not initialized with Flask app")
            return False
        try:
            logger.info("Creating database tables...")
            with self.app.app_context():
                db.create_all()
            logger.info("Database tables created successfully")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database table creation failed: {str(e)}")
            return False

    def init_database(self) -> bool:
        """Initialize database connection and create tables if they don't exist."""
        logger.info("Starting database initialization...")

        if not self.test_connection():
            return False

        return self.create_tables()


@contextmanager
def transaction(action: str):
    """Run a group of writes as one all-or-nothing unit.

    Commits on success. On a database error the session is rolled back; a
    constraint violation surfaces as ConflictError, anything else as
    StoreUnavailable.
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.warning(f"Integrity conflict during {action}: {str(e.orig)}")
        raise ConflictError(f"Conflicting write during {action}") from e
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Database error during {action}: {str(e)}")
        raise StoreUnavailable(f"Backing store failed during {action}") from e
    except Exception:
        db.session.rollback()
        raise


@contextmanager
def reading(action: str):
    """Wrap a read so store failures surface as StoreUnavailable."""
    try:
        yield db.session
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Database error during {action}: {str(e)}")
        raise StoreUnavailable(f"Backing store failed during {action}") from e
