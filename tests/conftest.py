import os
import sys

import pytest

# Ensure project root is on sys.path so tests can import app.py
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

os.environ["ENVIRONMENT"] = "test"
os.environ.pop("DATABASE_URL", None)

from app import create_app  # noqa: E402
from models import db  # noqa: E402
from utils.connections import AccountIdentity  # noqa: E402
from utils.gradebook_edits import (  # noqa: E402
    add_assessment,
    add_student,
    add_subject,
    create_section,
    set_score,
)
from utils.services import get_services  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(clock):
    app = create_app(
        {
            "TESTING": True,
            "WTF_CSRF_ENABLED": False,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "GRADES_CACHE_CLOCK": clock,
            "GRADES_CACHE_TTL_SECONDS": 60,
        }
    )
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def services(app):
    return get_services()


@pytest.fixture
def sync(services):
    return services.synchronizer


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    def _login(user_id):
        with client.session_transaction() as sess:
            sess["user_id"] = user_id
        return client

    return _login


@pytest.fixture
def gradebook():
    """Section owned by teacher-1: one subject (WW 30 / PT 50 / QE 20), two students.

    Quarter 1 of "Ana" is scored 8/10, 45/50, 18/20 (initial grade 87.0, transmuted 96);
    "Ben" is scored 5/10, 30/50, 10/20 (initial grade 55.0, transmuted 89).
    """
    section = create_section("Rizal", "7", "teacher-1", section_id="sec-1")
    section, subject = add_subject(section, "English", 30, 50, 20, subject_id="subj-eng")
    section, ana = add_student(section, "Ana", lrn="100000000001", gender="female", student_id="stu-ana")
    section, ben = add_student(section, "Ben", lrn="100000000002", gender="male", student_id="stu-ben")
    section, ww = add_assessment(section, subject.id, "writtenWork", 1, 10, assessment_id="a-ww1")
    section, pt = add_assessment(section, subject.id, "performanceTask", 1, 50, assessment_id="a-pt1")
    section, qe = add_assessment(section, subject.id, "quarterlyExam", 1, 20, assessment_id="a-qe1")
    section = set_score(section, ana.id, subject.id, ww.id, 8)
    section = set_score(section, ana.id, subject.id, pt.id, 45)
    section = set_score(section, ana.id, subject.id, qe.id, 18)
    section = set_score(section, ben.id, subject.id, ww.id, 5)
    section = set_score(section, ben.id, subject.id, pt.id, 30)
    section = set_score(section, ben.id, subject.id, qe.id, 10)
    return section


@pytest.fixture
def ana_account():
    return AccountIdentity("user-ana", "100000000001", "ana@example.com")


@pytest.fixture
def ben_account():
    return AccountIdentity("user-ben", "100000000002", "ben@example.com")


@pytest.fixture
def connected(sync, gradebook, ana_account, ben_account):
    """The gradebook saved with both students connected; returns the stored section."""
    sync.save_section(gradebook, sync=False)
    sync.connect(gradebook.id, "stu-ana", ana_account, "teacher-1")
    sync.connect(gradebook.id, "stu-ben", ben_account, "teacher-1")
    return sync.get_section(gradebook.id)
