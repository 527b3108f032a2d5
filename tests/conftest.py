"""
Shared test fixtures for the marking app.
Every test gets a fresh in-memory SQLite database and a recorder in place of
the SMTP sender. Zero network calls.
"""
import re
import pytest

from marking_app import create_app
from marking_app.models import db, User, Team, TeamMember, Assignment, Submission, ROLE_ADMIN, ROLE_TUTOR
from marking_app.utils.auth import hash_password, issue_token
from marking_app.utils.rubric import build_criteria

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "SECRET_KEY": "test-secret-key-for-marking-app-tests",
    "MAIL_SERVER": "smtp.example.test",
    "MAIL_DEFAULT_SENDER": "noreply@example.test",
    "APP_URL": "http://frontend.test",
}

PASSWORD = "Passw0rd"


class MailRecorder:
    """Stands in for ``sendmail``; set ``fail`` to simulate an SMTP outage."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def __call__(self, addr, text, subject):
        self.sent.append({"to": addr, "text": text, "subject": subject})
        if self.fail:
            return False, "SMTP unavailable"
        return True, "Email sent"

    def last_code(self):
        match = re.search(r"code is: (\d{6})", self.sent[-1]["text"])
        return match.group(1) if match else None


@pytest.fixture
def app():
    app = create_app(TEST_CONFIG)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Replace every sendmail reference with a recorder."""
    recorder = MailRecorder()
    monkeypatch.setattr("marking_app.sendmail", recorder)
    monkeypatch.setattr("marking_app.utils.invites.sendmail", recorder)
    return recorder


@pytest.fixture
def make_user(app):
    def _make(email, password=PASSWORD):
        user = User(username=email, password=hash_password(password))
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        return {"Authorization": f"Bearer {issue_token(user)}"}
    return _headers


@pytest.fixture
def team(make_user):
    """A team with an admin, an assigned tutor and an unassigned tutor."""
    admin = make_user("admin@uni.test")
    tutor = make_user("tutor@uni.test")
    spare = make_user("spare@uni.test")

    team = Team(name="Moderators", owner_id=admin.id)
    team.members.append(TeamMember(user_id=admin.id, role=ROLE_ADMIN))
    team.members.append(TeamMember(user_id=tutor.id, role=ROLE_TUTOR))
    team.members.append(TeamMember(user_id=spare.id, role=ROLE_TUTOR))
    db.session.add(team)
    db.session.commit()
    return {"team": team, "admin": admin, "tutor": tutor, "spare": spare}


@pytest.fixture
def assignment(team):
    """Two criteria (10 points at 20%, 5 points at 0%) and one control paper."""
    assignment = Assignment(
        title="Essay 1",
        course_code="ENG101",
        created_by=team["admin"].id,
        standard_marker_id=team["admin"].id,
        team_id=team["team"].id,
    )
    assignment.markers = [team["admin"], team["tutor"]]
    build_criteria(assignment, [
        {"name": "Argument", "points": 10, "deviation": 20},
        {"name": "Style", "points": 5, "deviation": 0},
    ])
    assignment.submissions.append(Submission(student_identifier="Paper A"))
    db.session.add(assignment)
    db.session.commit()
    return assignment
