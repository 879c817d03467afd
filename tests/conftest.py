import os

os.environ["BILLSMART_DATABASE_URL"] = "sqlite://"
os.environ["BILLSMART_SCHEDULER_ENABLED"] = "false"
os.environ.pop("BILLSMART_CRON_SECRET", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import create_access_token, create_account, hash_password
from database import Base, get_db, Team, TeamMember, User
from mailer import Mailer, get_mailer
from main import app


class FakeMailer(Mailer):
    def __init__(self):
        self.sent = []
        self.failing = set()

    def send(self, to, subject, text, html=None):
        if to in self.failing:
            return False
        self.sent.append({"to": to, "subject": subject, "text": text})
        return True


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(session_factory, mailer):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Create a user; without ``workspace_id`` they get their own workspace."""

    def _make(name="Alice", email=None, password="password123", workspace_id=None, role="MEMBER"):
        email = email or f"{name.lower()}@example.com"
        if workspace_id is None:
            user = create_account(db, name, email, password)
        else:
            user = User(
                name=name,
                email=email,
                password=hash_password(password),
                role=role,
                workspace_id=workspace_id,
            )
            db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_team(db):
    def _make(owner, *members, name="Ops"):
        team = Team(name=name, description="")
        db.add(team)
        db.flush()
        db.add(TeamMember(team_id=team.id, user_id=owner.id, role="OWNER"))
        for user, role in members:
            db.add(TeamMember(team_id=team.id, user_id=user.id, role=role))
        db.commit()
        db.refresh(team)
        return team

    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': user.id})}"}
