"""
Configuration partagée pour tous les tests.

- client        : dépendance get_db remplacée par un MagicMock (services patchés dans les tests)
- sqlite_client : API branchée sur une base SQLite en mémoire (scénarios de bout en bout)
- db_session    : session SQLAlchemy sur une base SQLite en mémoire (tests du store)
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import cluetrack.models  # noqa: E402,F401
from cluetrack.config import settings  # noqa: E402
from cluetrack.database import Base, build_engine, get_db  # noqa: E402
from cluetrack.main import app  # noqa: E402
from cluetrack.services.identity import IdentityProvider  # noqa: E402

ALLOWED_ORIGIN = "http://localhost:3000"


def make_token(team_name="team-alpha", subject="user_123"):
    """Jeton de session tel qu'émis par le fournisseur d'identité."""
    return IdentityProvider(settings.SECRET_KEY, settings.ALGORITHM).issue_token(subject, team_name)


def auth_headers(team_name="team-alpha", origin=ALLOWED_ORIGIN):
    headers = {"Authorization": f"Bearer {make_token(team_name)}"}
    if origin is not None:
        headers["Origin"] = origin
    return headers


@pytest.fixture
def engine():
    eng = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    """Client HTTP de test avec la BDD mockée."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def sqlite_client(engine):
    """Client HTTP de test branché sur une vraie base SQLite en mémoire."""
    SessionTest = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = SessionTest()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
