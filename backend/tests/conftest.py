import os, tempfile
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from main import app
from db import Base, get_db
from security import verify_admin
from mailer import DispatchResult, get_mailer

class FakeMailer:
    """Records sent mail; addresses in ``fail_for`` get an unsuccessful result."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()

    def send(self, to_address, subject, body, html=None):
        if to_address in self.fail_for:
            return DispatchResult(False, "smtp down")
        self.sent.append({"to": to_address, "subject": subject, "body": body})
        return DispatchResult(True)

@pytest.fixture(scope="session")
def tmp_db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    return path

@pytest.fixture(scope="session")
def test_engine(tmp_db_path):
    url = f"sqlite:///{tmp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False})

    # SQLite force foreign key constraints
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    return engine

@pytest.fixture(scope="session")
def TestingSessionLocal(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

@pytest.fixture
def db(TestingSessionLocal):
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def mailer():
    return FakeMailer()

@pytest.fixture(autouse=True)
def override_di(TestingSessionLocal, mailer):
    def _get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()
    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[verify_admin] = lambda: None
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield
    app.dependency_overrides.clear()

@pytest.fixture
def client():
    return TestClient(app)

@pytest.fixture
def make_form(client):
    def _make(title="Course X", type="private", questions=None):
        questions = questions or [
            {"text": "How would you rate the course difficulty?", "order_index": 0, "type": "mcq",
             "options": ["Too Easy", "Just Right", "Too Difficult"]},
            {"text": "What did you like most?", "order_index": 1, "type": "text"},
        ]
        r = client.post("/admin/forms", json={
            "title": title, "description": "Anonymous course feedback",
            "type": type, "questions": questions,
        })
        assert r.status_code == 201, r.text
        return r.json()
    return _make
