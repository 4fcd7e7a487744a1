import os
import tempfile

import pytest
from fastapi.testclient import TestClient

# Configuration is read at import time, so the test environment has to be in
# place before any test module imports the identity package.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="identity-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DB_DIR}/test_identity.db"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_TO_FILE"] = "false"
os.environ["ENVIRONMENT"] = "development"
os.environ["FRONTEND_URL"] = "https://portal.example.com"
os.environ["INVITATION_TOKEN_EXPIRY_HOURS"] = "48"
os.environ["PIN_MAX_ATTEMPTS"] = "5"
os.environ["SENDGRID_API_KEY"] = ""
os.environ["SMTP_USER"] = ""

PASSWORD = "Password123!"


class RecordingDispatcher:
    """Stands in for the notification dispatcher and keeps every request."""

    def __init__(self):
        self.requests = []

    def dispatch(self, request):
        self.requests.append(request)
        return None

    def shutdown(self, wait=True):
        pass

    @property
    def messages(self):
        return [r.message for r in self.requests]


@pytest.fixture(scope="session")
def app():
    import main as main_module
    from identity.db.database import init_db

    app_instance = main_module.app
    app_instance.router.on_startup.clear()
    app_instance.router.on_shutdown.clear()

    init_db()
    return app_instance


@pytest.fixture(autouse=True)
def _clean_tables(app):
    yield
    from identity.db.database import Base, engine

    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def db_session(app):
    from identity.db.database import SessionLocal
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def uow(db_session):
    from identity.db.unit_of_work import UnitOfWork
    return UnitOfWork(db_session)


@pytest.fixture()
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture()
def client(app, dispatcher):
    from identity.api.deps import get_dispatcher

    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ── Factories ────────────────────────────────────────────────

@pytest.fixture()
def make_account(db_session):
    from identity.models.account import Account

    counter = {"n": 0}

    def _make(email=None, pin=None, **kwargs):
        counter["n"] += 1
        account = Account(email=email or f"staff{counter['n']}@school.example", active=True, **kwargs)
        if pin is not None:
            account.set_pin(pin)
        db_session.add(account)
        db_session.commit()
        return account

    return _make


@pytest.fixture()
def make_person(db_session):
    from identity.models.person import Person

    def _make(first_name="Anna", last_name="Schmidt", account=None):
        person = Person(first_name=first_name, last_name=last_name, account_id=account.id if account else None)
        db_session.add(person)
        db_session.commit()
        return person

    return _make


@pytest.fixture()
def make_staff(db_session, make_account, make_person):
    from identity.models.staff import Staff

    def _make(first_name="Sam", last_name="Becker", pin=None, with_account=True, position="Teacher"):
        account = make_account(pin=pin) if with_account else None
        person = make_person(first_name, last_name, account=account)
        staff = Staff(person_id=person.id, position=position)
        db_session.add(staff)
        db_session.commit()
        return staff

    return _make


@pytest.fixture()
def make_student(db_session, make_person):
    from identity.models.student import Student

    def _make(first_name="Mia", last_name="Weber", school_class="3b"):
        person = make_person(first_name, last_name)
        student = Student(person_id=person.id, school_class=school_class)
        db_session.add(student)
        db_session.commit()
        return student

    return _make


@pytest.fixture()
def make_guardian(db_session):
    from identity.models.guardian import GuardianProfile

    def _make(first_name="Greta", last_name="Hoffmann", email="g@example.com", has_account=False):
        profile = GuardianProfile(
            first_name=first_name,
            last_name=last_name,
            email=email,
            has_account=has_account,
            preferred_contact_method="phone",
            language_preference="de",
        )
        db_session.add(profile)
        db_session.commit()
        return profile

    return _make


@pytest.fixture()
def admin_headers(make_account):
    from identity.core.security import create_access_token

    admin = make_account(email="admin@school.example")
    token = create_access_token(data={"sub": str(admin.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_account_id(admin_headers, db_session):
    from identity.models.account import Account
    return db_session.query(Account).filter(Account.email == "admin@school.example").one().id
