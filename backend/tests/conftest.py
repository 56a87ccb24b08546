import os
import sys
import pathlib

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure backend root (containing the 'lms_telemetry' package) is on sys.path
BACKEND_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Settings are read at import time; point them at throwaway storage first.
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ.pop('LMS_TELEMETRY_ADMIN_API_KEY', None)
os.environ.pop('LMS_TELEMETRY_RUN_MIGRATIONS', None)

from lms_telemetry.main import app  # noqa: E402
from lms_telemetry.db.session import Base, get_db  # noqa: E402
from lms_telemetry.api.interactions import get_domain_lookup  # noqa: E402
from lms_telemetry.models import Course, CourseModule, Lecture, LectureSection, User  # noqa: E402
from lms_telemetry.services.enrichment import SqlDomainLookup  # noqa: E402


@pytest.fixture
def engine():
    eng = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db_session(engine):
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded(db_session):
    """A small course tree plus one learner, as the content service would have it."""
    db_session.add_all([
        User(id=3, fullname='Ada Lovelace', email='ada@example.edu'),
        Course(id=42, title='Intro to Data Science', slug='intro-data-science'),
        Course(id=43, title='Applied Statistics', slug='applied-stats'),
        CourseModule(id=7, course_id=42, title='Foundations', order_index=1),
        Lecture(id=11, module_id=7, title='Vectors and Matrices', order_index=2),
        LectureSection(
            id=5, lecture_id=11, title='Ask the Tutor', type='chatbot', order=3,
            chatbot_title='Linear Algebra Tutor', chatbot_intro='Ask me about vectors.',
            chatbot_system_prompt='You are a patient tutor.',
        ),
        LectureSection(id=6, lecture_id=11, title='Practice Chat', type='chatbot', order=4),
    ])
    db_session.commit()
    return db_session


class CountingLookup:
    """Wraps a real lookup and records how often each entity kind is queried."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = {'user': 0, 'courses': 0, 'modules': 0, 'lectures': 0, 'section_hierarchy': 0}
        self.requested: dict[str, list] = {k: [] for k in self.calls}

    def _record(self, kind, arg):
        self.calls[kind] += 1
        self.requested[kind].append(arg)

    def user(self, user_id):
        self._record('user', user_id)
        return self.inner.user(user_id)

    def courses(self, ids):
        ids = set(ids)
        self._record('courses', ids)
        return self.inner.courses(ids)

    def modules(self, ids):
        ids = set(ids)
        self._record('modules', ids)
        return self.inner.modules(ids)

    def lectures(self, ids):
        ids = set(ids)
        self._record('lectures', ids)
        return self.inner.lectures(ids)

    def section_hierarchy(self, section_id):
        self._record('section_hierarchy', section_id)
        return self.inner.section_hierarchy(section_id)


@pytest.fixture
def counting_lookup(db_session):
    return CountingLookup(SqlDomainLookup(db_session))


@pytest.fixture
def client_with_db(db_session):
    """Test client with the real app bound to the per-test database."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def client_with_lookup(client_with_db, counting_lookup):
    app.dependency_overrides[get_domain_lookup] = lambda: counting_lookup
    return client_with_db
