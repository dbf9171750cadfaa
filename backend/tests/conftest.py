"""
Pytest configuration and fixtures for College Orbit backend tests.

Provides:
- Test database setup/teardown (achievement catalogue seeded once)
- Per-test session rolled back after each test
- FastAPI test client with the database dependency overridden
- User, college and auth header fixtures
"""

import pytest
import os
from typing import Generator, Dict
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker, Session

# Set test environment before importing app
os.environ["DATABASE_URL"] = "sqlite:///./test_college_orbit.db"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-that-is-definitely-32-chars-long"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["ENABLE_ACHIEVEMENT_SEEDING"] = "false"
os.environ["REDIS_URL"] = ""
os.environ["SENTRY_DSN"] = ""

from orbit.main import app
from orbit.database import Base, build_engine, get_db
from orbit.models.models import College, User
from orbit.services.auth import create_access_token
from orbit.services.gamification import get_gamification_service


# Test database setup
TEST_DATABASE_URL = "sqlite:///./test_college_orbit.db"
test_engine = build_engine(TEST_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create test database tables and the achievement catalogue once per session"""
    Base.metadata.create_all(bind=test_engine)
    session = TestingSessionLocal()
    try:
        get_gamification_service().seed_achievements(session)
    finally:
        session.close()
    yield
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()
    if os.path.exists("./test_college_orbit.db"):
        os.remove("./test_college_orbit.db")


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Provide a database session for each test, with rollback after.

    Commits inside the code under test release savepoints, so nothing
    leaks out of the outer transaction.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Provide FastAPI test client with database override"""
    def override_get_db():
        try:
            yield db
        finally:
            pass  # Don't close - let the fixture handle it

    app.dependency_overrides[get_db] = override_get_db
    app.state.cache.clear()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# =========================================================================
# User Fixtures
# =========================================================================

@pytest.fixture
def test_college(db: Session) -> College:
    college = College(id="college-1", full_name="State University", acronym="SU", is_active=True)
    db.add(college)
    db.commit()
    db.refresh(college)
    return college


@pytest.fixture
def test_user(db: Session, test_college: College) -> User:
    """Create a test user enrolled at test_college"""
    user = User(
        id="test-user-123",
        email="test@collegeorbit.app",
        name="Test User",
        college_id=test_college.id,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def other_user(db: Session) -> User:
    """A second user with no college"""
    user = User(
        id="other-user-456",
        email="other@collegeorbit.app",
        name="Other User",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def auth_headers(test_user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(test_user.id)}"}


@pytest.fixture
def other_auth_headers(other_user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(other_user.id)}"}


@pytest.fixture
def cron_headers() -> Dict[str, str]:
    return {"Authorization": "Bearer test-cron-secret"}
