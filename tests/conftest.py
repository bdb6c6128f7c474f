"""Pytest fixtures for testing"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import pytest
from datetime import datetime
from typing import Callable, Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from canteen_ledger.api.dependencies import get_clock
from canteen_ledger.api.main import create_app
from canteen_ledger.infrastructure.database.models import Base, StudentRecord
from canteen_ledger.infrastructure.database.session import get_db
from canteen_ledger.services.account_service import AccountService
from canteen_ledger.utils.clock import FixedClock


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Monday morning, so due dates never depend on weekend handling
START = datetime(2025, 3, 3, 9, 0)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Factory for extra sessions against the same test database"""
    return TestingSessionLocal


@pytest.fixture
def client(db: Session, clock: FixedClock) -> TestClient:
    """Create FastAPI test client with test database and frozen clock"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    return TestClient(app)


@pytest.fixture
def student_factory(db: Session, clock: FixedClock) -> Callable[..., StudentRecord]:
    """Register a student, then force loyalty/wallet/status to the values a test needs"""

    def make(
        student_id: str = "2201-000245",
        loyalty: int | None = None,
        token_cents: int = 0,
        is_active: bool = True,
    ) -> StudentRecord:
        student = AccountService(db, clock).register_student(student_id, first_name="Juan", last_name="Dela Cruz")
        if loyalty is not None:
            student.loyalty = loyalty
        student.token_cents = token_cents
        student.is_active = is_active
        db.commit()
        return student

    return make
