import os

# Must be set before circulate.configs is first imported
os.environ.setdefault("TESTING", "true")

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from circulate.core.db import Base
from circulate.core import models  # noqa: F401
from circulate.core.api import CirculationAPI
from circulate.core.models import (
    Book,
    Loan,
    LoanRequest,
    LoanStatus,
    RequestStatus,
    Reservation,
    ReservationStatus,
    Role,
    Tag,
    User,
)
from circulate.core.utils import FrozenClock

NOW = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture
def db_session(engine):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def api(db_session, clock, notifier):
    return CirculationAPI(session=db_session, clock=clock, notifier=notifier)


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make_user(name=None, role=Role.STUDENT, active=True):
        counter["n"] += 1
        name = name or f"Patron {counter['n']}"
        user = User(
            name=name,
            email=f"patron{counter['n']}@school.org",
            role=Role(role),
            active=active,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make_user


@pytest.fixture
def make_book(db_session):
    def _make_book(title="Os Maias", author=None, tag=Tag.WHITE, copies=1, available=None):
        book = Book(
            title=title,
            author=author or f"Author of {title}",
            tag=Tag(tag),
            total_copies=copies,
            available_copies=copies if available is None else available,
        )
        db_session.add(book)
        db_session.commit()
        return book
    return _make_book


@pytest.fixture
def make_loan(db_session):
    """Puts a loan on the books directly, bypassing the rules, for setting up history."""
    def _make_loan(user, book, due_date, loan_date=None, renewal_count=0):
        loan = Loan(
            user_id=user.id,
            book_id=book.id,
            loan_date=loan_date or due_date - timedelta(days=5),
            due_date=due_date,
            status=LoanStatus.ACTIVE,
            renewal_count=renewal_count,
        )
        book.available_copies -= 1
        db_session.add(loan)
        db_session.commit()
        return loan
    return _make_loan


@pytest.fixture
def make_reservation(db_session):
    def _make_reservation(user, book, reserved_at, status=ReservationStatus.PENDING, expires_at=None):
        reservation = Reservation(
            user_id=user.id,
            book_id=book.id,
            status=status,
            reservation_date=reserved_at,
            notification_date=reserved_at if status == ReservationStatus.NOTIFIED else None,
            expiration_date=expires_at,
        )
        db_session.add(reservation)
        db_session.commit()
        return reservation
    return _make_reservation


@pytest.fixture
def make_loan_request(db_session):
    def _make_loan_request(user, book, requested_at=NOW):
        request = LoanRequest(
            user_id=user.id,
            book_id=book.id,
            status=RequestStatus.PENDING,
            request_date=requested_at,
        )
        db_session.add(request)
        db_session.commit()
        return request
    return _make_loan_request
