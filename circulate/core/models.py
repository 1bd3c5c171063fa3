#!/usr/bin/env python

"""
    Circulation Models for Circulate,
    including users, books, loans, fines, reservations and the
    approval envelopes placed in front of loans and renewals.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from sqlalchemy import (
    Column, String, Boolean, Integer, DateTime, Text, ForeignKey,
    UniqueConstraint, CheckConstraint, Enum as SQLAlchemyEnum
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from sqlalchemy.ext.hybrid import hybrid_property
from circulate.core.db import Base
from circulate.core.utils import as_utc
import enum


class Role(str, enum.Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    STAFF = "staff"
    ADMIN = "admin"

class Tag(str, enum.Enum):
    RED = "red"        # library use only
    YELLOW = "yellow"  # one day loan
    WHITE = "white"    # role dependent loan length

class LoanStatus(str, enum.Enum):
    ACTIVE = "active"
    RETURNED = "returned"

class FineStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"

class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    NOTIFIED = "notified"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

WAITING_STATUSES = (ReservationStatus.PENDING, ReservationStatus.NOTIFIED)


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(30))
    role = Column(SQLAlchemyEnum(Role), default=Role.STUDENT, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    loans = relationship('Loan', back_populates='user')

    @hybrid_property
    def is_teacher(self):
        return self.role == Role.TEACHER


class Book(Base):
    __tablename__ = 'books'

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=False)
    isbn = Column(String(20))
    tag = Column(SQLAlchemyEnum(Tag), default=Tag.WHITE, nullable=False)
    total_copies = Column(Integer, default=1, nullable=False)
    available_copies = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('title', 'author', name='unique_title_author'),
        CheckConstraint('available_copies >= 0', name='available_not_negative'),
        CheckConstraint('available_copies <= total_copies', name='available_within_total'),
    )

    @hybrid_property
    def is_circulating(self):
        """Red tagged books never leave the library."""
        return self.tag != Tag.RED


class Loan(Base):
    __tablename__ = 'loans'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    book_id = Column(Integer, ForeignKey('books.id', ondelete='CASCADE'), nullable=False)
    loan_date = Column(DateTime(timezone=True), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(SQLAlchemyEnum(LoanStatus), default=LoanStatus.ACTIVE, nullable=False)
    return_date = Column(DateTime(timezone=True))
    renewal_count = Column(Integer, default=0, nullable=False)

    user = relationship('User', back_populates='loans')
    book = relationship('Book')

    __table_args__ = (
        CheckConstraint('renewal_count >= 0 AND renewal_count <= 2', name='renewal_count_range'),
    )

    @hybrid_property
    def is_active(self):
        return self.status == LoanStatus.ACTIVE

    def is_overdue(self, now):
        return self.status == LoanStatus.ACTIVE and as_utc(self.due_date) < now

    @classmethod
    def active_for(cls, db, user_id):
        return db.query(cls).filter(
            cls.user_id == user_id,
            cls.status == LoanStatus.ACTIVE
        ).order_by(cls.id).all()

    @classmethod
    def exists(cls, db, user_id, book_id):
        return db.query(cls).filter(
            cls.user_id == user_id,
            cls.book_id == book_id,
            cls.status == LoanStatus.ACTIVE
        ).first()


class Fine(Base):
    __tablename__ = 'fines'

    id = Column(Integer, primary_key=True, autoincrement=True)
    loan_id = Column(Integer, ForeignKey('loans.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    amount = Column(Integer, nullable=False)
    days_overdue = Column(Integer, nullable=False)
    status = Column(SQLAlchemyEnum(FineStatus), default=FineStatus.PENDING, nullable=False)
    payment_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=func.now())

    loan = relationship('Loan')
    user = relationship('User')


class Reservation(Base):
    __tablename__ = 'reservations'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    book_id = Column(Integer, ForeignKey('books.id', ondelete='CASCADE'), nullable=False)
    status = Column(SQLAlchemyEnum(ReservationStatus), default=ReservationStatus.PENDING, nullable=False)
    reservation_date = Column(DateTime(timezone=True), nullable=False)
    notification_date = Column(DateTime(timezone=True))
    expiration_date = Column(DateTime(timezone=True))

    user = relationship('User')
    book = relationship('Book')

    @classmethod
    def waiting_for_book(cls, db, book_id):
        return db.query(cls).filter(
            cls.book_id == book_id,
            cls.status.in_(WAITING_STATUSES)
        ).all()

    @classmethod
    def waiting_for_user(cls, db, user_id):
        return db.query(cls).filter(
            cls.user_id == user_id,
            cls.status.in_(WAITING_STATUSES)
        ).order_by(cls.id).all()


class LoanRequest(Base):
    __tablename__ = 'loan_requests'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    book_id = Column(Integer, ForeignKey('books.id', ondelete='CASCADE'), nullable=False)
    status = Column(SQLAlchemyEnum(RequestStatus), default=RequestStatus.PENDING, nullable=False)
    request_date = Column(DateTime(timezone=True), nullable=False)
    review_date = Column(DateTime(timezone=True))
    notes = Column(Text)

    user = relationship('User')
    book = relationship('Book')

    @classmethod
    def pending(cls, db, book_id=None, user_id=None):
        query = db.query(cls).filter(cls.status == RequestStatus.PENDING)
        if book_id is not None:
            query = query.filter(cls.book_id == book_id)
        if user_id is not None:
            query = query.filter(cls.user_id == user_id)
        return query.order_by(cls.request_date, cls.id).all()


class RenewalRequest(Base):
    __tablename__ = 'renewal_requests'

    id = Column(Integer, primary_key=True, autoincrement=True)
    loan_id = Column(Integer, ForeignKey('loans.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    status = Column(SQLAlchemyEnum(RequestStatus), default=RequestStatus.PENDING, nullable=False)
    request_date = Column(DateTime(timezone=True), nullable=False)
    review_date = Column(DateTime(timezone=True))
    notes = Column(Text)

    loan = relationship('Loan')
    user = relationship('User')


class Notification(Base):
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    type = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)
    date = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)


class JobLease(Base):
    """A named lease on a background job, shared by every process on the database."""
    __tablename__ = 'job_leases'

    name = Column(String(50), primary_key=True)
    holder = Column(String(64))
    acquired_at = Column(DateTime(timezone=True))
