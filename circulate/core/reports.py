"""
    Circulation reports.

    Read-only summaries for the librarian's dashboard. Fine totals include
    the running charges of loans still out, so the figures agree with what
    eligibility and the sweep see.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, NamedTuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from circulate.configs import BLOCK_THRESHOLD
from circulate.core.fines import outstanding_total, overdue_active_loans, virtual_fines
from circulate.core.models import Book, Fine, FineStatus, Loan, LoanStatus, User

TOP_LIMIT = 10


@dataclass
class DashboardStats:
    total_books: int
    available_books: int
    total_copies: int
    total_available_copies: int
    total_users: int
    active_loans: int
    overdue_loans: int
    pending_fines: int
    total_fines_amount: int
    total_pending_amount: int
    paid_fines_amount: int
    blocked_users: int


class BookLoanCount(NamedTuple):
    book: Book
    loan_count: int


class UserLoanCount(NamedTuple):
    user: User
    loan_count: int


def _fine_sum(session: Session, status: FineStatus) -> int:
    total = session.query(func.coalesce(func.sum(Fine.amount), 0)).filter(
        Fine.status == status
    ).scalar()
    return int(total or 0)


def dashboard_stats(session: Session, now: datetime) -> DashboardStats:
    books = session.query(Book).all()
    users = session.query(User).all()
    stored_pending = _fine_sum(session, FineStatus.PENDING)
    running = sum(v.amount for v in virtual_fines(session, now))
    paid = _fine_sum(session, FineStatus.PAID)
    return DashboardStats(
        total_books=len(books),
        available_books=sum(1 for b in books if b.available_copies > 0),
        total_copies=sum(b.total_copies for b in books),
        total_available_copies=sum(b.available_copies for b in books),
        total_users=len(users),
        active_loans=session.query(Loan).filter(Loan.status == LoanStatus.ACTIVE).count(),
        overdue_loans=len(overdue_active_loans(session, now)),
        pending_fines=session.query(Fine).filter(Fine.status == FineStatus.PENDING).count(),
        total_fines_amount=stored_pending + running + paid,
        total_pending_amount=stored_pending + running,
        paid_fines_amount=paid,
        blocked_users=sum(
            1 for u in users if outstanding_total(session, u.id, now) >= BLOCK_THRESHOLD
        ),
    )


def popular_books(session: Session, limit: int = TOP_LIMIT) -> List[BookLoanCount]:
    """Books ranked by how often they were lent, returned loans included."""
    count = func.count(Loan.id).label('loan_count')
    rows = (
        session.query(Book, count)
        .join(Loan, Loan.book_id == Book.id)
        .group_by(Book.id)
        .order_by(count.desc(), Book.id)
        .limit(limit)
        .all()
    )
    return [BookLoanCount(book, n) for book, n in rows]


def most_active_users(session: Session, limit: int = TOP_LIMIT) -> List[UserLoanCount]:
    count = func.count(Loan.id).label('loan_count')
    rows = (
        session.query(User, count)
        .join(Loan, Loan.user_id == User.id)
        .group_by(User.id)
        .order_by(count.desc(), User.id)
        .limit(limit)
        .all()
    )
    return [UserLoanCount(user, n) for user, n in rows]
