"""
    Fine ledger.

    A loan that is still out accrues its fine virtually: the amount is
    recomputed from the live reference time every time it is asked for and
    only becomes a stored Fine row when the book comes back (pending) or when
    the patron pays the running amount (paid). Paid rows are credited against
    the recomputed total, so a loan can be paid off in installments while it
    keeps getting later.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, NamedTuple, Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from circulate.configs import FINE_PER_DAY
from circulate.core.models import Fine, FineStatus, Loan, LoanStatus
from circulate.core.exceptions import (
    FineNotFoundError,
    InvalidRequestError,
    LoanNotFoundError,
    PolicyDenied,
)
from circulate.core.utils import as_utc, whole_days

logger = logging.getLogger(__name__)

VIRTUAL_PREFIX = "virtual-"


class Overdue(NamedTuple):
    days: int
    amount: int


def compute_overdue(due_date: datetime, reference: datetime) -> Overdue:
    days = whole_days(as_utc(reference) - as_utc(due_date))
    if days <= 0:
        return Overdue(0, 0)
    return Overdue(days, days * FINE_PER_DAY)


def paid_amount(session: Session, loan_id) -> int:
    total = session.query(func.coalesce(func.sum(Fine.amount), 0)).filter(
        Fine.loan_id == loan_id,
        Fine.status == FineStatus.PAID,
    ).scalar()
    return int(total or 0)


def unpaid_for_loan(session: Session, loan: Loan, reference: datetime) -> Overdue:
    """Raw overdue charge for `loan` minus whatever has already been paid on it."""
    overdue = compute_overdue(loan.due_date, reference)
    if overdue.amount <= 0:
        return overdue
    return Overdue(overdue.days, max(0, overdue.amount - paid_amount(session, loan.id)))


@dataclass(frozen=True)
class PersistedFine:
    fine: Fine

    is_virtual = False

    @property
    def id(self) -> str:
        return str(self.fine.id)

    @property
    def loan_id(self):
        return self.fine.loan_id

    @property
    def user_id(self):
        return self.fine.user_id

    @property
    def amount(self) -> int:
        return self.fine.amount

    @property
    def days_overdue(self) -> int:
        return self.fine.days_overdue

    @property
    def status(self) -> FineStatus:
        return self.fine.status

    @property
    def payment_date(self):
        return self.fine.payment_date


@dataclass(frozen=True)
class VirtualFine:
    loan_id: int
    user_id: int
    amount: int
    days_overdue: int

    is_virtual = True
    status = FineStatus.PENDING
    payment_date = None

    @property
    def id(self) -> str:
        return f"{VIRTUAL_PREFIX}{self.loan_id}"


FineView = Union[PersistedFine, VirtualFine]


def overdue_active_loans(session: Session, reference: datetime, user_id=None) -> List[Loan]:
    query = session.query(Loan).filter(Loan.status == LoanStatus.ACTIVE)
    if user_id is not None:
        query = query.filter(Loan.user_id == user_id)
    return [loan for loan in query.order_by(Loan.id).all() if loan.is_overdue(reference)]


def virtual_fines(session: Session, reference: datetime, user_id=None) -> List[VirtualFine]:
    views = []
    for loan in overdue_active_loans(session, reference, user_id=user_id):
        days, amount = unpaid_for_loan(session, loan, reference)
        if amount > 0:
            views.append(VirtualFine(loan.id, loan.user_id, amount, days))
    return views


def fine_views(session: Session, reference: datetime, user_id=None) -> List[FineView]:
    """Stored fines followed by the running charges of loans still out."""
    persisted = [PersistedFine(f) for f in fines_for(session, user_id=user_id) if f.amount > 0]
    return persisted + virtual_fines(session, reference, user_id=user_id)


def outstanding_total(session: Session, user_id, reference: datetime) -> int:
    pending = session.query(func.coalesce(func.sum(Fine.amount), 0)).filter(
        Fine.user_id == user_id,
        Fine.status == FineStatus.PENDING,
    ).scalar()
    running = sum(v.amount for v in virtual_fines(session, reference, user_id=user_id))
    return int(pending or 0) + running


def materialize_return_fine(session: Session, loan: Loan, returned_at: datetime) -> Overdue:
    """Stores the unpaid balance of a loan being returned as a pending Fine."""
    overdue = unpaid_for_loan(session, loan, returned_at)
    if overdue.amount > 0:
        session.add(Fine(
            loan_id=loan.id,
            user_id=loan.user_id,
            amount=overdue.amount,
            days_overdue=overdue.days,
            status=FineStatus.PENDING,
            created_at=returned_at,
        ))
        logger.info(f"Loan {loan.id} returned {overdue.days} days late: fine {overdue.amount}")
    return overdue


def pay_virtual_fine(session: Session, loan_id, now: datetime) -> Fine:
    loan = session.get(Loan, loan_id)
    if not loan:
        raise LoanNotFoundError(f"Loan {loan_id} behind the running fine was not found.")
    overdue = unpaid_for_loan(session, loan, now) if loan.is_active else Overdue(0, 0)
    if overdue.amount <= 0:
        raise PolicyDenied("nothing_to_pay", "There is no outstanding fine for this loan.")
    fine = Fine(
        loan_id=loan.id,
        user_id=loan.user_id,
        amount=overdue.amount,
        days_overdue=overdue.days,
        status=FineStatus.PAID,
        payment_date=now,
        created_at=now,
    )
    session.add(fine)
    session.commit()
    logger.info(f"Running fine of {overdue.amount} paid on loan {loan.id}")
    return fine


def pay_fine(session: Session, fine_id, now: datetime) -> Fine:
    """Pays a stored fine by id, or the running fine of a loan by `virtual-<loan id>`."""
    if isinstance(fine_id, str) and fine_id.startswith(VIRTUAL_PREFIX):
        loan_id = fine_id[len(VIRTUAL_PREFIX):]
        # ASCII only: str.isdigit also accepts superscripts int() rejects
        if not (loan_id.isascii() and loan_id.isdigit()):
            raise InvalidRequestError(f"Malformed fine id '{fine_id}'.")
        return pay_virtual_fine(session, int(loan_id), now)

    try:
        fine_id = int(fine_id)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"Malformed fine id '{fine_id}'.")

    fine = session.get(Fine, fine_id)
    if not fine:
        raise FineNotFoundError(f"Fine {fine_id} not found.")
    if fine.status == FineStatus.PAID:
        raise PolicyDenied("already_paid", "This fine has already been paid.")
    fine.status = FineStatus.PAID
    fine.payment_date = now
    session.commit()
    logger.info(f"Fine {fine.id} of {fine.amount} paid by user {fine.user_id}")
    return fine


def fines_for(session: Session, loan_id: Optional[int] = None, user_id: Optional[int] = None) -> List[Fine]:
    query = session.query(Fine)
    if loan_id is not None:
        query = query.filter(Fine.loan_id == loan_id)
    if user_id is not None:
        query = query.filter(Fine.user_id == user_id)
    return query.order_by(Fine.id).all()


def loan_fine_views(session: Session, loan: Loan, reference: datetime) -> List[FineView]:
    """Stored fines of one loan, plus its running charge while it is still out."""
    views = [PersistedFine(f) for f in fines_for(session, loan_id=loan.id) if f.amount > 0]
    if loan.is_overdue(reference):
        days, amount = unpaid_for_loan(session, loan, reference)
        if amount > 0:
            views.append(VirtualFine(loan.id, loan.user_id, amount, days))
    return views
