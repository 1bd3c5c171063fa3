"""
    Loan and renewal requests.

    A request is an envelope a patron files for a librarian to review. The
    review never carries rules of its own: approving a loan request opens the
    loan through the same eligibility check as a direct loan (with the request
    itself not counted as a competing claim), and approving a renewal request
    runs the ordinary renewal.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from circulate.configs import MAX_RENEWALS
from circulate.core import catalog, users
from circulate.core.eligibility import loan_limit
from circulate.core.loans import extend_loan, get_loan, open_loan, retry_on_conflict
from circulate.core.models import (
    Book,
    Loan,
    LoanRequest,
    RenewalRequest,
    RequestStatus,
)
from circulate.core.notifier import notify_safely
from circulate.core.exceptions import (
    BookNotFoundError,
    PolicyDenied,
    RequestNotFoundError,
    UserNotFoundError,
)
from circulate.core.utils import normalize_title, require_id

logger = logging.getLogger(__name__)

CANCELLED_NOTE = "Cancelled by user"


def _pending_only(request, what: str):
    if request.status != RequestStatus.PENDING:
        raise PolicyDenied(
            "not_pending",
            f"Only pending {what} requests can be reviewed; this one is {request.status.value}."
        )


def get_loan_request(session: Session, request_id) -> LoanRequest:
    request_id = require_id(request_id, "loan request id")
    request = session.get(LoanRequest, request_id)
    if not request:
        raise RequestNotFoundError(f"Loan request {request_id} not found.")
    return request


def get_renewal_request(session: Session, request_id) -> RenewalRequest:
    request_id = require_id(request_id, "renewal request id")
    request = session.get(RenewalRequest, request_id)
    if not request:
        raise RequestNotFoundError(f"Renewal request {request_id} not found.")
    return request


def list_loan_requests(session: Session, user_id=None, status=None) -> List[LoanRequest]:
    query = session.query(LoanRequest)
    if user_id is not None:
        query = query.filter(LoanRequest.user_id == user_id)
    if status is not None:
        query = query.filter(LoanRequest.status == RequestStatus(status))
    return query.order_by(LoanRequest.request_date, LoanRequest.id).all()


def list_renewal_requests(session: Session, user_id=None, status=None) -> List[RenewalRequest]:
    query = session.query(RenewalRequest)
    if user_id is not None:
        query = query.filter(RenewalRequest.user_id == user_id)
    if status is not None:
        query = query.filter(RenewalRequest.status == RequestStatus(status))
    return query.order_by(RenewalRequest.request_date, RenewalRequest.id).all()


def create_loan_request(session: Session, user_id, book_id, now: datetime) -> LoanRequest:
    user_id = require_id(user_id, "user id")
    book_id = require_id(book_id, "book id")
    with catalog.patron_lock(user_id):
        try:
            return _file_loan_request(session, user_id, book_id, now)
        except Exception:
            session.rollback()
            raise


def _file_loan_request(session: Session, user_id: int, book_id: int, now: datetime) -> LoanRequest:
    user = users.lock_user(session, user_id)
    if not user:
        raise UserNotFoundError(f"User {user_id} not found.")
    book = session.get(Book, book_id)
    if not book:
        raise BookNotFoundError(f"Book {book_id} not found.")
    if not book.is_circulating:
        raise PolicyDenied(
            "library_use_only",
            "This book cannot be requested; it is for library use only."
        )

    active = Loan.active_for(session, user.id)
    pending = LoanRequest.pending(session, user_id=user.id)
    limit = loan_limit(user.role)
    if len(active) + len(pending) >= limit:
        raise PolicyDenied(
            "loan_limit",
            f"Loan limit reached. Your limit is {limit} books, pending requests included."
        )

    title = normalize_title(book.title)
    if any(normalize_title(loan.book.title) == title for loan in active):
        raise PolicyDenied("same_title", "You already have a copy of this book on loan.")
    if any(normalize_title(r.book.title) == title for r in pending):
        raise PolicyDenied(
            "pending_request_exists", "You already have a pending request for this title."
        )

    request = LoanRequest(
        user_id=user.id,
        book_id=book.id,
        status=RequestStatus.PENDING,
        request_date=now,
    )
    session.add(request)
    session.commit()
    logger.info(f"Loan request {request.id}: user {user.id} asks for book {book.id}")
    return request


@retry_on_conflict
def _approve_loan_request(session: Session, request_id: int, now: datetime):
    request = get_loan_request(session, request_id)
    with catalog.patron_lock(request.user_id, request.book_id):
        try:
            session.refresh(request)
            _pending_only(request, "loan")
            user = users.lock_user(session, request.user_id)
            book = session.get(Book, request.book_id)
            session.refresh(book)
            loan = open_loan(session, user, book, now, exclude_request_id=request.id)
            request.status = RequestStatus.APPROVED
            request.review_date = now
            session.commit()
        except Exception:
            session.rollback()
            raise
    return request, loan


def approve_loan_request(session: Session, request_id, now: datetime, notifier=None) -> Loan:
    request, loan = _approve_loan_request(session, request_id, now)
    logger.info(f"Loan request {request.id} approved as loan {loan.id}")
    notify_safely(
        notifier and notifier.send_loan_confirmation, loan.user, loan.book, loan.due_date
    )
    return loan


def reject_loan_request(session: Session, request_id, now: datetime,
                        notes: Optional[str] = None) -> LoanRequest:
    request = get_loan_request(session, request_id)
    _pending_only(request, "loan")
    request.status = RequestStatus.REJECTED
    request.review_date = now
    request.notes = notes
    session.commit()
    logger.info(f"Loan request {request.id} rejected")
    return request


def cancel_loan_request(session: Session, request_id, now: datetime) -> LoanRequest:
    request = get_loan_request(session, request_id)
    if request.status != RequestStatus.PENDING:
        raise PolicyDenied("not_pending", "Only pending requests can be cancelled.")
    request.status = RequestStatus.REJECTED
    request.review_date = now
    request.notes = CANCELLED_NOTE
    session.commit()
    logger.info(f"Loan request {request.id} cancelled by user {request.user_id}")
    return request


def create_renewal_request(session: Session, loan_id, user_id, now: datetime) -> RenewalRequest:
    loan = get_loan(session, loan_id)
    user_id = require_id(user_id, "user id")
    if loan.user_id != user_id:
        raise PolicyDenied("not_owner", "Only the borrower can ask to renew this loan.")
    if not loan.is_active:
        raise PolicyDenied("not_active", "Only active loans can be renewed.")
    already = session.query(RenewalRequest).filter(
        RenewalRequest.loan_id == loan.id,
        RenewalRequest.status == RequestStatus.PENDING,
    ).first()
    if already:
        raise PolicyDenied(
            "pending_request_exists",
            "A renewal request for this loan is already pending."
        )
    if loan.renewal_count >= MAX_RENEWALS:
        raise PolicyDenied("renewal_limit", f"Limit of {MAX_RENEWALS} renewals reached.")

    request = RenewalRequest(
        loan_id=loan.id,
        user_id=user_id,
        status=RequestStatus.PENDING,
        request_date=now,
    )
    session.add(request)
    session.commit()
    logger.info(f"Renewal request {request.id} filed for loan {loan.id}")
    return request


@retry_on_conflict
def _approve_renewal_request(session: Session, request_id: int, now: datetime):
    request = get_renewal_request(session, request_id)
    with catalog.book_lock(request.loan.book_id):
        try:
            session.refresh(request)
            _pending_only(request, "renewal")
            loan = request.loan
            session.refresh(loan)
            new_due_date = extend_loan(session, loan, now)
            request.status = RequestStatus.APPROVED
            request.review_date = now
            session.commit()
        except Exception:
            session.rollback()
            raise
    return request, new_due_date


def approve_renewal_request(session: Session, request_id, now: datetime, notifier=None) -> datetime:
    request, new_due_date = _approve_renewal_request(session, request_id, now)
    loan = request.loan
    logger.info(f"Renewal request {request.id} approved; loan {loan.id} due {new_due_date}")
    notify_safely(
        notifier and notifier.send_renewal_decision, loan.user, loan.book, True, new_due_date
    )
    return new_due_date


def reject_renewal_request(session: Session, request_id, now: datetime,
                           notes: Optional[str] = None, notifier=None) -> RenewalRequest:
    request = get_renewal_request(session, request_id)
    _pending_only(request, "renewal")
    request.status = RequestStatus.REJECTED
    request.review_date = now
    request.notes = notes
    session.commit()
    logger.info(f"Renewal request {request.id} rejected")
    loan = request.loan
    notify_safely(notifier and notifier.send_renewal_decision, loan.user, loan.book, False)
    return request


def cancel_renewal_request(session: Session, request_id, now: datetime) -> RenewalRequest:
    request = get_renewal_request(session, request_id)
    if request.status != RequestStatus.PENDING:
        raise PolicyDenied("not_pending", "Only pending requests can be cancelled.")
    request.status = RequestStatus.REJECTED
    request.review_date = now
    request.notes = CANCELLED_NOTE
    session.commit()
    logger.info(f"Renewal request {request.id} cancelled by user {request.user_id}")
    return request
