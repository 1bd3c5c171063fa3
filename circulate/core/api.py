from datetime import datetime
from typing import List, Optional

from circulate.core import approvals, catalog, db, fines, loans, reports, sweep, users, waitlist
from circulate.core.eligibility import Eligibility, evaluate_ids
from circulate.core.fines import FineView
from circulate.core.loans import ReturnReceipt
from circulate.core.models import (
    Book,
    Loan,
    LoanStatus,
    Notification,
    Reservation,
    ReservationStatus,
    Tag,
    User,
)
from circulate.core.notifier import Notifier, notify_safely
from circulate.core.exceptions import BookNotFoundError, InvalidRequestError
from circulate.core.utils import Clock, require_id


class CirculationAPI:
    """Entry point for every circulation operation.

    Holds the unit-of-work session, the clock every decision reads "now"
    from, and the notifier told about committed changes. Routes, scripts and
    the scheduler all go through here.
    """

    DEFAULT_LIMIT = 50

    def __init__(self, session=None, clock: Optional[Clock] = None, notifier: Optional[Notifier] = None):
        self.session = session if session is not None else db.session()
        self.clock = clock or Clock()
        self.notifier = notifier if notifier is not None else Notifier(self.session)

    def now(self) -> datetime:
        return self.clock.now()

    # Users

    def add_user(self, name: str, email: str, role="student", phone: Optional[str] = None) -> User:
        return users.add_user(self.session, name, email, role=role, phone=phone)

    def get_user(self, user_id) -> User:
        return users.get_user(self.session, user_id)

    def reactivate_user(self, user_id) -> User:
        return users.reactivate_user(self.session, user_id)

    def update_user(self, user_id, name=None, email=None, phone=None, role=None) -> User:
        return users.update_user(self.session, user_id, name=name, email=email, phone=phone, role=role)

    def notifications(self, user_id) -> List[Notification]:
        user = self.get_user(user_id)
        return self.session.query(Notification).filter(
            Notification.user_id == user.id
        ).order_by(Notification.id.desc()).all()

    # Catalog

    def add_book(self, title: str, author: str, tag=Tag.WHITE, total_copies: int = 1,
                 isbn: Optional[str] = None) -> Book:
        try:
            tag = Tag(tag)
        except ValueError:
            raise InvalidRequestError(f"Unknown tag '{tag}'.")
        return catalog.add_book(self.session, title, author, tag=tag,
                                total_copies=total_copies, isbn=isbn)

    def get_book(self, book_id) -> Book:
        book_id = require_id(book_id, "book id")
        book = catalog.get_book(self.session, book_id)
        if not book:
            raise BookNotFoundError(f"Book {book_id} not found.")
        return book

    def books(self, offset=None, limit=None) -> List[Book]:
        return Book.get_many(self.session, offset=offset, limit=limit or self.DEFAULT_LIMIT)

    def set_available_copies(self, book_id, copies: int) -> Book:
        book_id = require_id(book_id, "book id")
        with catalog.book_lock(book_id):
            return catalog.set_available_copies(self.session, book_id, copies)

    def update_book(self, book_id, title=None, author=None, tag=None, isbn=None,
                    total_copies=None) -> Book:
        book_id = require_id(book_id, "book id")
        with catalog.book_lock(book_id):
            return catalog.update_book(self.session, book_id, title=title, author=author,
                                       tag=tag, isbn=isbn, total_copies=total_copies)

    def delete_book(self, book_id):
        book_id = require_id(book_id, "book id")
        with catalog.book_lock(book_id):
            catalog.delete_book(self.session, book_id)

    # Loans

    def evaluate_eligibility(self, user_id, book_id) -> Eligibility:
        return evaluate_ids(
            self.session,
            require_id(user_id, "user id"),
            require_id(book_id, "book id"),
            self.now(),
        )

    def create_loan(self, user_id, book_id) -> Loan:
        return loans.create_loan(self.session, user_id, book_id, self.now(), notifier=self.notifier)

    def return_loan(self, loan_id) -> ReturnReceipt:
        return loans.return_loan(self.session, loan_id, self.now(), notifier=self.notifier)

    def renew_loan(self, loan_id) -> datetime:
        return loans.renew_loan(self.session, loan_id, self.now())

    def get_loan(self, loan_id) -> Loan:
        return loans.get_loan(self.session, loan_id)

    def loans(self, user_id=None, status=None, offset=None, limit=None) -> List[Loan]:
        query = self.session.query(Loan)
        if user_id is not None:
            query = query.filter(Loan.user_id == require_id(user_id, "user id"))
        if status is not None:
            query = query.filter(Loan.status == LoanStatus(status))
        return query.order_by(Loan.id).offset(offset).limit(limit or self.DEFAULT_LIMIT).all()

    # Reservations

    def create_reservation(self, user_id, book_id) -> Reservation:
        user_id = require_id(user_id, "user id")
        book_id = require_id(book_id, "book id")
        with catalog.patron_lock(user_id, book_id):
            return waitlist.create_reservation(self.session, user_id, book_id, self.now())

    def cancel_reservation(self, user_id, book_id) -> Reservation:
        user_id = require_id(user_id, "user id")
        book_id = require_id(book_id, "book id")
        with catalog.book_lock(book_id):
            cancelled, passed_on = waitlist.cancel_reservation(
                self.session, user_id, book_id, self.now()
            )
        if passed_on:
            notify_safely(
                self.notifier.send_reservation_ready,
                passed_on.user, passed_on.book, passed_on.expiration_date
            )
        return cancelled

    def waitlist(self, book_id) -> List[Reservation]:
        return waitlist.ordered_waitlist(self.session, self.get_book(book_id).id)

    def reservations(self, user_id) -> List[Reservation]:
        return Reservation.waiting_for_user(self.session, self.get_user(user_id).id)

    def all_reservations(self, user_id=None, book_id=None, status=None) -> List[Reservation]:
        """Every reservation, whatever its state, optionally narrowed down."""
        query = self.session.query(Reservation)
        if user_id is not None:
            query = query.filter(Reservation.user_id == require_id(user_id, "user id"))
        if book_id is not None:
            query = query.filter(Reservation.book_id == require_id(book_id, "book id"))
        if status is not None:
            query = query.filter(Reservation.status == ReservationStatus(status))
        return query.order_by(Reservation.id).all()

    # Fines

    def fines(self, user_id=None) -> List[FineView]:
        if user_id is not None:
            user_id = require_id(user_id, "user id")
        return fines.fine_views(self.session, self.now(), user_id=user_id)

    def loan_fines(self, loan_id) -> List[FineView]:
        return fines.loan_fine_views(self.session, self.get_loan(loan_id), self.now())

    def outstanding_fines(self, user_id) -> int:
        return fines.outstanding_total(self.session, self.get_user(user_id).id, self.now())

    def pay_fine(self, fine_id):
        return fines.pay_fine(self.session, fine_id, self.now())

    # Requests

    def get_loan_request(self, request_id):
        return approvals.get_loan_request(self.session, request_id)

    def get_renewal_request(self, request_id):
        return approvals.get_renewal_request(self.session, request_id)

    def loan_requests(self, user_id=None, status=None):
        return approvals.list_loan_requests(self.session, user_id=user_id, status=status)

    def create_loan_request(self, user_id, book_id):
        return approvals.create_loan_request(self.session, user_id, book_id, self.now())

    def approve_loan_request(self, request_id) -> Loan:
        return approvals.approve_loan_request(
            self.session, request_id, self.now(), notifier=self.notifier
        )

    def reject_loan_request(self, request_id, notes: Optional[str] = None):
        return approvals.reject_loan_request(self.session, request_id, self.now(), notes=notes)

    def cancel_loan_request(self, request_id):
        return approvals.cancel_loan_request(self.session, request_id, self.now())

    def renewal_requests(self, user_id=None, status=None):
        return approvals.list_renewal_requests(self.session, user_id=user_id, status=status)

    def create_renewal_request(self, loan_id, user_id):
        return approvals.create_renewal_request(self.session, loan_id, user_id, self.now())

    def approve_renewal_request(self, request_id) -> datetime:
        return approvals.approve_renewal_request(
            self.session, request_id, self.now(), notifier=self.notifier
        )

    def reject_renewal_request(self, request_id, notes: Optional[str] = None):
        return approvals.reject_renewal_request(
            self.session, request_id, self.now(), notes=notes, notifier=self.notifier
        )

    def cancel_renewal_request(self, request_id):
        return approvals.cancel_renewal_request(self.session, request_id, self.now())

    # Sweep

    def run_overdue_sweep(self) -> Optional[sweep.SweepReport]:
        return sweep.run_overdue_sweep(self.session, self.now(), notifier=self.notifier)

    # Reports

    def dashboard_stats(self) -> reports.DashboardStats:
        return reports.dashboard_stats(self.session, self.now())

    def popular_books(self, limit=None) -> List[reports.BookLoanCount]:
        return reports.popular_books(self.session, limit=limit or reports.TOP_LIMIT)

    def most_active_users(self, limit=None) -> List[reports.UserLoanCount]:
        return reports.most_active_users(self.session, limit=limit or reports.TOP_LIMIT)
