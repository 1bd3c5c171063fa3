"""
    Loan eligibility.

    One ordered list of checks decides whether a user may take a book home.
    The first failing check wins, and every refusal carries a stable reason
    code alongside the sentence shown to the librarian, so the same request
    always produces the same answer. Direct loans and approved loan requests
    both come through here.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from circulate.configs import BLOCK_THRESHOLD, LOAN_RULES
from circulate.core.models import Book, Loan, LoanRequest, Role, User
from circulate.core.exceptions import PolicyDenied
from circulate.core.fines import outstanding_total
from circulate.core.utils import normalize_title
from circulate.core.waitlist import copy_claims

logger = logging.getLogger(__name__)


class Reason(str, enum.Enum):
    USER_INACTIVE = "user_inactive"
    BOOK_NOT_FOUND = "book_not_found"
    NO_COPIES_AVAILABLE = "no_copies_available"
    LIBRARY_USE_ONLY = "library_use_only"
    ALREADY_BORROWED = "already_borrowed"
    PENDING_REQUEST_EXISTS = "pending_request_exists"
    RESERVED_FOR_OTHERS = "reserved_for_others"
    FINE_THRESHOLD = "fine_threshold"
    LOAN_LIMIT = "loan_limit"
    SAME_TITLE = "same_title"


@dataclass(frozen=True)
class Eligibility:
    allowed: bool
    reason: Optional[Reason] = None
    message: Optional[str] = None

    @classmethod
    def allow(cls):
        return cls(True)

    @classmethod
    def deny(cls, reason: Reason, message: str):
        return cls(False, reason, message)

    def raise_for_denial(self):
        if not self.allowed:
            raise PolicyDenied(self.reason, self.message)
        return self

    def to_dict(self):
        return {
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
        }


def loan_limit(role) -> int:
    return LOAN_RULES[Role(role).value]['max_books']


def evaluate(session: Session, user: Optional[User], book: Optional[Book], now: datetime,
             exclude_request_id=None) -> Eligibility:
    """Decides whether `user` may borrow `book` right now.

    `exclude_request_id` names a loan request being approved; it does not
    count against its own approval.
    """
    if not user or not user.active:
        return Eligibility.deny(Reason.USER_INACTIVE, "User not found or inactive.")

    if not book:
        return Eligibility.deny(Reason.BOOK_NOT_FOUND, "Book not found.")

    if book.available_copies <= 0:
        return Eligibility.deny(
            Reason.NO_COPIES_AVAILABLE, "Book unavailable (no copies on the shelf)."
        )

    if not book.is_circulating:
        return Eligibility.deny(
            Reason.LIBRARY_USE_ONLY, "This book is for library use only (red tag)."
        )

    if Loan.exists(session, user.id, book.id):
        return Eligibility.deny(
            Reason.ALREADY_BORROWED, "You already have this book on loan."
        )

    pending = [
        r for r in LoanRequest.pending(session, book_id=book.id)
        if r.id != exclude_request_id
    ]
    if any(r.user_id == user.id for r in pending):
        return Eligibility.deny(
            Reason.PENDING_REQUEST_EXISTS,
            "You already have a pending request for this book; approve that request "
            "instead of creating a new loan."
        )

    claims = copy_claims(
        session, book.id, exclude_user_id=user.id, exclude_request_id=exclude_request_id
    )
    effective_copies = book.available_copies - len(claims)
    if effective_copies <= 0:
        names = ", ".join(claim.user_name for claim in claims)
        return Eligibility.deny(
            Reason.RESERVED_FOR_OTHERS,
            f"This book is reserved for: {names}. No copies are free beyond the reserved ones."
        )

    owed = outstanding_total(session, user.id, now)
    if owed >= BLOCK_THRESHOLD:
        return Eligibility.deny(
            Reason.FINE_THRESHOLD,
            f"User has outstanding fines of {owed}, at or above the {BLOCK_THRESHOLD} "
            f"limit. Pay to unlock new loans."
        )

    active = Loan.active_for(session, user.id)
    limit = loan_limit(user.role)
    if len(active) >= limit:
        return Eligibility.deny(
            Reason.LOAN_LIMIT, f"Limit of {limit} books reached for {Role(user.role).value}s."
        )

    title = normalize_title(book.title)
    held_titles = [loan.book.title for loan in active]
    if user.is_teacher:
        held_titles += [
            r.book.title for r in LoanRequest.pending(session, user_id=user.id)
            if r.id != exclude_request_id and r.book_id != book.id
        ]
    if any(normalize_title(t) == title for t in held_titles):
        return Eligibility.deny(
            Reason.SAME_TITLE,
            "User already has a copy of this title on loan (one copy per title)."
        )

    return Eligibility.allow()


def evaluate_ids(session: Session, user_id, book_id, now: datetime) -> Eligibility:
    user = session.get(User, user_id) if user_id is not None else None
    book = session.get(Book, book_id) if book_id is not None else None
    result = evaluate(session, user, book, now)
    if not result.allowed:
        logger.info(f"Loan of book {book_id} to user {user_id} refused: {result.reason.value}")
    return result
