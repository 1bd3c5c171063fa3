import logging
import threading
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from circulate.core.models import (
    WAITING_STATUSES,
    Book,
    Fine,
    FineStatus,
    Loan,
    LoanRequest,
    LoanStatus,
    RenewalRequest,
    Reservation,
    Tag,
)
from circulate.core.exceptions import (
    BookExistsError,
    BookNotFoundError,
    DatabaseInsertError,
    InvalidRequestError,
    PolicyDenied,
)
from circulate.core.utils import normalize_title

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_locks = {}


def _named_lock(kind, key):
    with _locks_guard:
        return _locks.setdefault((kind, key), threading.Lock())


@contextmanager
def book_lock(book_id):
    """Serializes check-then-write units of work touching one book."""
    with _named_lock('book', book_id):
        yield


@contextmanager
def patron_lock(user_id, book_id=None):
    """Serializes a patron's units of work across books.

    Limits and the one-copy-per-title rule span every book a patron holds,
    so the patron is locked first and then, when given, the book. Nothing
    takes these two in the opposite order.
    """
    with _named_lock('user', user_id):
        if book_id is None:
            yield
        else:
            with book_lock(book_id):
                yield


def get_book(session: Session, book_id) -> Optional[Book]:
    if book_id is None:
        return None
    return session.get(Book, book_id)


def find_duplicate(session: Session, title: str, author: str) -> Optional[Book]:
    wanted = (normalize_title(title), normalize_title(author))
    for book in session.query(Book).all():
        if (normalize_title(book.title), normalize_title(book.author)) == wanted:
            return book
    return None


def add_book(session: Session, title: str, author: str, tag=Tag.WHITE,
             total_copies: int = 1, isbn: Optional[str] = None) -> Book:
    if not title or not author:
        raise InvalidRequestError("Title and author are required.")
    if total_copies < 1:
        raise InvalidRequestError("A book needs at least one copy.")
    if find_duplicate(session, title, author):
        raise BookExistsError(f"'{title}' by {author} is already in the catalog.")
    try:
        book = Book(
            title=title,
            author=author,
            isbn=isbn,
            tag=Tag(tag),
            total_copies=total_copies,
            available_copies=total_copies,
        )
        session.add(book)
        session.commit()
        logger.info(f"Added book {book.id} '{title}' ({book.tag.value}, {total_copies} copies)")
        return book
    except Exception as e:
        session.rollback()
        raise DatabaseInsertError(f"Failed to add book: {str(e)}.")


def _adjust_copies(session: Session, book_id, condition, delta) -> bool:
    stmt = (
        update(Book)
        .where(Book.id == book_id, condition)
        .values(available_copies=Book.available_copies + delta)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if book := session.get(Book, book_id):
        session.expire(book, ['available_copies'])
    return result.rowcount == 1


def reserve_one_copy(session: Session, book_id) -> bool:
    """Takes one copy off the shelf; False if none was left."""
    return _adjust_copies(session, book_id, Book.available_copies > 0, -1)


def release_one_copy(session: Session, book_id) -> bool:
    """Puts one copy back; False if every copy was already on the shelf."""
    return _adjust_copies(session, book_id, Book.available_copies < Book.total_copies, 1)


def set_available_copies(session: Session, book_id, copies: int) -> Book:
    book = get_book(session, book_id)
    if not book:
        raise BookNotFoundError(f"Book {book_id} not found.")
    if copies < 0 or copies > book.total_copies:
        raise InvalidRequestError(
            f"Available copies must be between 0 and {book.total_copies}."
        )
    book.available_copies = copies
    session.commit()
    logger.info(f"Book {book_id} available copies set to {copies}")
    return book


def _in_circulation(session: Session, book_id) -> bool:
    """True while the book is out on loan or somebody is queued for it."""
    return bool(
        session.query(Loan).filter(Loan.book_id == book_id, Loan.status == LoanStatus.ACTIVE).first()
        or session.query(Reservation).filter(
            Reservation.book_id == book_id, Reservation.status.in_(WAITING_STATUSES)
        ).first()
        or LoanRequest.pending(session, book_id=book_id)
    )


def update_book(session: Session, book_id, title: Optional[str] = None, author: Optional[str] = None,
                tag=None, isbn: Optional[str] = None, total_copies: Optional[int] = None) -> Book:
    """Edits a catalog entry.

    Changing `total_copies` leaves the lent copies untouched: the shelf count
    moves by the same difference, and the total can never drop below the
    number of copies currently out.
    """
    book = get_book(session, book_id)
    if not book:
        raise BookNotFoundError(f"Book {book_id} not found.")
    try:
        if (title is not None and not title.strip()) or (author is not None and not author.strip()):
            raise InvalidRequestError("Title and author cannot be empty.")
        if title is not None or author is not None:
            duplicate = find_duplicate(session, title or book.title, author or book.author)
            if duplicate and duplicate.id != book.id:
                raise BookExistsError(
                    f"'{duplicate.title}' by {duplicate.author} is already in the catalog."
                )
        if tag is not None:
            try:
                tag = Tag(tag)
            except ValueError:
                raise InvalidRequestError(f"Unknown tag '{tag}'.")
            if tag == Tag.RED and book.tag != Tag.RED and _in_circulation(session, book.id):
                raise PolicyDenied(
                    "book_in_circulation",
                    "A book that is on loan, reserved or requested cannot become library use only."
                )

        if total_copies is not None:
            if total_copies < 1:
                raise InvalidRequestError("A book needs at least one copy.")
            on_loan = Book.total_copies - Book.available_copies
            stmt = (
                update(Book)
                .where(Book.id == book.id, on_loan <= total_copies)
                .values(total_copies=total_copies, available_copies=total_copies - on_loan)
                .execution_options(synchronize_session=False)
            )
            if session.execute(stmt).rowcount != 1:
                session.refresh(book)
                raise PolicyDenied(
                    "copies_on_loan",
                    f"{book.total_copies - book.available_copies} copies are out on loan; "
                    f"the total cannot go below that."
                )
            session.expire(book, ['total_copies', 'available_copies'])

        for field, value in (('title', title), ('author', author), ('tag', tag), ('isbn', isbn)):
            if value is not None:
                setattr(book, field, value)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(f"Book {book.id} updated")
    return book


def delete_book(session: Session, book_id) -> None:
    """Removes a book together with its loan history, queue and requests.

    Refused while a copy is out on loan or a fine on one of its loans is
    still unpaid.
    """
    book = get_book(session, book_id)
    if not book:
        raise BookNotFoundError(f"Book {book_id} not found.")
    loan_ids = [loan_id for (loan_id,) in session.query(Loan.id).filter(Loan.book_id == book.id)]
    if session.query(Loan).filter(Loan.book_id == book.id, Loan.status == LoanStatus.ACTIVE).first():
        raise PolicyDenied(
            "book_on_loan", "This book has copies out on loan; have them returned first."
        )
    if loan_ids and session.query(Fine).filter(
        Fine.loan_id.in_(loan_ids), Fine.status == FineStatus.PENDING
    ).first():
        raise PolicyDenied("unpaid_fines", "Fines on loans of this book are still unpaid.")

    try:
        if loan_ids:
            session.query(Fine).filter(Fine.loan_id.in_(loan_ids)).delete(synchronize_session=False)
            session.query(RenewalRequest).filter(
                RenewalRequest.loan_id.in_(loan_ids)
            ).delete(synchronize_session=False)
            session.query(Loan).filter(Loan.id.in_(loan_ids)).delete(synchronize_session=False)
        session.query(Reservation).filter(Reservation.book_id == book.id).delete(synchronize_session=False)
        session.query(LoanRequest).filter(LoanRequest.book_id == book.id).delete(synchronize_session=False)
        session.delete(book)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(f"Book {book_id} deleted with {len(loan_ids)} past loans")
