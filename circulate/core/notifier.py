import httpx
import logging
from datetime import datetime
from typing import Optional

from circulate.configs import NOTIFY_SERVER, NOTIFY_TIMEOUT, CIRCULATE_HTTP_HEADERS
from circulate.core.models import Notification

logger = logging.getLogger(__name__)


class Notifier:
    """Tells patrons about their loans.

    Every message lands in the patron's in-app inbox (a Notification row) and
    is relayed to the delivery service at NOTIFY_SERVER, which owns the
    email/SMS side. Delivery problems are logged and reported as False; they
    never undo the circulation change that triggered the message.
    """

    DELIVER_PATH = "/v1/notifications"

    def __init__(self, session=None, server: str = NOTIFY_SERVER, timeout: int = NOTIFY_TIMEOUT):
        self.session = session
        self.server = server.rstrip("/") if server else ""
        self.timeout = timeout

    def send_loan_confirmation(self, user, book, due_date: datetime) -> bool:
        return self.deliver(
            user, "loan_confirmation", f"Loan confirmed - {book.title}",
            f"Hello {user.name}, you borrowed '{book.title}'. "
            f"Please return it by {due_date:%Y-%m-%d %H:%M}."
        )

    def send_overdue_alert(self, user, book, days: int, amount: int) -> bool:
        return self.deliver(
            user, "overdue", f"Overdue loan - {book.title}",
            f"Hello {user.name}, '{book.title}' is {days} days overdue. "
            f"Fine so far: {amount}. Please return it as soon as possible to avoid a block."
        )

    def send_due_soon(self, user, book) -> bool:
        return self.deliver(
            user, "due_soon", f"Return reminder - {book.title}",
            f"Hello {user.name}, '{book.title}' is due tomorrow. "
            f"Return or renew it to avoid fines."
        )

    def send_renewal_decision(self, user, book, approved: bool, new_due_date: Optional[datetime] = None) -> bool:
        if approved:
            message = f"Hello {user.name}, your renewal of '{book.title}' was approved."
            if new_due_date:
                message += f" New due date: {new_due_date:%Y-%m-%d %H:%M}."
        else:
            message = (
                f"Hello {user.name}, your renewal of '{book.title}' was not approved. "
                f"Please return the book by its current due date."
            )
        kind = "renewal_approved" if approved else "renewal_rejected"
        return self.deliver(user, kind, f"Renewal decision - {book.title}", message)

    def send_reservation_ready(self, user, book, expiration_date: datetime) -> bool:
        return self.deliver(
            user, "reservation_ready", f"Reserved book available - {book.title}",
            f"Hello {user.name}, a copy of '{book.title}' is waiting for you. "
            f"Pick it up before {expiration_date:%Y-%m-%d %H:%M}."
        )

    def deliver(self, user, kind: str, subject: str, message: str) -> bool:
        recorded = self._record(user, kind, message)
        relayed = self._relay(user, kind, subject, message)
        return recorded and relayed

    def _record(self, user, kind: str, message: str) -> bool:
        if self.session is None:
            return True
        try:
            self.session.add(Notification(user_id=user.id, type=kind, message=message))
            self.session.commit()
            return True
        except Exception as e:
            self.session.rollback()
            logger.error(f"Failed to record {kind} notification for user {user.id}: {e}")
            return False

    def _relay(self, user, kind: str, subject: str, message: str) -> bool:
        if not self.server:
            logger.debug(f"No NOTIFY_SERVER configured; {kind} for user {user.id} kept in-app only")
            return True
        payload = {
            "type": kind,
            "to": {"email": user.email, "phone": getattr(user, "phone", None), "name": user.name},
            "subject": subject,
            "text": message,
        }
        try:
            with httpx.Client() as client:
                response = client.post(
                    f"{self.server}{self.DELIVER_PATH}",
                    json=payload,
                    headers=CIRCULATE_HTTP_HEADERS,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                logger.info(f"Relayed {kind} notification to user {user.id}")
                return True
        except httpx.HTTPError as e:
            logger.error(f"Error relaying {kind} notification to user {user.id}: {e}")
            return False


def notify_safely(send, *args, **kwargs) -> bool:
    """Runs a notifier call after the state change it reports has committed."""
    if send is None:
        return False
    try:
        return bool(send(*args, **kwargs))
    except Exception:
        logger.exception(f"Notification {getattr(send, '__name__', send)} failed")
        return False
