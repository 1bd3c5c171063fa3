"""
    Due date rules.

    Yellow tagged books go out for a single day whoever borrows them; white
    tagged books follow the borrower's role. Red tagged books never leave the
    library, so asking for their due date is a policy violation upstream code
    should never reach.
"""

from datetime import datetime, timedelta
from typing import Optional

from circulate.configs import LOAN_RULES, YELLOW_TAG_LOAN_DAYS
from circulate.core.exceptions import PolicyDenied
from circulate.core.models import Role, Tag
from circulate.core.utils import as_utc


def loan_days(role, tag) -> int:
    role, tag = Role(role), Tag(tag)
    if tag == Tag.RED:
        raise PolicyDenied("library_use_only", "Red tagged books are for library use only.")
    if tag == Tag.YELLOW:
        return YELLOW_TAG_LOAN_DAYS
    return LOAN_RULES[role.value]['loan_days']


def calculate_due_date(role, tag, now: datetime, base_date: Optional[datetime] = None) -> datetime:
    """Returns the due date for a new loan or a renewal.

    A renewal passes the loan's current due date as `base_date`; it only
    counts when still in the future, so an overdue loan renews from `now`.
    """
    now = as_utc(now)
    base_date = as_utc(base_date)
    reference = base_date if base_date and base_date > now else now
    return reference + timedelta(days=loan_days(role, tag))
