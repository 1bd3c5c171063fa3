"""
    Overdue sweep.

    Once per interval every active loan is looked at again: overdue loans get
    an alert with their running fine, patrons whose outstanding total reached
    the block threshold are deactivated, loans due tomorrow get a reminder,
    and pickup offers nobody collected lapse to the next in line.

    Deciding what to do is `compute_overdue_actions`, a pure function over
    snapshots; everything else here only gathers those snapshots and applies
    the result.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from circulate.configs import (
    BLOCK_THRESHOLD,
    FINE_PER_DAY,
    SWEEP_INTERVAL_HOURS,
    SWEEP_LEASE_MINUTES,
)
from circulate.core.fines import outstanding_total, paid_amount
from circulate.core.models import Book, JobLease, Loan, LoanStatus, User
from circulate.core import db
from circulate.core.notifier import Notifier, notify_safely
from circulate.core.utils import Clock, as_utc, whole_days
from circulate.core.waitlist import expire_reservations

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "overdue_sweep"

_sweep_lock = threading.Lock()


@dataclass(frozen=True)
class LoanSnapshot:
    loan_id: int
    user_id: int
    book_id: int
    due_date: datetime
    user_active: bool
    paid: int = 0


@dataclass(frozen=True)
class OverdueAlert:
    loan_id: int
    user_id: int
    book_id: int
    days: int
    amount: int


@dataclass(frozen=True)
class DueSoon:
    loan_id: int
    user_id: int
    book_id: int


@dataclass(frozen=True)
class BlockUser:
    user_id: int
    outstanding: int


@dataclass
class SweepReport:
    alerts: int = 0
    due_soon: int = 0
    blocked: List[int] = field(default_factory=list)
    offers_passed_on: int = 0


def compute_overdue_actions(now: datetime, snapshots: List[LoanSnapshot],
                            pending_totals: Dict[int, int]) -> list:
    """Decides the sweep's side effects without touching storage.

    `pending_totals` maps a user id to their outstanding total: pending
    stored fines plus the running fines of all their overdue loans.
    """
    now = as_utc(now)
    actions = []
    to_block = []
    for snap in sorted(snapshots, key=lambda s: s.loan_id):
        due_date = as_utc(snap.due_date)
        if due_date < now:
            days = whole_days(now - due_date)
            if days < 1:
                continue
            amount = max(0, days * FINE_PER_DAY - snap.paid)
            actions.append(OverdueAlert(snap.loan_id, snap.user_id, snap.book_id, days, amount))
            owed = pending_totals.get(snap.user_id, 0)
            if snap.user_active and owed >= BLOCK_THRESHOLD and snap.user_id not in to_block:
                to_block.append(snap.user_id)
        elif whole_days(due_date - now) == 1:
            actions.append(DueSoon(snap.loan_id, snap.user_id, snap.book_id))
    actions.extend(BlockUser(user_id, pending_totals[user_id]) for user_id in to_block)
    return actions


def snapshot_active_loans(session: Session, now: datetime):
    loans = session.query(Loan).filter(Loan.status == LoanStatus.ACTIVE).order_by(Loan.id).all()
    snapshots = [
        LoanSnapshot(
            loan_id=loan.id,
            user_id=loan.user_id,
            book_id=loan.book_id,
            due_date=loan.due_date,
            user_active=loan.user.active,
            paid=paid_amount(session, loan.id),
        )
        for loan in loans
    ]
    totals = {
        user_id: outstanding_total(session, user_id, now)
        for user_id in {snap.user_id for snap in snapshots}
    }
    return snapshots, totals


def block_user(session: Session, user_id: int) -> bool:
    """Deactivates a user; False if they were already inactive."""
    result = session.execute(
        update(User)
        .where(User.id == user_id, User.active.is_(True))
        .values(active=False)
        .execution_options(synchronize_session=False)
    )
    if user := session.get(User, user_id):
        session.expire(user, ['active'])
    return result.rowcount == 1


def apply_actions(session: Session, actions: list, notifier=None) -> SweepReport:
    report = SweepReport()
    for action in actions:
        if isinstance(action, BlockUser) and block_user(session, action.user_id):
            logger.warning(
                f"User {action.user_id} blocked: outstanding fines {action.outstanding} "
                f">= {BLOCK_THRESHOLD}"
            )
            report.blocked.append(action.user_id)
    session.commit()

    for action in actions:
        if isinstance(action, OverdueAlert):
            user, book = session.get(User, action.user_id), session.get(Book, action.book_id)
            notify_safely(
                notifier and notifier.send_overdue_alert, user, book, action.days, action.amount
            )
            report.alerts += 1
        elif isinstance(action, DueSoon):
            user, book = session.get(User, action.user_id), session.get(Book, action.book_id)
            notify_safely(notifier and notifier.send_due_soon, user, book)
            report.due_soon += 1
    return report


def acquire_lease(session: Session, holder: str, now: datetime, name: str = SWEEP_JOB_ID) -> bool:
    """Takes the named job lease for `holder` if it is free or its holder went stale.

    The lease row lives in the database, so the API workers' schedulers and
    the command line script all contend for the same one.
    """
    if session.get(JobLease, name) is None:
        try:
            session.add(JobLease(name=name))
            session.commit()
        except IntegrityError:
            session.rollback()
    stale = now - timedelta(minutes=SWEEP_LEASE_MINUTES)
    result = session.execute(
        update(JobLease)
        .where(
            JobLease.name == name,
            or_(JobLease.holder.is_(None), JobLease.acquired_at < stale),
        )
        .values(holder=holder, acquired_at=now)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount == 1


def release_lease(session: Session, holder: str, name: str = SWEEP_JOB_ID):
    session.execute(
        update(JobLease)
        .where(JobLease.name == name, JobLease.holder == holder)
        .values(holder=None, acquired_at=None)
        .execution_options(synchronize_session=False)
    )
    session.commit()


def run_overdue_sweep(session: Session, now: datetime, notifier=None) -> Optional[SweepReport]:
    """Runs one sweep; returns None when another sweep is already running.

    The thread lock settles overlap inside this process without touching the
    database; the lease settles it between processes.
    """
    if not _sweep_lock.acquire(blocking=False):
        logger.info("Overdue sweep already running; skipping this run")
        return None
    try:
        holder = uuid.uuid4().hex
        if not acquire_lease(session, holder, now):
            logger.info("Overdue sweep already running in another process; skipping this run")
            return None
        try:
            return _sweep(session, now, notifier)
        except Exception:
            session.rollback()
            logger.exception("Overdue sweep failed")
            raise
        finally:
            release_lease(session, holder)
    finally:
        _sweep_lock.release()


def _sweep(session: Session, now: datetime, notifier) -> SweepReport:
    logger.info(f"Overdue sweep started at {now}")
    snapshots, totals = snapshot_active_loans(session, now)
    report = apply_actions(session, compute_overdue_actions(now, snapshots, totals), notifier)

    passed_on = expire_reservations(session, now)
    for reservation in passed_on:
        notify_safely(
            notifier and notifier.send_reservation_ready,
            reservation.user, reservation.book, reservation.expiration_date
        )
    report.offers_passed_on = len(passed_on)
    logger.info(
        f"Overdue sweep done: {report.alerts} overdue, {report.due_soon} due soon, "
        f"{len(report.blocked)} blocked, {report.offers_passed_on} offers passed on"
    )
    return report


def overdue_sweep_job():
    """Scheduler entry point; runs on its own scoped session."""
    session = db.session()
    try:
        run_overdue_sweep(session, Clock().now(), Notifier(session))
    except Exception as e:
        logger.error(f"Scheduled overdue sweep did not complete: {e}")
    finally:
        db.session.remove()


def schedule_sweep(scheduler, hours: int = SWEEP_INTERVAL_HOURS):
    return scheduler.add_job(
        overdue_sweep_job,
        trigger=IntervalTrigger(hours=hours),
        id=SWEEP_JOB_ID,
        name="Overdue loan sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
