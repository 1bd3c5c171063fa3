#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_sweep
    ~~~~~~~~~~~~~~~~

    The daily overdue sweep: the pure decision function first, then the
    side effects it drives.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import threading
import pytest
from datetime import timedelta
from unittest.mock import MagicMock, patch
from circulate.configs import FINE_PER_DAY, SWEEP_LEASE_MINUTES
from circulate.core import sweep
from circulate.core.models import Fine, FineStatus, User
from circulate.core.sweep import (
    BlockUser,
    DueSoon,
    LoanSnapshot,
    OverdueAlert,
    compute_overdue_actions,
)
from tests.conftest import NOW


def snapshot(loan_id, user_id=1, due=None, active=True, paid=0):
    return LoanSnapshot(loan_id, user_id, 10 + loan_id, due, active, paid)


def test_overdue_loan_alerted_with_running_fine():
    actions = compute_overdue_actions(NOW, [snapshot(1, due=NOW - timedelta(days=3))], {1: 1500})
    assert actions == [OverdueAlert(1, 1, 11, 3, 1500)]


def test_less_than_a_day_late_is_not_alerted():
    assert compute_overdue_actions(NOW, [snapshot(1, due=NOW - timedelta(hours=20))], {1: 0}) == []


def test_due_tomorrow_gets_reminder():
    actions = compute_overdue_actions(
        NOW,
        [snapshot(1, due=NOW + timedelta(days=1, hours=2)), snapshot(2, due=NOW + timedelta(days=3))],
        {1: 0},
    )
    assert actions == [DueSoon(1, 1, 11)]


def test_block_on_total_not_single_loan():
    snaps = [
        snapshot(1, due=NOW - timedelta(days=2)),
        snapshot(2, due=NOW - timedelta(days=2)),
    ]
    actions = compute_overdue_actions(NOW, snaps, {1: 2000})
    assert actions.count(BlockUser(1, 2000)) == 1
    assert len([a for a in actions if isinstance(a, OverdueAlert)]) == 2


def test_inactive_user_not_blocked_again():
    actions = compute_overdue_actions(NOW, [snapshot(1, due=NOW - timedelta(days=5), active=False)], {1: 2500})
    assert not [a for a in actions if isinstance(a, BlockUser)]


def test_alert_amount_credits_payments():
    actions = compute_overdue_actions(NOW, [snapshot(1, due=NOW - timedelta(days=4), paid=1500)], {1: 500})
    assert actions == [OverdueAlert(1, 1, 11, 4, 500)]


def test_sweep_blocks_and_notifies(db_session, make_user, make_book, make_loan, notifier):
    late, fine, soon = make_user(), make_user(), make_user()
    make_loan(late, make_book("A"), due_date=NOW - timedelta(days=4))
    make_loan(fine, make_book("B"), due_date=NOW - timedelta(days=1))
    make_loan(soon, make_book("C"), due_date=NOW + timedelta(days=1))

    report = sweep.run_overdue_sweep(db_session, NOW, notifier)
    assert report.blocked == [late.id]
    assert report.alerts == 2
    assert report.due_soon == 1
    assert db_session.get(User, late.id).active is False
    assert db_session.get(User, fine.id).active is True
    assert notifier.send_overdue_alert.call_count == 2
    notifier.send_due_soon.assert_called_once()


def test_sweep_is_idempotent_and_never_reactivates(db_session, make_user, make_book, make_loan, notifier):
    user = make_user()
    make_loan(user, make_book(), due_date=NOW - timedelta(days=6))
    assert sweep.run_overdue_sweep(db_session, NOW, notifier).blocked == [user.id]
    assert sweep.run_overdue_sweep(db_session, NOW + timedelta(hours=1), notifier).blocked == []
    assert db_session.get(User, user.id).active is False


def test_sweep_survives_notifier_failure(db_session, make_user, make_book, make_loan):
    user = make_user()
    make_loan(user, make_book(), due_date=NOW - timedelta(days=5))
    notifier = MagicMock()
    notifier.send_overdue_alert.side_effect = RuntimeError("gateway down")
    report = sweep.run_overdue_sweep(db_session, NOW, notifier)
    assert report.blocked == [user.id]


def test_sweep_does_not_overlap(db_session):
    held = threading.Event()
    release = threading.Event()
    results = {}

    def slow_snapshot(session, now):
        held.set()
        release.wait(5)
        return [], {}

    with patch("circulate.core.sweep.snapshot_active_loans", side_effect=slow_snapshot):
        first = threading.Thread(
            target=lambda: results.setdefault("first", sweep.run_overdue_sweep(db_session, NOW))
        )
        first.start()
        held.wait(5)
        results["second"] = sweep.run_overdue_sweep(db_session, NOW)
        release.set()
        first.join(5)

    assert results["second"] is None
    assert results["first"] is not None


def test_schedule_sweep_registers_single_instance_job():
    scheduler = MagicMock()
    sweep.schedule_sweep(scheduler, hours=24)
    kwargs = scheduler.add_job.call_args.kwargs
    assert scheduler.add_job.call_args.args[0] is sweep.overdue_sweep_job
    assert kwargs["max_instances"] == 1
    assert kwargs["id"] == sweep.SWEEP_JOB_ID
    assert kwargs["trigger"].interval == timedelta(hours=24)


def test_sweep_skips_while_another_process_holds_the_lease(db_session, make_user, make_book, make_loan, notifier):
    make_loan(make_user(), make_book(), due_date=NOW - timedelta(days=3))
    assert sweep.acquire_lease(db_session, "worker-2", NOW)

    assert sweep.run_overdue_sweep(db_session, NOW, notifier) is None
    notifier.send_overdue_alert.assert_not_called()

    sweep.release_lease(db_session, "worker-2")
    assert sweep.run_overdue_sweep(db_session, NOW, notifier).alerts == 1


def test_stale_lease_is_taken_over(db_session):
    held_since = NOW - timedelta(minutes=SWEEP_LEASE_MINUTES + 1)
    assert sweep.acquire_lease(db_session, "crashed", held_since)
    assert not sweep.acquire_lease(db_session, "other", held_since + timedelta(minutes=1))

    assert sweep.run_overdue_sweep(db_session, NOW) is not None
    assert sweep.acquire_lease(db_session, "next", NOW)


def test_lease_released_after_failed_sweep(db_session):
    with patch("circulate.core.sweep.snapshot_active_loans", side_effect=RuntimeError("db gone")):
        with pytest.raises(RuntimeError):
            sweep.run_overdue_sweep(db_session, NOW)
    assert sweep.acquire_lease(db_session, "next", NOW)


def test_sweeps_around_a_return_never_double_charge(api, db_session, make_user, make_book, make_loan, clock):
    user = make_user()
    loan = make_loan(user, make_book(), due_date=NOW - timedelta(days=4))
    api.pay_fine(f"virtual-{loan.id}")

    clock.advance(days=2)
    api.run_overdue_sweep()
    receipt = api.return_loan(loan.id)
    api.run_overdue_sweep()
    api.run_overdue_sweep()

    rows = db_session.query(Fine).filter(Fine.loan_id == loan.id).order_by(Fine.id).all()
    assert [(f.status, f.amount) for f in rows] == [
        (FineStatus.PAID, 4 * FINE_PER_DAY),
        (FineStatus.PENDING, 2 * FINE_PER_DAY),
    ]
    assert receipt.fine_amount == 2 * FINE_PER_DAY
    assert api.outstanding_fines(user.id) == 2 * FINE_PER_DAY
