#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_duedates
    ~~~~~~~~~~~~~~~~~~~

    Loan lengths by role and tag.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import pytest
from datetime import timedelta
from circulate.core.duedates import calculate_due_date, loan_days
from circulate.core.exceptions import PolicyDenied
from tests.conftest import NOW


@pytest.mark.parametrize("role", ["student", "teacher", "staff", "admin"])
def test_yellow_tag_is_one_day_for_every_role(role):
    assert calculate_due_date(role, "yellow", NOW) == NOW + timedelta(days=1)


def test_teacher_white_tag_is_fifteen_days():
    assert calculate_due_date("teacher", "white", NOW) == NOW + timedelta(days=15)


@pytest.mark.parametrize("role", ["student", "staff", "admin"])
def test_other_roles_white_tag_is_five_days(role):
    assert calculate_due_date(role, "white", NOW) == NOW + timedelta(days=5)


def test_red_tag_has_no_due_date():
    with pytest.raises(PolicyDenied) as exc:
        loan_days("student", "red")
    assert exc.value.reason == "library_use_only"


def test_renewal_extends_from_future_due_date():
    due = NOW + timedelta(days=2)
    assert calculate_due_date("student", "white", NOW, base_date=due) == due + timedelta(days=5)


def test_overdue_renewal_extends_from_now():
    due = NOW - timedelta(days=3)
    assert calculate_due_date("teacher", "white", NOW, base_date=due) == NOW + timedelta(days=15)


def test_naive_base_date_is_read_as_utc():
    naive = (NOW + timedelta(days=1)).replace(tzinfo=None)
    assert calculate_due_date("student", "yellow", NOW, base_date=naive) == NOW + timedelta(days=2)
