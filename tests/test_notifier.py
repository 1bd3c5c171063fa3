#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_notifier
    ~~~~~~~~~~~~~~~~~~~

    In-app inbox rows and the relay to the delivery service.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import httpx
from datetime import timedelta
from unittest.mock import MagicMock, patch
from circulate.core.models import Notification
from circulate.core.notifier import Notifier, notify_safely
from tests.conftest import NOW


def test_records_inbox_row_without_relay(db_session, make_user, make_book):
    user, book = make_user(), make_book("Quarto de Despejo")
    notifier = Notifier(db_session, server="")
    assert notifier.send_overdue_alert(user, book, 3, 1500)

    row = db_session.query(Notification).one()
    assert row.user_id == user.id
    assert row.type == "overdue"
    assert "Quarto de Despejo" in row.message and "1500" in row.message
    assert row.is_read is False


def test_relays_to_delivery_service(db_session, make_user, make_book):
    user, book = make_user(), make_book()
    with patch("circulate.core.notifier.httpx.Client") as client_cls:
        client = client_cls.return_value.__enter__.return_value
        client.post.return_value = MagicMock(raise_for_status=MagicMock())
        notifier = Notifier(db_session, server="http://notify.local/")
        assert notifier.send_reservation_ready(user, book, NOW + timedelta(hours=48))

    url = client.post.call_args.args[0]
    payload = client.post.call_args.kwargs["json"]
    assert url == "http://notify.local/v1/notifications"
    assert payload["type"] == "reservation_ready"
    assert payload["to"]["email"] == user.email


def test_relay_failure_reported_not_raised(db_session, make_user, make_book):
    user, book = make_user(), make_book()
    with patch("circulate.core.notifier.httpx.Client") as client_cls:
        client = client_cls.return_value.__enter__.return_value
        client.post.side_effect = httpx.ConnectError("refused")
        notifier = Notifier(db_session, server="http://notify.local")
        assert notifier.send_due_soon(user, book) is False
    # the inbox copy is kept
    assert db_session.query(Notification).count() == 1


def test_renewal_decision_messages(make_user, make_book):
    user, book = make_user(), make_book()
    notifier = Notifier(server="")
    with patch.object(notifier, "deliver", return_value=True) as deliver:
        notifier.send_renewal_decision(user, book, True, NOW + timedelta(days=5))
        notifier.send_renewal_decision(user, book, False)
    approved, rejected = deliver.call_args_list
    assert approved.args[1] == "renewal_approved"
    assert "2025-03-08" in approved.args[3]
    assert rejected.args[1] == "renewal_rejected"


def test_notify_safely_swallows_errors():
    failing = MagicMock(side_effect=RuntimeError("boom"))
    assert notify_safely(failing, 1, 2) is False
    assert notify_safely(None) is False
    assert notify_safely(MagicMock(return_value=True)) is True
