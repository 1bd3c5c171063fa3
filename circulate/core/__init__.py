#!/usr/bin/env python

"""
    Core module for Circulate: storage, the circulation engine and
    its collaborators.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

__all__ = [
    "api", "approvals", "catalog", "db", "duedates", "eligibility",
    "fines", "loans", "models", "notifier", "sweep", "users", "waitlist",
]
