#!/usr/bin/env python

"""
    Configurations for Circulate

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import os


# Determine environment
TESTING = os.getenv("TESTING", "false").lower() == "true"

# API server configuration
SCHEME = 'http'
HOST = os.environ.get('CIRCULATE_HOST', 'localhost')
PORT = int(os.environ.get('CIRCULATE_PORT', 8080))
WORKERS = int(os.environ.get('CIRCULATE_WORKERS', 1))
DEBUG = bool(int(os.environ.get('CIRCULATE_DEBUG', 0)))
LOG_LEVEL = os.environ.get('CIRCULATE_LOG_LEVEL', 'info')
SSL_CRT = os.environ.get('CIRCULATE_SSL_CRT')
SSL_KEY = os.environ.get('CIRCULATE_SSL_KEY')
CORS_ORIGINS = [
    origin.strip() for origin in
    os.environ.get('CIRCULATE_CORS_ORIGINS', 'http://localhost:3000').split(',')
    if origin.strip()
]

OPTIONS = {
    'host': HOST,
    'port': PORT,
    'log_level': LOG_LEVEL,
    'reload': DEBUG,
    'workers': WORKERS,
}
if SSL_CRT and SSL_KEY:
    OPTIONS['ssl_keyfile'] = SSL_KEY
    OPTIONS['ssl_certfile'] = SSL_CRT
    SCHEME = 'https'

DB_CONFIG = {
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASSWORD'),
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': int(os.environ.get('DB_PORT', '5432')),
    'dbname': os.environ.get('DB_NAME', 'circulate'),
}

# Database configuration
DB_URI = (
    "sqlite:///:memory:" if TESTING else
    'postgresql+psycopg2://{user}:{password}@{host}:{port}/{dbname}'.format(**DB_CONFIG)
)

# Notification relay (email/SMS delivery lives behind this service)
NOTIFY_SERVER = os.environ.get('NOTIFY_SERVER', '')
NOTIFY_TIMEOUT = int(os.environ.get('NOTIFY_TIMEOUT', 10))
CIRCULATE_HTTP_HEADERS = {"User-Agent": "CirculateNotifier/1.0"}

# Overdue sweep
SWEEP_ENABLED = os.environ.get('SWEEP_ENABLED', 'true').lower() == 'true'
SWEEP_INTERVAL_HOURS = int(os.environ.get('SWEEP_INTERVAL_HOURS', 24))
SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE', 'UTC')
# A sweep holding its lease longer than this is presumed dead and can be taken over
SWEEP_LEASE_MINUTES = int(os.environ.get('SWEEP_LEASE_MINUTES', 60))

# Circulation rules
FINE_PER_DAY = 500
BLOCK_THRESHOLD = 2000
MAX_RENEWALS = 2
MAX_RESERVATIONS = 3
RESERVATION_PICKUP_HOURS = 48
CONFLICT_RETRIES = 3

LOAN_RULES = {
    'teacher': {'max_books': 4, 'loan_days': 15},
    'student': {'max_books': 2, 'loan_days': 5},
    'staff': {'max_books': 2, 'loan_days': 5},
    'admin': {'max_books': 2, 'loan_days': 5},
}
YELLOW_TAG_LOAN_DAYS = 1

__all__ = [
    'SCHEME', 'HOST', 'PORT', 'DEBUG', 'OPTIONS', 'DB_URI', 'DB_CONFIG', 'TESTING',
    'NOTIFY_SERVER', 'SWEEP_INTERVAL_HOURS', 'SWEEP_LEASE_MINUTES', 'FINE_PER_DAY', 'BLOCK_THRESHOLD',
    'MAX_RENEWALS', 'MAX_RESERVATIONS', 'RESERVATION_PICKUP_HOURS', 'LOAN_RULES',
]
