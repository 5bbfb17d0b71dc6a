#!/usr/bin/env python

"""
    Configurations for SIMPUS

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import os


# Determine environment
TESTING = os.getenv("TESTING", "false").lower() == "true"

# API server configuration
SCHEME = 'http'
HOST = os.environ.get('SIMPUS_HOST', 'localhost')
PORT = int(os.environ.get('SIMPUS_PORT', 8080))
WORKERS = int(os.environ.get('SIMPUS_WORKERS', 1))
DEBUG = bool(int(os.environ.get('SIMPUS_DEBUG', 0)))
LOG_LEVEL = os.environ.get('SIMPUS_LOG_LEVEL', 'info')
SSL_CRT = os.environ.get('SIMPUS_SSL_CRT')
SSL_KEY = os.environ.get('SIMPUS_SSL_KEY')
CORS_ORIGINS = os.environ.get('SIMPUS_CORS_ORIGINS', 'http://localhost:3000').split(',')

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
    'dbname': os.environ.get('DB_NAME', 'simpus'),
}

# Database configuration
DB_URI = os.environ.get('SIMPUS_DB_URI') or (
    "sqlite:///:memory:" if TESTING else
    'postgresql+psycopg2://{user}:{password}@{host}:{port}/{dbname}'.format(**DB_CONFIG)
)

# Identity tokens
JWT_SECRET = os.environ.get('JWT_SECRET', 'dev_secret_change_me')
JWT_ALGORITHM = 'HS256'
TOKEN_TTL = int(os.environ.get('SIMPUS_TOKEN_TTL', 86400))  # 24 hours

# Overdue sweep, runs once at startup and then every SWEEP_INTERVAL seconds
SWEEP_INTERVAL = int(os.environ.get('SIMPUS_SWEEP_INTERVAL', 24 * 60 * 60))
SWEEP_ENABLED = os.environ.get('SIMPUS_SWEEP_ENABLED', 'false' if TESTING else 'true').lower() == 'true'

# Book cover uploads
UPLOAD_DIR = os.environ.get('SIMPUS_UPLOAD_DIR', 'upload')
MAX_COVER_SIZE = int(os.environ.get('SIMPUS_MAX_COVER_SIZE', 10 * 1024 * 1024))

CURRENCY = os.environ.get('SIMPUS_CURRENCY', 'Rp')

__all__ = [
    'SCHEME', 'HOST', 'PORT', 'DEBUG', 'OPTIONS', 'DB_URI', 'DB_CONFIG', 'TESTING',
    'JWT_SECRET', 'JWT_ALGORITHM', 'TOKEN_TTL', 'SWEEP_INTERVAL', 'SWEEP_ENABLED',
    'UPLOAD_DIR', 'MAX_COVER_SIZE', 'CURRENCY', 'CORS_ORIGINS', 'LOG_LEVEL',
]
