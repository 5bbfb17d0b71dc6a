#!/usr/bin/env python

"""
    SIMPUS, a library management backend:
    book catalog, loans with overdue fines, and member notifications.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

__version__ = "0.1.0"
