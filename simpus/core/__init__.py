#!/usr/bin/env python

"""
    Core module for SIMPUS: models, lending services and auth

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""
