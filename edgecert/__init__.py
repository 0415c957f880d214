#!/usr/bin/env python3
#
# edgecert/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""edgecert – automated ACME DNS-01 certificates for customer subdomains."""

from .main import create_app

__all__ = ["create_app"]
