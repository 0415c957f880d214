#!/usr/bin/env python3
#
# edgecert/utils/deps.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI dependency helpers."""

from __future__ import annotations

from collections.abc import Generator

from fastapi import Request

from ..db import sqlite_runtime


def get_conn(request: Request) -> Generator:
	"""Yield a per-request SQLite connection."""
	conn = sqlite_runtime.connect(request.app.state.db_path)
	try:
		yield conn
	finally:
		sqlite_runtime.close_connection(conn)


def get_orchestrator(request: Request):
	"""Get the issuance orchestrator from app state."""
	return request.app.state.orchestrator
