#!/usr/bin/env python3
#
# edgecert/db/sqlite_schema.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SQLite schema initialization."""

from __future__ import annotations

import logging
import sqlite3

from .sqlite_runtime import transaction

_log = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Schema Initialization
# ─────────────────────────────────────────────────────────────────────────────


def init_schema(conn: sqlite3.Connection) -> None:
	"""Create the required database schema (idempotent)."""
	with transaction(conn):
		# One row per customer subdomain
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS domains (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				subdomain TEXT NOT NULL UNIQUE,
				company_name TEXT NOT NULL,
				stock_symbol TEXT NOT NULL,
				company_website TEXT,
				mapped_to TEXT,
				dns_provider TEXT,
				certificate_path TEXT,
				private_key_path TEXT,
				full_chain_path TEXT,
				expiry_date timestamp,
				dns_validation TEXT,
				status TEXT NOT NULL DEFAULT 'pending',
				mode TEXT NOT NULL DEFAULT 'manual',
				last_checked_at timestamp,
				error_message TEXT,
				created_at timestamp NOT NULL,
				updated_at timestamp NOT NULL
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_domains_status ON domains(status)")

		# Append-only audit trail of status transitions and failures
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS domain_events (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				domain_id INTEGER NOT NULL,
				status TEXT NOT NULL,
				message TEXT,
				created_at timestamp NOT NULL,
				FOREIGN KEY(domain_id) REFERENCES domains(id) ON DELETE CASCADE
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_domain_events_domain_id ON domain_events(domain_id)")

	_log.debug("SQLITE_SCHEMA ready")
