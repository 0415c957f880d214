#!/usr/bin/env python3
#
# edgecert/db/sqlite_domains.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Customer domain CRUD operations."""

from __future__ import annotations

import json
import sqlite3
from typing import Any

from ..utils.time import utcnow
from .sqlite_runtime import UNSET, transaction

# Columns the issuance workflow is allowed to change after onboarding
_MUTABLE_COLUMNS = (
	"certificate_path",
	"private_key_path",
	"full_chain_path",
	"expiry_date",
	"dns_validation",
	"status",
	"mode",
	"last_checked_at",
	"error_message",
)


class DomainExistsError(Exception):
	"""Raised when onboarding a subdomain that is already registered."""


# ─────────────────────────────────────────────────────────────────────────────
# Domain CRUD functions
# ─────────────────────────────────────────────────────────────────────────────


def create_domain(
	conn: sqlite3.Connection,
	subdomain: str,
	company_name: str,
	stock_symbol: str,
	company_website: str | None = None,
	mapped_to: str | None = None,
	dns_provider: str | None = None,
	mode: str = "manual",
) -> int:
	"""Create a domain record in status 'pending'."""
	now = utcnow()
	try:
		with transaction(conn):
			cur = conn.execute(
				"""
				INSERT INTO domains (
					subdomain, company_name, stock_symbol, company_website,
					mapped_to, dns_provider, status, mode, created_at, updated_at
				)
				VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?)
				""",
				(subdomain, company_name, stock_symbol, company_website, mapped_to, dns_provider, mode, now, now),
			)
			domain_id = cur.lastrowid
			conn.execute(
				"INSERT INTO domain_events (domain_id, status, message, created_at) VALUES (?, 'pending', ?, ?)",
				(domain_id, "Domain onboarded", now),
			)
			return domain_id
	except sqlite3.IntegrityError as exc:
		raise DomainExistsError(f"Subdomain '{subdomain}' is already registered") from exc


def get_domain(conn: sqlite3.Connection, subdomain: str) -> sqlite3.Row | None:
	"""Get a domain by subdomain."""
	cur = conn.execute("SELECT * FROM domains WHERE subdomain = ?", (subdomain,))
	return cur.fetchone()


def list_domains(conn: sqlite3.Connection, status: str | None = None) -> list[sqlite3.Row]:
	"""List all domains, optionally filtered by status."""
	if status:
		cur = conn.execute("SELECT * FROM domains WHERE status = ? ORDER BY subdomain", (status,))
	else:
		cur = conn.execute("SELECT * FROM domains ORDER BY subdomain")
	return cur.fetchall()


def update_domain(
	conn: sqlite3.Connection,
	subdomain: str,
	*,
	certificate_path: Any = UNSET,
	private_key_path: Any = UNSET,
	full_chain_path: Any = UNSET,
	expiry_date: Any = UNSET,
	dns_validation: Any = UNSET,
	status: Any = UNSET,
	mode: Any = UNSET,
	last_checked_at: Any = UNSET,
	error_message: Any = UNSET,
	event: str | None = None,
) -> bool:
	"""Partially update a domain record in a single transaction.

	Only parameters that are not UNSET are written. ``dns_validation`` accepts a
	dict (stored as JSON) or None. When ``status`` is given, a row is appended to
	``domain_events`` with ``event`` (or ``error_message``) as its message.
	"""
	values = {
		"certificate_path": certificate_path,
		"private_key_path": private_key_path,
		"full_chain_path": full_chain_path,
		"expiry_date": expiry_date,
		"dns_validation": dns_validation,
		"status": status,
		"mode": mode,
		"last_checked_at": last_checked_at,
		"error_message": error_message,
	}
	changes = {k: v for k, v in values.items() if v is not UNSET and k in _MUTABLE_COLUMNS}
	if not changes:
		return False

	if "dns_validation" in changes and changes["dns_validation"] is not None:
		changes["dns_validation"] = json.dumps(changes["dns_validation"], separators=(",", ":"))
	for key in ("status", "mode"):
		if key in changes and hasattr(changes[key], "value"):
			changes[key] = changes[key].value

	now = utcnow()
	changes["updated_at"] = now
	assignments = ", ".join(f"{column} = ?" for column in changes)

	with transaction(conn):
		cur = conn.execute(
			f"UPDATE domains SET {assignments} WHERE subdomain = ?",
			(*changes.values(), subdomain),
		)
		if cur.rowcount == 0:
			return False
		if "status" in changes:
			message = event
			if message is None and isinstance(error_message, str):
				message = error_message
			conn.execute(
				"""
				INSERT INTO domain_events (domain_id, status, message, created_at)
				SELECT id, ?, ?, ? FROM domains WHERE subdomain = ?
				""",
				(changes["status"], message, now, subdomain),
			)
		return True


def list_domain_events(conn: sqlite3.Connection, subdomain: str, limit: int = 100) -> list[sqlite3.Row]:
	"""Return the most recent status events of a domain, oldest first."""
	cur = conn.execute(
		"""
		SELECT e.status, e.message, e.created_at
		FROM domain_events e
		JOIN domains d ON d.id = e.domain_id
		WHERE d.subdomain = ?
		ORDER BY e.id DESC
		LIMIT ?
		""",
		(subdomain, limit),
	)
	return list(reversed(cur.fetchall()))


def status_history(conn: sqlite3.Connection, subdomain: str) -> list[str]:
	"""Statuses a domain went through, in order."""
	return [row["status"] for row in list_domain_events(conn, subdomain, limit=10_000)]
