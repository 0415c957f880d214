#!/usr/bin/env python3
#
# edgecert/issuance/states.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Domain status state machine.

A certificate cycle is strictly linear::

	pending -> dns_validation -> certificate_issued -> active

with ``error`` reachable from every non-terminal state. A fresh issuance
attempt always restarts the cycle at ``pending``. ``ssl_issued`` is a legacy
label for ``certificate_issued`` and is normalized on the way in.
"""

from __future__ import annotations

from enum import Enum


class DomainStatus(str, Enum):
	PENDING = "pending"
	DNS_VALIDATION = "dns_validation"
	SSL_ISSUED = "ssl_issued"
	CERTIFICATE_ISSUED = "certificate_issued"
	ACTIVE = "active"
	ERROR = "error"

	@classmethod
	def normalize(cls, value: "DomainStatus | str") -> "DomainStatus":
		"""Parse a stored status, folding ``ssl_issued`` into ``certificate_issued``."""
		status = cls(value)
		if status is cls.SSL_ISSUED:
			return cls.CERTIFICATE_ISSUED
		return status


class DomainMode(str, Enum):
	MANUAL = "manual"
	AUTOMATED = "automated"


class InvalidTransition(Exception):
	"""Raised when a status change would skip or reverse a step of the cycle."""

	def __init__(self, current: DomainStatus, target: DomainStatus):
		super().__init__(f"Invalid status transition {current.value} -> {target.value}")
		self.current = current
		self.target = target


_FORWARD: dict[DomainStatus, frozenset[DomainStatus]] = {
	DomainStatus.PENDING: frozenset({DomainStatus.DNS_VALIDATION}),
	DomainStatus.DNS_VALIDATION: frozenset({DomainStatus.CERTIFICATE_ISSUED}),
	DomainStatus.CERTIFICATE_ISSUED: frozenset({DomainStatus.ACTIVE}),
	DomainStatus.ACTIVE: frozenset({DomainStatus.ACTIVE}),
	DomainStatus.ERROR: frozenset(),
}

TERMINAL_STATES = frozenset({DomainStatus.ACTIVE})
ACTIVATABLE_STATES = frozenset({DomainStatus.CERTIFICATE_ISSUED, DomainStatus.ACTIVE})


def transition(current: DomainStatus | str, target: DomainStatus | str) -> DomainStatus:
	"""Return the status after moving from ``current`` to ``target``.

	Pure function: raises InvalidTransition instead of touching any record.
	"""
	current = DomainStatus.normalize(current)
	target = DomainStatus.normalize(target)

	if target is DomainStatus.PENDING:
		return target
	if target is DomainStatus.ERROR:
		if current in TERMINAL_STATES:
			raise InvalidTransition(current, target)
		return target
	if target in _FORWARD[current]:
		return target
	raise InvalidTransition(current, target)
