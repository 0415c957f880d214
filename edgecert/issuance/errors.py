#!/usr/bin/env python3
#
# edgecert/issuance/errors.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Exceptions raised by the issuance workflow."""

from __future__ import annotations


class IssuanceError(Exception):
	"""Base class for every failure surfaced by the issuance workflow."""


class ConfigurationError(IssuanceError):
	"""A required credential or path is missing or unusable."""


class ProtocolError(IssuanceError):
	"""The ACME service rejected an account, order, challenge or finalization."""


class DnsProviderError(ProtocolError):
	"""The automated DNS provider refused the challenge record."""


class PropagationTimeout(IssuanceError):
	"""The challenge TXT value was not visible on every resolver in time."""

	def __init__(self, record_name: str, expected_value: str, timeout: float, rounds: int):
		super().__init__(
			f"DNS record {record_name} did not propagate to all resolvers "
			f"within {timeout:.0f}s ({rounds} rounds)"
		)
		self.record_name = record_name
		self.expected_value = expected_value
		self.timeout = timeout
		self.rounds = rounds


class DeploymentError(IssuanceError):
	"""Certificate files were written but the edge server reload failed."""


class DomainNotFound(IssuanceError):
	"""No domain record exists for the requested subdomain."""


class IssuanceInProgress(IssuanceError):
	"""Another issuance for the same subdomain holds the lock."""
