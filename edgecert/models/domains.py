#!/usr/bin/env python3
#
# edgecert/models/domains.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Customer domain Pydantic models."""

from __future__ import annotations

import json
import re
import sqlite3
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ..issuance.states import DomainMode, DomainStatus

# Single DNS label (RFC 1123), lowercase
_SUBDOMAIN_RE = re.compile(r"^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?$")

CHALLENGE_TTL = 600


def is_valid_subdomain(value: str) -> bool:
	return bool(_SUBDOMAIN_RE.fullmatch(value))


class DnsValidation(BaseModel):
	"""Snapshot of the last DNS-01 challenge record issued for a domain."""
	name: str
	type: Literal["TXT"] = "TXT"
	value: str
	ttl: int = CHALLENGE_TTL


class DomainCreate(BaseModel):
	"""Domain onboarding payload."""
	subdomain: str = Field(..., min_length=1, max_length=63)
	company_name: str = Field(..., min_length=1, max_length=256)
	stock_symbol: str = Field(..., min_length=1, max_length=16)
	company_website: Optional[str] = Field(None, max_length=512)
	mapped_to: Optional[str] = Field(None, max_length=256)
	dns_provider: Optional[str] = Field(None, max_length=64, description='e.g. "Route53", "GoDaddy", "Manual"')
	mode: DomainMode = DomainMode.MANUAL

	@field_validator("subdomain")
	@classmethod
	def subdomain_valid(cls, v: str) -> str:
		v = v.strip().lower()
		if not _SUBDOMAIN_RE.fullmatch(v):
			raise ValueError("Subdomain must be a single DNS label: a-z, 0-9 and inner hyphens")
		return v

	@field_validator("company_name", "company_website", "mapped_to", "dns_provider")
	@classmethod
	def strip_text(cls, v: Optional[str]) -> Optional[str]:
		return v.strip() if v is not None else v

	@field_validator("stock_symbol")
	@classmethod
	def stock_symbol_upper(cls, v: str) -> str:
		return v.strip().upper()


class DomainPublic(BaseModel):
	"""Public domain record representation."""
	subdomain: str
	company_name: str
	stock_symbol: str
	company_website: Optional[str] = None
	mapped_to: Optional[str] = None
	dns_provider: Optional[str] = None
	certificate_path: Optional[str] = None
	private_key_path: Optional[str] = None
	full_chain_path: Optional[str] = None
	expiry_date: Optional[datetime] = None
	dns_validation: Optional[DnsValidation] = None
	status: DomainStatus = DomainStatus.PENDING
	mode: DomainMode = DomainMode.MANUAL
	last_checked_at: Optional[datetime] = None
	error_message: Optional[str] = None
	created_at: Optional[datetime] = None
	updated_at: Optional[datetime] = None

	@classmethod
	def from_row(cls, row: sqlite3.Row) -> "DomainPublic":
		data = dict(row)
		data.pop("id", None)
		raw_validation = data.pop("dns_validation", None)
		return cls(
			**data,
			dns_validation=DnsValidation(**json.loads(raw_validation)) if raw_validation else None,
		)

	@field_validator("status", mode="before")
	@classmethod
	def status_normalized(cls, v):
		return DomainStatus.normalize(v)


class DomainEvent(BaseModel):
	"""One entry of a domain's status history."""
	status: DomainStatus
	message: Optional[str] = None
	created_at: datetime
