#!/usr/bin/env python3
#
# edgecert/api/domains.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Customer domain onboarding, certificate issuance and activation endpoints."""

from __future__ import annotations

import logging
import sqlite3

from fastapi import APIRouter, Depends, HTTPException, Path, Request

from ..db import sqlite_domains
from ..issuance.errors import IssuanceError
from ..issuance.orchestrator import Orchestrator
from ..issuance.states import DomainStatus, InvalidTransition
from ..models.domains import DomainCreate, DomainEvent, DomainPublic
from ..utils.deps import get_conn, get_orchestrator
from ..utils.rate_limit import RATE_LIMIT_API, RATE_LIMIT_ISSUE, limiter
from ..utils.time import isoformat_utc
from .auth import require_api_token
from .response import http_error, ok_response

_log = logging.getLogger(__name__)

router = APIRouter(tags=["domains"], dependencies=[Depends(require_api_token)])

_SUBDOMAIN_PATTERN = r"^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?$"


def _subdomain_path():
	return Path(..., min_length=1, max_length=63, pattern=_SUBDOMAIN_PATTERN)


def _get_record(conn: sqlite3.Connection, subdomain: str) -> DomainPublic:
	row = sqlite_domains.get_domain(conn, subdomain)
	if row is None:
		raise HTTPException(status_code=404, detail="Domain not found")
	return DomainPublic.from_row(row)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@router.post("", status_code=201)
@limiter.limit(RATE_LIMIT_API)
def create_domain(
	request: Request,
	payload: DomainCreate,
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	"""Onboard a customer subdomain (status pending)."""
	try:
		sqlite_domains.create_domain(
			conn,
			subdomain=payload.subdomain,
			company_name=payload.company_name,
			stock_symbol=payload.stock_symbol,
			company_website=payload.company_website,
			mapped_to=payload.mapped_to,
			dns_provider=payload.dns_provider,
			mode=payload.mode.value,
		)
	except sqlite_domains.DomainExistsError as exc:
		raise HTTPException(status_code=409, detail=str(exc)) from exc
	_log.info("DOMAIN_CREATED subdomain=%s mode=%s", payload.subdomain, payload.mode.value)
	return ok_response(message="Domain created", data=_get_record(conn, payload.subdomain))


@router.get("")
def list_domains(
	status: DomainStatus | None = None,
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	"""List domain records, optionally filtered by status."""
	rows = sqlite_domains.list_domains(conn, status.value if status else None)
	return ok_response(data=[DomainPublic.from_row(row) for row in rows])


@router.get("/{subdomain}")
def get_domain(
	subdomain: str = _subdomain_path(),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	"""Get one domain record."""
	return ok_response(data=_get_record(conn, subdomain))


@router.get("/{subdomain}/events")
def list_events(
	subdomain: str = _subdomain_path(),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	"""Status history of a domain, oldest first."""
	_get_record(conn, subdomain)
	events = [
		DomainEvent(status=DomainStatus.normalize(row["status"]), message=row["message"], created_at=row["created_at"])
		for row in sqlite_domains.list_domain_events(conn, subdomain)
	]
	return ok_response(data=events)


@router.get("/{subdomain}/dns-instructions")
def dns_instructions(
	subdomain: str = _subdomain_path(),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	"""The TXT record to create by hand for the current issuance attempt."""
	record = _get_record(conn, subdomain)
	if record.dns_validation is None:
		raise HTTPException(status_code=404, detail="No DNS challenge issued yet")
	return ok_response(
		data=record.dns_validation,
		message=f"Create a TXT record {record.dns_validation.name} with value {record.dns_validation.value}",
	)


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------

@router.post("/{subdomain}/issue")
@limiter.limit(RATE_LIMIT_ISSUE)
async def issue_certificate(
	request: Request,
	subdomain: str = _subdomain_path(),
	deploy: bool = False,
	orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict:
	"""
	Run the DNS-01 issuance workflow for a subdomain.

	Blocks until the certificate is issued or the workflow fails. In manual
	mode, poll ``/dns-instructions`` from another client and create the TXT
	record while this request waits for propagation.
	"""
	try:
		if deploy:
			issued = await orchestrator.issue_and_deploy(subdomain)
		else:
			issued = await orchestrator.issue(subdomain)
	except (IssuanceError, InvalidTransition) as exc:
		raise http_error(exc) from exc

	return ok_response(
		message="Certificate issued and activated" if deploy else "Certificate issued",
		data={
			"subdomain": subdomain,
			"fqdn": issued.fqdn,
			"expires_at": isoformat_utc(issued.expiry_date),
			"cert_path": str(issued.paths.cert_path),
			"key_path": str(issued.paths.key_path),
			"full_chain_path": str(issued.paths.full_chain_path),
		},
	)


@router.post("/{subdomain}/activate")
@limiter.limit(RATE_LIMIT_ISSUE)
async def activate_certificate(
	request: Request,
	subdomain: str = _subdomain_path(),
	orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict:
	"""Reload the edge server so it serves the stored certificate."""
	try:
		record = await orchestrator.activate(subdomain)
	except (IssuanceError, InvalidTransition) as exc:
		raise http_error(exc) from exc
	return ok_response(message="Certificate activated", data=record)
