#!/usr/bin/env python3
#
# edgecert/issuance/orchestrator.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate issuance orchestration.

Drives one subdomain through the ACME order lifecycle and records every
milestone on its domain record::

	pending -> dns_validation -> certificate_issued -> active

Any failure moves the record to ``error`` (with ``error_message`` and
``last_checked_at``) and is re-raised to the caller. Nothing is rolled back:
a published challenge record stays in DNS for inspection. A failed edge
reload is the one exception: the certificate is issued and stored, so the
record stays at ``certificate_issued``.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import josepy
from acme import messages

from ..db import sqlite_domains
from ..db.sqlite_runtime import session
from ..models.domains import DnsValidation, DomainPublic, is_valid_subdomain
from ..utils.config import Config
from ..utils.time import utcnow
from .account import AccountKeyStore
from .acme_session import AcmeSession
from .challenge import ChallengePublisher, PublishedChallenge
from .deploy import CertificateDeployer, DeployedPaths, certificate_expiry
from .errors import DeploymentError, DomainNotFound, ProtocolError
from .locks import domain_lock
from .propagation import PropagationChecker
from .states import ACTIVATABLE_STATES, DomainMode, DomainStatus, InvalidTransition, transition

_log = logging.getLogger(__name__)

AUTHORIZATION_POLL_INTERVAL = 3.0  # seconds

SessionFactory = Callable[[str, josepy.JWK], AcmeSession]


@dataclass(frozen=True)
class IssuedCertificate:
	subdomain: str
	fqdn: str
	certificate_pem: bytes
	private_key_pem: bytes
	expiry_date: datetime
	paths: DeployedPaths


def _describe(exc: BaseException) -> str:
	message = str(exc).strip()
	return message if message else type(exc).__name__


class Orchestrator:
	"""Issues and activates certificates for onboarded subdomains."""

	def __init__(
		self,
		cfg: Config,
		*,
		publisher: ChallengePublisher,
		checker: PropagationChecker,
		deployer: CertificateDeployer,
		key_store: AccountKeyStore | None = None,
		session_factory: SessionFactory = AcmeSession.connect,
		poll_interval: float = AUTHORIZATION_POLL_INTERVAL,
		clock: Callable[[], float] = time.monotonic,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	):
		self.cfg = cfg
		self.publisher = publisher
		self.checker = checker
		self.deployer = deployer
		self.key_store = key_store or AccountKeyStore(cfg.account_key_path)
		self.session_factory = session_factory
		self.poll_interval = poll_interval
		self._clock = clock
		self._sleep = sleep

	@classmethod
	def from_config(cls, cfg: Config) -> "Orchestrator":
		return cls(
			cfg,
			publisher=ChallengePublisher.from_config(cfg),
			checker=PropagationChecker.from_config(cfg),
			deployer=CertificateDeployer.from_config(cfg),
		)

	# ------------------ record helpers ------------------

	def _load(self, subdomain: str) -> DomainPublic:
		with session(self.cfg.db_path) as conn:
			row = sqlite_domains.get_domain(conn, subdomain)
		if row is None:
			raise DomainNotFound(f"Domain '{subdomain}' is not registered")
		return DomainPublic.from_row(row)

	def _move(self, subdomain: str, current: DomainStatus, target: DomainStatus, event: str, **fields: Any) -> DomainStatus:
		status = transition(current, target)
		with session(self.cfg.db_path) as conn:
			sqlite_domains.update_domain(
				conn,
				subdomain,
				status=status,
				last_checked_at=utcnow(),
				event=event,
				**fields,
			)
		_log.info("ISSUE_STATUS subdomain=%s %s -> %s", subdomain, current.value, status.value)
		return status

	def _lock(self, subdomain: str):
		# The label names the lock file; reject anything that could leave locks_dir
		if not is_valid_subdomain(subdomain):
			raise DomainNotFound(f"'{subdomain}' is not a valid subdomain")
		return domain_lock(self.cfg.locks_dir, subdomain)

	def _record_failure(self, subdomain: str, current: DomainStatus, exc: BaseException, *, keep_status: bool = False) -> None:
		message = _describe(exc)
		fields: dict[str, Any] = {"error_message": message, "last_checked_at": utcnow()}
		if not keep_status:
			fields["status"] = transition(current, DomainStatus.ERROR)
		try:
			with session(self.cfg.db_path) as conn:
				sqlite_domains.update_domain(conn, subdomain, **fields)
		except sqlite3.Error as db_exc:
			_log.error("ISSUE_FAILED subdomain=%s could not record failure: %s", subdomain, db_exc)
		_log.error(
			"ISSUE_FAILED subdomain=%s status=%s error=%s: %s",
			subdomain,
			current.value if keep_status else DomainStatus.ERROR.value,
			type(exc).__name__,
			message,
		)

	# ------------------ public operations ------------------

	async def issue(self, subdomain: str) -> IssuedCertificate:
		"""Obtain and store a certificate for ``subdomain`` (status certificate_issued)."""
		with self._lock(subdomain):
			return await self._issue_locked(subdomain)

	async def activate(self, subdomain: str) -> DomainPublic:
		"""Reload the edge server for the stored certificate (status active)."""
		with self._lock(subdomain):
			return await self._activate_locked(subdomain)

	async def issue_and_deploy(self, subdomain: str) -> IssuedCertificate:
		"""Issue, store and activate in one locked run."""
		with self._lock(subdomain):
			issued = await self._issue_locked(subdomain)
			await self._activate_locked(subdomain)
			return issued

	def dns_instructions(self, subdomain: str) -> DnsValidation | None:
		"""The TXT record an operator must create for the current attempt."""
		return self._load(subdomain).dns_validation

	# ------------------ workflow ------------------

	async def _issue_locked(self, subdomain: str) -> IssuedCertificate:
		record = self._load(subdomain)
		fqdn = self.cfg.fqdn(subdomain)
		_log.info("ISSUE_START subdomain=%s fqdn=%s mode=%s", subdomain, fqdn, record.mode.value)

		status = self._move(subdomain, record.status, DomainStatus.PENDING, "Issuance started", error_message=None)
		try:
			# 1. account bootstrap
			account_key = await asyncio.to_thread(self.key_store.load_or_create)
			acme = await asyncio.to_thread(self.session_factory, self.cfg.acme_directory_url, account_key)
			await asyncio.to_thread(acme.register, self.cfg.acme_email, self.key_store)

			# 2. order, 3. authorization and DNS-01 challenge
			order, key_pem = await asyncio.to_thread(acme.new_order, fqdn)
			authzr, challb = acme.select_dns01(order)
			identifier = authzr.body.identifier.value

			# 4. challenge publication
			wants_automation = record.mode is DomainMode.AUTOMATED
			if wants_automation and not self.publisher.automated:
				_log.warning("ISSUE_MANUAL subdomain=%s automated mode without DNS provider credentials", subdomain)
			published = await self.publisher.publish(
				acme.challenge_token(challb),
				acme.key_authorization(challb),
				identifier,
				automated=wants_automation,
			)
			status = self._move(
				subdomain,
				status,
				DomainStatus.DNS_VALIDATION,
				f"Challenge {'published' if published.published else 'awaiting manual record'}: {published.name}",
				dns_validation=published.snapshot(),
			)

			# 5. propagation wait
			if self._should_verify_propagation(published):
				await self.checker.await_propagation(published.name, published.value, self.cfg.propagation_timeout)
			else:
				_log.info("ISSUE_PROPAGATION skipped for automated record %s", published.name)

			# 6. challenge verification
			await self._await_valid(acme, authzr, challb)

			# 7. finalization
			chain_pem = (await asyncio.to_thread(acme.finalize, order, self.cfg.validation_timeout)).encode("ascii")
			expiry = certificate_expiry(chain_pem)

			# 8. persistence
			paths = await asyncio.to_thread(self.deployer.store, fqdn, chain_pem, key_pem)
			status = self._move(
				subdomain,
				status,
				DomainStatus.CERTIFICATE_ISSUED,
				f"Certificate issued, expires {expiry.isoformat()}",
				certificate_path=str(paths.cert_path),
				private_key_path=str(paths.key_path),
				full_chain_path=str(paths.full_chain_path),
				expiry_date=expiry,
			)
		except Exception as exc:
			self._record_failure(subdomain, status, exc)
			raise

		_log.info("ISSUE_DONE subdomain=%s expires=%s", subdomain, expiry.isoformat())
		return IssuedCertificate(
			subdomain=subdomain,
			fqdn=fqdn,
			certificate_pem=chain_pem,
			private_key_pem=key_pem,
			expiry_date=expiry,
			paths=paths,
		)

	def _should_verify_propagation(self, published: PublishedChallenge) -> bool:
		return not (published.published and self.cfg.skip_propagation_for_automated)

	async def _await_valid(
		self,
		acme: AcmeSession,
		authzr: messages.AuthorizationResource,
		challb: messages.ChallengeBody,
	) -> None:
		"""Answer the challenge and poll until the authorization is valid."""
		identifier = authzr.body.identifier.value
		await asyncio.to_thread(acme.answer, challb)
		deadline = self._clock() + self.cfg.validation_timeout
		while True:
			authzr = await asyncio.to_thread(acme.poll, authzr)
			if authzr.body.status == messages.STATUS_VALID:
				_log.info("ISSUE_VALIDATED identifier=%s", identifier)
				return
			if authzr.body.status == messages.STATUS_INVALID:
				detail = next((str(c.error) for c in authzr.body.challenges if c.error is not None), "challenge invalid")
				raise ProtocolError(f"ACME rejected the DNS-01 challenge for {identifier}: {detail}")
			if self._clock() >= deadline:
				raise ProtocolError(
					f"Timed out after {self.cfg.validation_timeout:.0f}s waiting for ACME to validate {identifier}"
				)
			await self._sleep(self.poll_interval)

	async def _activate_locked(self, subdomain: str) -> DomainPublic:
		record = self._load(subdomain)
		problem: Exception | None = None
		if record.status not in ACTIVATABLE_STATES:
			problem = InvalidTransition(record.status, DomainStatus.ACTIVE)
		elif not record.full_chain_path or not Path(record.full_chain_path).exists():
			problem = DeploymentError(f"No stored certificate for '{subdomain}'")
		if problem is not None:
			self._record_failure(subdomain, record.status, problem, keep_status=True)
			raise problem

		try:
			await self.deployer.reload()
		except DeploymentError as exc:
			self._record_failure(subdomain, record.status, exc, keep_status=True)
			raise

		self._move(subdomain, record.status, DomainStatus.ACTIVE, "Edge server reloaded", error_message=None)
		return self._load(subdomain)
