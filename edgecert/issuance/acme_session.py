#!/usr/bin/env python3
#
# edgecert/issuance/acme_session.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Blocking wrapper around the ``acme`` client library for one issuance.

Every method is a blocking network call; the orchestrator runs them through
``asyncio.to_thread``. Library and transport failures are re-raised as
ProtocolError so callers deal with one exception family.
"""

from __future__ import annotations

import contextlib
import datetime
import logging
from collections.abc import Iterator

import josepy
import requests
from acme import challenges, client, crypto_util, messages
from acme import errors as acme_errors
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .account import AccountKeyStore
from .errors import ProtocolError

_log = logging.getLogger(__name__)

USER_AGENT = "edgecert/0.1 acme-python"
DOMAIN_KEY_SIZE = 2048


@contextlib.contextmanager
def _protocol(step: str) -> Iterator[None]:
	try:
		yield
	except ProtocolError:
		raise
	except (acme_errors.Error, requests.RequestException, josepy.DeserializationError) as exc:
		raise ProtocolError(f"ACME {step} failed: {exc}") from exc


def generate_domain_key() -> bytes:
	"""Fresh RSA key for the certificate itself (PKCS8 PEM)."""
	key = rsa.generate_private_key(public_exponent=65537, key_size=DOMAIN_KEY_SIZE)
	return key.private_bytes(
		encoding=serialization.Encoding.PEM,
		format=serialization.PrivateFormat.PKCS8,
		encryption_algorithm=serialization.NoEncryption(),
	)


class AcmeSession:
	"""One ACME directory connection bound to the shared account key."""

	def __init__(self, acme_client: client.ClientV2, account_key: josepy.JWK, directory_url: str):
		self.client = acme_client
		self.account_key = account_key
		self.directory_url = directory_url

	@classmethod
	def connect(cls, directory_url: str, account_key: josepy.JWK) -> "AcmeSession":
		with _protocol("directory fetch"):
			alg = josepy.ES256 if isinstance(account_key, josepy.JWKEC) else josepy.RS256
			net = client.ClientNetwork(account_key, alg=alg, user_agent=USER_AGENT)
			directory = client.ClientV2.get_directory(directory_url, net)
			return cls(client.ClientV2(directory, net), account_key, directory_url)

	def register(self, email: str, store: AccountKeyStore) -> messages.RegistrationResource:
		"""Reuse the stored registration or create (or recover) the account."""
		stored = self._use_stored(store)
		if stored is not None:
			return stored

		with store.registration_lock():
			# another issuance may have registered while we waited
			stored = self._use_stored(store)
			if stored is not None:
				return stored

			with _protocol("account registration"):
				new_reg = messages.NewRegistration.from_data(email=email, terms_of_service_agreed=True)
				try:
					regr = self.client.new_account(new_reg)
					_log.info("ACME_ACCOUNT registered new account %s", regr.uri)
				except acme_errors.ConflictError as exc:
					# Key already registered: bind to the existing account
					regr = messages.RegistrationResource(uri=exc.location, body=messages.Registration())
					self.client.net.account = regr
					regr = self.client.query_registration(regr)
					_log.info("ACME_ACCOUNT recovered existing account %s", regr.uri)
			store.save_registration(self.directory_url, self.account_key, regr)
		return regr

	def _use_stored(self, store: AccountKeyStore) -> messages.RegistrationResource | None:
		stored = store.load_registration(self.directory_url, self.account_key)
		if stored is not None:
			self.client.net.account = stored
			_log.info("ACME_ACCOUNT using existing account %s", stored.uri)
		return stored

	def new_order(self, fqdn: str) -> tuple[messages.OrderResource, bytes]:
		"""Create an order for ``fqdn``; returns the order and the certificate key.

		The library binds the CSR to the order, so the key and CSR for the
		certificate are generated here and submitted again on finalization.
		"""
		key_pem = generate_domain_key()
		csr_pem = crypto_util.make_csr(key_pem, [fqdn])
		with _protocol("order creation"):
			order = self.client.new_order(csr_pem)
		_log.info("ACME_ORDER created for %s (%d authorizations)", fqdn, len(order.authorizations))
		return order, key_pem

	@staticmethod
	def select_dns01(order: messages.OrderResource) -> tuple[messages.AuthorizationResource, messages.ChallengeBody]:
		"""DNS-01 challenge of the first authorization; absence is fatal."""
		if not order.authorizations:
			raise ProtocolError("ACME order has no authorizations")
		authzr = order.authorizations[0]
		for challb in authzr.body.challenges:
			if isinstance(challb.chall, challenges.DNS01):
				return authzr, challb
		raise ProtocolError(f"No DNS-01 challenge offered for {authzr.body.identifier.value}")

	@staticmethod
	def challenge_token(challb: messages.ChallengeBody) -> str:
		return challb.chall.encode("token")

	def key_authorization(self, challb: messages.ChallengeBody) -> str:
		return challb.chall.key_authorization(self.account_key)

	def answer(self, challb: messages.ChallengeBody) -> None:
		"""Tell the ACME server the challenge is ready to be verified."""
		with _protocol("challenge answer"):
			self.client.answer_challenge(challb, challb.chall.response(self.account_key))

	def poll(self, authzr: messages.AuthorizationResource) -> messages.AuthorizationResource:
		with _protocol("authorization poll"):
			authzr, _ = self.client.poll(authzr)
		return authzr

	def finalize(self, order: messages.OrderResource, timeout: float) -> str:
		"""Submit the order's CSR and return the issued full chain PEM."""
		deadline = datetime.datetime.now() + datetime.timedelta(seconds=timeout)
		with _protocol("finalization"):
			order = self.client.finalize_order(order, deadline)
		if not order.fullchain_pem:
			raise ProtocolError("ACME finalization returned no certificate")
		return order.fullchain_pem
