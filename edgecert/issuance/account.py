#!/usr/bin/env python3
#
# edgecert/issuance/account.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""ACME account key and registration storage.

The account key is generated once and shared by every issuance. Overwriting it
would orphan the registered ACME account, so creation is first-writer-wins: the
key is written to a private temp file and hard-linked into place, which fails if
another process got there first.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
import os
import secrets
import threading
from collections.abc import Iterator
from pathlib import Path

import josepy
from acme import messages
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .errors import ConfigurationError

_log = logging.getLogger(__name__)

ACCOUNT_KEY_SIZE = 2048

# One lock per path; guards create and register inside this process
_key_locks: dict[Path, threading.Lock] = {}
_key_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
	with _key_locks_guard:
		return _key_locks.setdefault(path, threading.Lock())


class AccountKeyStore:
	"""Create-if-absent, else load, for the persistent ACME account key."""

	def __init__(self, path: Path):
		self.path = path

	@property
	def registration_path(self) -> Path:
		return self.path.with_name(self.path.name + ".registration.json")

	@property
	def registration_lock_path(self) -> Path:
		return self.path.with_name(self.path.name + ".registration.lock")

	def load_or_create(self) -> josepy.JWK:
		"""Return the account key, generating it only if no key exists yet."""
		with _lock_for(self.path):
			if not self.path.exists():
				self._create()
			return self._load()

	def _create(self) -> None:
		key = rsa.generate_private_key(public_exponent=65537, key_size=ACCOUNT_KEY_SIZE)
		key_pem = key.private_bytes(
			encoding=serialization.Encoding.PEM,
			format=serialization.PrivateFormat.PKCS8,
			encryption_algorithm=serialization.NoEncryption(),
		)
		try:
			self.path.parent.mkdir(parents=True, exist_ok=True)
			tmp = self.path.with_name(f".{self.path.name}.{os.getpid()}.{secrets.token_hex(4)}.tmp")
			fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
			try:
				os.write(fd, key_pem)
				os.fsync(fd)
			finally:
				os.close(fd)
			try:
				os.link(tmp, self.path)
			except FileExistsError:
				_log.info("ACME_ACCOUNT key created concurrently by another process, using it")
				return
			finally:
				tmp.unlink(missing_ok=True)
		except OSError as exc:
			raise ConfigurationError(f"Cannot write ACME account key {self.path}: {exc}") from exc
		_log.info("ACME_ACCOUNT created new account key %s", self.path)

	def _load(self) -> josepy.JWK:
		try:
			key = serialization.load_pem_private_key(self.path.read_bytes(), password=None)
		except (OSError, ValueError, TypeError) as exc:
			raise ConfigurationError(f"Cannot read ACME account key {self.path}: {exc}") from exc
		if isinstance(key, rsa.RSAPrivateKey):
			return josepy.JWKRSA(key=key)
		if isinstance(key, ec.EllipticCurvePrivateKey):
			return josepy.JWKEC(key=key)
		raise ConfigurationError(f"ACME account key {self.path} is neither RSA nor EC")

	# ------------------ registration ------------------

	@contextlib.contextmanager
	def registration_lock(self) -> Iterator[None]:
		"""Serialize account registration across threads and worker processes."""
		lock_path = self.registration_lock_path
		with _lock_for(lock_path):
			lock_path.parent.mkdir(parents=True, exist_ok=True)
			fd = os.open(lock_path, os.O_CREAT | os.O_RDWR, 0o600)
			try:
				fcntl.flock(fd, fcntl.LOCK_EX)
				yield
			finally:
				# closing the descriptor drops the flock
				os.close(fd)

	def load_registration(self, directory_url: str, account_key: josepy.JWK) -> messages.RegistrationResource | None:
		"""Return the stored registration if it belongs to this directory and key."""
		path = self.registration_path
		if not path.exists():
			return None
		try:
			data = json.loads(path.read_text(encoding="utf-8"))
			regr = messages.RegistrationResource.json_loads(data["registration"])
		except (OSError, ValueError, KeyError, josepy.DeserializationError) as exc:
			_log.warning("ACME_ACCOUNT ignoring unreadable registration %s: %s", path, exc)
			return None

		thumbprint = josepy.encode_b64jose(account_key.thumbprint())
		if data.get("directory") != directory_url or data.get("thumbprint") != thumbprint:
			_log.warning(
				"ACME_ACCOUNT stored registration is for another directory or key, registering again"
			)
			return None
		return regr

	def save_registration(
		self,
		directory_url: str,
		account_key: josepy.JWK,
		regr: messages.RegistrationResource,
	) -> None:
		payload = {
			"directory": directory_url,
			"thumbprint": josepy.encode_b64jose(account_key.thumbprint()),
			"registration": regr.json_dumps(),
		}
		path = self.registration_path
		tmp = path.with_name(f".{path.name}.{os.getpid()}.{secrets.token_hex(4)}.tmp")
		try:
			fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
			with os.fdopen(fd, "w", encoding="utf-8") as f:
				f.write(json.dumps(payload))
			os.replace(tmp, path)
		except OSError as exc:
			tmp.unlink(missing_ok=True)
			raise ConfigurationError(f"Cannot write ACME registration {path}: {exc}") from exc
		_log.info("ACME_ACCOUNT saved registration %s", regr.uri)
