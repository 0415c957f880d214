#!/usr/bin/env python3
#
# edgecert/issuance/deploy.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate deployment: write PEM files, then reload the edge server in place."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from cryptography import x509

from ..utils.config import Config
from .errors import DeploymentError

_log = logging.getLogger(__name__)

RELOAD_TIMEOUT = 30.0  # seconds

_PEM_BEGIN = b"-----BEGIN CERTIFICATE-----"
_PEM_END = b"-----END CERTIFICATE-----"


@dataclass(frozen=True)
class DeployedPaths:
	cert_path: Path
	key_path: Path
	full_chain_path: Path


def split_pem_chain(chain_pem: bytes) -> list[bytes]:
	"""Split a PEM bundle into its certificate blocks, leaf first."""
	certs = []
	data = chain_pem
	while _PEM_BEGIN in data:
		start = data.find(_PEM_BEGIN)
		end = data.find(_PEM_END, start)
		if end == -1:
			break
		end += len(_PEM_END)
		certs.append(data[start:end])
		data = data[end:]
	return certs


def certificate_expiry(chain_pem: bytes) -> datetime:
	"""notAfter (UTC) of the leaf certificate of a PEM bundle."""
	certs = split_pem_chain(chain_pem)
	if not certs:
		raise ValueError("No certificate found in PEM data")
	return x509.load_pem_x509_certificate(certs[0]).not_valid_after_utc


def _atomic_write_bytes(path: Path, content: bytes, mode: int) -> None:
	"""Write ``content`` to a temp file in the same directory and rename it over ``path``."""
	fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
	try:
		with os.fdopen(fd, "wb") as f:
			f.write(content)
			f.flush()
			os.fsync(f.fileno())
		os.chmod(tmp_path, mode)
		os.replace(tmp_path, path)
	finally:
		with contextlib.suppress(OSError):
			if os.path.exists(tmp_path):
				os.unlink(tmp_path)


async def run_exec(*cmd: str, timeout: float = RELOAD_TIMEOUT) -> tuple[int, str, str]:
	"""Run a command and return (code, stdout, stderr). Uses exec, not shell."""
	proc: asyncio.subprocess.Process | None = None
	try:
		proc = await asyncio.create_subprocess_exec(
			*cmd,
			stdout=asyncio.subprocess.PIPE,
			stderr=asyncio.subprocess.PIPE,
		)
		stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
		code = proc.returncode
		assert code is not None, "returncode should be set after communicate()"
		return code, stdout.decode(errors="replace"), stderr.decode(errors="replace")
	except asyncio.TimeoutError:
		_log.warning("DEPLOY_EXEC_TIMEOUT command timed out after %.1fs: %s", timeout, cmd)
		return -1, "", f"Command timed out after {timeout}s"
	except OSError as exc:
		_log.warning("DEPLOY_EXEC_ERROR command failed: %s - %s", cmd, exc)
		return -1, "", str(exc)
	finally:
		if proc is not None and proc.returncode is None:
			with contextlib.suppress(ProcessLookupError):
				proc.kill()
				await proc.wait()


class CertificateDeployer:
	"""Writes certificate material under ``certs_dir`` and reloads the edge server."""

	def __init__(self, certs_dir: Path, reload_command: str, reload_timeout: float = RELOAD_TIMEOUT):
		self.certs_dir = certs_dir
		self.reload_command = reload_command
		self.reload_timeout = reload_timeout

	@classmethod
	def from_config(cls, cfg: Config) -> "CertificateDeployer":
		return cls(cfg.certs_dir, cfg.reload_command)

	def paths_for(self, domain: str) -> DeployedPaths:
		return DeployedPaths(
			cert_path=self.certs_dir / f"{domain}.crt",
			key_path=self.certs_dir / f"{domain}.key",
			full_chain_path=self.certs_dir / f"{domain}.fullchain.crt",
		)

	def store(self, domain: str, certificate_pem: bytes, key_pem: bytes) -> DeployedPaths:
		"""Write leaf, full chain and key for ``domain``, replacing earlier files in place."""
		certs = split_pem_chain(certificate_pem)
		if not certs:
			raise ValueError(f"No certificate in PEM data for {domain}")

		self.certs_dir.mkdir(parents=True, exist_ok=True)
		paths = self.paths_for(domain)
		_atomic_write_bytes(paths.key_path, key_pem, 0o600)
		_atomic_write_bytes(paths.cert_path, certs[0] + b"\n", 0o644)
		_atomic_write_bytes(paths.full_chain_path, b"\n".join(certs) + b"\n", 0o644)
		_log.info("DEPLOY_STORE saved certificate for %s to %s", domain, self.certs_dir)
		return paths

	async def reload(self) -> None:
		"""Ask the edge server to re-read its TLS configuration (no restart)."""
		argv = shlex.split(self.reload_command)
		if not argv:
			raise DeploymentError("Edge reload command is empty")
		code, _, stderr = await run_exec(*argv, timeout=self.reload_timeout)
		if code != 0:
			detail = stderr.strip().splitlines()[-1] if stderr.strip() else f"exit status {code}"
			_log.error("DEPLOY_RELOAD failed command=%s: %s", self.reload_command, detail)
			raise DeploymentError(f"Edge server reload failed: {detail[:200]}")
		_log.info("DEPLOY_RELOAD edge server reloaded")

	async def deploy(self, domain: str, certificate_pem: bytes, key_pem: bytes) -> DeployedPaths:
		"""Write the files, then reload. Written files stay even if the reload fails."""
		paths = await asyncio.to_thread(self.store, domain, certificate_pem, key_pem)
		await self.reload()
		return paths
