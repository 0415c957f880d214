#!/usr/bin/env python3
#
# edgecert/issuance/locks.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Per-subdomain issuance locks (worker-safe).

flock() locks belong to the open file description, so two acquisitions of the
same lock file conflict whether they come from different uvicorn workers or
from two tasks in one process.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import time
from collections.abc import Iterator
from pathlib import Path

from .errors import IssuanceInProgress

_log = logging.getLogger(__name__)


class DomainLock:
	"""Non-blocking exclusive lock on ``<locks_dir>/<subdomain>.lock``."""

	def __init__(self, locks_dir: Path, subdomain: str):
		self.path = locks_dir / f"{subdomain}.lock"
		self._fd: int | None = None

	def acquire(self) -> None:
		self.path.parent.mkdir(parents=True, exist_ok=True)
		fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o600)
		try:
			fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
		except OSError as exc:
			os.close(fd)
			raise IssuanceInProgress(f"Issuance for '{self.path.stem}' already in progress") from exc
		os.ftruncate(fd, 0)
		os.write(fd, f"{os.getpid()} {time.time():.0f}".encode())
		self._fd = fd
		_log.debug("ISSUE_LOCK acquired %s", self.path)

	def release(self) -> None:
		fd, self._fd = self._fd, None
		if fd is None:
			return
		try:
			fcntl.flock(fd, fcntl.LOCK_UN)
		finally:
			os.close(fd)
		_log.debug("ISSUE_LOCK released %s", self.path)

	@property
	def held(self) -> bool:
		return self._fd is not None


@contextlib.contextmanager
def domain_lock(locks_dir: Path, subdomain: str) -> Iterator[DomainLock]:
	"""Hold the subdomain's lock for the block; raises IssuanceInProgress if taken."""
	lock = DomainLock(locks_dir, subdomain)
	lock.acquire()
	try:
		yield lock
	finally:
		lock.release()
