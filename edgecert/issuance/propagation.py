#!/usr/bin/env python3
#
# edgecert/issuance/propagation.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""DNS propagation checks against independent public resolvers.

A single resolver's answer says little about what the ACME validator will see
from its own vantage point, so a challenge counts as propagated only when every
configured resolver returns the expected TXT value in the same polling round.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

import dns.asyncresolver
import dns.exception
import dns.rdatatype

from ..utils.config import Config
from .errors import PropagationTimeout

_log = logging.getLogger(__name__)

DEFAULT_QUERY_LIFETIME = 5.0  # seconds per resolver query

Check = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class RoundOutcome:
	matched: bool
	rounds: int
	elapsed: float


async def _run_check(check: Check) -> bool:
	try:
		return bool(await check())
	except Exception as exc:  # a failing check is a non-match for this round
		_log.debug("Propagation check raised %s: %s", type(exc).__name__, exc)
		return False


async def poll_until_all(
	checks: Sequence[Check],
	*,
	timeout: float,
	interval: float,
	clock: Callable[[], float] = time.monotonic,
	sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	on_round: Callable[[int, list[bool]], None] | None = None,
) -> RoundOutcome:
	"""Run every check concurrently, round after round, until all pass together.

	Elapsed wall-clock time is the only bound: after a failed round the wait
	gives up once ``timeout`` has elapsed, otherwise it sleeps ``interval``.
	"""
	if not checks:
		raise ValueError("At least one check is required")

	start = clock()
	rounds = 0
	while True:
		rounds += 1
		results = list(await asyncio.gather(*(_run_check(check) for check in checks)))
		if on_round is not None:
			on_round(rounds, results)
		elapsed = clock() - start
		if all(results):
			return RoundOutcome(matched=True, rounds=rounds, elapsed=elapsed)
		if elapsed >= timeout:
			return RoundOutcome(matched=False, rounds=rounds, elapsed=elapsed)
		await sleep(interval)


def normalize_txt(value: str) -> str:
	"""Strip quoting artifacts some resolvers and tools leave on TXT data."""
	return value.strip().replace('"', "")


class ResolverQuery:
	"""TXT lookups against one fixed nameserver, never cached."""

	def __init__(self, nameserver: str, lifetime: float = DEFAULT_QUERY_LIFETIME):
		self.nameserver = nameserver
		self.lifetime = lifetime

	def _resolver(self) -> dns.asyncresolver.Resolver:
		resolver = dns.asyncresolver.Resolver(configure=False)
		resolver.nameservers = [self.nameserver]
		resolver.lifetime = self.lifetime
		resolver.cache = None
		return resolver

	async def txt_values(self, record_name: str) -> set[str]:
		"""Return the TXT values at ``record_name``; DNS failures raise DNSException."""
		answer = await self._resolver().resolve(record_name, dns.rdatatype.TXT, raise_on_no_answer=True)
		return {
			normalize_txt(b"".join(rdata.strings).decode("utf-8", errors="replace"))
			for rdata in answer
		}


class PropagationChecker:
	"""Waits until a TXT record is visible on every configured resolver."""

	def __init__(
		self,
		resolvers: Sequence[ResolverQuery],
		*,
		interval: float,
		clock: Callable[[], float] = time.monotonic,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	):
		if not resolvers:
			raise ValueError("At least one resolver is required")
		self.resolvers = list(resolvers)
		self.interval = interval
		self._clock = clock
		self._sleep = sleep

	@classmethod
	def from_config(cls, cfg: Config) -> "PropagationChecker":
		return cls(
			[ResolverQuery(ns) for ns in cfg.dns_resolvers],
			interval=cfg.propagation_interval,
		)

	def _check_for(self, resolver: ResolverQuery, record_name: str, expected: str) -> Check:
		async def check() -> bool:
			try:
				values = await resolver.txt_values(record_name)
			except dns.exception.DNSException as exc:
				_log.debug("DNS_PROPAGATION resolver=%s name=%s error=%s", resolver.nameserver, record_name, exc)
				return False
			return expected in values
		return check

	async def await_propagation(self, record_name: str, expected_value: str, timeout: float) -> RoundOutcome:
		"""Block until all resolvers agree, or raise PropagationTimeout."""
		expected = normalize_txt(expected_value)
		checks = [self._check_for(r, record_name, expected) for r in self.resolvers]

		def _log_round(round_no: int, results: list[bool]) -> None:
			missing = [r.nameserver for r, ok in zip(self.resolvers, results) if not ok]
			if missing:
				_log.info(
					"DNS_PROPAGATION round=%d name=%s waiting_on=%s",
					round_no,
					record_name,
					",".join(missing),
				)

		_log.info(
			"DNS_PROPAGATION waiting name=%s resolvers=%d timeout=%.0fs",
			record_name,
			len(checks),
			timeout,
		)
		outcome = await poll_until_all(
			checks,
			timeout=timeout,
			interval=self.interval,
			clock=self._clock,
			sleep=self._sleep,
			on_round=_log_round,
		)
		if not outcome.matched:
			raise PropagationTimeout(record_name, expected, timeout, outcome.rounds)
		_log.info(
			"DNS_PROPAGATION complete name=%s rounds=%d elapsed=%.1fs",
			record_name,
			outcome.rounds,
			outcome.elapsed,
		)
		return outcome
