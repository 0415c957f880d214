#!/usr/bin/env python3
#
# edgecert/issuance/challenge.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""DNS-01 challenge publication.

The TXT value is ``base64url(SHA-256(key_authorization))`` without padding
(RFC 8555 §8.4), the same digest ``acme.challenges.DNS01.validation`` computes.
Publication is automatic through Route53 when the provider is selected and all
three credentials are set; otherwise the record is logged for the operator.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import asdict, dataclass
from typing import Any, Protocol

import boto3
import josepy
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..utils.config import Config
from .errors import DnsProviderError

_log = logging.getLogger(__name__)

CHALLENGE_PREFIX = "_acme-challenge"
CHALLENGE_TTL = 600  # seconds


@dataclass(frozen=True)
class PublishedChallenge:
	"""The TXT record a DNS-01 challenge needs, and whether it was created for us."""
	name: str
	value: str
	ttl: int = CHALLENGE_TTL
	type: str = "TXT"
	published: bool = False

	def snapshot(self) -> dict[str, Any]:
		"""Shape stored on the domain record as ``dns_validation``."""
		data = asdict(self)
		data.pop("published")
		return data


def challenge_record_name(identifier: str) -> str:
	"""``_acme-challenge.<identifier>`` for a DNS identifier."""
	return f"{CHALLENGE_PREFIX}.{identifier.rstrip('.')}"


def compute_txt_value(key_authorization: str) -> str:
	"""DNS-01 TXT value for a key authorization (pure, deterministic)."""
	digest = hashlib.sha256(key_authorization.encode("utf-8")).digest()
	return josepy.b64encode(digest).decode("ascii")


class DnsProvider(Protocol):
	name: str

	def upsert_txt(self, record_name: str, value: str, ttl: int) -> str:
		...


class Route53Provider:
	"""UPSERT TXT records into one Route53 hosted zone."""

	name = "route53"

	def __init__(self, hosted_zone_id: str, access_key_id: str, secret_access_key: str, client: Any = None):
		self.hosted_zone_id = hosted_zone_id
		self.client = client or boto3.client(
			"route53",
			aws_access_key_id=access_key_id,
			aws_secret_access_key=secret_access_key,
			config=BotoConfig(retries={"max_attempts": 5}),
		)

	def upsert_txt(self, record_name: str, value: str, ttl: int) -> str:
		"""Create or replace the TXT record set; returns the Route53 change id."""
		change_batch = {
			"Comment": "ACME DNS-01 challenge",
			"Changes": [
				{
					"Action": "UPSERT",
					"ResourceRecordSet": {
						"Name": record_name,
						"Type": "TXT",
						"TTL": ttl,
						# Route53 wants TXT character-strings quoted
						"ResourceRecords": [{"Value": f'"{value}"'}],
					},
				}
			],
		}
		try:
			resp = self.client.change_resource_record_sets(
				HostedZoneId=self.hosted_zone_id,
				ChangeBatch=change_batch,
			)
		except (BotoCoreError, ClientError) as exc:
			raise DnsProviderError(f"Route53 rejected TXT record {record_name}: {exc}") from exc
		return resp.get("ChangeInfo", {}).get("Id", "")


class ChallengePublisher:
	"""Computes DNS-01 TXT values and publishes them when a provider is available."""

	def __init__(self, provider: DnsProvider | None = None):
		self.provider = provider

	@classmethod
	def from_config(cls, cfg: Config) -> "ChallengePublisher":
		if not cfg.route53_enabled:
			return cls(provider=None)
		return cls(
			provider=Route53Provider(
				hosted_zone_id=cfg.route53_hosted_zone_id,
				access_key_id=cfg.aws_access_key_id,
				secret_access_key=cfg.aws_secret_access_key,
			)
		)

	@property
	def automated(self) -> bool:
		return self.provider is not None

	async def publish(
		self,
		challenge_token: str,
		key_authorization: str,
		identifier: str,
		*,
		automated: bool = True,
	) -> PublishedChallenge:
		"""Return the challenge record, creating it when automation is possible.

		``automated=False`` (a domain in manual mode) never calls the provider.
		Missing provider credentials are not an error: the operator creates the
		record by hand.
		"""
		if not key_authorization.startswith(f"{challenge_token}."):
			raise ValueError("Key authorization does not belong to the challenge token")

		record = PublishedChallenge(
			name=challenge_record_name(identifier),
			value=compute_txt_value(key_authorization),
		)
		_log.info(
			"DNS_CHALLENGE record needed name=%s type=TXT ttl=%d value=%s",
			record.name,
			record.ttl,
			record.value,
		)

		if not (automated and self.provider is not None):
			_log.info("DNS_CHALLENGE manual mode, create the TXT record above at your DNS provider")
			return record

		change_id = await asyncio.to_thread(self.provider.upsert_txt, record.name, record.value, record.ttl)
		_log.info("DNS_CHALLENGE published via %s name=%s change=%s", self.provider.name, record.name, change_id)
		return PublishedChallenge(name=record.name, value=record.value, ttl=record.ttl, published=True)
