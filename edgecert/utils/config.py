#!/usr/bin/env python3
#
# edgecert/utils/config.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Configuration loading and app-level defaults."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path

_log = logging.getLogger(__name__)


class ConfigValidationError(Exception):
	"""Raised when critical configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Fixed constants
# ---------------------------------------------------------------------------
ACME_DIRECTORY_PROD = "https://acme-v02.api.letsencrypt.org/directory"
ACME_DIRECTORY_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"

# Google, Cloudflare, Quad9, OpenDNS - independent operators and anycast networks
DEFAULT_DNS_RESOLVERS = ("8.8.8.8", "1.1.1.1", "9.9.9.9", "208.67.222.222")
MIN_DNS_RESOLVERS = 3

DEFAULT_PROPAGATION_TIMEOUT = 300.0  # seconds
DEFAULT_PROPAGATION_INTERVAL = 15.0  # seconds
DEFAULT_VALIDATION_TIMEOUT = 180.0  # seconds
DEFAULT_RELOAD_COMMAND = "nginx -s reload"

DNS_PROVIDER_ROUTE53 = "route53"


@dataclass(frozen=True)
class Config:
	"""Resolved runtime configuration derived from env and defaults."""
	base_dir: Path
	data_dir: Path
	db_path: Path
	locks_dir: Path
	certs_dir: Path
	account_key_path: Path
	acme_email: str
	base_domain: str
	acme_directory_url: str = ACME_DIRECTORY_PROD
	dns_provider: str = ""
	aws_access_key_id: str = ""
	aws_secret_access_key: str = ""
	route53_hosted_zone_id: str = ""
	dns_resolvers: tuple[str, ...] = DEFAULT_DNS_RESOLVERS
	propagation_timeout: float = DEFAULT_PROPAGATION_TIMEOUT
	propagation_interval: float = DEFAULT_PROPAGATION_INTERVAL
	skip_propagation_for_automated: bool = False
	validation_timeout: float = DEFAULT_VALIDATION_TIMEOUT
	reload_command: str = DEFAULT_RELOAD_COMMAND
	api_token: str = ""
	log_level: str = "INFO"

	@property
	def route53_enabled(self) -> bool:
		"""True when Route53 is selected and all three credentials are present."""
		return (
			self.dns_provider.strip().lower() == DNS_PROVIDER_ROUTE53
			and bool(self.aws_access_key_id)
			and bool(self.aws_secret_access_key)
			and bool(self.route53_hosted_zone_id)
		)

	def fqdn(self, subdomain: str) -> str:
		"""Fully-qualified name of a customer subdomain under the base domain."""
		return f"{subdomain}.{self.base_domain}"


def _parse_value(raw: str) -> str:
	"""Extract value, respecting quotes and stripping inline comments.

	Handles quoted values correctly (e.g., EDGE_RELOAD_COMMAND="kill -HUP 1 #x")
	and only strips comments from unquoted values.
	"""
	raw = raw.strip()
	if raw and raw[0] in ('"', "'"):
		quote = raw[0]
		end = raw.find(quote, 1)
		if end != -1:
			return raw[1:end]
	if " #" in raw:
		raw = raw.split(" #", 1)[0]
	return raw.strip()


def load_dotenv(dotenv_path: Path | None = None) -> None:
	"""Load simple KEY=VALUE pairs from edgecert.env.

	Behavior:
	- Ignores blank lines and comments (# ...)
	- Handles `export KEY=VALUE` syntax
	- Respects quoted values (doesn't strip # inside quotes)
	- Does not override already-set environment variables
	"""
	project_root = Path(__file__).resolve().parents[2]
	dotenv_path = dotenv_path or (project_root / "edgecert.env")
	if not dotenv_path.exists():
		return
	for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
		line = raw_line.strip()
		if not line or line.startswith("#"):
			continue
		if "=" not in line:
			continue
		key, value = line.split("=", 1)
		key = key.strip()
		if key.startswith("export "):
			key = key[7:].strip()
		value = _parse_value(value)
		if not key:
			continue
		os.environ.setdefault(key, value)


def _env_bool(name: str, default: bool = False) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_seconds(name: str, default: float) -> float:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = float(raw)
	except ValueError as exc:
		raise ConfigValidationError(f"{name} must be a number of seconds, got {raw!r}") from exc
	if value <= 0:
		raise ConfigValidationError(f"{name} must be positive, got {raw!r}")
	return value


def _parse_resolvers(raw: str) -> tuple[str, ...]:
	if not raw.strip():
		return DEFAULT_DNS_RESOLVERS
	resolvers = tuple(dict.fromkeys(r.strip() for r in raw.split(",") if r.strip()))
	if len(resolvers) < MIN_DNS_RESOLVERS:
		raise ConfigValidationError(
			f"DNS_RESOLVERS needs at least {MIN_DNS_RESOLVERS} distinct resolvers, got {len(resolvers)}"
		)
	return resolvers


def load_config() -> Config:
	"""Load configuration from environment variables (optionally via edgecert.env)."""
	load_dotenv()
	project_root = Path(__file__).resolve().parents[2]

	data_dir = Path(os.getenv("EDGECERT_DATA_DIR", str(project_root / "data"))).resolve()
	db_path = (data_dir / "edgecert.db").resolve()
	locks_dir = (data_dir / "locks").resolve()
	certs_dir = Path(os.getenv("CERTS_DIR", str(data_dir / "certs"))).resolve()
	account_key_path = Path(
		os.getenv("LETS_ENCRYPT_ACCOUNT_KEY", str(data_dir / "account.key"))
	)
	if not account_key_path.is_absolute():
		account_key_path = data_dir / account_key_path
	account_key_path = account_key_path.resolve()

	# Self-healing: Ensure directories exist
	try:
		for d in (data_dir, locks_dir, certs_dir, account_key_path.parent):
			if d.exists() and not d.is_dir():
				raise ConfigValidationError(f"Path exists but is not a directory: {d}")
			d.mkdir(parents=True, exist_ok=True)
	except OSError as exc:
		raise ConfigValidationError(f"Cannot create data directories: {exc}") from exc

	allowed_levels = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
	log_level = os.getenv("LOG_LEVEL", "INFO").upper()
	if log_level not in allowed_levels:
		log_level = "INFO"

	acme_email = os.getenv("LETS_ENCRYPT_EMAIL", "").strip()
	if not acme_email or "@" not in acme_email:
		raise ConfigValidationError("LETS_ENCRYPT_EMAIL is not set to a contact address")

	base_domain = os.getenv("DOMAIN", "").strip().strip(".").lower()
	if not base_domain:
		raise ConfigValidationError("DOMAIN (base domain suffix) is not set")

	directory_url = os.getenv("ACME_DIRECTORY_URL", "").strip()
	if not directory_url:
		directory_url = ACME_DIRECTORY_STAGING if _env_bool("ACME_STAGING") else ACME_DIRECTORY_PROD

	cfg = Config(
		base_dir=project_root,
		data_dir=data_dir,
		db_path=db_path,
		locks_dir=locks_dir,
		certs_dir=certs_dir,
		account_key_path=account_key_path,
		acme_email=acme_email,
		base_domain=base_domain,
		acme_directory_url=directory_url,
		dns_provider=os.getenv("DNS_PROVIDER", "").strip(),
		aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID", "").strip(),
		aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY", "").strip(),
		route53_hosted_zone_id=os.getenv("ROUTE53_HOSTED_ZONE_ID", "").strip(),
		dns_resolvers=_parse_resolvers(os.getenv("DNS_RESOLVERS", "")),
		propagation_timeout=_env_seconds("DNS_PROPAGATION_TIMEOUT", DEFAULT_PROPAGATION_TIMEOUT),
		propagation_interval=_env_seconds("DNS_PROPAGATION_INTERVAL", DEFAULT_PROPAGATION_INTERVAL),
		skip_propagation_for_automated=_env_bool("EDGECERT_SKIP_PROPAGATION_FOR_AUTOMATED"),
		validation_timeout=_env_seconds("ACME_VALIDATION_TIMEOUT", DEFAULT_VALIDATION_TIMEOUT),
		reload_command=os.getenv("EDGE_RELOAD_COMMAND", "").strip() or DEFAULT_RELOAD_COMMAND,
		api_token=os.getenv("EDGECERT_API_TOKEN", "").strip(),
		log_level=log_level,
	)

	if cfg.dns_provider and not cfg.route53_enabled:
		_log.warning(
			"CONFIG dns_provider=%s without complete Route53 credentials, challenges will be manual",
			cfg.dns_provider,
		)
	return cfg


# Global config singleton with thread-safe lazy initialization
_config: Config | None = None
_config_lock = threading.Lock()


def get_config() -> Config:
	"""Get the global config singleton (thread-safe)."""
	global _config
	if _config is None:
		with _config_lock:
			if _config is None:  # Double-checked locking
				_config = load_config()
	return _config


def reset_config() -> None:
	"""Reset the cached config. Intended for tests only."""
	global _config
	with _config_lock:
		_config = None
