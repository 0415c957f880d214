#!/usr/bin/env python3
#
# tests/conftest.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Shared fixtures: isolated config, database and certificate material."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from edgecert.db import sqlite_domains
from edgecert.db.sqlite_runtime import close_connection, connect
from edgecert.db.sqlite_schema import init_schema
from edgecert.utils.config import Config, reset_config


@pytest.fixture
def cfg(tmp_path) -> Config:
	data_dir = tmp_path / "data"
	return Config(
		base_dir=tmp_path,
		data_dir=data_dir,
		db_path=data_dir / "edgecert.db",
		locks_dir=data_dir / "locks",
		certs_dir=data_dir / "certs",
		account_key_path=data_dir / "account.key",
		acme_email="ops@example.com",
		base_domain="example.com",
		acme_directory_url="https://acme.test/directory",
		propagation_timeout=60.0,
		propagation_interval=15.0,
		validation_timeout=30.0,
		reload_command="true",
		api_token="test-token",
	)


@pytest.fixture
def db(cfg):
	conn = connect(cfg.db_path)
	init_schema(conn)
	try:
		yield conn
	finally:
		close_connection(conn)


@pytest.fixture(autouse=True)
def _fresh_config():
	reset_config()
	yield
	reset_config()


def add_domain(conn, subdomain: str = "acme-corp", mode: str = "manual") -> int:
	return sqlite_domains.create_domain(
		conn,
		subdomain=subdomain,
		company_name="Acme Corp",
		stock_symbol="ACME",
		company_website="https://acme.example",
		dns_provider="Route53" if mode == "automated" else "Manual",
		mode=mode,
	)


def _name(common_name: str) -> x509.Name:
	return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def build_chain(common_name: str, *, days: int = 90) -> tuple[bytes, bytes, datetime]:
	"""Leaf signed by a throwaway issuer; returns (chain_pem, leaf_key_pem, leaf_not_after)."""
	now = datetime.now(timezone.utc).replace(microsecond=0)
	issuer_key = ec.generate_private_key(ec.SECP256R1())
	leaf_key = ec.generate_private_key(ec.SECP256R1())

	issuer = (
		x509.CertificateBuilder()
		.subject_name(_name("Test Issuer"))
		.issuer_name(_name("Test Issuer"))
		.public_key(issuer_key.public_key())
		.serial_number(x509.random_serial_number())
		.not_valid_before(now - timedelta(days=1))
		.not_valid_after(now + timedelta(days=days * 4))
		.sign(issuer_key, hashes.SHA256())
	)
	not_after = now + timedelta(days=days)
	leaf = (
		x509.CertificateBuilder()
		.subject_name(_name(common_name))
		.issuer_name(issuer.subject)
		.public_key(leaf_key.public_key())
		.serial_number(x509.random_serial_number())
		.not_valid_before(now - timedelta(days=1))
		.not_valid_after(not_after)
		.sign(issuer_key, hashes.SHA256())
	)

	chain_pem = leaf.public_bytes(serialization.Encoding.PEM) + issuer.public_bytes(serialization.Encoding.PEM)
	key_pem = leaf_key.private_bytes(
		encoding=serialization.Encoding.PEM,
		format=serialization.PrivateFormat.PKCS8,
		encryption_algorithm=serialization.NoEncryption(),
	)
	return chain_pem, key_pem, not_after


@pytest.fixture
def chain():
	return build_chain("acme-corp.example.com")
