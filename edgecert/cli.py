#!/usr/bin/env python3
#
# edgecert/cli.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Command line entry point: run issuance without the API server."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .db import sqlite_domains
from .db.sqlite_runtime import session
from .db.sqlite_schema import init_schema
from .issuance.errors import IssuanceError
from .issuance.orchestrator import Orchestrator
from .issuance.states import InvalidTransition
from .main import setup_logging
from .models.domains import DomainPublic, is_valid_subdomain
from .utils.config import ConfigValidationError, get_config
from .utils.time import isoformat_utc

_log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _subdomain(value: str) -> str:
	label = value.strip().lower()
	if not is_valid_subdomain(label):
		raise argparse.ArgumentTypeError(f"'{value}' is not a single DNS label")
	return label


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="edgecert",
		description="Issue and activate ACME DNS-01 certificates for customer subdomains.",
	)
	sub = parser.add_subparsers(dest="command", required=True)

	issue = sub.add_parser("issue", help="obtain and store a certificate")
	issue.add_argument("subdomain", type=_subdomain)
	issue.add_argument("--deploy", action="store_true", help="reload the edge server afterwards")

	activate = sub.add_parser("activate", help="reload the edge server for a stored certificate")
	activate.add_argument("subdomain", type=_subdomain)

	show = sub.add_parser("show", help="print a domain record and its status history")
	show.add_argument("subdomain", type=_subdomain)
	return parser


def _show(cfg, subdomain: str) -> int:
	with session(cfg.db_path) as conn:
		row = sqlite_domains.get_domain(conn, subdomain)
		if row is None:
			print(f"Domain '{subdomain}' is not registered", file=sys.stderr)
			return EXIT_FAILED
		events = sqlite_domains.list_domain_events(conn, subdomain)
	record = DomainPublic.from_row(row)
	payload = record.model_dump(mode="json")
	payload["events"] = [
		{"status": e["status"], "message": e["message"], "created_at": isoformat_utc(e["created_at"])}
		for e in events
	]
	print(json.dumps(payload, indent=2))
	return EXIT_OK


async def _run(orchestrator: Orchestrator, args: argparse.Namespace) -> int:
	if args.command == "issue":
		if args.deploy:
			issued = await orchestrator.issue_and_deploy(args.subdomain)
		else:
			issued = await orchestrator.issue(args.subdomain)
		print(f"{issued.fqdn}: certificate stored at {issued.paths.full_chain_path}, expires {isoformat_utc(issued.expiry_date)}")
		return EXIT_OK
	if args.command == "activate":
		record = await orchestrator.activate(args.subdomain)
		print(f"{record.subdomain}: {record.status.value}")
		return EXIT_OK
	raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
	args = _build_parser().parse_args(argv)
	try:
		cfg = get_config()
	except ConfigValidationError as exc:
		print(f"Configuration error: {exc}", file=sys.stderr)
		return EXIT_USAGE
	setup_logging(cfg.log_level)

	with session(cfg.db_path) as conn:
		init_schema(conn)

	if args.command == "show":
		return _show(cfg, args.subdomain)

	try:
		return asyncio.run(_run(Orchestrator.from_config(cfg), args))
	except (IssuanceError, InvalidTransition, ValueError, OSError) as exc:
		_log.error("CLI_FAILED command=%s subdomain=%s: %s", args.command, args.subdomain, exc)
		print(f"{args.command} failed: {exc}", file=sys.stderr)
		return EXIT_FAILED
