#!/usr/bin/env python3
#
# edgecert/main.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI application factory and startup lifecycle wiring."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .api import domains as domains_api
from .db.sqlite_runtime import close_all_connections, session
from .db.sqlite_schema import init_schema
from .issuance.orchestrator import Orchestrator
from .utils.config import Config, get_config
from .utils.rate_limit import limiter
from .utils.request_id import RequestIDMiddleware

_log = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_LOG_FORMAT_PLAIN = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# ANSI color codes for log levels (if TTY)
_LOG_COLORS = {
	"DEBUG": "\033[36m",    # Cyan
	"INFO": "\033[32m",     # Green
	"WARNING": "\033[33m",  # Yellow
	"ERROR": "\033[31m",    # Red
	"CRITICAL": "\033[35m", # Magenta
}
_RESET = "\033[0m"


class _ColoredFormatter(logging.Formatter):
	"""Formatter that pads and colors the level name on a TTY."""

	def format(self, record):
		orig_levelname = record.levelname
		color = _LOG_COLORS.get(orig_levelname)
		if color:
			record.levelname = f"{color}{orig_levelname:<8}{_RESET}"
		else:
			record.levelname = f"{orig_levelname:<8}"
		try:
			return super().format(record)
		finally:
			record.levelname = orig_levelname


def setup_logging(log_level: str) -> None:
	"""Configure unified logging for the API server and the CLI."""
	level = getattr(logging, log_level, logging.INFO)

	if sys.stdout.isatty():
		formatter: logging.Formatter = _ColoredFormatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)
	else:
		formatter = logging.Formatter(fmt=_LOG_FORMAT_PLAIN, datefmt=_DATE_FORMAT)

	# force=True drops handlers installed earlier (uvicorn, pytest)
	logging.basicConfig(
		level=level,
		handlers=[logging.StreamHandler(sys.stdout)],
		force=True,
	)
	for handler in logging.root.handlers:
		handler.setFormatter(formatter)

	for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
		logger = logging.getLogger(name)
		logger.handlers.clear()
		logger.setLevel(level)
		logger.propagate = True

	# boto and the ACME client log every HTTP round trip at DEBUG/INFO
	for name in ("botocore", "boto3", "urllib3", "acme.client"):
		logging.getLogger(name).setLevel(logging.WARNING)


@asynccontextmanager
async def _lifespan(app: FastAPI):
	"""Create the schema on startup, close pooled connections on shutdown."""
	cfg: Config = app.state.cfg

	# ─── BOOTSTRAP ───────────────────────────────────────────
	with session(cfg.db_path) as conn:
		init_schema(conn)
	_log.info(
		"STARTUP base_domain=%s directory=%s dns_provider=%s resolvers=%s",
		cfg.base_domain,
		cfg.acme_directory_url,
		"route53" if cfg.route53_enabled else "manual",
		",".join(cfg.dns_resolvers),
	)
	if not cfg.api_token:
		_log.warning("STARTUP EDGECERT_API_TOKEN is not set, the API will refuse all requests")

	try:
		yield
	finally:
		# ─── SHUTDOWN ────────────────────────────────────────
		closed = close_all_connections()
		_log.info("SHUTDOWN closed %d database connection(s)", closed)


def create_app(cfg: Config | None = None) -> FastAPI:
	"""Application factory for the certificate service."""
	cfg = cfg or get_config()
	setup_logging(cfg.log_level)

	app = FastAPI(
		title="edgecert",
		description="Automated ACME DNS-01 certificates for customer subdomains",
		version="0.1.0",
		lifespan=_lifespan,
		docs_url="/api/docs",
		redoc_url="/api/redoc",
	)

	app.state.cfg = cfg
	app.state.db_path = cfg.db_path
	app.state.orchestrator = Orchestrator.from_config(cfg)

	# ─── MIDDLEWARE ──────────────────────────────────────────
	app.add_middleware(RequestIDMiddleware)

	# Rate limiting
	app.state.limiter = limiter
	app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

	# ─── API ROUTES ──────────────────────────────────────────
	app.include_router(domains_api.router, prefix="/api/domains")

	return app
