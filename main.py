#!/usr/bin/env python3
#
# main.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

# edgecert - ACME DNS-01 certificates for customer subdomains
# Local development entry point
#

import os

import uvicorn
from edgecert.utils.config import load_config

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Uvicorn logging dict-config that reuses the same format as the app
_UVICORN_LOG_CONFIG: dict = {
	"version": 1,
	"disable_existing_loggers": False,
	"formatters": {
		"default": {
			"format": _LOG_FORMAT,
			"datefmt": _DATE_FORMAT,
		},
		"access": {
			"format": _LOG_FORMAT,
			"datefmt": _DATE_FORMAT,
		},
	},
	"handlers": {
		"default": {
			"formatter": "default",
			"class": "logging.StreamHandler",
			"stream": "ext://sys.stderr",
		},
		"access": {
			"formatter": "access",
			"class": "logging.StreamHandler",
			"stream": "ext://sys.stdout",
		},
	},
	"loggers": {
		"uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
		"uvicorn.error": {"level": "INFO"},
		"uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
	},
}


def _env_port(default: int = 8000) -> int:
	try:
		port = int(os.environ.get("EDGECERT_PORT", default))
	except ValueError:
		return default
	return port if 0 < port < 65536 else default


if __name__ == "__main__":
	cfg = load_config()

	# Set levels in the uvicorn log-config to match the app
	_level = cfg.log_level.upper()
	for _logger in _UVICORN_LOG_CONFIG["loggers"].values():
		_logger["level"] = _level

	localhost_only = os.environ.get("EDGECERT_LOCALHOST_ONLY", "").lower() in ("1", "true", "yes")

	uvicorn.run(
		"edgecert:create_app",
		host="127.0.0.1" if localhost_only else "0.0.0.0",
		port=_env_port(),
		reload=os.environ.get("EDGECERT_DEV_RELOAD", "").lower() in ("1", "true", "yes"),
		factory=True,
		log_config=_UVICORN_LOG_CONFIG,
	)
