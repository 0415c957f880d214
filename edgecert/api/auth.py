#!/usr/bin/env python3
#
# edgecert/api/auth.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Bearer token authentication for the management API."""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

_log = logging.getLogger(__name__)

_security = HTTPBearer(auto_error=False)


def require_api_token(
	request: Request,
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_security),
) -> None:
	"""FastAPI dependency that enforces the configured API token."""
	expected = request.app.state.cfg.api_token
	if not expected:
		# Refuse everything rather than run an open API
		raise HTTPException(status_code=503, detail="API token not configured")
	if not credentials or not credentials.credentials:
		raise HTTPException(status_code=401, detail="Not authenticated")
	if not hmac.compare_digest(credentials.credentials.encode("utf-8"), expected.encode("utf-8")):
		_log.info("AUTH_DENIED path=%s", request.url.path)
		raise HTTPException(status_code=401, detail="Invalid token")
