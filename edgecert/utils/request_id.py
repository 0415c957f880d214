#!/usr/bin/env python3
#
# edgecert/utils/request_id.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Request ID middleware for tracing issuance calls across log lines."""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

_log = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Client-supplied IDs end up in logs; accept only short opaque tokens
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._\-]{1,128}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
	"""Attach a request ID to every request and log the outcome of API calls."""

	async def dispatch(self, request: Request, call_next: Callable) -> Response:
		supplied = request.headers.get(REQUEST_ID_HEADER, "")
		request_id = supplied if _REQUEST_ID_RE.fullmatch(supplied) else uuid.uuid4().hex
		request.state.request_id = request_id

		started = time.monotonic()
		response = await call_next(request)
		elapsed_ms = (time.monotonic() - started) * 1000

		response.headers[REQUEST_ID_HEADER] = request_id
		_log.debug(
			"REQUEST id=%s %s %s -> %d (%.0fms)",
			request_id,
			request.method,
			request.url.path,
			response.status_code,
			elapsed_ms,
		)
		return response
