#!/usr/bin/env python3
#
# edgecert/api/response.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Common API response helpers."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException

from ..issuance.errors import (
	ConfigurationError,
	DeploymentError,
	DomainNotFound,
	IssuanceError,
	IssuanceInProgress,
	PropagationTimeout,
	ProtocolError,
)
from ..issuance.states import InvalidTransition


def ok_response(
	*,
	message: str | None = None,
	data: Any = None,
	**extra: Any,
) -> dict[str, Any]:
	"""Build a normalized success response with a stable ``status`` field."""
	payload: dict[str, Any] = {"status": "ok"}
	if message is not None:
		payload["message"] = message
	if data is not None:
		payload["data"] = data
	if extra:
		payload.update(extra)
	return payload


# Most specific first: DnsProviderError is a ProtocolError
_STATUS_CODES: tuple[tuple[type[Exception], int], ...] = (
	(DomainNotFound, 404),
	(IssuanceInProgress, 409),
	(InvalidTransition, 409),
	(PropagationTimeout, 504),
	(ProtocolError, 502),
	(DeploymentError, 502),
	(ConfigurationError, 500),
	(IssuanceError, 500),
)


def http_error(exc: Exception) -> HTTPException:
	"""Map an issuance failure to the HTTP error the API reports."""
	for exc_type, status_code in _STATUS_CODES:
		if isinstance(exc, exc_type):
			return HTTPException(status_code=status_code, detail=str(exc) or type(exc).__name__)
	return HTTPException(status_code=500, detail="Internal error")
