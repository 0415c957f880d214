#!/usr/bin/env python3
#
# edgecert/utils/time.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Timezone-aware time utilities."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
	"""Return the current UTC time as a timezone-aware datetime."""
	return datetime.now(timezone.utc)


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
	"""Render a UTC datetime the way the API and the database store it ('Z' suffix)."""
	if dt is None:
		return None
	return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
