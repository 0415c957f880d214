#!/usr/bin/env python3
#
# edgecert/models/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Pydantic models for EdgeCert."""

from .domains import (
	DnsValidation,
	DomainCreate,
	DomainEvent,
	DomainPublic,
)

__all__ = [
	"DnsValidation",
	"DomainCreate",
	"DomainEvent",
	"DomainPublic",
]
