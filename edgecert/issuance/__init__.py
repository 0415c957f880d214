#!/usr/bin/env python3
#
# edgecert/issuance/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""ACME DNS-01 issuance: challenge publication, propagation, orchestration, deployment.

Only the dependency-free pieces are re-exported here; import the orchestrator
from ``edgecert.issuance.orchestrator``.
"""

from .errors import (
	ConfigurationError,
	DeploymentError,
	DnsProviderError,
	DomainNotFound,
	IssuanceError,
	IssuanceInProgress,
	PropagationTimeout,
	ProtocolError,
)
from .states import DomainMode, DomainStatus, InvalidTransition, transition

__all__ = [
	"ConfigurationError",
	"DeploymentError",
	"DnsProviderError",
	"DomainMode",
	"DomainNotFound",
	"DomainStatus",
	"InvalidTransition",
	"IssuanceError",
	"IssuanceInProgress",
	"PropagationTimeout",
	"ProtocolError",
	"transition",
]
