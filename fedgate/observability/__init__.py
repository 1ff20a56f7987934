# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Observability Module

Structured logging with request correlation and audit events.
"""

from .logging import (
    AuditLogger,
    HumanFormatter,
    JSONFormatter,
    audit_logger,
    configure_logging,
    mask_sensitive_data,
)

__all__ = [
    "AuditLogger",
    "HumanFormatter",
    "JSONFormatter",
    "audit_logger",
    "configure_logging",
    "mask_sensitive_data",
]
