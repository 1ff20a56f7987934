# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
FedGate Core - Shared Primitives

Modules:
    exceptions: Coded exception hierarchy
    security: Session token codec and per-kind signing secrets
"""

__version__ = "1.0.0"

from .exceptions.hierarchy import (
    ClientError,
    ConfigError,
    CookieNoneError,
    FedGateError,
    PanicError,
    SessionError,
    SignError,
    UnknownErrorObjectError,
    find_fedgate_error,
)
from .security.tokens import (
    SessionSecrets,
    generate_token,
    verify_token,
)

__all__ = [
    # Version
    "__version__",
    # Tokens
    "SessionSecrets",
    "generate_token",
    "verify_token",
    # Exceptions
    "FedGateError",
    "ClientError",
    "ConfigError",
    "CookieNoneError",
    "PanicError",
    "SessionError",
    "SignError",
    "UnknownErrorObjectError",
    "find_fedgate_error",
]
