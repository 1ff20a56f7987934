# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
FedGate - SAML Federated Authentication Test Backend

Federates login and logout through an external SAML identity provider
without a server-side session store. All correlation state between
redirect hops travels in signed, path-scoped cookies.

Quick Start:
    fedgate check           # show configuration
    fedgate db migrate      # create the users table
    fedgate serve           # start the API server

Layout:
    auth           SAML flows, cookie sessions, IdP metadata, python3-saml adapter
    core           settings, localized messages, error rendering
    data           SQLAlchemy engine, models and the user repository
    gateway        FastAPI application, routes and exception handlers
    observability  structured logging and audit events
"""

__version__ = "1.0.0"
