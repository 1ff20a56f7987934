# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Data Module

- postgres: async engine and session factory (PostgreSQL or SQLite)
- models: ORM models
- repositories: transactional user repository
"""
