# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Core Module

- settings: pydantic-settings configuration
- messages: localized message catalog
- errors: exception to ErrorBody rendering
"""
