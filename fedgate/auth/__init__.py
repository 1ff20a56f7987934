# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Auth Module

- saml: login/logout state machine
- sessions: signed cookie sessions per kind
- metadata: IdP metadata loading (file or network with retry)
- provider: python3-saml adapter
- forms: auto-submitting HTTP-POST binding forms
"""
