# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Test Suite: Command Line Interface
==================================
"""

import subprocess

import pytest
from typer.testing import CliRunner

from fedgate import __version__
from fedgate.cli import app

from conftest import IDP_ENTITY_ID, IDP_SSO_URL

runner = CliRunner()


class TestVersion:

    def test_prints_version(self):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert f"FedGate v{__version__}" in result.output


class TestCheck:

    def test_renders_table(self):
        result = runner.invoke(app, ["check"])

        assert result.exit_code == 0
        assert "Configuration Check" in result.output
        assert "Database URL" in result.output
        assert "IdP Metadata" in result.output


class TestMetadata:

    def test_summarizes_file_metadata(self, idp_metadata_file):
        result = runner.invoke(app, ["metadata", "--url", idp_metadata_file.as_uri()])

        assert result.exit_code == 0
        assert IDP_ENTITY_ID in result.output
        assert IDP_SSO_URL in result.output

    def test_unreadable_metadata(self, tmp_path):
        result = runner.invoke(app, ["metadata", "--url", (tmp_path / "missing.xml").as_uri()])

        assert result.exit_code == 1
        assert "0x80000004" in result.output

    def test_unsupported_scheme(self):
        result = runner.invoke(app, ["metadata", "--url", "ldap://idp.example.com"])

        assert result.exit_code == 1
        assert "0x80000003" in result.output


class TestDatabase:

    @pytest.fixture
    def alembic_calls(self, monkeypatch):
        calls = []

        def fake_run(args, **kwargs):
            calls.append(args)
            return subprocess.CompletedProcess(args, returncode=0, stdout="upgraded\n", stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)
        return calls

    def test_migrate_runs_alembic_upgrade(self, alembic_calls):
        result = runner.invoke(app, ["db", "migrate"])

        assert result.exit_code == 0
        assert alembic_calls[0][-3:] == ["alembic", "upgrade", "head"]
        assert "Migrations completed successfully" in result.output

    def test_migrate_to_revision(self, alembic_calls):
        runner.invoke(app, ["db", "migrate", "--revision", "001"])

        assert alembic_calls[0][-2:] == ["upgrade", "001"]

    def test_migrate_failure(self, monkeypatch):
        monkeypatch.setattr(
            subprocess,
            "run",
            lambda args, **kwargs: subprocess.CompletedProcess(args, returncode=1, stdout="", stderr="no such table"),
        )

        result = runner.invoke(app, ["db", "migrate"])

        assert result.exit_code == 1
        assert "Migration failed" in result.output
        assert "no such table" in result.output
