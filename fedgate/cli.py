# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Command Line Interface

Usage:
    fedgate serve              # Start API server
    fedgate metadata           # Fetch and summarize IdP metadata
    fedgate db migrate         # Run database migrations
"""

import asyncio
import subprocess
import sys

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="fedgate", help="FedGate - SAML Federated Authentication Test Backend")
console = Console()


# ============================================================
# SERVER COMMANDS
# ============================================================


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to bind to"),
    workers: int = typer.Option(1, help="Number of worker processes"),
    reload: bool = typer.Option(False, help="Enable auto-reload (development)"),
):
    """Start the API server."""
    import uvicorn

    if workers > 1:
        # Session secrets live in process memory
        console.print(
            "[yellow]Each worker generates its own session secrets; "
            "cookies signed by one worker are rejected by the others.[/]"
        )

    console.print(f"[bold green]Starting FedGate on {host}:{port}[/]")

    uvicorn.run(
        "fedgate.gateway.app:app",
        host=host,
        port=port,
        workers=workers if not reload else 1,
        reload=reload,
    )


# ============================================================
# SAML COMMANDS
# ============================================================


@app.command()
def metadata(
    url: str = typer.Option(None, help="Metadata URL (defaults to SAML_IDP_METADATA_URL)"),
):
    """Fetch IdP metadata and show what was found."""
    from fedgate_core.exceptions import FedGateError

    from .auth.metadata import IdpMetadataLoader
    from .core.settings import get_settings

    settings = get_settings()
    loader = IdpMetadataLoader(
        url or settings.saml.idp_metadata_url,
        attempts=settings.saml.metadata_attempts,
        base_timeout=settings.saml.metadata_base_timeout_seconds,
    )

    try:
        idp = asyncio.run(loader.fetch_idp_metadata())
    except FedGateError as e:
        console.print(f"[red]Failed to load IdP metadata ({e.hex_code}):[/] {e.message}")
        raise typer.Exit(1) from e

    table = Table(title="IdP Metadata")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Entity ID", idp.entity_id)
    table.add_row("SSO (HTTP-POST)", idp.sso_url)
    table.add_row("SLO (HTTP-POST)", idp.slo_url or "[dim]none[/]")
    table.add_row("Signing certificates", str(len(idp.signing_certificates)))
    console.print(table)


# ============================================================
# DATABASE COMMANDS
# ============================================================

db_app = typer.Typer(help="Database management commands")
app.add_typer(db_app, name="db")


def _alembic(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, "-m", "alembic", *args],
        capture_output=True,
        text=True,
    )


@db_app.command("migrate")
def db_migrate(
    revision: str = typer.Option("head", help="Target revision (default: head)"),
):
    """Run database migrations using Alembic."""
    console.print("[bold]Running migrations...[/]")

    result = _alembic("upgrade", revision)

    if result.returncode == 0:
        console.print("[green]Migrations completed successfully![/]")
        if result.stdout:
            console.print(result.stdout)
    else:
        console.print("[red]Migration failed![/]")
        if result.stderr:
            console.print(result.stderr)
        raise typer.Exit(1)


@db_app.command("current")
def db_current():
    """Show current database revision."""
    result = _alembic("current")

    if result.stdout:
        console.print(result.stdout)
    if result.stderr:
        console.print(result.stderr)


# ============================================================
# UTILITY COMMANDS
# ============================================================


@app.command()
def version():
    """Show version information."""
    from . import __version__

    console.print(f"FedGate v{__version__}")


@app.command()
def check():
    """Check configuration."""
    from urllib.parse import urlsplit

    from .core.settings import get_settings

    console.print("[bold]Checking configuration...[/]\n")

    settings = get_settings()

    checks = []

    # Database
    if settings.database.url.startswith("postgresql"):
        checks.append(("Database URL", "✓", "PostgreSQL configured"))
    elif settings.database.url.startswith("sqlite"):
        checks.append(("Database URL", "⚠", "SQLite (development only)"))
    else:
        checks.append(("Database URL", "✗", "Unsupported backend"))

    # IdP metadata
    scheme = urlsplit(settings.saml.idp_metadata_url).scheme
    if scheme in ("file", "http", "https"):
        checks.append(("IdP Metadata", "✓", settings.saml.idp_metadata_url))
    else:
        checks.append(("IdP Metadata", "✗", f"Unsupported scheme: {scheme or '(none)'}"))

    # Service provider
    if settings.saml.backend_url.startswith("https://"):
        checks.append(("Backend URL", "✓", settings.saml.backend_url))
    else:
        checks.append(("Backend URL", "⚠", "Secure cookies need HTTPS"))

    if settings.saml.sign_requests:
        if settings.saml.sp_cert_path and settings.saml.sp_key_path:
            checks.append(("Request Signing", "✓", "Certificate and key configured"))
        else:
            checks.append(("Request Signing", "✗", "Enabled without certificate/key"))
    else:
        checks.append(("Request Signing", "○", "Disabled"))

    table = Table(title="Configuration Check")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Details", style="dim")

    for name, status, details in checks:
        if status == "✓":
            status_style = "[green]✓[/]"
        elif status == "✗":
            status_style = "[red]✗[/]"
        elif status == "⚠":
            status_style = "[yellow]⚠[/]"
        else:
            status_style = "[dim]○[/]"

        table.add_row(name, status_style, details)

    console.print(table)


# ============================================================
# MAIN
# ============================================================


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
