"""cla-bot operator CLI."""

from __future__ import annotations

import json
import re
from dataclasses import asdict

import typer

from cla_bot.server.agreement_connector import (
    AgreementConnector,
    AgreementServiceError,
    ExternalAgreement,
    build_agreement_connector,
)
from cla_bot.server.app import configure_logging
from cla_bot.server.db import ClaDB
from cla_bot.shared.settings import CLASettings, ConfigurationError

PR_REF_PATTERN = re.compile(r"\s*\([^)]*#\d+\)\s*$")

# Concord rejects unknown status names per request, so each group is queried separately.
STATUS_GROUPS = [
    "CURRENT_CONTRACT,UNKNOWN_CONTRACT,SIGNING",
    "DRAFT",
    "NEGOTIATION",
    "PENDING",
    "APPROVED",
    "EXECUTED",
    "TERMINATED",
    "EXPIRED",
    "CANCELLED",
]
FIX_PAGE_SIZE = 50


app = typer.Typer(add_completion=False, help="cla-bot: Contributor License Agreement bot for GitHub")


def _settings() -> CLASettings:
    settings = CLASettings.from_env()
    configure_logging(settings.log_level)
    return settings


def _agreement_connector(settings: CLASettings) -> AgreementConnector:
    if settings.connector == "api":
        missing = [
            name
            for name, value in (
                ("CONCORD_API_KEY", settings.concord_api_key),
                ("CONCORD_ORGANIZATION_ID", settings.concord_organization_id),
            )
            if not value
        ]
        if missing:
            typer.echo(f"Missing required environment variables: {', '.join(missing)}", err=True)
            raise typer.Exit(code=1)
    return build_agreement_connector(settings)


def strip_pr_reference(description: str) -> str | None:
    """Drop a trailing ` (org/repo#N)` reference; None when there is nothing to strip."""

    if not PR_REF_PATTERN.search(description):
        return None
    return PR_REF_PATTERN.sub("", description)


def collect_cla_agreements(
    connector: AgreementConnector, page_size: int = FIX_PAGE_SIZE
) -> list[ExternalAgreement]:
    seen: set[str] = set()
    collected: list[ExternalAgreement] = []
    for statuses in STATUS_GROUPS:
        page = 0
        while True:
            try:
                items, total = connector.list_cla_agreements(statuses, page=page, page_size=page_size)
            except AgreementServiceError:
                typer.echo(f"  [{statuses}] not a valid status, skipping")
                break
            for agreement in items:
                if agreement.ref not in seen:
                    seen.add(agreement.ref)
                    collected.append(agreement)
            typer.echo(f"  [{statuses}] page {page}: {len(items)} items (total: {total})")
            if (page + 1) * page_size >= total or not items:
                break
            page += 1
    return collected


@app.command()
def serve(
    print_startup: bool = typer.Option(
        False, "--print-startup", help="Print the uvicorn startup command and exit."
    ),
) -> None:
    """Run the webhook server."""
    settings = _settings()
    if print_startup:
        typer.echo(f"uvicorn cla_bot.server.app:app --host {settings.host} --port {settings.port}")
        return
    try:
        settings.validate()
    except ConfigurationError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)

    import uvicorn

    uvicorn.run("cla_bot.server.app:app", host=settings.host, port=settings.port)


@app.command()
def status(username: str) -> None:
    """Show the stored CLA record and tracked pull requests for a GitHub user."""
    settings = _settings()
    db = ClaDB(settings.database_path)
    try:
        record = db.find_agreement_by_username(username)
        if record is None:
            typer.echo(f"No CLA record for {username}")
            raise typer.Exit(code=1)
        tracked = db.list_tracked_prs_for_user(record.github_user_id)
    finally:
        db.close()
    typer.echo(
        json.dumps(
            {
                "agreement": asdict(record),
                "pull_requests": [pr.ref for pr in tracked],
            },
            indent=2,
        )
    )


@app.command()
def templates() -> None:
    """List the automated agreement templates of the organization."""
    connector = _agreement_connector(_settings())
    rows = connector.list_templates()
    if not rows:
        typer.echo("No automated templates found.")
        return
    for row in rows:
        typer.echo(f"{row['uid']}\t{row['title']}")


@app.command()
def agreements(
    page: int = typer.Option(0, "--page", min=0),
    page_size: int = typer.Option(25, "--page-size", min=1, max=100),
    statuses: str = typer.Option("CURRENT_CONTRACT,UNKNOWN_CONTRACT,SIGNING", "--statuses"),
) -> None:
    """List CLA-tagged agreements."""
    connector = _agreement_connector(_settings())
    items, total = connector.list_cla_agreements(statuses, page=page, page_size=page_size)
    for agreement in items:
        typer.echo(f"{agreement.ref}\t{agreement.status}\t{agreement.title}")
    typer.echo(f"Showing {len(items)} of {total} (page {page})")


@app.command("fix-descriptions")
def fix_descriptions(
    dry_run: bool = typer.Option(False, "--dry-run", help="Report changes without applying them."),
) -> None:
    """Strip trailing pull request references from CLA agreement descriptions."""
    connector = _agreement_connector(_settings())
    typer.echo(f"=== Fix CLA descriptions{' (dry run)' if dry_run else ''} ===")
    typer.echo("Fetching all CLA agreements...")
    collected = collect_cla_agreements(connector)
    typer.echo(f"Found {len(collected)} CLA agreements.")

    updated = skipped = errors = 0
    for agreement in collected:
        try:
            detail = connector.get_agreement(agreement.ref)
            new_description = strip_pr_reference(detail.description)
            if new_description is None:
                skipped += 1
                continue
            typer.echo(f"[{agreement.ref}] {detail.title}")
            typer.echo(f"  Before: {detail.description}")
            typer.echo(f"  After:  {new_description}")
            if not dry_run:
                connector.update_agreement_description(agreement.ref, new_description)
            updated += 1
        except AgreementServiceError as exc:
            errors += 1
            typer.echo(f"[{agreement.ref}] Error: {exc}", err=True)

    typer.echo("=== Summary ===")
    typer.echo(f"Total:   {len(collected)}")
    typer.echo(f"Updated: {updated}")
    typer.echo(f"Skipped: {skipped} (no PR reference found)")
    typer.echo(f"Errors:  {errors}")


if __name__ == "__main__":
    app()
