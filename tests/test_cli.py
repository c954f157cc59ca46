import json

import pytest
from typer.testing import CliRunner

import cla_bot.cli as cli_module
from cla_bot.cli import app, strip_pr_reference
from cla_bot.server.agreement_connector import AgreementServiceError
from cla_bot.server.agreement_connector_inmemory import InMemoryAgreementConnector
from cla_bot.server.db import ClaDB


def _use_connector(monkeypatch: pytest.MonkeyPatch, connector: InMemoryAgreementConnector) -> None:
    monkeypatch.setattr(cli_module, "build_agreement_connector", lambda settings: connector)


def test_serve_print_startup_uses_configured_host_and_port():
    runner = CliRunner()
    result = runner.invoke(
        app, ["serve", "--print-startup"], env={"HOST": "127.0.0.1", "PORT": "8080"}
    )

    assert result.exit_code == 0
    assert "uvicorn cla_bot.server.app:app --host 127.0.0.1 --port 8080" in result.stdout


def test_serve_refuses_to_start_without_required_settings():
    runner = CliRunner()
    result = runner.invoke(
        app,
        ["serve"],
        env={"GITHUB_APP_ID": "", "CONCORD_API_KEY": "", "CLA_CONNECTOR": "api"},
    )

    assert result.exit_code == 1


def test_status_shows_record_and_tracked_prs(tmp_path):
    db_path = tmp_path / "cla.db"
    db = ClaDB(db_path)
    db.upsert_agreement("Alice", 42, "AG-1", "pending", github_email="alice@example.com")
    db.upsert_tracked_pr("org/repoA", 7, "Alice", 42)
    db.upsert_tracked_pr("org/repoB", 3, "Alice", 42)
    db.close()

    runner = CliRunner()
    result = runner.invoke(app, ["status", "alice"], env={"DATABASE_PATH": str(db_path)})

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["agreement"]["agreement_ref"] == "AG-1"
    assert payload["agreement"]["status"] == "pending"
    assert payload["pull_requests"] == ["org/repoA#7", "org/repoB#3"]


def test_status_for_unknown_user_fails(tmp_path):
    runner = CliRunner()
    result = runner.invoke(
        app, ["status", "nobody"], env={"DATABASE_PATH": str(tmp_path / "cla.db")}
    )

    assert result.exit_code == 1
    assert "No CLA record for nobody" in result.stdout


def test_templates_and_agreements_listing(monkeypatch: pytest.MonkeyPatch):
    connector = InMemoryAgreementConnector()
    connector.add_agreement("AG-1", signer_email="alice@example.com", status="SIGNING")
    _use_connector(monkeypatch, connector)
    runner = CliRunner()

    templates = runner.invoke(app, ["templates"], env={"CLA_CONNECTOR": "in_memory"})
    assert templates.exit_code == 0
    assert "template-1\tCLA template" in templates.stdout

    listing = runner.invoke(
        app, ["agreements", "--page-size", "10"], env={"CLA_CONNECTOR": "in_memory"}
    )
    assert listing.exit_code == 0
    assert "AG-1\tSIGNING" in listing.stdout
    assert "Showing 1 of 1 (page 0)" in listing.stdout


def test_agreement_commands_require_concord_settings():
    runner = CliRunner()
    result = runner.invoke(
        app,
        ["templates"],
        env={"CLA_CONNECTOR": "api", "CONCORD_API_KEY": "", "CONCORD_ORGANIZATION_ID": ""},
    )

    assert result.exit_code == 1


def test_strip_pr_reference():
    base = "Contributor License Agreement for GitHub user @alice"
    assert strip_pr_reference(f"{base} (org/repo#123)") == base
    assert strip_pr_reference(f"{base}  (org/repo#7)  ") == base
    assert strip_pr_reference(base) is None
    assert strip_pr_reference(f"{base} (see docs)") is None


def test_fix_descriptions_updates_only_matching_agreements(monkeypatch: pytest.MonkeyPatch):
    base = "Contributor License Agreement for GitHub user @"
    connector = InMemoryAgreementConnector()
    connector.add_agreement("AG-1", status="CURRENT_CONTRACT", description=f"{base}alice (org/repo#7)")
    connector.add_agreement("AG-2", status="SIGNING", description=f"{base}bob")
    connector.add_agreement("AG-3", status="CANCELLED", description=f"{base}carol (org/other#1)")
    _use_connector(monkeypatch, connector)

    runner = CliRunner()
    result = runner.invoke(app, ["fix-descriptions"], env={"CLA_CONNECTOR": "in_memory"})

    assert result.exit_code == 0
    assert "Total:   3" in result.stdout
    assert "Updated: 2" in result.stdout
    assert "Skipped: 1" in result.stdout
    assert connector.agreements["AG-1"].description == f"{base}alice"
    assert connector.agreements["AG-2"].description == f"{base}bob"
    assert connector.agreements["AG-3"].description == f"{base}carol"


def test_fix_descriptions_dry_run_changes_nothing(monkeypatch: pytest.MonkeyPatch):
    description = "Contributor License Agreement for GitHub user @alice (org/repo#7)"
    connector = InMemoryAgreementConnector()
    connector.add_agreement("AG-1", status="EXECUTED", description=description)
    _use_connector(monkeypatch, connector)

    runner = CliRunner()
    result = runner.invoke(
        app, ["fix-descriptions", "--dry-run"], env={"CLA_CONNECTOR": "in_memory"}
    )

    assert result.exit_code == 0
    assert "Updated: 1" in result.stdout
    assert connector.agreements["AG-1"].description == description
    assert "update_agreement_description" not in connector.calls


def test_fix_descriptions_skips_rejected_status_groups(monkeypatch: pytest.MonkeyPatch):
    connector = InMemoryAgreementConnector()
    original = connector.list_cla_agreements

    def list_cla_agreements(statuses: str, page: int = 0, page_size: int = 25):
        if statuses == "NEGOTIATION":
            raise AgreementServiceError("invalid status", status_code=400)
        return original(statuses, page=page, page_size=page_size)

    connector.list_cla_agreements = list_cla_agreements  # type: ignore[method-assign]
    _use_connector(monkeypatch, connector)

    runner = CliRunner()
    result = runner.invoke(app, ["fix-descriptions"], env={"CLA_CONNECTOR": "in_memory"})

    assert result.exit_code == 0
    assert "[NEGOTIATION] not a valid status, skipping" in result.stdout
    assert "Total:   0" in result.stdout
