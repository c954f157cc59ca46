"""Backward reconciliation: apply agreement-service events to stored records and PRs."""

from __future__ import annotations

import logging
from typing import Any

from cla_bot.server.checks import CheckPublisher
from cla_bot.server.db import ClaDB
from cla_bot.server.events import (
    AgreementCancelled,
    AgreementEvent,
    AgreementMovedToSigning,
    AgreementSigned,
)
from cla_bot.server.github_connector import GitHubAPIError, GitHubConnector
from cla_bot.server.messages import signed_comment
from cla_bot.server.models import STATUS_CANCELLED, ContributorAgreement, TrackedPullRequest
from cla_bot.server.signature import utc_now
from cla_bot.shared.settings import CLASettings


logger = logging.getLogger(__name__)


class InstallationResolver:
    """Maps repositories to the App installation that can write to them.

    The index is built on first use and kept for the lifetime of the
    resolver, which is one fan-out.
    """

    def __init__(self, github: GitHubConnector) -> None:
        self.github = github
        self._index: dict[str, int] | None = None

    def resolve(self, repo: str) -> int:
        if self._index is None:
            self._index = self._build_index()
        installation_id = self._index.get(repo.lower())
        if installation_id is None:
            raise GitHubAPIError(
                f"No GitHub App installation covers {repo}",
                status_code=404,
                reason_code="installation_not_found",
            )
        return installation_id

    def _build_index(self) -> dict[str, int]:
        index: dict[str, int] = {}
        for installation in self.github.list_installations():
            try:
                repos = self.github.list_installation_repositories(installation.id)
            except GitHubAPIError:
                logger.warning(
                    "Could not list repositories for installation %s", installation.id, exc_info=True
                )
                continue
            for repo in repos:
                index.setdefault(repo.lower(), installation.id)
        logger.debug("Indexed %s repositories across installations", len(index))
        return index


class CompletionReconciler:
    def __init__(self, db: ClaDB, github: GitHubConnector, settings: CLASettings) -> None:
        self.db = db
        self.github = github
        self.settings = settings
        self.checks = CheckPublisher(github, status_context=settings.status_context)

    def handle(self, event: AgreementEvent) -> dict[str, Any]:
        if isinstance(event, AgreementSigned):
            return self._handle_signed(event)
        if isinstance(event, AgreementCancelled):
            return self._handle_cancelled(event)
        if isinstance(event, AgreementMovedToSigning):
            logger.info("Agreement %s moved to signing", event.agreement_ref)
            return {"outcome": "moved_to_signing", "agreement_ref": event.agreement_ref}
        raise TypeError(f"Unsupported agreement event: {type(event).__name__}")

    def _find_record(self, event: AgreementSigned) -> ContributorAgreement | None:
        record = self.db.find_agreement_by_ref(event.agreement_ref)
        if record is None and event.signed_agreement_ref:
            record = self.db.find_agreement_by_ref(event.signed_agreement_ref)
        return record

    def _handle_signed(self, event: AgreementSigned) -> dict[str, Any]:
        logger.info(
            "Agreement %s event %s (signer=%s)",
            event.agreement_ref,
            event.kind,
            event.signer_email or "unknown",
        )
        record = self._find_record(event)
        if record is None:
            logger.warning(
                "No CLA record for agreement %s (signed agreement %s)",
                event.agreement_ref,
                event.signed_agreement_ref,
            )
            return {"outcome": "unknown_agreement", "agreement_ref": event.agreement_ref}

        if record.is_signed or not self.db.mark_signed(record.agreement_ref, utc_now()):
            logger.info("CLA for %s was already marked signed", record.github_username)
            return {"outcome": "already_signed", "agreement_ref": record.agreement_ref}

        logger.info("CLA signed by %s (%s)", record.github_username, record.agreement_ref)
        updated, failed = self._fan_out(record)
        return {
            "outcome": "signed",
            "agreement_ref": record.agreement_ref,
            "updated": updated,
            "failed": failed,
        }

    def _fan_out(self, record: ContributorAgreement) -> tuple[list[str], list[str]]:
        tracked_prs = self.db.list_tracked_prs_for_user(record.github_user_id)
        logger.info(
            "Updating %s tracked pull request(s) for %s", len(tracked_prs), record.github_username
        )
        resolver = InstallationResolver(self.github)
        updated: list[str] = []
        failed: list[str] = []
        for tracked in tracked_prs:
            try:
                self._mark_pull_request_signed(tracked, resolver)
            except Exception:
                logger.exception("Failed to update %s after CLA signature", tracked.ref)
                failed.append(tracked.ref)
                continue
            updated.append(tracked.ref)
        return updated, failed

    def _mark_pull_request_signed(
        self, tracked: TrackedPullRequest, resolver: InstallationResolver
    ) -> None:
        repo = tracked.repo_full_name
        installation_id = resolver.resolve(repo)
        pull_request = self.github.get_pull_request(installation_id, repo, tracked.pr_number)
        if tracked.comment_id is not None:
            try:
                self.github.update_comment(
                    installation_id, repo, tracked.comment_id, signed_comment(tracked.github_username)
                )
            except GitHubAPIError:
                logger.warning(
                    "Could not rewrite CLA comment %s on %s",
                    tracked.comment_id,
                    tracked.ref,
                    exc_info=True,
                )
        self.checks.mark_success(installation_id, repo, tracked.pr_number, pull_request.head_sha)
        logger.info("Marked %s as CLA signed", tracked.ref)

    def _handle_cancelled(self, event: AgreementCancelled) -> dict[str, Any]:
        changed = self.db.update_status_by_agreement_ref(event.agreement_ref, STATUS_CANCELLED)
        if not changed:
            logger.warning("No CLA record for cancelled agreement %s", event.agreement_ref)
        else:
            logger.info("Agreement %s cancelled", event.agreement_ref)
        return {"outcome": "cancelled", "agreement_ref": event.agreement_ref, "records": changed}
