"""Forward reconciliation: decide a PR contributor's CLA state and apply it."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from cla_bot.server.agreement_connector import (
    AgreementConnector,
    AgreementRequest,
    AgreementServiceError,
    ExternalAgreement,
)
from cla_bot.server.checks import CheckPublisher
from cla_bot.server.db import ClaDB
from cla_bot.server.events import HANDLED_PR_ACTIONS, Contributor, PullRequestEvent
from cla_bot.server.github_connector import (
    PRIVATE_EMAIL_DOMAIN,
    GitHubAPIError,
    GitHubConnector,
)
from cla_bot.server.messages import (
    EXEMPT_ALLOW_LIST,
    EXEMPT_ORG_MEMBER,
    PENDING_LABEL,
    creation_failed_comment,
    pending_comment,
)
from cla_bot.server.models import STATUS_PENDING, STATUS_SIGNED
from cla_bot.shared.settings import CLASettings


logger = logging.getLogger(__name__)

OUTCOME_IGNORED = "ignored"
OUTCOME_EXEMPT = "exempt"
OUTCOME_SIGNED = "signed"
OUTCOME_PENDING = "pending"
OUTCOME_SIGNED_EXTERNALLY = "signed_externally"
OUTCOME_AGREEMENT_CREATED = "agreement_created"
OUTCOME_CREATION_FAILED = "creation_failed"


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def placeholder_email(user_id: int, username: str) -> str:
    return f"{user_id}+{username}@{PRIVATE_EMAIL_DOMAIN}"


def is_private_relay(email: str) -> bool:
    return email.lower().endswith(f"@{PRIVATE_EMAIL_DOMAIN}")


def pick_commit_email(emails: list[str]) -> str | None:
    """First commit email outside the private relay, else the first one at all."""

    candidates = [email.strip() for email in emails if email and email.strip()]
    for email in candidates:
        if not is_private_relay(email):
            return email
    return candidates[0] if candidates else None


def resolve_contributor_email(
    github: GitHubConnector,
    installation_id: int,
    repo: str,
    pr_number: int,
    contributor: Contributor,
) -> str:
    """Commit emails, then the public profile email, then the relay placeholder."""

    try:
        email = pick_commit_email(github.list_commit_emails(installation_id, repo, pr_number))
    except GitHubAPIError:
        logger.warning("Could not fetch commit emails for %s#%s", repo, pr_number, exc_info=True)
        email = None
    if email:
        return email

    try:
        email = github.get_user_email(installation_id, contributor.username)
    except GitHubAPIError:
        logger.warning("Could not fetch profile email for %s", contributor.username, exc_info=True)
        email = None
    if email:
        return email

    return placeholder_email(contributor.id, contributor.username)


def signature_timestamp(agreement: ExternalAgreement) -> str:
    if agreement.signature_date is None:
        return utc_now()
    # Concord reports epoch milliseconds.
    signed = datetime.fromtimestamp(agreement.signature_date / 1000, tz=timezone.utc)
    return signed.strftime("%Y-%m-%dT%H:%M:%SZ")


class SignatureReconciler:
    def __init__(
        self,
        db: ClaDB,
        github: GitHubConnector,
        agreements: AgreementConnector,
        settings: CLASettings,
    ) -> None:
        self.db = db
        self.github = github
        self.agreements = agreements
        self.settings = settings
        self.checks = CheckPublisher(github, status_context=settings.status_context)

    def handle(self, event: PullRequestEvent) -> dict[str, Any]:
        if event.action not in HANDLED_PR_ACTIONS:
            logger.debug("Ignoring pull_request action %s on %s", event.action, event.ref)
            return {"outcome": OUTCOME_IGNORED, "action": event.action}

        contributor = event.contributor
        logger.info(
            "Processing pull request %s action=%s contributor=%s sha=%s",
            event.ref,
            event.action,
            contributor.username,
            event.head_sha,
        )

        if self.settings.is_exempted(contributor.username):
            logger.info("Contributor %s is on the CLA allow-list", contributor.username)
            return self._exempt(event, EXEMPT_ALLOW_LIST)

        if not self.settings.skip_org_member_check and self.github.is_org_member(
            event.installation_id, event.owner, contributor.username
        ):
            logger.info("Contributor %s is a member of %s", contributor.username, event.owner)
            return self._exempt(event, EXEMPT_ORG_MEMBER)

        record = self.db.find_agreement_by_user_id(contributor.id)
        if record is not None and record.is_signed:
            logger.info("Contributor %s has already signed the CLA", contributor.username)
            self.checks.mark_success(event.installation_id, event.repo, event.pr_number, event.head_sha)
            return {"outcome": OUTCOME_SIGNED, "agreement_ref": record.agreement_ref}

        tracked = self.db.find_tracked_pr(event.repo, event.pr_number, contributor.id)
        if tracked is not None and record is not None and record.is_pending:
            logger.info(
                "CLA for %s already requested on %s, refreshing status",
                contributor.username,
                event.ref,
            )
            self.checks.refresh_pending(event.installation_id, event.repo, event.head_sha)
            return {"outcome": OUTCOME_PENDING, "agreement_ref": record.agreement_ref}

        email = resolve_contributor_email(
            self.github, event.installation_id, event.repo, event.pr_number, contributor
        )
        logger.info("Resolved email for %s: %s", contributor.username, email)

        external = self._find_external_agreement(email)
        if external is not None:
            logger.info(
                "Found existing signed agreement %s for %s", external.ref, contributor.username
            )
            self.db.upsert_agreement(
                github_username=contributor.username,
                github_user_id=contributor.id,
                github_email=email,
                agreement_ref=external.ref,
                status=STATUS_SIGNED,
                signed_at=signature_timestamp(external),
            )
            self.checks.mark_success(event.installation_id, event.repo, event.pr_number, event.head_sha)
            return {"outcome": OUTCOME_SIGNED_EXTERNALLY, "agreement_ref": external.ref}

        return self._request_signature(event, email)

    def _exempt(self, event: PullRequestEvent, reason: str) -> dict[str, Any]:
        self.checks.mark_exempt(
            event.installation_id, event.repo, event.pr_number, event.head_sha, reason
        )
        return {"outcome": OUTCOME_EXEMPT, "reason": reason}

    def _find_external_agreement(self, email: str) -> ExternalAgreement | None:
        try:
            agreement = self.agreements.find_signed_agreement_by_email(email)
        except AgreementServiceError:
            logger.warning("Error searching for an existing CLA for %s", email, exc_info=True)
            return None
        if agreement is None or not agreement.is_current:
            return None
        return agreement

    def _request_signature(self, event: PullRequestEvent, email: str) -> dict[str, Any]:
        contributor = event.contributor
        try:
            agreement_ref = self.agreements.create_agreement(
                AgreementRequest(
                    contributor_email=email,
                    contributor_name=contributor.name or contributor.username,
                    github_username=contributor.username,
                    repo=event.repo,
                    pr_number=event.pr_number,
                )
            )
        except AgreementServiceError:
            logger.exception(
                "Failed to create CLA agreement for %s on %s", contributor.username, event.ref
            )
            self.checks.mark_pending(event.installation_id, event.repo, event.pr_number, event.head_sha)
            self.github.create_comment(
                event.installation_id,
                event.repo,
                event.pr_number,
                creation_failed_comment(contributor.username),
            )
            return {"outcome": OUTCOME_CREATION_FAILED}

        self.db.upsert_agreement(
            github_username=contributor.username,
            github_user_id=contributor.id,
            github_email=email,
            agreement_ref=agreement_ref,
            status=STATUS_PENDING,
        )
        self.db.upsert_tracked_pr(
            repo_full_name=event.repo,
            pr_number=event.pr_number,
            github_username=contributor.username,
            github_user_id=contributor.id,
            agreement_ref=agreement_ref,
        )

        self.checks.apply_label(event.installation_id, event.repo, event.pr_number, PENDING_LABEL)
        comment_id = self.github.create_comment(
            event.installation_id,
            event.repo,
            event.pr_number,
            pending_comment(contributor.username, self.settings.organization_name),
        )
        self.db.upsert_tracked_pr(
            repo_full_name=event.repo,
            pr_number=event.pr_number,
            github_username=contributor.username,
            github_user_id=contributor.id,
            comment_id=comment_id,
        )
        self.checks.refresh_pending(event.installation_id, event.repo, event.head_sha)

        logger.info(
            "CLA requested for %s on %s (agreement=%s, comment=%s)",
            contributor.username,
            event.ref,
            agreement_ref,
            comment_id,
        )
        return {
            "outcome": OUTCOME_AGREEMENT_CREATED,
            "agreement_ref": agreement_ref,
            "comment_id": comment_id,
        }
