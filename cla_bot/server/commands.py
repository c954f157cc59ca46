"""`/cla resend` handling for pull request comments."""

from __future__ import annotations

import logging
from typing import Any

from cla_bot.server.agreement_connector import (
    AgreementConnector,
    AgreementNotFoundError,
    AgreementRequest,
    AgreementServiceError,
)
from cla_bot.server.checks import CheckPublisher
from cla_bot.server.db import ClaDB
from cla_bot.server.events import ResendCommand
from cla_bot.server.github_connector import GitHubConnector
from cla_bot.server.messages import (
    new_invitation_sent,
    resend_confirmed,
    resend_failed,
    resend_not_needed,
)
from cla_bot.server.models import STATUS_PENDING, ContributorAgreement
from cla_bot.server.signature import resolve_contributor_email
from cla_bot.shared.settings import CLASettings


logger = logging.getLogger(__name__)


class CommandHandler:
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

    def handle(self, command: ResendCommand) -> dict[str, Any]:
        author = command.author
        logger.info(
            "CLA resend requested by %s for %s on %s",
            command.requester,
            author.username,
            command.ref,
        )
        record = self.db.find_agreement_by_user_id(author.id)

        if record is not None and record.is_signed:
            self._reply(command, resend_not_needed(command.requester, author.username))
            return {"outcome": "already_signed", "agreement_ref": record.agreement_ref}

        if record is not None and record.is_pending:
            result = self._resend_existing(command, record)
            if result is not None:
                return result

        return self._send_new_agreement(command)

    def _resend_existing(
        self, command: ResendCommand, record: ContributorAgreement
    ) -> dict[str, Any] | None:
        """Resend the pending agreement; None when it no longer exists upstream."""

        author = command.author
        try:
            self.agreements.get_agreement(record.agreement_ref)
        except AgreementNotFoundError:
            logger.warning(
                "Agreement %s for %s no longer exists, creating a new one",
                record.agreement_ref,
                author.username,
            )
            self.db.delete_agreement(author.id)
            return None
        except AgreementServiceError:
            logger.exception("Could not look up agreement %s", record.agreement_ref)
            self._reply(command, resend_failed(command.requester))
            return {"outcome": "resend_failed", "agreement_ref": record.agreement_ref}

        email = record.github_email or resolve_contributor_email(
            self.github, command.installation_id, command.repo, command.pr_number, author
        )
        try:
            self.agreements.resend_invitation(
                record.agreement_ref, email, author.name or author.username, author.username
            )
        except AgreementServiceError:
            logger.exception("Failed to resend agreement %s", record.agreement_ref)
            self._reply(command, resend_failed(command.requester))
            return {"outcome": "resend_failed", "agreement_ref": record.agreement_ref}

        self._reply(command, resend_confirmed(command.requester, author.username))
        return {"outcome": "resent", "agreement_ref": record.agreement_ref}

    def _send_new_agreement(self, command: ResendCommand) -> dict[str, Any]:
        author = command.author
        email = resolve_contributor_email(
            self.github, command.installation_id, command.repo, command.pr_number, author
        )
        try:
            agreement_ref = self.agreements.create_agreement(
                AgreementRequest(
                    contributor_email=email,
                    contributor_name=author.name or author.username,
                    github_username=author.username,
                    repo=command.repo,
                    pr_number=command.pr_number,
                )
            )
        except AgreementServiceError:
            logger.exception("Failed to create a new agreement for %s", author.username)
            self._reply(command, resend_failed(command.requester))
            return {"outcome": "creation_failed"}

        self.db.upsert_agreement(
            github_username=author.username,
            github_user_id=author.id,
            github_email=email,
            agreement_ref=agreement_ref,
            status=STATUS_PENDING,
        )
        self.db.upsert_tracked_pr(
            repo_full_name=command.repo,
            pr_number=command.pr_number,
            github_username=author.username,
            github_user_id=author.id,
            agreement_ref=agreement_ref,
        )
        pull_request = self.github.get_pull_request(
            command.installation_id, command.repo, command.pr_number
        )
        self.checks.refresh_pending(command.installation_id, command.repo, pull_request.head_sha)
        self._reply(command, new_invitation_sent(command.requester, author.username))
        logger.info("New agreement %s sent to %s", agreement_ref, author.username)
        return {"outcome": "agreement_created", "agreement_ref": agreement_ref}

    def _reply(self, command: ResendCommand, body: str) -> None:
        self.github.create_comment(command.installation_id, command.repo, command.pr_number, body)
