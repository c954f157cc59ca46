"""Commit status and label outcomes shared by the reconcilers."""

from __future__ import annotations

import logging

from cla_bot.server.github_connector import (
    STATE_PENDING,
    STATE_SUCCESS,
    GitHubAPIError,
    GitHubConnector,
    LabelSpec,
)
from cla_bot.server.messages import (
    EXEMPT_LABEL,
    PENDING_LABEL,
    SIGNED_LABEL,
    STATUS_REQUIRED,
    STATUS_SIGNED,
    exempt_status,
)


logger = logging.getLogger(__name__)


class CheckPublisher:
    """Writes the CLA commit status and labels for one pull request at a time.

    Status writes propagate failures; label writes are best-effort and only
    log, so a label outage never leaves a PR without a status.
    """

    def __init__(self, github: GitHubConnector, status_context: str) -> None:
        self.github = github
        self.status_context = status_context

    def set_status(
        self, installation_id: int, repo: str, sha: str, state: str, description: str
    ) -> None:
        self.github.set_commit_status(
            installation_id,
            repo,
            sha,
            state=state,
            description=description,
            context=self.status_context,
        )
        logger.info("Set CLA status %s on %s@%s", state, repo, sha[:12])

    def mark_exempt(
        self, installation_id: int, repo: str, number: int, sha: str, reason: str
    ) -> None:
        self.set_status(installation_id, repo, sha, STATE_SUCCESS, exempt_status(reason))
        self.apply_label(installation_id, repo, number, EXEMPT_LABEL)

    def mark_success(self, installation_id: int, repo: str, number: int, sha: str) -> None:
        self.set_status(installation_id, repo, sha, STATE_SUCCESS, STATUS_SIGNED)
        self.clear_label(installation_id, repo, number, PENDING_LABEL)
        self.apply_label(installation_id, repo, number, SIGNED_LABEL)

    def mark_pending(self, installation_id: int, repo: str, number: int, sha: str) -> None:
        self.apply_label(installation_id, repo, number, PENDING_LABEL)
        self.refresh_pending(installation_id, repo, sha)

    def refresh_pending(self, installation_id: int, repo: str, sha: str) -> None:
        self.set_status(installation_id, repo, sha, STATE_PENDING, STATUS_REQUIRED)

    def apply_label(self, installation_id: int, repo: str, number: int, label: LabelSpec) -> None:
        try:
            self.github.ensure_label(installation_id, repo, label)
            self.github.add_label(installation_id, repo, number, label.name)
        except GitHubAPIError:
            logger.warning(
                "Could not add label %s to %s#%s", label.name, repo, number, exc_info=True
            )
            return
        logger.info("Added label %s to %s#%s", label.name, repo, number)

    def clear_label(self, installation_id: int, repo: str, number: int, label: LabelSpec) -> None:
        try:
            removed = self.github.remove_label(installation_id, repo, number, label.name)
        except GitHubAPIError:
            logger.warning(
                "Could not remove label %s from %s#%s", label.name, repo, number, exc_info=True
            )
            return
        if removed:
            logger.info("Removed label %s from %s#%s", label.name, repo, number)
