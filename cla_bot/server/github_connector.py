"""GitHub connector contract, shared value types, and factory helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from cla_bot.shared.settings import CLASettings


PRIVATE_EMAIL_DOMAIN = "users.noreply.github.com"

STATE_SUCCESS = "success"
STATE_PENDING = "pending"
COMMIT_STATUS_STATES = {STATE_SUCCESS, STATE_PENDING}


class GitHubAPIError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None, reason_code: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.reason_code = reason_code or (
            f"github_{status_code}" if status_code is not None else "github_unreachable"
        )


@dataclass(frozen=True)
class LabelSpec:
    name: str
    color: str
    description: str


@dataclass(frozen=True)
class PullRequestInfo:
    repo: str
    number: int
    head_sha: str
    state: str
    author_login: str
    author_id: int


@dataclass(frozen=True)
class Installation:
    id: int
    account_login: str
    account_type: str


class GitHubConnector(Protocol):
    """Capability contract for GitHub access; no CLA decisions live here."""

    def get_pull_request(self, installation_id: int, repo: str, number: int) -> PullRequestInfo: ...

    def list_commit_emails(self, installation_id: int, repo: str, number: int) -> list[str]: ...

    def get_user_email(self, installation_id: int, username: str) -> str | None: ...

    def ensure_label(self, installation_id: int, repo: str, label: LabelSpec) -> None: ...

    def add_label(self, installation_id: int, repo: str, number: int, name: str) -> None: ...

    def remove_label(self, installation_id: int, repo: str, number: int, name: str) -> bool: ...

    def set_commit_status(
        self,
        installation_id: int,
        repo: str,
        sha: str,
        state: str,
        description: str,
        context: str,
        target_url: str | None = None,
    ) -> None: ...

    def create_comment(self, installation_id: int, repo: str, number: int, body: str) -> int: ...

    def update_comment(self, installation_id: int, repo: str, comment_id: int, body: str) -> None: ...

    def is_org_member(self, installation_id: int, org: str, username: str) -> bool: ...

    def list_installations(self) -> list[Installation]: ...

    def list_installation_repositories(self, installation_id: int) -> list[str]: ...


def build_github_connector(settings: CLASettings, **kwargs: Any) -> GitHubConnector:
    if settings.connector == "api":
        from cla_bot.server.github_auth import GitHubAppCredentials
        from cla_bot.server.github_connector_api import GitHubAPIConnector

        credentials = GitHubAppCredentials(
            app_id=settings.github_app_id,
            private_key=settings.load_private_key(),
        )
        return GitHubAPIConnector(
            credentials=credentials, base_url=settings.github_api_url, **kwargs
        )

    from cla_bot.server.github_connector_inmemory import InMemoryGitHubConnector

    return InMemoryGitHubConnector(**kwargs)


__all__ = [
    "COMMIT_STATUS_STATES",
    "PRIVATE_EMAIL_DOMAIN",
    "STATE_PENDING",
    "STATE_SUCCESS",
    "GitHubAPIError",
    "GitHubConnector",
    "Installation",
    "LabelSpec",
    "PullRequestInfo",
    "build_github_connector",
]
