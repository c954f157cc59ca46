"""In-memory GitHub connector for deterministic tests and local runs."""

from __future__ import annotations

from dataclasses import dataclass

from cla_bot.server.github_connector import (
    COMMIT_STATUS_STATES,
    GitHubAPIError,
    Installation,
    LabelSpec,
    PullRequestInfo,
)


@dataclass(frozen=True)
class RecordedStatus:
    repo: str
    sha: str
    state: str
    description: str
    context: str
    target_url: str | None = None


@dataclass
class RecordedComment:
    id: int
    repo: str
    number: int
    body: str


class InMemoryGitHubConnector:
    """Connector that keeps GitHub state in dicts and records every write.

    `fail_on` holds (operation, repo, number) triples that raise GitHubAPIError,
    used to simulate upstream failures for a single pull request.
    """

    def __init__(self) -> None:
        self.pull_requests: dict[tuple[str, int], PullRequestInfo] = {}
        self.commit_emails: dict[tuple[str, int], list[str]] = {}
        self.user_emails: dict[str, str] = {}
        self.org_members: dict[str, set[str]] = {}
        self.repo_labels: dict[str, dict[str, LabelSpec]] = {}
        self.pr_labels: dict[tuple[str, int], list[str]] = {}
        self.statuses: list[RecordedStatus] = []
        self.comments: dict[int, RecordedComment] = {}
        self.installations: dict[int, Installation] = {}
        self.installation_repos: dict[int, list[str]] = {}
        self.fail_on: set[tuple[str, str, int]] = set()
        self.calls: list[str] = []
        self._next_comment_id = 1000

    # Fixture helpers

    def add_pull_request(
        self,
        repo: str,
        number: int,
        head_sha: str,
        author_login: str,
        author_id: int,
        state: str = "open",
        commit_emails: list[str] | None = None,
        installation_id: int = 1,
    ) -> PullRequestInfo:
        info = PullRequestInfo(
            repo=repo,
            number=number,
            head_sha=head_sha,
            state=state,
            author_login=author_login,
            author_id=author_id,
        )
        self.pull_requests[(repo, number)] = info
        if commit_emails is not None:
            self.commit_emails[(repo, number)] = list(commit_emails)
        self.add_installation(installation_id, account_login=repo.split("/", 1)[0], repos=[repo])
        return info

    def add_installation(
        self, installation_id: int, account_login: str, repos: list[str] | None = None
    ) -> None:
        self.installations.setdefault(
            installation_id,
            Installation(id=installation_id, account_login=account_login, account_type="Organization"),
        )
        known = self.installation_repos.setdefault(installation_id, [])
        for repo in repos or []:
            if repo not in known:
                known.append(repo)

    def statuses_for(self, repo: str, sha: str) -> list[RecordedStatus]:
        return [status for status in self.statuses if status.repo == repo and status.sha == sha]

    def comments_on(self, repo: str, number: int) -> list[RecordedComment]:
        return [c for c in self.comments.values() if c.repo == repo and c.number == number]

    def labels_on(self, repo: str, number: int) -> list[str]:
        return list(self.pr_labels.get((repo, number), []))

    def _check(self, operation: str, repo: str = "", number: int = 0) -> None:
        self.calls.append(operation)
        if (operation, repo, number) in self.fail_on:
            raise GitHubAPIError(
                f"Simulated failure: {operation} {repo}#{number}",
                status_code=502,
            )

    # Connector contract

    def get_pull_request(self, installation_id: int, repo: str, number: int) -> PullRequestInfo:
        self._check("get_pull_request", repo, number)
        info = self.pull_requests.get((repo, number))
        if info is None:
            raise GitHubAPIError(f"Pull request {repo}#{number} not found", status_code=404)
        return info

    def list_commit_emails(self, installation_id: int, repo: str, number: int) -> list[str]:
        self._check("list_commit_emails", repo, number)
        return list(self.commit_emails.get((repo, number), []))

    def get_user_email(self, installation_id: int, username: str) -> str | None:
        self._check("get_user_email")
        return self.user_emails.get(username)

    def ensure_label(self, installation_id: int, repo: str, label: LabelSpec) -> None:
        self._check("ensure_label", repo)
        self.repo_labels.setdefault(repo, {}).setdefault(label.name, label)

    def add_label(self, installation_id: int, repo: str, number: int, name: str) -> None:
        self._check("add_label", repo, number)
        if name not in self.repo_labels.get(repo, {}):
            raise GitHubAPIError(f"Label {name} does not exist on {repo}", status_code=422)
        labels = self.pr_labels.setdefault((repo, number), [])
        if name not in labels:
            labels.append(name)

    def remove_label(self, installation_id: int, repo: str, number: int, name: str) -> bool:
        self._check("remove_label", repo, number)
        labels = self.pr_labels.get((repo, number), [])
        if name not in labels:
            return False
        labels.remove(name)
        return True

    def set_commit_status(
        self,
        installation_id: int,
        repo: str,
        sha: str,
        state: str,
        description: str,
        context: str,
        target_url: str | None = None,
    ) -> None:
        number = next(
            (num for (r, num), pr in self.pull_requests.items() if r == repo and pr.head_sha == sha),
            0,
        )
        self._check("set_commit_status", repo, number)
        if state not in COMMIT_STATUS_STATES:
            raise ValueError(f"Unsupported commit status state: {state}")
        self.statuses.append(
            RecordedStatus(
                repo=repo,
                sha=sha,
                state=state,
                description=description,
                context=context,
                target_url=target_url,
            )
        )

    def create_comment(self, installation_id: int, repo: str, number: int, body: str) -> int:
        self._check("create_comment", repo, number)
        self._next_comment_id += 1
        comment_id = self._next_comment_id
        self.comments[comment_id] = RecordedComment(id=comment_id, repo=repo, number=number, body=body)
        return comment_id

    def update_comment(self, installation_id: int, repo: str, comment_id: int, body: str) -> None:
        self._check("update_comment", repo)
        comment = self.comments.get(comment_id)
        if comment is None or comment.repo != repo:
            raise GitHubAPIError(f"Comment {comment_id} not found on {repo}", status_code=404)
        comment.body = body

    def is_org_member(self, installation_id: int, org: str, username: str) -> bool:
        self._check("is_org_member")
        return username.lower() in {member.lower() for member in self.org_members.get(org, set())}

    def list_installations(self) -> list[Installation]:
        self._check("list_installations")
        return list(self.installations.values())

    def list_installation_repositories(self, installation_id: int) -> list[str]:
        self._check("list_installation_repositories", "", installation_id)
        return list(self.installation_repos.get(installation_id, []))
