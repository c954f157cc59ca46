"""GitHub REST API connector authenticated as a GitHub App installation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import requests

from cla_bot.server.github_auth import (
    GitHubAppCredentials,
    InstallationToken,
    InstallationTokenCache,
    build_app_jwt,
)
from cla_bot.server.github_connector import (
    COMMIT_STATUS_STATES,
    GitHubAPIError,
    Installation,
    LabelSpec,
    PullRequestInfo,
)


logger = logging.getLogger(__name__)

PAGE_SIZE = 100


class GitHubAPIConnector:
    def __init__(
        self,
        credentials: GitHubAppCredentials,
        base_url: str = "https://api.github.com",
        session: requests.Session | None = None,
        token_cache: InstallationTokenCache | None = None,
        timeout_s: float = 15,
    ) -> None:
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.token_cache = token_cache or InstallationTokenCache()
        self.timeout_s = timeout_s

    # Authentication

    def _installation_token(self, installation_id: int) -> str:
        return self.token_cache.get_or_create(installation_id, self._mint_installation_token).token

    def _mint_installation_token(self, installation_id: int) -> InstallationToken:
        payload = self._request(
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            token=build_app_jwt(self.credentials),
        )
        logger.info("Minted installation token for installation %s", installation_id)
        return InstallationToken(
            installation_id=installation_id,
            token=str(payload["token"]),
            expires_at=_parse_timestamp(str(payload.get("expires_at", ""))),
        )

    # Pull requests

    def get_pull_request(self, installation_id: int, repo: str, number: int) -> PullRequestInfo:
        data = self._request(
            "GET",
            f"/repos/{repo}/pulls/{number}",
            token=self._installation_token(installation_id),
        )
        user = data.get("user") or {}
        return PullRequestInfo(
            repo=repo,
            number=int(data["number"]),
            head_sha=str((data.get("head") or {}).get("sha", "")),
            state=str(data.get("state", "")),
            author_login=str(user.get("login", "")),
            author_id=int(user.get("id", 0)),
        )

    def list_commit_emails(self, installation_id: int, repo: str, number: int) -> list[str]:
        commits = self._paginate(
            f"/repos/{repo}/pulls/{number}/commits",
            token=self._installation_token(installation_id),
        )
        emails: list[str] = []
        for commit in commits:
            author = (commit.get("commit") or {}).get("author") or {}
            email = str(author.get("email") or "").strip()
            if email and email not in emails:
                emails.append(email)
        return emails

    def get_user_email(self, installation_id: int, username: str) -> str | None:
        data = self._request(
            "GET", f"/users/{username}", token=self._installation_token(installation_id)
        )
        email = str(data.get("email") or "").strip() if isinstance(data, dict) else ""
        return email or None

    # Labels

    def ensure_label(self, installation_id: int, repo: str, label: LabelSpec) -> None:
        token = self._installation_token(installation_id)
        response = self._send("GET", f"/repos/{repo}/labels/{label.name}", token=token)
        if response.status_code == 200:
            return
        if response.status_code != 404:
            raise _api_error(response, f"GET label {label.name} on {repo}")

        created = self._send(
            "POST",
            f"/repos/{repo}/labels",
            token=token,
            json={"name": label.name, "color": label.color, "description": label.description},
        )
        # 422 means another request created it first.
        if created.status_code not in {201, 422}:
            raise _api_error(created, f"POST label {label.name} on {repo}")
        if created.status_code == 201:
            logger.info("Created label %s on %s", label.name, repo)

    def add_label(self, installation_id: int, repo: str, number: int, name: str) -> None:
        self._request(
            "POST",
            f"/repos/{repo}/issues/{number}/labels",
            token=self._installation_token(installation_id),
            json={"labels": [name]},
        )

    def remove_label(self, installation_id: int, repo: str, number: int, name: str) -> bool:
        response = self._send(
            "DELETE",
            f"/repos/{repo}/issues/{number}/labels/{name}",
            token=self._installation_token(installation_id),
        )
        if response.status_code == 404:
            return False
        if response.status_code >= 400:
            raise _api_error(response, f"DELETE label {name} on {repo}#{number}")
        return True

    # Statuses and comments

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
        if state not in COMMIT_STATUS_STATES:
            raise ValueError(f"Unsupported commit status state: {state}")
        body: dict[str, Any] = {"state": state, "description": description, "context": context}
        if target_url:
            body["target_url"] = target_url
        self._request(
            "POST",
            f"/repos/{repo}/statuses/{sha}",
            token=self._installation_token(installation_id),
            json=body,
        )

    def create_comment(self, installation_id: int, repo: str, number: int, body: str) -> int:
        data = self._request(
            "POST",
            f"/repos/{repo}/issues/{number}/comments",
            token=self._installation_token(installation_id),
            json={"body": body},
        )
        return int(data["id"])

    def update_comment(self, installation_id: int, repo: str, comment_id: int, body: str) -> None:
        self._request(
            "PATCH",
            f"/repos/{repo}/issues/comments/{comment_id}",
            token=self._installation_token(installation_id),
            json={"body": body},
        )

    # Organizations and installations

    def is_org_member(self, installation_id: int, org: str, username: str) -> bool:
        response = self._send(
            "GET",
            f"/orgs/{org}/members/{username}",
            token=self._installation_token(installation_id),
        )
        if response.status_code == 204:
            return True
        # 302: requester is not an org member itself; 404: not a member or not an org.
        if response.status_code in {302, 404}:
            return False
        raise _api_error(response, f"GET membership of {username} in {org}")

    def list_installations(self) -> list[Installation]:
        rows = self._paginate("/app/installations", token=build_app_jwt(self.credentials))
        installations: list[Installation] = []
        for row in rows:
            account = row.get("account") or {}
            installations.append(
                Installation(
                    id=int(row["id"]),
                    account_login=str(account.get("login", "unknown")),
                    account_type=str(account.get("type", "unknown")),
                )
            )
        return installations

    def list_installation_repositories(self, installation_id: int) -> list[str]:
        rows = self._paginate(
            "/installation/repositories",
            token=self._installation_token(installation_id),
            items_key="repositories",
        )
        return [str(row["full_name"]) for row in rows if row.get("full_name")]

    # Transport

    def _paginate(
        self, path: str, token: str, items_key: str | None = None
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            payload = self._request(
                "GET",
                path,
                token=token,
                params={"per_page": str(PAGE_SIZE), "page": str(page)},
            )
            rows = payload.get(items_key, []) if items_key else payload
            if not isinstance(rows, list):
                break
            items.extend(row for row in rows if isinstance(row, dict))
            if len(rows) < PAGE_SIZE:
                break
            page += 1
        return items

    def _send(
        self,
        method: str,
        path: str,
        token: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> requests.Response:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "Authorization": f"Bearer {token}",
        }
        try:
            return self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=headers,
                json=json,
                params=params,
                timeout=self.timeout_s,
                allow_redirects=False,
            )
        except requests.RequestException as exc:
            logger.error("GitHub API request failed: %s %s: %s", method, path, exc)
            raise GitHubAPIError(f"GitHub API unreachable: {method} {path}") from exc

    def _request(
        self,
        method: str,
        path: str,
        token: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        response = self._send(method, path, token=token, json=json, params=params)
        if response.status_code >= 400:
            raise _api_error(response, f"{method} {path}")
        if not response.content:
            return {}
        return response.json()


def _api_error(response: requests.Response, operation: str) -> GitHubAPIError:
    message = ""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = str(payload.get("message", ""))
    logger.error(
        "GitHub API error response: %s -> %s %s", operation, response.status_code, message
    )
    reason_code = f"github_{response.status_code}"
    if response.status_code in {403, 429} and "rate limit" in message.lower():
        reason_code = "github_rate_limited"
    return GitHubAPIError(
        f"GitHub API error: {operation} returned {response.status_code} {message}".rstrip(),
        status_code=response.status_code,
        reason_code=reason_code,
    )


def _parse_timestamp(value: str) -> float:
    if not value:
        return 0.0
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
