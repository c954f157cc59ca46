from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import pytest
import requests

import cla_bot.server.github_connector_api as api_module
from cla_bot.server.github_auth import (
    GitHubAppCredentials,
    InstallationToken,
    InstallationTokenCache,
)
from cla_bot.server.github_connector import GitHubAPIError, LabelSpec, build_github_connector
from cla_bot.server.github_connector_api import GitHubAPIConnector
from cla_bot.server.github_connector_inmemory import InMemoryGitHubConnector
from cla_bot.shared.settings import CLASettings


@dataclass
class FakeResponse:
    status_code: int
    payload: Any
    headers: dict[str, str] | None = None

    @property
    def content(self) -> bytes:
        if self.payload is None:
            return b""
        return b"json"

    def json(self) -> Any:
        if self.payload is None:
            raise ValueError("no body")
        return self.payload


class FakeSession:
    def __init__(self, responses: list[FakeResponse]) -> None:
        self.responses = responses
        self.calls: list[dict[str, Any]] = []

    def request(self, **kwargs: Any) -> FakeResponse:
        self.calls.append(kwargs)
        if not self.responses:
            raise RuntimeError("No fake response left")
        return self.responses.pop(0)


class BrokenSession:
    def request(self, **kwargs: Any) -> FakeResponse:
        raise requests.ConnectionError("connection refused")


def _connector(responses: list[FakeResponse]) -> tuple[GitHubAPIConnector, FakeSession]:
    cache = InstallationTokenCache()
    cache.get_or_create(
        1,
        lambda installation_id: InstallationToken(
            installation_id=installation_id, token="inst-token", expires_at=time.time() + 3600
        ),
    )
    session = FakeSession(responses)
    connector = GitHubAPIConnector(
        credentials=GitHubAppCredentials(app_id="123", private_key="unused"),
        session=session,  # type: ignore[arg-type]
        token_cache=cache,
    )
    return connector, session


def test_build_github_connector_in_memory_mode() -> None:
    connector = build_github_connector(CLASettings(connector="in_memory"))
    assert isinstance(connector, InMemoryGitHubConnector)


def test_get_pull_request_uses_installation_token() -> None:
    connector, session = _connector(
        [
            FakeResponse(
                200,
                {
                    "number": 7,
                    "state": "open",
                    "head": {"sha": "abc"},
                    "user": {"login": "alice", "id": 42},
                },
            )
        ]
    )

    pr = connector.get_pull_request(1, "org/repo", 7)

    assert pr.head_sha == "abc"
    assert pr.author_login == "alice"
    assert pr.author_id == 42
    call = session.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "https://api.github.com/repos/org/repo/pulls/7"
    assert call["headers"]["Authorization"] == "Bearer inst-token"
    assert call["allow_redirects"] is False


def test_installation_token_is_minted_once_and_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(api_module, "build_app_jwt", lambda credentials: "app-jwt")
    session = FakeSession(
        [
            FakeResponse(201, {"token": "fresh", "expires_at": "2099-01-01T00:00:00Z"}),
            FakeResponse(200, {"login": "alice", "email": None}),
            FakeResponse(200, {"login": "alice", "email": "alice@example.com"}),
        ]
    )
    connector = GitHubAPIConnector(
        credentials=GitHubAppCredentials(app_id="123", private_key="unused"),
        session=session,  # type: ignore[arg-type]
    )

    assert connector.get_user_email(9, "alice") is None
    assert connector.get_user_email(9, "alice") == "alice@example.com"

    assert session.calls[0]["url"].endswith("/app/installations/9/access_tokens")
    assert session.calls[0]["headers"]["Authorization"] == "Bearer app-jwt"
    assert session.calls[1]["headers"]["Authorization"] == "Bearer fresh"
    assert session.calls[2]["headers"]["Authorization"] == "Bearer fresh"
    assert 9 in connector.token_cache


def test_list_commit_emails_paginates_and_dedupes() -> None:
    first_page = [{"commit": {"author": {"email": "alice@example.com"}}}] * 100
    second_page = [{"commit": {"author": {"email": "alice@work.example"}}}]
    connector, session = _connector([FakeResponse(200, first_page), FakeResponse(200, second_page)])

    emails = connector.list_commit_emails(1, "org/repo", 7)

    assert emails == ["alice@example.com", "alice@work.example"]
    assert [call["params"]["page"] for call in session.calls] == ["1", "2"]


def test_ensure_label_creates_missing_label_and_tolerates_races() -> None:
    label = LabelSpec(name="cla:pending", color="fbca04", description="CLA signature required")
    connector, session = _connector(
        [
            FakeResponse(404, {"message": "Not Found"}),
            FakeResponse(201, {"name": "cla:pending"}),
            FakeResponse(404, {"message": "Not Found"}),
            FakeResponse(422, {"message": "already_exists"}),
        ]
    )

    connector.ensure_label(1, "org/repo", label)
    connector.ensure_label(1, "org/repo", label)

    assert session.calls[1]["method"] == "POST"
    assert session.calls[1]["json"] == {
        "name": "cla:pending",
        "color": "fbca04",
        "description": "CLA signature required",
    }


def test_remove_label_reports_missing_label() -> None:
    connector, _ = _connector([FakeResponse(404, {"message": "Label does not exist"})])
    assert connector.remove_label(1, "org/repo", 7, "cla:pending") is False


def test_set_commit_status_posts_context() -> None:
    connector, session = _connector([FakeResponse(201, {"id": 1})])

    connector.set_commit_status(
        1, "org/repo", "abc", state="success", description="CLA has been signed", context="cla-bot/cla"
    )

    assert session.calls[0]["url"].endswith("/repos/org/repo/statuses/abc")
    assert session.calls[0]["json"] == {
        "state": "success",
        "description": "CLA has been signed",
        "context": "cla-bot/cla",
    }


def test_set_commit_status_rejects_unknown_state() -> None:
    connector, session = _connector([])
    with pytest.raises(ValueError):
        connector.set_commit_status(1, "org/repo", "abc", state="error", description="", context="x")
    assert session.calls == []


def test_create_and_update_comment() -> None:
    connector, session = _connector([FakeResponse(201, {"id": 1001}), FakeResponse(200, {"id": 1001})])

    comment_id = connector.create_comment(1, "org/repo", 7, "hello")
    connector.update_comment(1, "org/repo", comment_id, "updated")

    assert comment_id == 1001
    assert session.calls[1]["method"] == "PATCH"
    assert session.calls[1]["url"].endswith("/repos/org/repo/issues/comments/1001")


@pytest.mark.parametrize(
    ("status_code", "expected"),
    [(204, True), (404, False), (302, False)],
)
def test_is_org_member_maps_status_codes(status_code: int, expected: bool) -> None:
    connector, _ = _connector([FakeResponse(status_code, None)])
    assert connector.is_org_member(1, "org", "alice") is expected


def test_list_installations_and_repositories(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(api_module, "build_app_jwt", lambda credentials: "app-jwt")
    connector, session = _connector(
        [
            FakeResponse(200, [{"id": 1, "account": {"login": "org", "type": "Organization"}}]),
            FakeResponse(200, {"total_count": 1, "repositories": [{"full_name": "org/repo"}]}),
        ]
    )

    installations = connector.list_installations()
    repos = connector.list_installation_repositories(1)

    assert installations[0].account_login == "org"
    assert repos == ["org/repo"]
    assert session.calls[0]["headers"]["Authorization"] == "Bearer app-jwt"


def test_api_errors_carry_status_and_reason() -> None:
    connector, _ = _connector(
        [FakeResponse(403, {"message": "API rate limit exceeded for installation"})]
    )

    with pytest.raises(GitHubAPIError) as exc_info:
        connector.get_pull_request(1, "org/repo", 7)

    assert exc_info.value.status_code == 403
    assert exc_info.value.reason_code == "github_rate_limited"


def test_network_errors_are_wrapped() -> None:
    cache = InstallationTokenCache()
    cache.get_or_create(
        1, lambda installation_id: InstallationToken(installation_id, "tok", time.time() + 3600)
    )
    connector = GitHubAPIConnector(
        credentials=GitHubAppCredentials(app_id="123", private_key="unused"),
        session=BrokenSession(),  # type: ignore[arg-type]
        token_cache=cache,
    )

    with pytest.raises(GitHubAPIError, match="unreachable"):
        connector.create_comment(1, "org/repo", 7, "hello")
