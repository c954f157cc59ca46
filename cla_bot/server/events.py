"""Webhook payload contracts and the normalized events the reconcilers consume.

Raw payloads are validated once with pydantic and turned into a closed set of
frozen dataclasses. Everything past this module works with those types only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


HANDLED_PR_ACTIONS = {"opened", "synchronize", "reopened"}
RESEND_COMMAND = "/cla resend"

AGREEMENT_EXECUTED = "executed"
AGREEMENT_NEW_SIGNATURE = "new_signature"

CONCORD_EVENT_KINDS = {
    "AGREEMENT_EXECUTED": AGREEMENT_EXECUTED,
    "AGREEMENT_NEW_SIGNATURE": AGREEMENT_NEW_SIGNATURE,
    "AGREEMENT_CANCELLED": "cancelled",
    "AGREEMENT_MOVE_TO_SIGNING": "moved_to_signing",
}


class EventDecodeError(ValueError):
    """Raised when a recognized webhook event carries a malformed payload."""


# GitHub payloads


class GitHubUserPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    login: str
    name: str | None = None
    email: str | None = None


class GitHubOwnerPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    login: str


class RepositoryPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    full_name: str
    owner: GitHubOwnerPayload


class InstallationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int


class HeadPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sha: str
    ref: str = ""


class PullRequestPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    number: int
    user: GitHubUserPayload
    head: HeadPayload
    title: str = ""


class PullRequestWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    action: str
    pull_request: PullRequestPayload
    repository: RepositoryPayload
    installation: InstallationPayload | None = None


class IssuePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    number: int
    user: GitHubUserPayload
    pull_request: dict[str, Any] | None = None


class CommentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    body: str = ""
    user: GitHubUserPayload


class IssueCommentWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    action: str
    issue: IssuePayload
    comment: CommentPayload
    repository: RepositoryPayload
    installation: InstallationPayload | None = None


# Concord payloads


class ConcordUserPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    email: str | None = None


class ConcordAgreementPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    uid: str = Field(min_length=1)
    title: str = ""
    signed_agreement_uid: str | None = Field(default=None, alias="signedAgreementUid")


class ConcordContentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user: ConcordUserPayload | None = None
    agreement: ConcordAgreementPayload


class ConcordWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_id: str = ""
    event_name: str
    content: ConcordContentPayload


# Normalized events


@dataclass(frozen=True)
class Contributor:
    id: int
    username: str
    name: str | None = None


@dataclass(frozen=True)
class PullRequestEvent:
    action: str
    repo: str
    pr_number: int
    contributor: Contributor
    head_sha: str
    installation_id: int

    @property
    def owner(self) -> str:
        return self.repo.split("/", 1)[0]

    @property
    def ref(self) -> str:
        return f"{self.repo}#{self.pr_number}"


@dataclass(frozen=True)
class ResendCommand:
    repo: str
    pr_number: int
    author: Contributor
    requester: str
    comment_id: int
    installation_id: int

    @property
    def ref(self) -> str:
        return f"{self.repo}#{self.pr_number}"


@dataclass(frozen=True)
class AgreementSigned:
    kind: str
    agreement_ref: str
    signed_agreement_ref: str | None = None
    signer_email: str | None = None


@dataclass(frozen=True)
class AgreementCancelled:
    agreement_ref: str


@dataclass(frozen=True)
class AgreementMovedToSigning:
    agreement_ref: str


GitHubEvent = Union[PullRequestEvent, ResendCommand]
AgreementEvent = Union[AgreementSigned, AgreementCancelled, AgreementMovedToSigning]


def is_resend_command(body: str) -> bool:
    return body.strip().casefold() == RESEND_COMMAND


def decode_github_event(event_type: str, payload: dict[str, Any]) -> GitHubEvent | None:
    """Normalize a GitHub webhook; None for events that need no processing."""

    try:
        if event_type == "pull_request":
            return _decode_pull_request(PullRequestWebhookPayload.model_validate(payload))
        if event_type == "issue_comment":
            return _decode_issue_comment(IssueCommentWebhookPayload.model_validate(payload))
    except ValidationError as exc:
        raise EventDecodeError(f"Malformed {event_type} payload: {exc}") from exc
    return None


def _decode_pull_request(payload: PullRequestWebhookPayload) -> PullRequestEvent:
    if payload.installation is None:
        raise EventDecodeError("pull_request payload has no installation id")
    pr = payload.pull_request
    return PullRequestEvent(
        action=payload.action,
        repo=payload.repository.full_name,
        pr_number=pr.number,
        contributor=Contributor(id=pr.user.id, username=pr.user.login, name=pr.user.name),
        head_sha=pr.head.sha,
        installation_id=payload.installation.id,
    )


def _decode_issue_comment(payload: IssueCommentWebhookPayload) -> ResendCommand | None:
    if payload.action != "created" or payload.issue.pull_request is None:
        return None
    if not is_resend_command(payload.comment.body):
        return None
    if payload.installation is None:
        raise EventDecodeError("issue_comment payload has no installation id")
    author = payload.issue.user
    return ResendCommand(
        repo=payload.repository.full_name,
        pr_number=payload.issue.number,
        author=Contributor(id=author.id, username=author.login, name=author.name),
        requester=payload.comment.user.login,
        comment_id=payload.comment.id,
        installation_id=payload.installation.id,
    )


def decode_agreement_event(payload: dict[str, Any]) -> AgreementEvent | None:
    """Normalize a Concord webhook; None for event names outside the handled set."""

    event_name = str(payload.get("event_name", ""))
    kind = CONCORD_EVENT_KINDS.get(event_name)
    if kind is None:
        return None
    try:
        parsed = ConcordWebhookPayload.model_validate(payload)
    except ValidationError as exc:
        raise EventDecodeError(f"Malformed {event_name} payload: {exc}") from exc

    agreement = parsed.content.agreement
    if kind in {AGREEMENT_EXECUTED, AGREEMENT_NEW_SIGNATURE}:
        user = parsed.content.user
        return AgreementSigned(
            kind=kind,
            agreement_ref=agreement.uid,
            signed_agreement_ref=agreement.signed_agreement_uid,
            signer_email=user.email if user is not None else None,
        )
    if kind == "cancelled":
        return AgreementCancelled(agreement_ref=agreement.uid)
    return AgreementMovedToSigning(agreement_ref=agreement.uid)
