import pytest

from cla_bot.server.events import (
    AgreementCancelled,
    AgreementMovedToSigning,
    AgreementSigned,
    EventDecodeError,
    PullRequestEvent,
    ResendCommand,
    decode_agreement_event,
    decode_github_event,
    is_resend_command,
)


def _pull_request_payload(action: str = "opened", installation: bool = True) -> dict:
    payload = {
        "action": action,
        "pull_request": {
            "number": 7,
            "title": "Fix typo",
            "user": {"id": 42, "login": "alice"},
            "head": {"sha": "abc123", "ref": "fix-typo"},
        },
        "repository": {"name": "repo", "full_name": "org/repo", "owner": {"login": "org"}},
    }
    if installation:
        payload["installation"] = {"id": 11}
    return payload


def _issue_comment_payload(body: str, action: str = "created", on_pr: bool = True) -> dict:
    issue = {"number": 7, "user": {"id": 42, "login": "alice"}}
    if on_pr:
        issue["pull_request"] = {"url": "https://api.github.com/repos/org/repo/pulls/7"}
    return {
        "action": action,
        "issue": issue,
        "comment": {"id": 555, "body": body, "user": {"id": 1, "login": "maintainer"}},
        "repository": {"name": "repo", "full_name": "org/repo", "owner": {"login": "org"}},
        "installation": {"id": 11},
    }


def test_decode_pull_request_event():
    event = decode_github_event("pull_request", _pull_request_payload())

    assert isinstance(event, PullRequestEvent)
    assert event.repo == "org/repo"
    assert event.owner == "org"
    assert event.ref == "org/repo#7"
    assert event.contributor.id == 42
    assert event.contributor.username == "alice"
    assert event.head_sha == "abc123"
    assert event.installation_id == 11


def test_pull_request_without_installation_is_rejected():
    with pytest.raises(EventDecodeError, match="installation"):
        decode_github_event("pull_request", _pull_request_payload(installation=False))


def test_malformed_pull_request_payload_is_rejected():
    with pytest.raises(EventDecodeError):
        decode_github_event("pull_request", {"action": "opened"})


def test_resend_command_matches_after_trim_and_casefold():
    assert is_resend_command("  /CLA Resend \n")
    assert not is_resend_command("/cla resend please")
    assert not is_resend_command("please /cla resend")


def test_decode_resend_command_from_pr_comment():
    event = decode_github_event("issue_comment", _issue_comment_payload("/cla resend"))

    assert isinstance(event, ResendCommand)
    assert event.author.username == "alice"
    assert event.author.id == 42
    assert event.requester == "maintainer"
    assert event.ref == "org/repo#7"


def test_non_command_comments_are_ignored():
    assert decode_github_event("issue_comment", _issue_comment_payload("LGTM")) is None
    assert (
        decode_github_event("issue_comment", _issue_comment_payload("/cla resend", on_pr=False))
        is None
    )
    assert (
        decode_github_event(
            "issue_comment", _issue_comment_payload("/cla resend", action="edited")
        )
        is None
    )


def test_unhandled_github_events_decode_to_none():
    assert decode_github_event("push", {"ref": "refs/heads/main"}) is None


def test_decode_agreement_events():
    signed = decode_agreement_event(
        {
            "event_name": "AGREEMENT_NEW_SIGNATURE",
            "content": {
                "user": {"email": "alice@example.com"},
                "agreement": {"uid": "AG-1", "signedAgreementUid": "AG-1-signed"},
            },
        }
    )
    assert signed == AgreementSigned(
        kind="new_signature",
        agreement_ref="AG-1",
        signed_agreement_ref="AG-1-signed",
        signer_email="alice@example.com",
    )

    executed = decode_agreement_event(
        {"event_name": "AGREEMENT_EXECUTED", "content": {"agreement": {"uid": "AG-1"}}}
    )
    assert executed == AgreementSigned(kind="executed", agreement_ref="AG-1")

    cancelled = decode_agreement_event(
        {"event_name": "AGREEMENT_CANCELLED", "content": {"agreement": {"uid": "AG-2"}}}
    )
    assert cancelled == AgreementCancelled(agreement_ref="AG-2")

    moved = decode_agreement_event(
        {"event_name": "AGREEMENT_MOVE_TO_SIGNING", "content": {"agreement": {"uid": "AG-3"}}}
    )
    assert moved == AgreementMovedToSigning(agreement_ref="AG-3")


def test_unknown_agreement_event_names_are_ignored():
    assert decode_agreement_event({"event_name": "AGREEMENT_COMMENT_ADDED"}) is None


def test_agreement_event_without_uid_is_rejected():
    with pytest.raises(EventDecodeError):
        decode_agreement_event({"event_name": "AGREEMENT_EXECUTED", "content": {"agreement": {}}})
