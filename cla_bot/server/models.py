"""Persisted CLA record types."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass


STATUS_PENDING = "pending"
STATUS_SIGNED = "signed"
STATUS_EXPIRED = "expired"
STATUS_CANCELLED = "cancelled"

CLA_STATUSES = {STATUS_PENDING, STATUS_SIGNED, STATUS_EXPIRED, STATUS_CANCELLED}


@dataclass(frozen=True)
class ContributorAgreement:
    id: int
    github_username: str
    github_user_id: int
    github_email: str | None
    agreement_ref: str
    status: str
    signed_at: str | None
    created_at: str
    updated_at: str

    @property
    def is_signed(self) -> bool:
        return self.status == STATUS_SIGNED

    @property
    def is_pending(self) -> bool:
        return self.status == STATUS_PENDING

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ContributorAgreement":
        return cls(
            id=int(row["id"]),
            github_username=row["github_username"],
            github_user_id=int(row["github_user_id"]),
            github_email=row["github_email"],
            agreement_ref=row["agreement_ref"],
            status=row["status"],
            signed_at=row["signed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(frozen=True)
class TrackedPullRequest:
    id: int
    repo_full_name: str
    pr_number: int
    github_username: str
    github_user_id: int
    comment_id: int | None
    agreement_ref: str | None
    created_at: str
    updated_at: str

    @property
    def ref(self) -> str:
        return f"{self.repo_full_name}#{self.pr_number}"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TrackedPullRequest":
        comment_id = row["comment_id"]
        return cls(
            id=int(row["id"]),
            repo_full_name=row["repo_full_name"],
            pr_number=int(row["pr_number"]),
            github_username=row["github_username"],
            github_user_id=int(row["github_user_id"]),
            comment_id=int(comment_id) if comment_id is not None else None,
            agreement_ref=row["agreement_ref"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
