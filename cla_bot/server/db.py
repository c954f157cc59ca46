"""SQLite persistence for contributor agreements and tracked pull requests."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

from cla_bot.server.models import (
    CLA_STATUSES,
    STATUS_SIGNED,
    ContributorAgreement,
    TrackedPullRequest,
)


class ClaDB:
    """Small SQLite wrapper keyed on GitHub user ids and (repo, pr, user) triples.

    Uniqueness constraints are the serialization point for concurrent webhooks:
    every create is an upsert and the signed transition is conditional.
    The connection is shared by worker threads, so every statement and its
    commit run under one lock.
    """

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._lock = threading.RLock()
        self.conn.row_factory = sqlite3.Row
        self._configure_connection()
        self._init_schema()

    def _configure_connection(self) -> None:
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        self.conn.execute("PRAGMA synchronous=NORMAL")

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS cla_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                github_username TEXT NOT NULL,
                github_user_id INTEGER NOT NULL,
                github_email TEXT,
                agreement_ref TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                signed_at TEXT,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(github_user_id)
            );

            CREATE TABLE IF NOT EXISTS pr_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                repo_full_name TEXT NOT NULL,
                pr_number INTEGER NOT NULL,
                github_username TEXT NOT NULL,
                github_user_id INTEGER NOT NULL,
                comment_id INTEGER,
                agreement_ref TEXT,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(repo_full_name, pr_number, github_user_id)
            );

            CREATE INDEX IF NOT EXISTS idx_cla_github_username ON cla_records(github_username);
            CREATE INDEX IF NOT EXISTS idx_cla_agreement_ref ON cla_records(agreement_ref);
            CREATE INDEX IF NOT EXISTS idx_pr_github_user_id ON pr_records(github_user_id);
            CREATE INDEX IF NOT EXISTS idx_pr_agreement_ref ON pr_records(agreement_ref);
            """
        )
        self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def _write(self, sql: str, params: tuple = ()) -> int:
        with self._lock:
            cur = self.conn.execute(sql, params)
            self.conn.commit()
            return cur.rowcount

    # Contributor agreements

    def find_agreement_by_user_id(self, github_user_id: int) -> ContributorAgreement | None:
        rows = self._query("SELECT * FROM cla_records WHERE github_user_id = ?", (github_user_id,))
        return ContributorAgreement.from_row(rows[0]) if rows else None

    def find_agreement_by_username(self, username: str) -> ContributorAgreement | None:
        rows = self._query(
            "SELECT * FROM cla_records WHERE github_username = ? COLLATE NOCASE",
            (username,),
        )
        return ContributorAgreement.from_row(rows[0]) if rows else None

    def find_agreement_by_ref(self, agreement_ref: str) -> ContributorAgreement | None:
        rows = self._query("SELECT * FROM cla_records WHERE agreement_ref = ?", (agreement_ref,))
        return ContributorAgreement.from_row(rows[0]) if rows else None

    def upsert_agreement(
        self,
        github_username: str,
        github_user_id: int,
        agreement_ref: str,
        status: str,
        github_email: str | None = None,
        signed_at: str | None = None,
    ) -> ContributorAgreement:
        _check_status(status)
        self._write(
            """
            INSERT INTO cla_records (
                github_username, github_user_id, github_email, agreement_ref, status, signed_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(github_user_id) DO UPDATE SET
              github_username=excluded.github_username,
              github_email=COALESCE(excluded.github_email, cla_records.github_email),
              agreement_ref=excluded.agreement_ref,
              status=excluded.status,
              signed_at=excluded.signed_at,
              updated_at=CURRENT_TIMESTAMP
            """,
            (github_username, github_user_id, github_email, agreement_ref, status, signed_at),
        )
        record = self.find_agreement_by_user_id(github_user_id)
        if record is None:
            raise RuntimeError(f"Agreement upsert lost for user {github_user_id}")
        return record

    def mark_signed(self, agreement_ref: str, signed_at: str) -> bool:
        """Transition a record to signed; False when it was already signed or absent."""

        changed = self._write(
            """
            UPDATE cla_records
            SET status = ?, signed_at = ?, updated_at = CURRENT_TIMESTAMP
            WHERE agreement_ref = ? AND status != ?
            """,
            (STATUS_SIGNED, signed_at, agreement_ref, STATUS_SIGNED),
        )
        return changed > 0

    def update_status_by_agreement_ref(self, agreement_ref: str, status: str) -> int:
        _check_status(status)
        return self._write(
            """
            UPDATE cla_records
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE agreement_ref = ?
            """,
            (status, agreement_ref),
        )

    def delete_agreement(self, github_user_id: int) -> bool:
        return self._write("DELETE FROM cla_records WHERE github_user_id = ?", (github_user_id,)) > 0

    def count_agreements(self) -> int:
        return int(self._query("SELECT COUNT(*) FROM cla_records")[0][0])

    # Tracked pull requests

    def find_tracked_pr(
        self, repo_full_name: str, pr_number: int, github_user_id: int
    ) -> TrackedPullRequest | None:
        rows = self._query(
            """
            SELECT * FROM pr_records
            WHERE repo_full_name = ? AND pr_number = ? AND github_user_id = ?
            """,
            (repo_full_name, pr_number, github_user_id),
        )
        return TrackedPullRequest.from_row(rows[0]) if rows else None

    def list_tracked_prs_for_user(self, github_user_id: int) -> list[TrackedPullRequest]:
        rows = self._query(
            "SELECT * FROM pr_records WHERE github_user_id = ? ORDER BY id",
            (github_user_id,),
        )
        return [TrackedPullRequest.from_row(row) for row in rows]

    def upsert_tracked_pr(
        self,
        repo_full_name: str,
        pr_number: int,
        github_username: str,
        github_user_id: int,
        comment_id: int | None = None,
        agreement_ref: str | None = None,
    ) -> TrackedPullRequest:
        self._write(
            """
            INSERT INTO pr_records (
                repo_full_name, pr_number, github_username, github_user_id, comment_id, agreement_ref
            )
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(repo_full_name, pr_number, github_user_id) DO UPDATE SET
              comment_id=COALESCE(excluded.comment_id, pr_records.comment_id),
              agreement_ref=COALESCE(excluded.agreement_ref, pr_records.agreement_ref),
              updated_at=CURRENT_TIMESTAMP
            """,
            (repo_full_name, pr_number, github_username, github_user_id, comment_id, agreement_ref),
        )
        record = self.find_tracked_pr(repo_full_name, pr_number, github_user_id)
        if record is None:
            raise RuntimeError(f"Tracked PR upsert lost for {repo_full_name}#{pr_number}")
        return record

    def count_tracked_prs(self) -> int:
        return int(self._query("SELECT COUNT(*) FROM pr_records")[0][0])


def _check_status(status: str) -> None:
    if status not in CLA_STATUSES:
        raise ValueError(f"Unsupported CLA status: {status}")
