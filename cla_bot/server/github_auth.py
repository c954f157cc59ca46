"""GitHub App authentication: app JWTs and a per-installation token cache."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from jose import jwt


logger = logging.getLogger(__name__)

JWT_ALGORITHM = "RS256"
JWT_TTL_S = 9 * 60
# GitHub rejects iat values in the future; back-date to absorb clock drift.
JWT_CLOCK_SKEW_S = 60
TOKEN_REFRESH_MARGIN_S = 5 * 60


@dataclass(frozen=True)
class GitHubAppCredentials:
    app_id: str
    private_key: str

    def redacted(self) -> dict[str, str]:
        return {"app_id": self.app_id, "private_key": "***" if self.private_key else "unset"}


@dataclass(frozen=True)
class InstallationToken:
    installation_id: int
    token: str
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return self.expires_at - TOKEN_REFRESH_MARGIN_S > now


def build_app_jwt(credentials: GitHubAppCredentials, now: float | None = None) -> str:
    """Sign the short-lived JWT that authenticates as the App itself."""

    issued = int(now if now is not None else time.time())
    claims = {
        "iat": issued - JWT_CLOCK_SKEW_S,
        "exp": issued + JWT_TTL_S,
        "iss": credentials.app_id,
    }
    return jwt.encode(claims, credentials.private_key, algorithm=JWT_ALGORITHM)


class InstallationTokenCache:
    """Installation id -> access token, created on first use and stored.

    Owned by the GitHub connector that constructs it; tokens are re-minted
    once they get close to their expiry.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._tokens: dict[int, InstallationToken] = {}

    def get_or_create(
        self,
        installation_id: int,
        create: Callable[[int], InstallationToken],
    ) -> InstallationToken:
        cached = self._tokens.get(installation_id)
        if cached is not None and cached.is_fresh(self._clock()):
            return cached
        token = create(installation_id)
        self._tokens[installation_id] = token
        logger.debug("Cached installation token for installation %s", installation_id)
        return token

    def invalidate(self, installation_id: int) -> None:
        self._tokens.pop(installation_id, None)

    def __contains__(self, installation_id: object) -> bool:
        return installation_id in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)
