from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt

from cla_bot.server.github_auth import (
    GitHubAppCredentials,
    InstallationToken,
    InstallationTokenCache,
    build_app_jwt,
)


def _private_key_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


def test_app_jwt_claims_are_backdated_and_short_lived():
    credentials = GitHubAppCredentials(app_id="123", private_key=_private_key_pem())

    token = build_app_jwt(credentials, now=1_700_000_000)

    assert jwt.get_unverified_header(token)["alg"] == "RS256"
    claims = jwt.get_unverified_claims(token)
    assert claims == {"iat": 1_699_999_940, "exp": 1_700_000_540, "iss": "123"}


def test_credentials_redact_private_key():
    credentials = GitHubAppCredentials(app_id="123", private_key="secret")
    assert credentials.redacted() == {"app_id": "123", "private_key": "***"}


def test_token_cache_reuses_fresh_tokens_and_refreshes_near_expiry():
    now = [1000.0]
    minted: list[int] = []

    def create(installation_id: int) -> InstallationToken:
        minted.append(installation_id)
        return InstallationToken(installation_id, f"token-{len(minted)}", expires_at=now[0] + 3600)

    cache = InstallationTokenCache(clock=lambda: now[0])

    assert cache.get_or_create(7, create).token == "token-1"
    assert cache.get_or_create(7, create).token == "token-1"

    # Inside the refresh margin the token is re-minted.
    now[0] += 3600 - 60
    assert cache.get_or_create(7, create).token == "token-2"
    assert minted == [7, 7]
    assert len(cache) == 1


def test_token_cache_is_per_installation_and_invalidates():
    cache = InstallationTokenCache(clock=lambda: 0.0)
    cache.get_or_create(1, lambda i: InstallationToken(i, "a", expires_at=3600))
    cache.get_or_create(2, lambda i: InstallationToken(i, "b", expires_at=3600))

    assert 1 in cache and 2 in cache
    cache.invalidate(1)
    assert 1 not in cache
    assert len(cache) == 1
