import base64
from pathlib import Path

import pytest

from cla_bot.shared.settings import (
    CLASettings,
    ConfigurationError,
    get_settings,
    parse_exempted_users,
)


def _complete_env(**overrides: str) -> dict[str, str]:
    env = {
        "GITHUB_APP_ID": "123",
        "GITHUB_PRIVATE_KEY_BASE64": base64.b64encode(b"-----BEGIN KEY-----").decode("ascii"),
        "GITHUB_WEBHOOK_SECRET": "s3cret",
        "CONCORD_API_KEY": "key",
        "CONCORD_ORGANIZATION_ID": "42",
        "CONCORD_TEMPLATE_ID": "tpl",
    }
    env.update(overrides)
    return env


def test_defaults_from_empty_env():
    settings = CLASettings.from_env({})

    assert settings.port == 3000
    assert settings.host == "0.0.0.0"
    assert settings.public_url == "http://localhost:3000"
    assert settings.github_api_url == "https://api.github.com"
    assert settings.concord_api_url == "https://api.concordnow.com/api/rest/1"
    assert settings.database_path == Path("./data/cla.db")
    assert settings.status_context == "cla-bot/cla"
    assert settings.connector == "api"
    assert settings.skip_org_member_check is False


def test_exempted_users_are_lower_cased_and_trimmed():
    assert parse_exempted_users(" Alice, BOB ,,dependabot[bot]") == frozenset(
        {"alice", "bob", "dependabot[bot]"}
    )
    settings = CLASettings.from_env({"CLA_EXEMPTED_USERS": "Alice"})
    assert settings.is_exempted("ALICE")
    assert not settings.is_exempted("mallory")


def test_flags_and_overrides():
    settings = CLASettings.from_env(
        {
            "PORT": "8080",
            "CLA_SKIP_ORG_MEMBER_CHECK": "true",
            "CLA_CONNECTOR": "IN_MEMORY",
            "LOG_LEVEL": "debug",
        }
    )
    assert settings.port == 8080
    assert settings.public_url == "http://localhost:8080"
    assert settings.skip_org_member_check is True
    assert settings.connector == "in_memory"
    assert settings.log_level == "DEBUG"


def test_validate_lists_every_missing_variable():
    with pytest.raises(ConfigurationError) as exc_info:
        CLASettings.from_env({"GITHUB_APP_ID": "123"}).validate()

    message = str(exc_info.value)
    assert "GITHUB_WEBHOOK_SECRET" in message
    assert "CONCORD_TEMPLATE_ID" in message
    assert "GITHUB_PRIVATE_KEY_BASE64|GITHUB_PRIVATE_KEY_PATH" in message
    assert "GITHUB_APP_ID" not in message


def test_validate_passes_for_complete_env_and_in_memory_mode():
    CLASettings.from_env(_complete_env()).validate()
    CLASettings.from_env({"CLA_CONNECTOR": "in_memory"}).validate()


def test_private_key_loading(tmp_path):
    assert CLASettings.from_env(_complete_env()).load_private_key() == "-----BEGIN KEY-----"

    key_file = tmp_path / "app.pem"
    key_file.write_text("-----FROM FILE-----")
    settings = CLASettings.from_env({"GITHUB_PRIVATE_KEY_PATH": str(key_file)})
    assert settings.load_private_key() == "-----FROM FILE-----"

    with pytest.raises(ConfigurationError, match="private key not found"):
        CLASettings.from_env({"GITHUB_PRIVATE_KEY_PATH": str(tmp_path / "missing.pem")}).load_private_key()


def test_get_settings_creates_database_directory(tmp_path):
    db_path = tmp_path / "state" / "cla.db"
    settings = get_settings({"DATABASE_PATH": str(db_path)})

    assert settings.database_path == db_path
    assert db_path.parent.is_dir()
