"""Runtime settings for the CLA bot, loaded from environment variables."""

from __future__ import annotations

import base64
import os
from dataclasses import dataclass, field
from pathlib import Path


DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_CONCORD_API_URL = "https://api.concordnow.com/api/rest/1"
DEFAULT_STATUS_CONTEXT = "cla-bot/cla"


class ConfigurationError(ValueError):
    """Raised at startup when required settings are missing or unreadable."""


@dataclass(frozen=True)
class CLASettings:
    """Server, GitHub App, agreement service and CLA policy settings."""

    port: int = 3000
    host: str = "0.0.0.0"
    public_url: str = "http://localhost:3000"
    log_level: str = "INFO"
    github_app_id: str = ""
    github_private_key_base64: str = ""
    github_private_key_path: str = ""
    github_webhook_secret: str = ""
    github_api_url: str = DEFAULT_GITHUB_API_URL
    concord_api_key: str = ""
    concord_api_url: str = DEFAULT_CONCORD_API_URL
    concord_organization_id: str = ""
    concord_template_id: str = ""
    database_path: Path = Path("./data/cla.db")
    exempted_users: frozenset[str] = field(default_factory=frozenset)
    skip_org_member_check: bool = False
    status_context: str = DEFAULT_STATUS_CONTEXT
    organization_name: str = "the project"
    connector: str = "api"

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "CLASettings":
        source = os.environ if env is None else env
        port = int(source.get("PORT", "3000"))
        return cls(
            port=port,
            host=source.get("HOST", "0.0.0.0"),
            public_url=source.get("PUBLIC_URL", f"http://localhost:{port}"),
            log_level=source.get("LOG_LEVEL", "INFO").upper(),
            github_app_id=_clean(source.get("GITHUB_APP_ID")),
            github_private_key_base64=_clean(source.get("GITHUB_PRIVATE_KEY_BASE64")),
            github_private_key_path=_clean(source.get("GITHUB_PRIVATE_KEY_PATH")),
            github_webhook_secret=_clean(source.get("GITHUB_WEBHOOK_SECRET")),
            github_api_url=_clean(source.get("GITHUB_API_URL")) or DEFAULT_GITHUB_API_URL,
            concord_api_key=_clean(source.get("CONCORD_API_KEY")),
            concord_api_url=_clean(source.get("CONCORD_API_URL")) or DEFAULT_CONCORD_API_URL,
            concord_organization_id=_clean(source.get("CONCORD_ORGANIZATION_ID")),
            concord_template_id=_clean(source.get("CONCORD_TEMPLATE_ID")),
            database_path=Path(source.get("DATABASE_PATH", "./data/cla.db")),
            exempted_users=parse_exempted_users(source.get("CLA_EXEMPTED_USERS", "")),
            skip_org_member_check=_flag(source.get("CLA_SKIP_ORG_MEMBER_CHECK")),
            status_context=_clean(source.get("CLA_STATUS_CONTEXT")) or DEFAULT_STATUS_CONTEXT,
            organization_name=_clean(source.get("CLA_ORGANIZATION_NAME")) or "the project",
            connector=(_clean(source.get("CLA_CONNECTOR")) or "api").lower(),
        )

    def is_exempted(self, username: str) -> bool:
        return username.strip().lower() in self.exempted_users

    def missing_required(self) -> list[str]:
        required = [
            ("GITHUB_APP_ID", self.github_app_id),
            ("GITHUB_WEBHOOK_SECRET", self.github_webhook_secret),
            ("CONCORD_API_KEY", self.concord_api_key),
            ("CONCORD_ORGANIZATION_ID", self.concord_organization_id),
            ("CONCORD_TEMPLATE_ID", self.concord_template_id),
        ]
        missing = [name for name, value in required if not value]
        if not (self.github_private_key_base64 or self.github_private_key_path):
            missing.append("GITHUB_PRIVATE_KEY_BASE64|GITHUB_PRIVATE_KEY_PATH")
        return missing

    def validate(self) -> None:
        """Fail fast when the API connectors cannot be built."""

        if self.connector != "api":
            return
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

    def load_private_key(self) -> str:
        if self.github_private_key_base64:
            try:
                return base64.b64decode(self.github_private_key_base64).decode("utf-8")
            except (ValueError, UnicodeDecodeError) as exc:
                raise ConfigurationError("GITHUB_PRIVATE_KEY_BASE64 is not valid base64") from exc
        if self.github_private_key_path:
            path = Path(self.github_private_key_path)
            if path.is_file():
                return path.read_text(encoding="utf-8")
        raise ConfigurationError(
            "GitHub private key not found. Set GITHUB_PRIVATE_KEY_BASE64 or GITHUB_PRIVATE_KEY_PATH"
        )

    def ensure_directories(self) -> None:
        if str(self.database_path) != ":memory:":
            self.database_path.parent.mkdir(parents=True, exist_ok=True)


def parse_exempted_users(raw: str) -> frozenset[str]:
    """Parse a comma-separated username list into a lower-cased set."""

    return frozenset(user.strip().lower() for user in raw.split(",") if user.strip())


def get_settings(env: dict[str, str] | None = None) -> CLASettings:
    """Build settings from the environment and create the database directory."""

    settings = CLASettings.from_env(env)
    settings.ensure_directories()
    return settings


def _clean(value: str | None) -> str:
    if value is None:
        return ""
    return value.strip()


def _flag(value: str | None) -> bool:
    return _clean(value).lower() in {"1", "true", "yes"}
