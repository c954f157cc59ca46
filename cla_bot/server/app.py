"""CLA bot application surface with a minimal ASGI HTTP layer."""

from __future__ import annotations

import argparse
import asyncio
import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from cla_bot.server.agreement_connector import AgreementConnector, build_agreement_connector
from cla_bot.server.commands import CommandHandler
from cla_bot.server.completion import CompletionReconciler
from cla_bot.server.db import ClaDB
from cla_bot.server.events import (
    EventDecodeError,
    PullRequestEvent,
    ResendCommand,
    decode_agreement_event,
    decode_github_event,
)
from cla_bot.server.github_connector import GitHubConnector, build_github_connector
from cla_bot.server.signature import SignatureReconciler
from cla_bot.shared.settings import CLASettings, get_settings


logger = logging.getLogger(__name__)

SERVICE_NAME = "cla-bot"
SERVICE_VERSION = "1.0.0"
SIGNATURE_PREFIX = "sha256="
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def verify_signature(secret: str, body: bytes, signature_header: str) -> bool:
    """Check `X-Hub-Signature-256` against an HMAC-SHA256 of the raw body."""

    if not secret or not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header[len(SIGNATURE_PREFIX) :])


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class ServerApp:
    """Callable facade wiring the store, connectors and reconcilers."""

    def __init__(
        self,
        settings: CLASettings | None = None,
        db_path: str | Path = ":memory:",
        github: GitHubConnector | None = None,
        agreements: AgreementConnector | None = None,
    ) -> None:
        self.settings = settings or CLASettings.from_env()
        self.db = ClaDB(db_path)
        self.github = github or build_github_connector(self.settings)
        self.agreements = agreements or build_agreement_connector(self.settings)
        self.signatures = SignatureReconciler(
            db=self.db, github=self.github, agreements=self.agreements, settings=self.settings
        )
        self.completion = CompletionReconciler(db=self.db, github=self.github, settings=self.settings)
        self.commands = CommandHandler(
            db=self.db, github=self.github, agreements=self.agreements, settings=self.settings
        )

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "ServerApp":
        settings = get_settings(env)
        settings.validate()
        configure_logging(settings.log_level)
        logger.info("Starting %s %s", SERVICE_NAME, SERVICE_VERSION)
        logger.info("GitHub webhook URL: %s/github/webhook", settings.public_url)
        logger.info("Concord webhook URL: %s/concord/webhook", settings.public_url)
        if settings.exempted_users:
            logger.info("CLA allow-list: %s", ", ".join(sorted(settings.exempted_users)))
        return cls(settings=settings, db_path=settings.database_path)

    def ingest_github_event(self, event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
        if event_type == "ping":
            logger.info("Received ping from GitHub: %s", payload.get("zen", ""))
            return {"status": "pong"}

        event = decode_github_event(event_type, payload)
        if event is None:
            logger.debug("Ignoring GitHub event %s (action=%s)", event_type, payload.get("action"))
            return {"status": "ignored", "event": event_type}
        if isinstance(event, PullRequestEvent):
            return self.signatures.handle(event)
        if isinstance(event, ResendCommand):
            return self.commands.handle(event)
        raise TypeError(f"Unsupported GitHub event: {type(event).__name__}")

    def ingest_agreement_event(self, payload: dict[str, Any]) -> dict[str, Any]:
        event = decode_agreement_event(payload)
        if event is None:
            logger.info("Ignoring Concord event %s", payload.get("event_name", ""))
            return {"status": "ignored", "event": payload.get("event_name", "")}
        return self.completion.handle(event)

    def health(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "timestamp": _timestamp(),
        }

    def concord_health(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "message": "Concord webhook endpoint is ready",
            "timestamp": _timestamp(),
        }

    def service_info(self) -> dict[str, Any]:
        return {
            "name": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "description": "Contributor License Agreement bot for GitHub pull requests",
            "endpoints": {
                "health": "/health",
                "github_webhook": "/github/webhook",
                "concord_webhook": "/concord/webhook",
                "concord_health": "/concord/health",
            },
        }


class ASGIServer:
    """Minimal ASGI adapter for the webhook and health endpoints."""

    def __init__(self, service: ServerApp | None = None) -> None:
        self._service = service

    @property
    def service(self) -> ServerApp:
        if self._service is None:
            self._service = ServerApp.from_env()
        return self._service

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope.get("type") == "lifespan":
            await self._lifespan(receive, send)
            return
        if scope.get("type") != "http":
            await self._send_json(send, 500, {"error": "unsupported_scope"})
            return

        method = scope.get("method", "GET")
        path = scope.get("path", "")
        headers = self._parse_headers(scope.get("headers") or [])
        body = await self._read_body(receive)

        try:
            if method == "GET" and path == "/":
                await self._send_json(send, 200, self.service.service_info())
                return

            if method == "GET" and path == "/health":
                await self._send_json(send, 200, self.service.health())
                return

            if method == "GET" and path == "/concord/health":
                await self._send_json(send, 200, self.service.concord_health())
                return

            if method == "POST" and path == "/github/webhook":
                signature = headers.get("x-hub-signature-256", "")
                if not verify_signature(self.service.settings.github_webhook_secret, body, signature):
                    logger.warning(
                        "Rejected GitHub webhook with invalid signature (delivery=%s)",
                        headers.get("x-github-delivery", ""),
                    )
                    await self._send_json(send, 401, {"error": "invalid_signature"})
                    return
                payload = self._parse_json(body)
                if payload is None:
                    await self._send_json(send, 400, {"error": "invalid_json"})
                    return
                event_type = headers.get("x-github-event", "")
                logger.info(
                    "Received GitHub event %s (delivery=%s)",
                    event_type,
                    headers.get("x-github-delivery", ""),
                )
                await asyncio.to_thread(self.service.ingest_github_event, event_type, payload)
                await self._send_json(send, 200, {"success": True})
                return

            if method == "POST" and path == "/concord/webhook":
                payload = self._parse_json(body)
                if payload is None:
                    await self._send_json(send, 400, {"error": "invalid_json"})
                    return
                logger.info("Received Concord event %s", payload.get("event_name", ""))
                await asyncio.to_thread(self.service.ingest_agreement_event, payload)
                await self._send_json(send, 200, {"success": True})
                return

            await self._send_json(send, 404, {"error": "not_found"})
        except EventDecodeError as exc:
            logger.warning("Rejected malformed webhook on %s: %s", path, exc)
            await self._send_json(send, 400, {"error": "invalid_payload"})
        except Exception:
            logger.exception("Error processing %s %s", method, path)
            await self._send_json(send, 500, {"error": "internal_server_error"})

    async def _lifespan(self, receive: Any, send: Any) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                try:
                    logger.info("Database: %s", self.service.settings.database_path)
                except Exception as exc:
                    logger.exception("Startup failed")
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                if self._service is not None:
                    self._service.db.close()
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def _read_body(self, receive: Any) -> bytes:
        chunks: list[bytes] = []
        while True:
            message = await receive()
            if message["type"] != "http.request":
                continue
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break
        return b"".join(chunks)

    def _parse_headers(self, raw_headers: list[tuple[bytes, bytes]]) -> dict[str, str]:
        return {
            name.decode("latin-1").lower(): value.decode("latin-1") for name, value in raw_headers
        }

    def _parse_json(self, body: bytes) -> dict[str, Any] | None:
        if not body:
            return {}
        try:
            parsed = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(parsed, dict):
            return None
        return parsed

    async def _send_json(self, send: Any, status: int, payload: dict[str, Any]) -> None:
        body = json.dumps(payload).encode("utf-8")
        await send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [(b"content-type", b"application/json")],
            }
        )
        await send({"type": "http.response.body", "body": body})


def create_app(
    settings: CLASettings | None = None,
    db_path: str | Path = ":memory:",
    github: GitHubConnector | None = None,
    agreements: AgreementConnector | None = None,
) -> ServerApp:
    return ServerApp(settings=settings, db_path=db_path, github=github, agreements=agreements)


app = ASGIServer()


def main() -> int:
    parser = argparse.ArgumentParser(description="cla-bot ASGI server entrypoint")
    parser.add_argument(
        "--print-startup",
        action="store_true",
        help="print the supported uvicorn startup command and exit",
    )
    args = parser.parse_args()

    if args.print_startup:
        print("uvicorn cla_bot.server.app:app --host 0.0.0.0 --port 3000")
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
