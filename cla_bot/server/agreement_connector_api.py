"""Concord REST API connector for CLA agreements."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import requests

from cla_bot.server.agreement_connector import (
    AgreementNotFoundError,
    AgreementRequest,
    AgreementServiceError,
    ExternalAgreement,
)
from cla_bot.server.messages import invitation_body, invitation_subject


logger = logging.getLogger(__name__)

SIGNED_STATUSES = "CURRENT_CONTRACT,UNKNOWN_CONTRACT"
CLA_TAGS = ["CLA", "GitHub"]


class ConcordAPIConnector:
    def __init__(
        self,
        api_key: str,
        organization_id: str,
        template_id: str,
        base_url: str = "https://api.concordnow.com/api/rest/1",
        organization_name: str = "the project",
        session: requests.Session | None = None,
        timeout_s: float = 15,
    ) -> None:
        self.api_key = api_key
        self.organization_id = organization_id
        self.template_id = template_id
        self.base_url = base_url.rstrip("/")
        self.organization_name = organization_name
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def create_agreement(self, request: AgreementRequest) -> str:
        """Create an agreement from the automated template and invite the signer.

        The template must be flagged as an automated template in Concord;
        regular templates cannot be instantiated through the API.
        """

        name = request.contributor_name or request.github_username
        logger.info(
            "Creating agreement from template %s for %s (%s)",
            self.template_id,
            request.github_username,
            request.source_ref,
        )
        payload = self._request(
            "POST",
            f"/organizations/{self.organization_id}/auto/{self.template_id}",
            json={
                "title": f"{self.organization_name} CLA - {request.github_username}",
                "description": (
                    f"Contributor License Agreement for GitHub user @{request.github_username}"
                ),
                "tags": CLA_TAGS,
                "signatureRequired": 1,
                "variables": {
                    "contributor_name": name,
                    "contributor_email": request.contributor_email,
                    "github_username": request.github_username,
                    "source_pull_request": request.source_ref,
                    "date": datetime.now(timezone.utc).date().isoformat(),
                },
                "inviteNowEmails": {request.contributor_email: "NO_EDIT"},
                "sendWithDocument": True,
                "customMessageTitle": invitation_subject(self.organization_name),
                "customMessageContent": invitation_body(name, self.organization_name),
            },
        )
        agreement_ref = str(payload.get("uid", "")).strip()
        if not agreement_ref:
            raise AgreementServiceError("Concord did not return an agreement uid")
        logger.info("Agreement %s created (status=%s)", agreement_ref, payload.get("status"))
        return agreement_ref

    def get_agreement(self, agreement_ref: str) -> ExternalAgreement:
        payload = self._request(
            "GET", f"/organizations/{self.organization_id}/agreements/{agreement_ref}"
        )
        metadata = payload.get("metadata") or {}
        lifecycle = (payload.get("summary") or {}).get("lifecycle") or {}
        return ExternalAgreement(
            ref=str(payload.get("uid", agreement_ref)),
            title=str(metadata.get("title", "")),
            status=str(metadata.get("status", "")),
            signature_date=lifecycle.get("signatureDate"),
            description=str(metadata.get("description") or ""),
        )

    def find_signed_agreement_by_email(self, email: str) -> ExternalAgreement | None:
        payload = self._request(
            "GET",
            f"/user/me/organizations/{self.organization_id}/agreements"
            f"?statuses={SIGNED_STATUSES}&search={quote(email, safe='')}",
        )
        items = payload.get("items") or []
        if not items:
            return None
        return _agreement_from_list_item(items[0])

    def resend_invitation(
        self, agreement_ref: str, email: str, name: str, github_username: str
    ) -> None:
        logger.info("Resending CLA invitation for %s on %s", github_username, agreement_ref)
        self._request(
            "POST",
            f"/organizations/{self.organization_id}/agreements/{agreement_ref}/members",
            json={
                "invitations": {email: {"permission": "NO_EDIT"}},
                "message": {
                    "subject": invitation_subject(self.organization_name),
                    "content": invitation_body(name or github_username, self.organization_name),
                },
                "sendWithDocument": True,
            },
        )

    def list_templates(self) -> list[dict[str, str]]:
        payload = self._request("GET", f"/organizations/{self.organization_id}/auto")
        rows = payload if isinstance(payload, list) else []
        return [{"uid": str(row.get("uid", "")), "title": str(row.get("title", ""))} for row in rows]

    def list_cla_agreements(
        self, statuses: str, page: int = 0, page_size: int = 25
    ) -> tuple[list[ExternalAgreement], int]:
        payload = self._request(
            "GET",
            f"/user/me/organizations/{self.organization_id}/agreements"
            f"?statuses={statuses}&tagNames=CLA&page={page}&numberOfItemsByPage={page_size}",
        )
        items = [_agreement_from_list_item(item) for item in payload.get("items") or []]
        return items, int(payload.get("total", len(items)))

    def update_agreement_description(self, agreement_ref: str, description: str) -> None:
        self._request(
            "PATCH",
            f"/organizations/{self.organization_id}/agreements/{agreement_ref}/metadata",
            json={"description": description},
        )

    def _request(self, method: str, endpoint: str, json: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{endpoint}"
        logger.debug("Concord API request %s %s", method, url)
        try:
            response = self.session.request(
                method=method,
                url=url,
                headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
                json=json,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            logger.error("Concord API request failed (network error): %s %s: %s", method, url, exc)
            raise AgreementServiceError(f"Concord API unreachable: {method} {endpoint}") from exc

        if response.status_code == 404:
            raise AgreementNotFoundError(f"Concord resource not found: {endpoint}", status_code=404)
        if response.status_code >= 400:
            body = _error_body(response)
            logger.error(
                "Concord API error response: %s %s -> %s %s",
                method,
                endpoint,
                response.status_code,
                body,
            )
            raise AgreementServiceError(
                f"Concord API error: {response.status_code} - {body}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()


def _agreement_from_list_item(item: dict[str, Any]) -> ExternalAgreement:
    return ExternalAgreement(
        ref=str(item.get("uuid", "")),
        title=str(item.get("title", "")),
        status=str(item.get("status", "")),
        signature_date=item.get("signatureDate"),
    )


def _error_body(response: requests.Response) -> str:
    try:
        return str(response.json())
    except ValueError:
        return response.text[:500]
