"""Agreement service contract, value types, and factory helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from cla_bot.shared.settings import CLASettings


# Status the agreement service reports for a fully executed, in-force contract.
CURRENT_CONTRACT = "CURRENT_CONTRACT"


class AgreementServiceError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AgreementNotFoundError(AgreementServiceError):
    pass


@dataclass(frozen=True)
class AgreementRequest:
    """Contributor metadata used to fill the CLA template."""

    contributor_email: str
    contributor_name: str
    github_username: str
    repo: str
    pr_number: int

    @property
    def source_ref(self) -> str:
        return f"{self.repo}#{self.pr_number}"


@dataclass(frozen=True)
class ExternalAgreement:
    ref: str
    title: str
    status: str
    signature_date: int | None = None
    description: str = ""

    @property
    def is_current(self) -> bool:
        return self.status == CURRENT_CONTRACT


class AgreementConnector(Protocol):
    """Capability contract for the e-signature service."""

    def create_agreement(self, request: AgreementRequest) -> str: ...

    def get_agreement(self, agreement_ref: str) -> ExternalAgreement: ...

    def find_signed_agreement_by_email(self, email: str) -> ExternalAgreement | None: ...

    def resend_invitation(
        self, agreement_ref: str, email: str, name: str, github_username: str
    ) -> None: ...

    def list_templates(self) -> list[dict[str, str]]: ...

    def list_cla_agreements(
        self, statuses: str, page: int = 0, page_size: int = 25
    ) -> tuple[list[ExternalAgreement], int]: ...

    def update_agreement_description(self, agreement_ref: str, description: str) -> None: ...


def build_agreement_connector(settings: CLASettings, **kwargs: Any) -> AgreementConnector:
    if settings.connector == "api":
        from cla_bot.server.agreement_connector_api import ConcordAPIConnector

        return ConcordAPIConnector(
            api_key=settings.concord_api_key,
            organization_id=settings.concord_organization_id,
            template_id=settings.concord_template_id,
            base_url=settings.concord_api_url,
            organization_name=settings.organization_name,
            **kwargs,
        )

    from cla_bot.server.agreement_connector_inmemory import InMemoryAgreementConnector

    return InMemoryAgreementConnector(**kwargs)


__all__ = [
    "CURRENT_CONTRACT",
    "AgreementConnector",
    "AgreementNotFoundError",
    "AgreementRequest",
    "AgreementServiceError",
    "ExternalAgreement",
    "build_agreement_connector",
]
