"""In-memory agreement service for deterministic tests and local runs."""

from __future__ import annotations

from dataclasses import replace

from cla_bot.server.agreement_connector import (
    AgreementNotFoundError,
    AgreementRequest,
    AgreementServiceError,
    ExternalAgreement,
)


class InMemoryAgreementConnector:
    """Keeps agreements in a dict; `fail_create` simulates a service outage."""

    def __init__(self) -> None:
        self.agreements: dict[str, ExternalAgreement] = {}
        self.signers: dict[str, str] = {}
        self.created: list[AgreementRequest] = []
        self.resent: list[tuple[str, str]] = []
        self.calls: list[str] = []
        self.fail_create = False
        self._next_ref = 1

    def add_agreement(
        self,
        agreement_ref: str,
        signer_email: str = "",
        status: str = "SIGNING",
        signature_date: int | None = None,
        description: str = "",
    ) -> ExternalAgreement:
        agreement = ExternalAgreement(
            ref=agreement_ref,
            title=f"CLA - {signer_email}",
            status=status,
            signature_date=signature_date,
            description=description,
        )
        self.agreements[agreement_ref] = agreement
        if signer_email:
            self.signers[agreement_ref] = signer_email
        return agreement

    def delete_agreement(self, agreement_ref: str) -> None:
        self.agreements.pop(agreement_ref, None)
        self.signers.pop(agreement_ref, None)

    def create_agreement(self, request: AgreementRequest) -> str:
        self.calls.append("create_agreement")
        if self.fail_create:
            raise AgreementServiceError("Simulated agreement service outage", status_code=503)
        agreement_ref = f"AG-{self._next_ref}"
        self._next_ref += 1
        self.created.append(request)
        self.add_agreement(
            agreement_ref,
            signer_email=request.contributor_email,
            description=f"Contributor License Agreement for GitHub user @{request.github_username}",
        )
        return agreement_ref

    def get_agreement(self, agreement_ref: str) -> ExternalAgreement:
        self.calls.append("get_agreement")
        agreement = self.agreements.get(agreement_ref)
        if agreement is None:
            raise AgreementNotFoundError(f"Agreement {agreement_ref} not found", status_code=404)
        return agreement

    def find_signed_agreement_by_email(self, email: str) -> ExternalAgreement | None:
        self.calls.append("find_signed_agreement_by_email")
        for agreement_ref, signer in self.signers.items():
            agreement = self.agreements.get(agreement_ref)
            if signer == email and agreement is not None and agreement.is_current:
                return agreement
        return None

    def resend_invitation(
        self, agreement_ref: str, email: str, name: str, github_username: str
    ) -> None:
        self.calls.append("resend_invitation")
        if agreement_ref not in self.agreements:
            raise AgreementNotFoundError(f"Agreement {agreement_ref} not found", status_code=404)
        self.resent.append((agreement_ref, email))

    def list_templates(self) -> list[dict[str, str]]:
        self.calls.append("list_templates")
        return [{"uid": "template-1", "title": "CLA template"}]

    def list_cla_agreements(
        self, statuses: str, page: int = 0, page_size: int = 25
    ) -> tuple[list[ExternalAgreement], int]:
        self.calls.append("list_cla_agreements")
        wanted = {status.strip() for status in statuses.split(",") if status.strip()}
        matched = [a for a in self.agreements.values() if a.status in wanted]
        start = page * page_size
        return matched[start : start + page_size], len(matched)

    def update_agreement_description(self, agreement_ref: str, description: str) -> None:
        self.calls.append("update_agreement_description")
        agreement = self.get_agreement(agreement_ref)
        self.agreements[agreement_ref] = replace(agreement, description=description)
