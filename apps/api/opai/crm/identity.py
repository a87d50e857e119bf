from __future__ import annotations

import uuid
from collections.abc import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from opai.crm.models import CRMAccount, CRMContact, CRMInstallation
from opai.crm.schemas import DuplicateAccount, DuplicateCheckResponse, ExistingContact, InstallationConflict


MAX_DUPLICATE_ACCOUNTS = 10


class IdentityResolver:
    """Read-only lookup of records that collide with a conversion payload."""

    def check_duplicates(
        self,
        session: Session,
        tenant_id: str,
        *,
        account_name: str | None,
        email: str | None,
        installation_names: Sequence[str] = (),
        existing_account_id: uuid.UUID | None = None,
    ) -> DuplicateCheckResponse:
        duplicates: list[CRMAccount] = []
        if account_name and account_name.strip():
            duplicates = list(
                session.scalars(
                    select(CRMAccount)
                    .where(
                        CRMAccount.tenant_id == tenant_id,
                        func.lower(CRMAccount.name) == account_name.strip().lower(),
                    )
                    .order_by(CRMAccount.created_at.asc())
                    .limit(MAX_DUPLICATE_ACCOUNTS)
                ).all()
            )

        existing_contact: CRMContact | None = None
        if email and email.strip():
            existing_contact = session.scalar(
                select(CRMContact)
                .where(
                    CRMContact.tenant_id == tenant_id,
                    func.lower(CRMContact.email) == email.strip().lower(),
                )
                .order_by(CRMContact.created_at.asc())
                .limit(1)
            )

        conflicts: list[CRMInstallation] = []
        lowered_names = sorted({name.strip().lower() for name in installation_names if name and name.strip()})
        if existing_account_id is not None and lowered_names:
            conflicts = list(
                session.scalars(
                    select(CRMInstallation)
                    .where(
                        CRMInstallation.tenant_id == tenant_id,
                        CRMInstallation.account_id == existing_account_id,
                        func.lower(CRMInstallation.name).in_(lowered_names),
                    )
                    .order_by(CRMInstallation.name.asc())
                ).all()
            )

        has_conflicts = bool(duplicates or existing_contact or conflicts)
        message = None
        if has_conflicts:
            message = "possible duplicates found, confirm how each record should be resolved before approving"

        return DuplicateCheckResponse(
            duplicates=[DuplicateAccount.model_validate(account) for account in duplicates],
            existing_contact=ExistingContact.model_validate(existing_contact) if existing_contact is not None else None,
            installation_conflicts=[InstallationConflict.model_validate(item) for item in conflicts],
            has_conflicts=has_conflicts,
            message=message,
        )


identity_resolver = IdentityResolver()
