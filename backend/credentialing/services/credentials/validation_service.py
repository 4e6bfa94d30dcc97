"""
Registry Validation Service

Runs the company-registry lookup for a credential and records the snapshot the
compliance engine scores against.

Flow:
    DRAFT / VALIDATION_FAILED --SUBMIT_VALIDATION--> PENDING_VALIDATION
    (registry lookup, outside any row lock)
    PENDING_VALIDATION --VALIDATION_RESULT--> PENDING_COMPLIANCE | VALIDATION_FAILED
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import CredentialStatus, CredentialValidationDB
from ...models.identity import AuthUser
from ..result import Ok, Result
from ..taxid import mask_tax_id
from .credential_service import CredentialService
from .state_machine import CredentialOperation

logger = logging.getLogger(__name__)


class RegistryValidationService:
    """Validation step between DRAFT and PENDING_COMPLIANCE."""

    def __init__(self, db: Session, aggregator, lifecycle: Optional[CredentialService] = None):
        self.db = db
        self.aggregator = aggregator
        self.lifecycle = lifecycle or CredentialService(db)

    def validate(self, credential_id: str, user: AuthUser) -> Result:
        """
        Validate the credential's tax ID against the company registry.

        A company that was found moves to PENDING_COMPLIANCE even when its
        registry status is not active; the compliance engine rejects it with
        an explanation. Not found / all providers down moves to VALIDATION_FAILED.

        Returns Ok({"credential", "validation", "result"}).
        """
        found = self.lifecycle.find_one(credential_id, user.scope_brand_id)
        if found.is_err:
            return found
        credential = found.value

        submitted = self.lifecycle.change_status(
            credential.id,
            CredentialStatus.PENDING_VALIDATION,
            user.id,
            CredentialOperation.SUBMIT_VALIDATION,
            "Registry validation requested",
        )
        if submitted.is_err:
            return submitted

        result = self.aggregator.validate_registry(credential.tax_id)
        data = result.data

        validation = CredentialValidationDB(
            id=str(uuid4()),
            credential_id=credential.id,
            source=result.source,
            is_valid=data is not None,
            company_status=data.status if data else None,
            legal_name=data.legal_name if data else None,
            trade_name=data.trade_name if data else None,
            capital_stock=data.capital_stock if data else None,
            founded_at=data.founded_at if data else None,
            raw_data=result.raw_response,
            error=result.error,
            created_at=datetime.utcnow(),
        )
        self.db.add(validation)

        if data is not None:
            target = CredentialStatus.PENDING_COMPLIANCE
            reason = f"Registry validation succeeded via {result.source} (status: {data.status})"
        else:
            target = CredentialStatus.VALIDATION_FAILED
            reason = f"Registry validation failed: {result.error or 'unknown error'}"

        moved = self.lifecycle.change_status(
            credential.id,
            target,
            user.id,
            CredentialOperation.VALIDATION_RESULT,
            reason,
            commit=False,
        )
        if moved.is_err:
            self.db.rollback()
            return moved

        if data is not None:
            credential.legal_name = data.legal_name
            if not credential.trade_name and data.trade_name:
                credential.trade_name = data.trade_name

        self.db.commit()
        self.db.refresh(credential)
        self.db.refresh(validation)

        logger.info(
            f"Registry validation for {mask_tax_id(credential.tax_id)} "
            f"via {result.source}: {target.value}"
        )
        return Ok({"credential": credential, "validation": validation, "result": result})

    def get_validation_history(self, credential_id: str, brand_id: str) -> Result:
        """Snapshots for a credential, newest first."""
        found = self.lifecycle.find_one(credential_id, brand_id)
        if found.is_err:
            return found

        validations = (
            self.db.query(CredentialValidationDB)
            .filter(CredentialValidationDB.credential_id == credential_id)
            .order_by(CredentialValidationDB.created_at.desc())
            .all()
        )
        return Ok(validations)
