"""
Credential API Routes

Brand-side management of supplier credentials: CRUD, listing, dashboard stats,
registry validation, audit history and operation-gated status changes.
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models.db_models import CredentialDB, CredentialStatus, CredentialStatusHistoryDB, CredentialValidationDB
from ..models.identity import AuthUser
from ..services.credentials import (
    PIPELINE_OPERATIONS, CredentialFilters, CredentialInput, CredentialOperation, CredentialService,
    RegistryValidationService,
)
from ..services.result import invalid_input
from ..services.taxid import format_tax_id, is_valid_cnpj
from ..services.verification import VerificationAggregator, get_aggregator
from .errors import unwrap_or_raise


router = APIRouter(prefix="/credentials", tags=["credentials"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

def _check_cnpj(v):
    if v is not None and not is_valid_cnpj(v):
        raise ValueError("Invalid CNPJ")
    return v


class CreateCredentialRequest(BaseModel):
    """Request to open a supplier credential."""
    tax_id: str = Field(..., description="CNPJ, punctuated or digits only")
    contact_name: str = Field(..., min_length=1, max_length=255)
    contact_email: EmailStr
    contact_phone: str = Field(..., min_length=8, max_length=20)
    contact_whatsapp: Optional[str] = Field(None, max_length=20)
    trade_name: Optional[str] = Field(None, max_length=255)
    internal_code: Optional[str] = Field(None, max_length=100)
    category: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    priority: int = Field(default=0, ge=0)

    @field_validator("tax_id")
    @classmethod
    def validate_tax_id(cls, v):
        return _check_cnpj(v)


class UpdateCredentialRequest(BaseModel):
    """Partial update. Only fields present in the body are applied."""
    tax_id: Optional[str] = None
    contact_name: Optional[str] = Field(None, min_length=1, max_length=255)
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = Field(None, min_length=8, max_length=20)
    contact_whatsapp: Optional[str] = Field(None, max_length=20)
    trade_name: Optional[str] = Field(None, max_length=255)
    internal_code: Optional[str] = Field(None, max_length=100)
    category: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    priority: Optional[int] = Field(None, ge=0)

    @field_validator("tax_id")
    @classmethod
    def validate_tax_id(cls, v):
        return _check_cnpj(v)


class ChangeStatusRequest(BaseModel):
    """Status change on behalf of a named operation."""
    status: CredentialStatus
    operation: CredentialOperation
    reason: Optional[str] = None


# =============================================================================
# SERIALIZATION
# =============================================================================

def serialize_credential(credential: CredentialDB) -> dict:
    return {
        "id": credential.id,
        "tax_id": credential.tax_id,
        "tax_id_formatted": format_tax_id(credential.tax_id),
        "status": credential.status.value,
        "brand_id": credential.brand_id,
        "supplier_id": credential.supplier_id,
        "created_by_id": credential.created_by_id,
        "legal_name": credential.legal_name,
        "trade_name": credential.trade_name,
        "contact_name": credential.contact_name,
        "contact_email": credential.contact_email,
        "contact_phone": credential.contact_phone,
        "contact_whatsapp": credential.contact_whatsapp,
        "internal_code": credential.internal_code,
        "category": credential.category,
        "notes": credential.notes,
        "priority": credential.priority,
        "created_at": credential.created_at.isoformat() if credential.created_at else None,
        "updated_at": credential.updated_at.isoformat() if credential.updated_at else None,
        "completed_at": credential.completed_at.isoformat() if credential.completed_at else None,
    }


def serialize_history(entry: CredentialStatusHistoryDB) -> dict:
    return {
        "id": entry.id,
        "sequence": entry.sequence,
        "from_status": entry.from_status.value if entry.from_status else None,
        "to_status": entry.to_status.value,
        "operation": entry.operation,
        "performed_by": entry.performed_by,
        "reason": entry.reason,
        "created_at": entry.created_at.isoformat(),
    }


def serialize_validation(validation: CredentialValidationDB) -> dict:
    return {
        "id": validation.id,
        "source": validation.source,
        "is_valid": validation.is_valid,
        "company_status": validation.company_status,
        "legal_name": validation.legal_name,
        "trade_name": validation.trade_name,
        "capital_stock": validation.capital_stock,
        "founded_at": validation.founded_at.isoformat() if validation.founded_at else None,
        "error": validation.error,
        "created_at": validation.created_at.isoformat(),
    }


# =============================================================================
# CRUD
# =============================================================================

@router.post("", response_model=dict, status_code=201)
def create_credential(
    request: CreateCredentialRequest,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    """Open a credential in DRAFT. 409 if the brand already has an open one for the CNPJ."""
    service = CredentialService(db)
    credential = unwrap_or_raise(service.create(CredentialInput(**request.model_dump()), current_user))
    return serialize_credential(credential)


@router.get("", response_model=dict)
def list_credentials(
    search: Optional[str] = Query(None, description="CNPJ, names, contact or internal code"),
    status: Optional[CredentialStatus] = Query(None),
    statuses: Optional[List[CredentialStatus]] = Query(None),
    category: Optional[str] = Query(None),
    created_from: Optional[date] = Query(None),
    created_to: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc"),
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    service = CredentialService(db)
    filters = CredentialFilters(
        search=search,
        status=status,
        statuses=statuses or [],
        category=category,
        created_from=created_from,
        created_to=created_to,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    result = unwrap_or_raise(service.find_all(current_user.scope_brand_id, filters))
    return {
        "data": [serialize_credential(c) for c in result.data],
        "meta": {
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "total_pages": result.total_pages,
            "has_next_page": result.has_next_page,
            "has_previous_page": result.has_previous_page,
        },
    }


@router.get("/stats", response_model=dict)
def get_stats(
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    """Dashboard counters for the caller's brand."""
    return CredentialService(db).get_stats(current_user.scope_brand_id)


@router.get("/{credential_id}", response_model=dict)
def get_credential(
    credential_id: str,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    service = CredentialService(db)
    credential = unwrap_or_raise(service.find_one(credential_id, current_user.scope_brand_id))
    data = serialize_credential(credential)
    data["available_operations"] = [
        op.value for op in service.state_machine.get_available_operations(credential.status)
    ]
    return data


@router.patch("/{credential_id}", response_model=dict)
def update_credential(
    credential_id: str,
    request: UpdateCredentialRequest,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    """Edit a credential. Changing the CNPJ sends it back to DRAFT for revalidation."""
    service = CredentialService(db)
    changes = request.model_dump(exclude_unset=True)
    credential = unwrap_or_raise(service.update(credential_id, changes, current_user))
    return serialize_credential(credential)


@router.delete("/{credential_id}", response_model=dict)
def remove_credential(
    credential_id: str,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    """Soft delete (BLOCKED). History and validations are kept."""
    service = CredentialService(db)
    credential = unwrap_or_raise(service.remove(credential_id, current_user))
    return {"success": True, "credential": serialize_credential(credential)}


@router.post("/{credential_id}/reactivate", response_model=dict)
def reactivate_credential(
    credential_id: str,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    service = CredentialService(db)
    credential = unwrap_or_raise(service.reactivate(credential_id, current_user))
    return serialize_credential(credential)


# =============================================================================
# VALIDATION / HISTORY / STATUS
# =============================================================================

@router.post("/{credential_id}/validate", response_model=dict)
def validate_credential(
    credential_id: str,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    aggregator: VerificationAggregator = Depends(get_aggregator),
):
    """Run the registry lookup. Upstream trouble is reported in `error`, not as an HTTP error."""
    service = RegistryValidationService(db, aggregator)
    outcome = unwrap_or_raise(service.validate(credential_id, current_user))
    result = outcome["result"]
    return {
        "credential": serialize_credential(outcome["credential"]),
        "validation": serialize_validation(outcome["validation"]),
        "is_valid": result.is_valid,
        "source": result.source,
        "error": result.error,
    }


@router.get("/{credential_id}/validations", response_model=list)
def get_validations(
    credential_id: str,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    aggregator: VerificationAggregator = Depends(get_aggregator),
):
    service = RegistryValidationService(db, aggregator)
    validations = unwrap_or_raise(service.get_validation_history(credential_id, current_user.scope_brand_id))
    return [serialize_validation(v) for v in validations]


@router.get("/{credential_id}/history", response_model=list)
def get_history(
    credential_id: str,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    service = CredentialService(db)
    entries = unwrap_or_raise(service.get_history(credential_id, current_user.scope_brand_id))
    return [serialize_history(e) for e in entries]


@router.patch("/{credential_id}/status", response_model=dict)
def change_status(
    credential_id: str,
    request: ChangeStatusRequest,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
):
    """
    Move a credential along the invitation / onboarding / contract pipeline.

    The (current status, operation, target) triple must be in the transition table.
    Operations with their own endpoint (create, update, remove, reactivate,
    validation, compliance) are refused here.
    """
    service = CredentialService(db)
    unwrap_or_raise(service.find_one(credential_id, current_user.scope_brand_id))

    if request.operation not in PIPELINE_OPERATIONS:
        unwrap_or_raise(invalid_input(f"Operation {request.operation.value} has its own endpoint"))

    credential = unwrap_or_raise(service.change_status(
        credential_id, request.status, current_user.id, request.operation, request.reason,
    ))
    return serialize_credential(credential)
