"""
Credential Service

Owns the supplier credential record and its audit trail.

Key responsibilities:
- Create / update / soft-delete / reactivate credentials, gated by status
- Execute status transitions through the transition table, atomically
- Brand-scoped reads, filtered listing and dashboard stats

Every operation returns a Result; business-rule violations never leave a
partial write behind.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.db_models import (
    CredentialDB, CredentialStatusHistoryDB, CredentialValidationDB, CredentialStatus,
)
from ...models.identity import AuthUser
from ..result import Ok, Result, conflict, forbidden, invalid_input, invalid_state, not_found
from ..taxid import format_tax_id, mask_tax_id, normalize_tax_id
from .state_machine import (
    AWAITING_RESPONSE_STATUSES,
    PENDING_ACTION_STATUSES,
    CredentialOperation,
    CredentialStateMachine,
)

logger = logging.getLogger(__name__)

Op = CredentialOperation


# =============================================================================
# INPUT / OUTPUT SHAPES
# =============================================================================

@dataclass
class CredentialInput:
    """Fields accepted on creation."""
    tax_id: str
    contact_name: str
    contact_email: str
    contact_phone: str
    contact_whatsapp: Optional[str] = None
    trade_name: Optional[str] = None
    internal_code: Optional[str] = None
    category: Optional[str] = None
    notes: Optional[str] = None
    priority: int = 0


# Fields a brand may change through update(); anything else is ignored
UPDATABLE_FIELDS = (
    "tax_id", "contact_name", "contact_email", "contact_phone", "contact_whatsapp",
    "trade_name", "internal_code", "category", "notes", "priority",
)

SORTABLE_FIELDS = {
    "created_at": CredentialDB.created_at,
    "updated_at": CredentialDB.updated_at,
    "priority": CredentialDB.priority,
    "status": CredentialDB.status,
    "trade_name": CredentialDB.trade_name,
    "legal_name": CredentialDB.legal_name,
    "tax_id": CredentialDB.tax_id,
}


@dataclass
class CredentialFilters:
    search: Optional[str] = None
    status: Optional[CredentialStatus] = None
    statuses: Sequence[CredentialStatus] = field(default_factory=list)
    category: Optional[str] = None
    created_from: Optional[date] = None
    created_to: Optional[date] = None
    page: int = 1
    limit: int = 20
    sort_by: str = "created_at"
    sort_order: str = "desc"


@dataclass
class PaginatedCredentials:
    data: List[CredentialDB]
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


def _clean_phone(phone: Optional[str]) -> Optional[str]:
    return normalize_tax_id(phone) if phone else None


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


class CredentialService:
    """
    Single source of truth for credential mutation legality.

    Status changes only happen through change_status(), which re-validates the
    (status, operation, target) triple against the transition table.
    """

    def __init__(self, db: Session, state_machine: Optional[CredentialStateMachine] = None):
        self.db = db
        self.state_machine = state_machine or CredentialStateMachine()

    # =========================================================================
    # CREATE
    # =========================================================================

    def create(self, data: CredentialInput, user: AuthUser) -> Result:
        """
        Create a credential in DRAFT and record the creation event.

        Conflict if the brand already has a non-blocked credential for the tax ID.
        """
        brand_id = user.scope_brand_id
        tax_id = normalize_tax_id(data.tax_id)

        if len(tax_id) != 14:
            return invalid_input("CNPJ must contain 14 numeric digits")

        existing = self._find_open_duplicate(brand_id, tax_id)
        if existing:
            return conflict(
                f"CNPJ {format_tax_id(tax_id)} already has an open credential (ID: {existing.id})"
            )

        allowed, error = self.state_machine.can_transition(None, Op.CREATE, CredentialStatus.DRAFT)
        if not allowed:
            return invalid_state(error)

        now = datetime.utcnow()
        credential = CredentialDB(
            id=str(uuid4()),
            tax_id=tax_id,
            status=CredentialStatus.DRAFT,
            brand_id=brand_id,
            created_by_id=user.id,
            contact_name=data.contact_name.strip(),
            contact_email=data.contact_email.strip().lower(),
            contact_phone=_clean_phone(data.contact_phone) or "",
            contact_whatsapp=_clean_phone(data.contact_whatsapp),
            trade_name=_clean_text(data.trade_name),
            internal_code=_clean_text(data.internal_code),
            category=_clean_text(data.category),
            notes=_clean_text(data.notes),
            priority=data.priority or 0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(credential)
        self._append_history(
            credential.id, None, CredentialStatus.DRAFT, user.id, Op.CREATE, "Credential created",
            sequence=1,
        )

        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race against a concurrent create for the same tax ID
            self.db.rollback()
            return conflict(f"CNPJ {format_tax_id(tax_id)} already has an open credential")

        self.db.refresh(credential)
        logger.info(f"Credential created: {credential.id} (CNPJ: {mask_tax_id(tax_id)})")
        return Ok(credential)

    # =========================================================================
    # READ
    # =========================================================================

    def find_one(self, credential_id: str, brand_id: str) -> Result:
        """Load a credential, enforcing that it belongs to the caller's brand."""
        credential = self.db.query(CredentialDB).filter(CredentialDB.id == credential_id).first()

        if not credential:
            return not_found(f"Credential {credential_id} not found")

        if credential.brand_id != brand_id:
            return forbidden("Credential belongs to another brand")

        return Ok(credential)

    def find_all(self, brand_id: str, filters: Optional[CredentialFilters] = None) -> Result:
        """
        List credentials of a brand.

        Filters:
        - search: tax ID digits, trade/legal name, contact name/email, internal code
        - status (single) or statuses (set)
        - category
        - created_from / created_to (inclusive, whole days)
        - page / limit / sort_by / sort_order
        """
        filters = filters or CredentialFilters()

        sort_column = SORTABLE_FIELDS.get(filters.sort_by)
        if sort_column is None:
            return invalid_input(
                f"Cannot sort by '{filters.sort_by}'. Allowed: {', '.join(SORTABLE_FIELDS)}"
            )
        if filters.sort_order not in ("asc", "desc"):
            return invalid_input("sort_order must be 'asc' or 'desc'")
        if filters.page < 1 or filters.limit < 1:
            return invalid_input("page and limit must be positive")

        query = self.db.query(CredentialDB).filter(CredentialDB.brand_id == brand_id)

        if filters.search and filters.search.strip():
            term = filters.search.strip()
            digits = normalize_tax_id(term)
            pattern = f"%{term}%"
            query = query.filter(or_(
                CredentialDB.tax_id.contains(digits or term),
                CredentialDB.trade_name.ilike(pattern),
                CredentialDB.legal_name.ilike(pattern),
                CredentialDB.contact_name.ilike(pattern),
                CredentialDB.contact_email.ilike(f"%{term.lower()}%"),
                CredentialDB.internal_code.ilike(pattern),
            ))

        if filters.status:
            query = query.filter(CredentialDB.status == filters.status)
        elif filters.statuses:
            query = query.filter(CredentialDB.status.in_(list(filters.statuses)))

        if filters.category:
            query = query.filter(CredentialDB.category == filters.category)

        if filters.created_from:
            query = query.filter(
                CredentialDB.created_at >= datetime.combine(filters.created_from, time.min)
            )
        if filters.created_to:
            # Include the whole end day
            query = query.filter(
                CredentialDB.created_at <= datetime.combine(filters.created_to, time.max)
            )

        total = query.count()

        order = sort_column.asc() if filters.sort_order == "asc" else sort_column.desc()
        data = (
            query.order_by(order, CredentialDB.id)
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
            .all()
        )

        total_pages = -(-total // filters.limit)  # ceil
        return Ok(PaginatedCredentials(
            data=data,
            page=filters.page,
            limit=filters.limit,
            total=total,
            total_pages=total_pages,
            has_next_page=filters.page < total_pages,
            has_previous_page=filters.page > 1,
        ))

    def get_history(self, credential_id: str, brand_id: str) -> Result:
        """Status history, oldest first."""
        found = self.find_one(credential_id, brand_id)
        if found.is_err:
            return found

        entries = (
            self.db.query(CredentialStatusHistoryDB)
            .filter(CredentialStatusHistoryDB.credential_id == credential_id)
            .order_by(CredentialStatusHistoryDB.sequence.asc())
            .all()
        )
        return Ok(entries)

    # =========================================================================
    # UPDATE
    # =========================================================================

    def update(self, credential_id: str, changes: Dict[str, Any], user: AuthUser) -> Result:
        """
        Apply a partial update.

        Only editable statuses (DRAFT, VALIDATION_FAILED, COMPLIANCE_REJECTED) accept
        changes. A new tax ID invalidates every registry snapshot and sends the
        credential back to DRAFT for revalidation.
        """
        found = self.find_one(credential_id, user.scope_brand_id)
        if found.is_err:
            return found
        credential = found.value

        if not self.state_machine.is_permitted(credential.status, Op.UPDATE):
            editable = ", ".join(s.value for s in self.state_machine.allowed_statuses(Op.UPDATE))
            return invalid_state(
                f'Credential with status "{credential.status.value}" cannot be edited. '
                f"Editable statuses: {editable}"
            )

        values: Dict[str, Any] = {}
        for name in UPDATABLE_FIELDS:
            if name not in changes or name == "tax_id":
                continue
            value = changes[name]
            if name in ("contact_name",):
                values[name] = (value or "").strip()
            elif name == "contact_email":
                values[name] = (value or "").strip().lower()
            elif name == "contact_phone":
                values[name] = _clean_phone(value) or ""
            elif name == "contact_whatsapp":
                values[name] = _clean_phone(value)
            elif name == "priority":
                values[name] = value or 0
            else:
                values[name] = _clean_text(value)

        tax_id_changed = False
        if changes.get("tax_id") is not None:
            new_tax_id = normalize_tax_id(changes["tax_id"])
            if len(new_tax_id) != 14:
                return invalid_input("CNPJ must contain 14 numeric digits")

            if new_tax_id != credential.tax_id:
                duplicate = self._find_open_duplicate(credential.brand_id, new_tax_id, exclude_id=credential.id)
                if duplicate:
                    return conflict(f"CNPJ {format_tax_id(new_tax_id)} already has another credential")
                values["tax_id"] = new_tax_id
                values["legal_name"] = None
                tax_id_changed = True

        previous_status = credential.status
        for name, value in values.items():
            setattr(credential, name, value)
        credential.updated_at = datetime.utcnow()

        if tax_id_changed:
            self.db.query(CredentialValidationDB).filter(
                CredentialValidationDB.credential_id == credential.id
            ).update({"is_valid": False}, synchronize_session=False)

            if previous_status != CredentialStatus.DRAFT:
                moved = self._transition(
                    credential,
                    CredentialStatus.DRAFT,
                    user.id,
                    Op.UPDATE,
                    "Tax ID changed, revalidation required",
                )
                if moved.is_err:
                    self.db.rollback()
                    return moved

            logger.info(f"Tax ID changed for credential {credential.id}, validations reset")

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return conflict("CNPJ already has another open credential")

        self.db.refresh(credential)
        return Ok(credential)

    # =========================================================================
    # REMOVE / REACTIVATE
    # =========================================================================

    def remove(self, credential_id: str, user: AuthUser) -> Result:
        """
        Soft delete: transition to BLOCKED.

        The row, its history, validations and analysis stay in place.
        """
        found = self.find_one(credential_id, user.scope_brand_id)
        if found.is_err:
            return found
        credential = found.value

        if not self.state_machine.is_permitted(credential.status, Op.REMOVE):
            removable = ", ".join(s.value for s in self.state_machine.allowed_statuses(Op.REMOVE))
            return invalid_state(
                f'Credential with status "{credential.status.value}" cannot be removed. '
                f"Removable statuses: {removable}"
            )

        result = self.change_status(
            credential.id, CredentialStatus.BLOCKED, user.id, Op.REMOVE, "Credential removed by user",
        )
        if result.is_ok:
            logger.info(f"Credential {credential.id} removed (soft delete) by {user.id}")
        return result

    def reactivate(self, credential_id: str, user: AuthUser) -> Result:
        """
        Bring a BLOCKED credential back to DRAFT.

        Gated independently of removal; fails with Conflict if the brand opened
        another credential for the same tax ID in the meantime.
        """
        found = self.find_one(credential_id, user.scope_brand_id)
        if found.is_err:
            return found
        credential = found.value

        if not self.state_machine.is_permitted(credential.status, Op.REACTIVATE):
            return invalid_state(
                f'Credential with status "{credential.status.value}" cannot be reactivated'
            )

        duplicate = self._find_open_duplicate(credential.brand_id, credential.tax_id, exclude_id=credential.id)
        if duplicate:
            return conflict(
                f"CNPJ {format_tax_id(credential.tax_id)} already has an open credential (ID: {duplicate.id})"
            )

        result = self.change_status(
            credential.id, CredentialStatus.DRAFT, user.id, Op.REACTIVATE, "Credential reactivated",
        )
        if result.is_ok:
            logger.info(f"Credential {credential.id} reactivated by {user.id}")
        return result

    # =========================================================================
    # STATUS MANAGEMENT
    # =========================================================================

    def change_status(
        self,
        credential_id: str,
        new_status: CredentialStatus,
        performed_by: str,
        operation: CredentialOperation,
        reason: Optional[str] = None,
        commit: bool = True,
    ) -> Result:
        """
        Move a credential to new_status on behalf of an operation.

        Refuses targets the transition table does not list for
        (current status, operation). Appends a history entry and stamps
        completed_at on ACTIVE. With commit=False the caller owns the
        transaction (used when the transition is part of a larger write).
        """
        credential = (
            self.db.query(CredentialDB)
            .filter(CredentialDB.id == credential_id)
            .with_for_update()
            .first()
        )
        if not credential:
            return not_found(f"Credential {credential_id} not found")

        result = self._transition(credential, new_status, performed_by, operation, reason)
        if result.is_err:
            if commit:
                self.db.rollback()
            return result

        if commit:
            self.db.commit()
            self.db.refresh(credential)
        return result

    def _transition(
        self,
        credential: CredentialDB,
        new_status: CredentialStatus,
        performed_by: str,
        operation: CredentialOperation,
        reason: Optional[str],
    ) -> Result:
        from_status = credential.status

        allowed, error = self.state_machine.can_transition(from_status, operation, new_status)
        if not allowed:
            logger.warning(f"Rejected transition for credential {credential.id}: {error}")
            return invalid_state(error)

        now = datetime.utcnow()
        values: Dict[str, Any] = {"status": new_status, "updated_at": now}
        if new_status == CredentialStatus.ACTIVE:
            values["completed_at"] = now

        # Compare-and-swap on the status we read: a concurrent writer makes this a no-op
        swapped = (
            self.db.query(CredentialDB)
            .filter(CredentialDB.id == credential.id, CredentialDB.status == from_status)
            .update(values, synchronize_session=False)
        )
        if swapped != 1:
            return invalid_state(
                f"Credential {credential.id} changed status concurrently; expected {from_status.value}"
            )

        for name, value in values.items():
            setattr(credential, name, value)

        self._append_history(credential.id, from_status, new_status, performed_by, operation, reason)

        logger.info(
            f"Credential {credential.id}: {from_status.value} -> {new_status.value} "
            f"({operation.value} by {performed_by})"
        )
        return Ok(credential)

    # =========================================================================
    # STATS
    # =========================================================================

    def get_stats(self, brand_id: str) -> Dict[str, Any]:
        """
        Dashboard counters for a brand.

        conversion_rate = ACTIVE / total * 100, rounded to 2 decimals (0 when empty).
        """
        rows = (
            self.db.query(CredentialDB.status, func.count(CredentialDB.id))
            .filter(CredentialDB.brand_id == brand_id)
            .group_by(CredentialDB.status)
            .all()
        )

        by_status: Dict[str, int] = {}
        total = 0
        active_count = 0
        for status, count in rows:
            by_status[status.value] = count
            total += count
            if status == CredentialStatus.ACTIVE:
                active_count = count

        start_of_month = datetime.utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        base = self.db.query(CredentialDB).filter(CredentialDB.brand_id == brand_id)
        created_this_month = base.filter(CredentialDB.created_at >= start_of_month).count()
        completed_this_month = base.filter(
            CredentialDB.status == CredentialStatus.ACTIVE,
            CredentialDB.completed_at >= start_of_month,
        ).count()

        pending_action = sum(by_status.get(s.value, 0) for s in PENDING_ACTION_STATUSES)
        awaiting_response = sum(by_status.get(s.value, 0) for s in AWAITING_RESPONSE_STATUSES)

        conversion_rate = (active_count / total) * 100 if total > 0 else 0.0

        return {
            "total": total,
            "by_status": by_status,
            "this_month": {
                "created": created_this_month,
                "completed": completed_this_month,
            },
            "pending_action": pending_action,
            "awaiting_response": awaiting_response,
            "active_count": active_count,
            "conversion_rate": round(conversion_rate, 2),
        }

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _find_open_duplicate(
        self,
        brand_id: str,
        tax_id: str,
        exclude_id: Optional[str] = None,
    ) -> Optional[CredentialDB]:
        query = self.db.query(CredentialDB).filter(
            CredentialDB.brand_id == brand_id,
            CredentialDB.tax_id == tax_id,
            CredentialDB.status != CredentialStatus.BLOCKED,
        )
        if exclude_id:
            query = query.filter(CredentialDB.id != exclude_id)
        return query.first()

    def _append_history(
        self,
        credential_id: str,
        from_status: Optional[CredentialStatus],
        to_status: CredentialStatus,
        performed_by: str,
        operation: CredentialOperation,
        reason: Optional[str],
        sequence: Optional[int] = None,
    ) -> CredentialStatusHistoryDB:
        if sequence is None:
            last = (
                self.db.query(func.max(CredentialStatusHistoryDB.sequence))
                .filter(CredentialStatusHistoryDB.credential_id == credential_id)
                .scalar()
            )
            sequence = (last or 0) + 1

        entry = CredentialStatusHistoryDB(
            id=str(uuid4()),
            credential_id=credential_id,
            sequence=sequence,
            from_status=from_status,
            to_status=to_status,
            operation=operation.value,
            performed_by=performed_by,
            reason=reason,
            created_at=datetime.utcnow(),
        )
        self.db.add(entry)
        return entry
