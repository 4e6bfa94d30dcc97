"""
Credential State Machine

Single transition table is the source of truth for mutation legality:

    (current_status, operation) -> {permitted target statuses}

Lifecycle:
    DRAFT → PENDING_VALIDATION → PENDING_COMPLIANCE → INVITATION_PENDING / COMPLIANCE_APPROVED
    → INVITATION_SENT → INVITATION_OPENED → ONBOARDING_STARTED → ONBOARDING_IN_PROGRESS
    → CONTRACT_PENDING → CONTRACT_SIGNED → ACTIVE

Side exits: VALIDATION_FAILED, COMPLIANCE_REJECTED, INVITATION_EXPIRED, BLOCKED (soft delete).
A pair missing from the table means the operation is not permitted in that status.
"""
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from ...models.db_models import CredentialStatus


class CredentialOperation(str, Enum):
    """Every operation that may move a credential."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    REMOVE = "REMOVE"
    REACTIVATE = "REACTIVATE"
    SUBMIT_VALIDATION = "SUBMIT_VALIDATION"
    VALIDATION_RESULT = "VALIDATION_RESULT"
    COMPLIANCE_ANALYSIS = "COMPLIANCE_ANALYSIS"
    COMPLIANCE_APPROVE = "COMPLIANCE_APPROVE"
    COMPLIANCE_REJECT = "COMPLIANCE_REJECT"
    SEND_INVITATION = "SEND_INVITATION"
    INVITATION_OPENED = "INVITATION_OPENED"
    INVITATION_EXPIRED = "INVITATION_EXPIRED"
    START_ONBOARDING = "START_ONBOARDING"
    ONBOARDING_PROGRESS = "ONBOARDING_PROGRESS"
    REQUEST_CONTRACT = "REQUEST_CONTRACT"
    SIGN_CONTRACT = "SIGN_CONTRACT"
    ACTIVATE = "ACTIVATE"


S = CredentialStatus
Op = CredentialOperation


def _edges(sources, operation, targets) -> Dict[Tuple[Optional[CredentialStatus], CredentialOperation], FrozenSet]:
    return {(source, operation): frozenset(targets) for source in sources}


# Statuses in which the brand may still edit the application
EDITABLE_STATUSES = (S.DRAFT, S.VALIDATION_FAILED, S.COMPLIANCE_REJECTED)

# Statuses from which the application may be soft-deleted
REMOVABLE_STATUSES = (S.DRAFT, S.VALIDATION_FAILED, S.COMPLIANCE_REJECTED, S.INVITATION_EXPIRED)

# Statuses in which the risk engine may (re)run
ANALYZABLE_STATUSES = (S.PENDING_COMPLIANCE, S.COMPLIANCE_REJECTED)

# Manual override, allowed in both directions
APPROVABLE_STATUSES = (S.PENDING_COMPLIANCE, S.COMPLIANCE_REJECTED)
REJECTABLE_STATUSES = (S.PENDING_COMPLIANCE, S.COMPLIANCE_APPROVED)


TRANSITIONS: Dict[Tuple[Optional[CredentialStatus], CredentialOperation], FrozenSet[CredentialStatus]] = {
    # Creation (no prior status)
    **_edges([None], Op.CREATE, [S.DRAFT]),

    # Brand-side maintenance
    **_edges(EDITABLE_STATUSES, Op.UPDATE, [S.DRAFT]),
    **_edges(REMOVABLE_STATUSES, Op.REMOVE, [S.BLOCKED]),
    **_edges([S.BLOCKED], Op.REACTIVATE, [S.DRAFT]),

    # Registry validation
    **_edges([S.DRAFT, S.VALIDATION_FAILED, S.PENDING_VALIDATION], Op.SUBMIT_VALIDATION, [S.PENDING_VALIDATION]),
    **_edges([S.PENDING_VALIDATION], Op.VALIDATION_RESULT, [S.PENDING_COMPLIANCE, S.VALIDATION_FAILED]),

    # Compliance
    **_edges(
        ANALYZABLE_STATUSES,
        Op.COMPLIANCE_ANALYSIS,
        [S.INVITATION_PENDING, S.COMPLIANCE_REJECTED, S.PENDING_COMPLIANCE],
    ),
    **_edges(APPROVABLE_STATUSES, Op.COMPLIANCE_APPROVE, [S.COMPLIANCE_APPROVED]),
    **_edges(REJECTABLE_STATUSES, Op.COMPLIANCE_REJECT, [S.COMPLIANCE_REJECTED]),

    # Invitation
    **_edges(
        [S.COMPLIANCE_APPROVED, S.INVITATION_PENDING, S.INVITATION_SENT, S.INVITATION_EXPIRED],
        Op.SEND_INVITATION,
        [S.INVITATION_SENT],
    ),
    **_edges([S.INVITATION_SENT], Op.INVITATION_OPENED, [S.INVITATION_OPENED]),
    **_edges([S.INVITATION_SENT, S.INVITATION_OPENED], Op.INVITATION_EXPIRED, [S.INVITATION_EXPIRED]),

    # Onboarding and contract
    **_edges([S.INVITATION_SENT, S.INVITATION_OPENED], Op.START_ONBOARDING, [S.ONBOARDING_STARTED]),
    **_edges([S.ONBOARDING_STARTED], Op.ONBOARDING_PROGRESS, [S.ONBOARDING_IN_PROGRESS]),
    **_edges([S.ONBOARDING_STARTED, S.ONBOARDING_IN_PROGRESS], Op.REQUEST_CONTRACT, [S.CONTRACT_PENDING]),
    **_edges([S.CONTRACT_PENDING], Op.SIGN_CONTRACT, [S.CONTRACT_SIGNED]),
    **_edges([S.CONTRACT_SIGNED], Op.ACTIVATE, [S.ACTIVE]),
}


# Dashboard buckets
PENDING_ACTION_STATUSES = (
    S.DRAFT,
    S.VALIDATION_FAILED,
    S.COMPLIANCE_REJECTED,
    S.INVITATION_PENDING,
)
AWAITING_RESPONSE_STATUSES = (
    S.INVITATION_SENT,
    S.INVITATION_OPENED,
    S.ONBOARDING_STARTED,
    S.ONBOARDING_IN_PROGRESS,
    S.CONTRACT_PENDING,
)


class CredentialStateMachine:
    """
    Central legality check for credential mutations.

    Callers ask before writing; the transition primitive asks again before
    persisting, so no status can be written outside the table.
    """

    TRANSITIONS = TRANSITIONS

    def is_permitted(
        self,
        current_status: Optional[CredentialStatus],
        operation: CredentialOperation,
    ) -> bool:
        """Whether the operation may run at all in the current status."""
        return (current_status, operation) in self.TRANSITIONS

    def can_transition(
        self,
        current_status: Optional[CredentialStatus],
        operation: CredentialOperation,
        target_status: CredentialStatus,
    ) -> Tuple[bool, Optional[str]]:
        """
        Check a concrete transition.

        Returns:
            Tuple of (is_allowed, error_message)
        """
        targets = self.TRANSITIONS.get((current_status, operation))
        current = current_status.value if current_status else "NONE"

        if targets is None:
            allowed = ", ".join(s.value for s in self.allowed_statuses(operation))
            return False, (
                f"Operation {operation.value} is not permitted in status {current}. "
                f"Permitted statuses: {allowed or 'none'}"
            )

        if target_status not in targets:
            return False, (
                f"Operation {operation.value} cannot move a credential from {current} "
                f"to {target_status.value}"
            )

        return True, None

    def allowed_statuses(self, operation: CredentialOperation) -> List[CredentialStatus]:
        """Statuses in which the operation is permitted, in enum order."""
        return [
            status for status in CredentialStatus
            if (status, operation) in self.TRANSITIONS
        ]

    def get_targets(
        self,
        current_status: Optional[CredentialStatus],
        operation: CredentialOperation,
    ) -> FrozenSet[CredentialStatus]:
        return self.TRANSITIONS.get((current_status, operation), frozenset())

    def get_available_operations(self, current_status: CredentialStatus) -> List[CredentialOperation]:
        """Operations with at least one edge out of the current status."""
        return [
            operation for (status, operation) in self.TRANSITIONS
            if status == current_status
        ]

    def is_terminal(self, status: CredentialStatus) -> bool:
        """Terminal success state has no outgoing edges."""
        return not self.get_available_operations(status)


# Operations reachable through the generic status endpoint; the others have
# dedicated service methods with their own preconditions
PIPELINE_OPERATIONS = (
    Op.SEND_INVITATION,
    Op.INVITATION_OPENED,
    Op.INVITATION_EXPIRED,
    Op.START_ONBOARDING,
    Op.ONBOARDING_PROGRESS,
    Op.REQUEST_CONTRACT,
    Op.SIGN_CONTRACT,
    Op.ACTIVATE,
)
