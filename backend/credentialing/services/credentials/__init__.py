"""
Credential lifecycle: transition table, lifecycle service, registry validation step.
"""
from .state_machine import CredentialOperation, CredentialStateMachine, TRANSITIONS, PIPELINE_OPERATIONS
from .credential_service import (
    CredentialService, CredentialInput, CredentialFilters, PaginatedCredentials,
)
from .validation_service import RegistryValidationService

__all__ = [
    "CredentialOperation",
    "CredentialStateMachine",
    "TRANSITIONS",
    "PIPELINE_OPERATIONS",
    "CredentialService",
    "CredentialInput",
    "CredentialFilters",
    "PaginatedCredentials",
    "RegistryValidationService",
]
