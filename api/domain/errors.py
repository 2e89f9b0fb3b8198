# SPDX-License-Identifier: Apache-2.0

"""
Error taxonomy for the benefit request workflow engine.

Every error carries a stable ``code`` and a ``details`` dictionary so callers
can translate it into their own transport without parsing messages.
Only ``ConcurrentModification`` is meant to be retried automatically;
``SchemaViolation`` halts processing of the affected request.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class FieldError:
    """A single violated field constraint."""
    field: str
    message: str
    code: str = "invalid"

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message, "code": self.code}


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""

    code = "workflow_error"
    retryable = False
    fatal = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error for logging and notification payloads."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
            "fatal": self.fatal
        }


class InvalidTransition(WorkflowError):
    """Raised when a status change is not in the allow-list."""
    code = "invalid_transition"


class Blocked(WorkflowError):
    """Raised when open pendencies prevent leaving analysis."""
    code = "blocked"

    def __init__(self, message: str, pendency_ids: List[str]):
        super().__init__(message, {"pendencias": list(pendency_ids)})
        self.pendency_ids = list(pendency_ids)


class ApprovalIncomplete(WorkflowError):
    """Raised when entering aprovada without an approved aggregate."""
    code = "approval_incomplete"


class OutOfOrder(WorkflowError):
    """Raised when a sequential approver decides before their predecessors."""
    code = "out_of_order"


class AlreadyDecided(WorkflowError):
    """Raised when deciding on an already terminal decision."""
    code = "already_decided"


class Unauthorized(WorkflowError):
    """Raised when a user not assigned to an approval tries to decide."""
    code = "unauthorized"


class ConcurrentModification(WorkflowError):
    """Raised when a write is attempted against a stale version."""
    code = "concurrent_modification"
    retryable = True


class SchemaViolation(WorkflowError):
    """Raised on unknown persisted enumeration values or corrupt records."""
    code = "schema_violation"
    fatal = True


class ValidationFailed(WorkflowError):
    """Raised with the complete list of violated fields."""
    code = "validation_failed"

    def __init__(self, message: str, errors: List[FieldError]):
        super().__init__(message, {"errors": [error.to_dict() for error in errors]})
        self.errors = list(errors)


class NotFound(WorkflowError):
    """Raised when a referenced record does not exist."""
    code = "not_found"


class InsufficientApprovers(WorkflowError):
    """Raised when fewer eligible approvers exist than an action requires."""
    code = "insufficient_approvers"


class DuplicateRecord(WorkflowError):
    """Raised when a write would break a uniqueness constraint."""
    code = "duplicate_record"


class SideEffectFailed(WorkflowError):
    """Raised when a follow-up of a committed status change fails; the status stays committed."""
    code = "side_effect_failed"
