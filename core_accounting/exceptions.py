"""
Ledger Error Taxonomy

Caller errors (validation, not found) are recoverable and map to 4xx
responses; invariant violations are internal failures and map to 5xx.
"""

from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .validation import ValidationIssue


class LedgerError(Exception):
    """Base class for every error raised by the ledger"""

    status_code = 500
    error_type = "ledger_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Error payload for the HTTP layer"""
        payload = {
            'error': self.error_type,
            'message': self.message,
        }
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(LedgerError):
    """Input rejected; the caller can fix it and retry"""

    status_code = 400
    error_type = "validation_error"


class JournalValidationError(ValidationError):
    """
    Proposed journal entry failed validation

    Carries every issue found, not just the first one.
    """

    error_type = "journal_validation_error"

    def __init__(self, issues: Sequence['ValidationIssue']):
        self.issues: List['ValidationIssue'] = list(issues)
        summary = "; ".join(issue.message for issue in self.issues)
        super().__init__(
            f"Journal entry rejected: {summary}",
            details={'issues': [issue.to_dict() for issue in self.issues]}
        )

    def has_issue(self, code) -> bool:
        """Check whether an issue with the given IssueCode was reported"""
        return any(issue.code == code for issue in self.issues)


class InvalidAccountCodeError(ValidationError):
    """Account code does not match the configured format"""

    error_type = "invalid_account_code"

    def __init__(self, code: str, pattern: str):
        self.code = code
        super().__init__(
            f"Account code {code!r} does not match format {pattern}",
            details={'code': code, 'pattern': pattern}
        )


class DuplicateAccountCodeError(ValidationError):
    """An account with this code already exists"""

    status_code = 409
    error_type = "duplicate_account_code"

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Account {code} already exists", details={'code': code})


class NotFoundError(LedgerError):
    """Referenced account or entry does not exist"""

    status_code = 404
    error_type = "not_found"


class AccountNotFoundError(NotFoundError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Account {code} not found", details={'code': code})


class EntryNotFoundError(NotFoundError):
    def __init__(self, entry_id: int):
        self.entry_id = entry_id
        super().__init__(f"Journal entry {entry_id} not found",
                         details={'entry_id': entry_id})


class InvariantViolation(LedgerError):
    """Internal state contradicts the journal; should be unreachable"""

    status_code = 500
    error_type = "invariant_violation"


class RollupDriftError(InvariantViolation):
    """Incremental balances diverged from a full recompute of the journal"""

    error_type = "rollup_drift"

    def __init__(self, drifted: Dict[str, Dict[str, str]]):
        self.drifted = drifted
        super().__init__(
            f"Balance rollup drifted for accounts: {', '.join(sorted(drifted))}",
            details={'drifted': drifted}
        )
