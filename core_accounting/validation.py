"""
Journal Entry Validation Module

Checks a proposed entry against the rules of double-entry bookkeeping and the
chart of accounts. Every rule runs on every call and all problems are
reported together, so a form built on top can show them in one round trip.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .amounts import DEFAULT_TOLERANCE, ZERO, format_amount, within_tolerance
from .entries import ProposedEntry
from .exceptions import JournalValidationError


class IssueCode(Enum):
    """Kinds of validation failure"""
    TOO_FEW_LINES = "too_few_lines"
    INVALID_LINE = "invalid_line"
    UNKNOWN_ACCOUNT = "unknown_account"
    INACTIVE_ACCOUNT = "inactive_account"
    UNBALANCED = "unbalanced"


@dataclass(frozen=True)
class ValidationIssue:
    """One problem found in a proposed entry"""
    code: IssueCode
    message: str
    account_code: Optional[str] = None
    line_index: Optional[int] = None
    debit: Optional[Decimal] = None
    credit: Optional[Decimal] = None
    difference: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {'code': self.code.value, 'message': self.message}
        if self.account_code is not None:
            result['account_code'] = self.account_code
        if self.line_index is not None:
            result['line_index'] = self.line_index
        for key in ('debit', 'credit', 'difference'):
            value = getattr(self, key)
            if value is not None:
                result[key] = str(value)
        return result


@dataclass(frozen=True)
class ValidationReport:
    """Result of validating a proposed entry"""
    issues: Tuple[ValidationIssue, ...]
    total_debit: Decimal
    total_credit: Decimal

    @property
    def ok(self) -> bool:
        return not self.issues

    @property
    def difference(self) -> Decimal:
        """Debits minus credits; non-zero only within the tolerance when ok"""
        return self.total_debit - self.total_credit

    def of_kind(self, code: IssueCode) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.code == code]

    def raise_for_issues(self) -> None:
        if self.issues:
            raise JournalValidationError(self.issues)


class JournalEntryValidator:
    """
    Validates proposed journal entries

    Needs a registry exposing is_postable(code) and exists(code); the chart
    of accounts provides both. When a rounding account is given, a residual
    within the tolerance is only accepted if that account can take it.
    """

    def __init__(self, registry, tolerance: Decimal = DEFAULT_TOLERANCE,
                 rounding_account: Optional[str] = None):
        self.registry = registry
        self.tolerance = tolerance
        self.rounding_account = rounding_account

    def validate(self, proposed: ProposedEntry) -> ValidationReport:
        """
        Run every rule and collect the issues

        Rules:
            1. At least two lines (a single line cannot balance)
            2. Each line is non-negative with exactly one side set
            3. Each referenced account exists and is active
            4. Total debits equal total credits within tolerance, and any
               residual has an active rounding account to go to
        """
        issues: List[ValidationIssue] = []
        lines = proposed.lines

        if len(lines) < 2:
            issues.append(ValidationIssue(
                code=IssueCode.TOO_FEW_LINES,
                message=f"Entry needs at least 2 lines, got {len(lines)}"
            ))

        for index, line in enumerate(lines):
            problem = _line_problem(line.debit, line.credit)
            if problem:
                issues.append(ValidationIssue(
                    code=IssueCode.INVALID_LINE,
                    message=f"Line {index + 1} ({line.account_code}): {problem}",
                    account_code=line.account_code,
                    line_index=index,
                    debit=line.debit,
                    credit=line.credit
                ))

        reported = set()
        for index, line in enumerate(lines):
            code = line.account_code
            if code in reported or self.registry.is_postable(code):
                continue
            reported.add(code)
            if self.registry.exists(code):
                issues.append(ValidationIssue(
                    code=IssueCode.INACTIVE_ACCOUNT,
                    message=f"Account {code} is inactive",
                    account_code=code,
                    line_index=index
                ))
            else:
                issues.append(ValidationIssue(
                    code=IssueCode.UNKNOWN_ACCOUNT,
                    message=f"Account {code} does not exist in the chart of accounts",
                    account_code=code,
                    line_index=index
                ))

        total_debit = proposed.total_debit
        total_credit = proposed.total_credit
        if not within_tolerance(total_debit, total_credit, self.tolerance):
            difference = total_debit - total_credit
            heavier = "debits" if difference > ZERO else "credits"
            issues.append(ValidationIssue(
                code=IssueCode.UNBALANCED,
                message=(f"Entry is unbalanced: debits {format_amount(total_debit)} "
                         f"!= credits {format_amount(total_credit)} "
                         f"({heavier} exceed by {format_amount(abs(difference))})"),
                debit=total_debit,
                credit=total_credit,
                difference=difference
            ))
        elif (total_debit != total_credit and self.rounding_account is not None
              and not self.registry.is_postable(self.rounding_account)):
            issues.append(ValidationIssue(
                code=IssueCode.UNBALANCED,
                message=(f"Entry is off by {format_amount(abs(total_debit - total_credit))} "
                         f"and rounding account {self.rounding_account} is not available"),
                account_code=self.rounding_account,
                debit=total_debit,
                credit=total_credit,
                difference=total_debit - total_credit
            ))

        return ValidationReport(issues=tuple(issues), total_debit=total_debit,
                                total_credit=total_credit)

    def check(self, proposed: ProposedEntry) -> ValidationReport:
        """
        Validate and raise on any issue

        Raises:
            JournalValidationError: Carrying every issue found
        """
        report = self.validate(proposed)
        report.raise_for_issues()
        return report


def _line_problem(debit: Decimal, credit: Decimal) -> Optional[str]:
    if debit < ZERO or credit < ZERO:
        return "amounts cannot be negative"
    if debit == ZERO and credit == ZERO:
        return "line must have either a debit or a credit amount"
    if debit != ZERO and credit != ZERO:
        return "line cannot have both debit and credit amounts"
    return None
