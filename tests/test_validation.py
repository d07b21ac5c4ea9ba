"""
Test suite for journal entry validation

CRITICAL: every rule runs on every call and all issues are reported together.
"""

import pytest
from decimal import Decimal

from core_accounting.accounts import ChartOfAccounts
from core_accounting.audit import AuditTrail
from core_accounting.entries import JournalLine, ProposedEntry
from core_accounting.exceptions import JournalValidationError
from core_accounting.storage import InMemoryStorage
from core_accounting.validation import IssueCode, JournalEntryValidator


def _entry(*lines):
    return ProposedEntry(date="2024-01-15", reference="T-1", description="Test",
                         lines=lines)


class TestJournalEntryValidator:
    """Test JournalEntryValidator rules"""

    def setup_method(self):
        """Set up test fixtures"""
        storage = InMemoryStorage()
        self.chart = ChartOfAccounts(storage, AuditTrail(storage))
        self.chart.create_account("1101", "Caja", "asset")
        self.chart.create_account("4101", "Ventas", "revenue")
        self.chart.create_account("2105", "IVA", "liability")
        self.validator = JournalEntryValidator(self.chart)

    def test_balanced_entry_passes(self):
        report = self.validator.validate(_entry(
            JournalLine.debit_line("1101", "119"),
            JournalLine.credit_line("4101", "100"),
            JournalLine.credit_line("2105", "19"),
        ))

        assert report.ok
        assert report.issues == ()
        assert report.total_debit == report.total_credit == Decimal('119.00')

    def test_single_line_rejected(self):
        report = self.validator.validate(_entry(JournalLine.debit_line("1101", "100")))
        assert report.of_kind(IssueCode.TOO_FEW_LINES)

    def test_unbalanced_entry(self):
        report = self.validator.validate(_entry(
            JournalLine.debit_line("1101", "100"),
            JournalLine.credit_line("4101", "90"),
        ))

        [issue] = report.of_kind(IssueCode.UNBALANCED)
        assert issue.difference == Decimal('10.00')
        assert "debits exceed by 10.00" in issue.message

    def test_tolerance_is_inclusive(self):
        """Test a one-cent difference is accepted at the default tolerance"""
        report = self.validator.validate(_entry(
            JournalLine.debit_line("1101", "100.01"),
            JournalLine.credit_line("4101", "100.00"),
        ))
        assert report.ok

        report = self.validator.validate(_entry(
            JournalLine.debit_line("1101", "100.02"),
            JournalLine.credit_line("4101", "100.00"),
        ))
        assert not report.ok

    def test_custom_tolerance(self):
        validator = JournalEntryValidator(self.chart, tolerance=Decimal('0'))
        report = validator.validate(_entry(
            JournalLine.debit_line("1101", "100.01"),
            JournalLine.credit_line("4101", "100.00"),
        ))
        assert report.of_kind(IssueCode.UNBALANCED)

    def test_residual_needs_active_rounding_account(self):
        """Test a residual within tolerance is rejected when nothing can absorb it"""
        self.chart.create_account("7101", "Otros Ingresos", "revenue")
        validator = JournalEntryValidator(self.chart, rounding_account="7101")
        entry = _entry(
            JournalLine.debit_line("1101", "100.01"),
            JournalLine.credit_line("4101", "100.00"),
        )

        report = validator.validate(entry)
        assert report.ok
        assert report.difference == Decimal('0.01')

        self.chart.update_account("7101", active=False)
        [issue] = validator.validate(entry).of_kind(IssueCode.UNBALANCED)
        assert issue.account_code == "7101"
        assert "rounding account 7101" in issue.message

    def test_unknown_account(self):
        report = self.validator.validate(_entry(
            JournalLine.debit_line("1101", "100"),
            JournalLine.credit_line("9999", "100"),
        ))

        [issue] = report.issues
        assert issue.code == IssueCode.UNKNOWN_ACCOUNT
        assert issue.account_code == "9999"
        assert issue.line_index == 1

    def test_inactive_account(self):
        self.chart.update_account("4101", active=False)
        report = self.validator.validate(_entry(
            JournalLine.debit_line("1101", "100"),
            JournalLine.credit_line("4101", "100"),
        ))
        assert [i.code for i in report.issues] == [IssueCode.INACTIVE_ACCOUNT]

    def test_repeated_account_reported_once(self):
        report = self.validator.validate(_entry(
            JournalLine.debit_line("9999", "50"),
            JournalLine.debit_line("9999", "50"),
            JournalLine.credit_line("4101", "100"),
        ))
        assert len(report.of_kind(IssueCode.UNKNOWN_ACCOUNT)) == 1

    @pytest.mark.parametrize("debit,credit,message", [
        ("0", "0", "either a debit or a credit"),
        ("10", "10", "cannot have both"),
        ("-10", "0", "cannot be negative"),
    ])
    def test_invalid_line_shapes(self, debit, credit, message):
        report = self.validator.validate(_entry(
            JournalLine("1101", debit=debit, credit=credit),
            JournalLine.credit_line("4101", "10"),
        ))

        [issue] = report.of_kind(IssueCode.INVALID_LINE)
        assert message in issue.message
        assert issue.line_index == 0

    def test_all_issues_reported_together(self):
        """Test that one call reports every broken rule"""
        report = self.validator.validate(_entry(
            JournalLine.debit_line("9999", "100"),
            JournalLine("1101", debit="0", credit="0"),
            JournalLine.credit_line("4101", "50"),
        ))

        codes = {issue.code for issue in report.issues}
        assert codes == {IssueCode.UNKNOWN_ACCOUNT, IssueCode.INVALID_LINE,
                         IssueCode.UNBALANCED}

    def test_check_raises_with_every_issue(self):
        with pytest.raises(JournalValidationError) as exc_info:
            self.validator.check(_entry(JournalLine.debit_line("9999", "100")))

        error = exc_info.value
        assert error.status_code == 400
        assert error.has_issue(IssueCode.TOO_FEW_LINES)
        assert error.has_issue(IssueCode.UNKNOWN_ACCOUNT)
        assert error.has_issue(IssueCode.UNBALANCED)
        assert len(error.to_dict()['details']['issues']) == 3

    def test_issue_to_dict(self):
        report = self.validator.validate(_entry(
            JournalLine.debit_line("1101", "100"),
            JournalLine.credit_line("4101", "90"),
        ))
        [issue] = report.issues
        assert issue.to_dict() == {
            'code': 'unbalanced',
            'message': issue.message,
            'debit': '100.00',
            'credit': '90.00',
            'difference': '10.00',
        }
