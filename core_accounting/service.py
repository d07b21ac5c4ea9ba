"""
Accounting Service

Wires the chart of accounts, the ledger and the balance rollup together and
exposes the narrow set of operations callers use. Build one per process or
tenant; nothing here is module-level state.
"""

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .accounts import DEFAULT_CODE_PATTERN, Account, AccountType, ChartOfAccounts, DeactivationResult
from .amounts import DEFAULT_TOLERANCE, ZERO, AmountLike, sum_amounts, to_amount
from .audit import AuditTrail
from .config import LedgerConfig, get_config
from .entries import DateLike, JournalEntry, JournalLine, LineLike, ProposedEntry
from .events import EventDispatcher
from .exceptions import ValidationError
from .ledger import DEFAULT_ROUNDING_ACCOUNT, GeneralLedger, GeneralLedgerLine, TrialBalance
from .logging_config import correlation_scope, get_logger, log_action
from .rollup import BalanceRollupEngine, BalanceSheet, IncomeStatement
from .storage import InMemoryStorage, StorageInterface, create_storage
from .translators import DEFAULT_MAPPING, AccountMapping, translate

logger = get_logger(__name__)

OPENING_REFERENCE = "APERTURA"
OPENING_EQUITY_ACCOUNT = '3101'


class AccountingService:
    """Accounting system with all components initialized"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        code_pattern: Optional[str] = None,
        tolerance: Optional[Decimal] = None,
        rounding_account: Optional[str] = DEFAULT_ROUNDING_ACCOUNT,
        cost_prefixes: Optional[Iterable[str]] = None,
        verify_on_read: bool = False,
        audit_enabled: bool = True,
        mapping: AccountMapping = DEFAULT_MAPPING,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage if storage is not None else InMemoryStorage()
        self.events = event_dispatcher or EventDispatcher()
        self.mapping = mapping

        self.audit_trail = AuditTrail(self.storage, enabled=audit_enabled)
        self.registry = ChartOfAccounts(
            self.storage, self.audit_trail,
            code_pattern=code_pattern or DEFAULT_CODE_PATTERN,
            event_dispatcher=self.events
        )
        self.ledger = GeneralLedger(
            self.storage, self.registry, self.audit_trail,
            tolerance=tolerance if tolerance is not None else DEFAULT_TOLERANCE,
            event_dispatcher=self.events,
            rounding_account=rounding_account
        )
        self.registry.attach_ledger(self.ledger)
        self.rollup = BalanceRollupEngine(
            self.ledger, self.registry, self.audit_trail,
            cost_prefixes=tuple(cost_prefixes) if cost_prefixes is not None else ("5",),
            verify_on_read=verify_on_read,
            event_dispatcher=self.events
        )

    @classmethod
    def from_config(cls, config: Optional[LedgerConfig] = None, **overrides) -> 'AccountingService':
        """Build a service from LedgerConfig (environment driven by default)"""
        config = config or get_config()
        service = cls(
            storage=create_storage(config.database_url),
            code_pattern=config.account_code_pattern,
            tolerance=config.tolerance,
            rounding_account=config.rounding_account or None,
            cost_prefixes=config.cost_prefixes,
            verify_on_read=config.verify_rollup_on_read,
            audit_enabled=config.enable_audit_logging,
            **overrides
        )
        if config.seed_default_chart and not service.registry.list_accounts():
            service.registry.seed_default_chart()
        logger.info("Accounting service ready (%s, %d accounts, %d entries)",
                    config.database_url, len(service.registry.list_accounts()),
                    service.ledger.entry_count())
        return service

    # Inbound

    def post_entry(
        self,
        date: DateLike,
        reference: str,
        description: str,
        lines: Iterable[LineLike],
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None
    ) -> JournalEntry:
        return self.ledger.post_entry(date, reference, description, lines,
                                      reference_type=reference_type, reference_id=reference_id)

    def create_account(self, code: str, name: str, account_type, category=None,
                       parent_code: Optional[str] = None,
                       description: Optional[str] = None) -> Account:
        return self.registry.create_account(code, name, account_type, category=category,
                                            parent_code=parent_code, description=description)

    def update_account(self, code: str, **fields) -> Account:
        return self.registry.update_account(code, **fields)

    def deactivate_or_delete(self, code: str) -> DeactivationResult:
        return self.registry.deactivate_or_delete(code)

    def record_transaction(self, kind, *events) -> Optional[JournalEntry]:
        """
        Translate a business event and post the resulting entry

        Returns:
            The posted entry, or None when the event has no accounting effect
        """
        with correlation_scope():
            proposed = translate(kind, *events, mapping=self.mapping)
            if proposed is None:
                logger.info("Transaction %s produced no journal entry", kind)
                return None
            return self.ledger.post(proposed)

    def reverse_entry(self, entry_id: int, reason: str,
                      date: Optional[DateLike] = None) -> JournalEntry:
        return self.ledger.reverse_entry(entry_id, reason, date=date)

    def post_opening_balances(
        self,
        date: DateLike,
        balances: Mapping[str, AmountLike],
        equity_account: str = OPENING_EQUITY_ACCOUNT,
        reference: str = OPENING_REFERENCE
    ) -> JournalEntry:
        """
        Post opening balances as one journal entry

        Each balance is signed in the account's normal direction (a positive
        figure for a liability is a credit). The difference is carried to
        equity_account so the entry balances.

        Raises:
            ValidationError: If no non-zero balance is given
            AccountNotFoundError: If an account is not in the chart
        """
        lines: List[JournalLine] = []
        for code in sorted(balances):
            try:
                amount = to_amount(balances[code])
            except ValueError as e:
                raise ValidationError(str(e), details={'account_code': code}) from e
            if amount == ZERO:
                continue
            account = self.registry.get_account(code)
            debit_side = account.account_type.is_debit_normal == (amount > ZERO)
            if debit_side:
                lines.append(JournalLine.debit_line(code, abs(amount), "Saldo inicial"))
            else:
                lines.append(JournalLine.credit_line(code, abs(amount), "Saldo inicial"))

        if not lines:
            raise ValidationError("Opening balances must include at least one non-zero amount")

        difference = sum_amounts(line.debit - line.credit for line in lines)
        if difference > ZERO:
            lines.append(JournalLine.credit_line(equity_account, difference, "Capital inicial"))
        elif difference < ZERO:
            lines.append(JournalLine.debit_line(equity_account, -difference, "Capital inicial"))

        entry = self.ledger.post(ProposedEntry(
            date=date,
            reference=reference,
            description="Asiento de apertura",
            lines=tuple(lines),
            reference_type="opening_balance"
        ))
        log_action(logger, "info", f"Posted opening balances for {len(balances)} accounts",
                   action="post_opening_balances", resource=f"journal_entry:{entry.id}")
        return entry

    # Outbound

    def list_accounts(self, account_type: Optional[AccountType] = None,
                      active_only: bool = False) -> List[Account]:
        return self.registry.list_accounts(account_type=account_type, active_only=active_only)

    def get_account(self, code: str) -> Account:
        return self.registry.get_account(code)

    def get_balance_sheet(self, as_of: Optional[DateLike] = None) -> BalanceSheet:
        return self.rollup.balance_sheet_view(as_of)

    def get_income_statement(self, date_from: DateLike, date_to: DateLike) -> IncomeStatement:
        return self.rollup.income_statement_view(date_from, date_to)

    def get_general_ledger(self, account_code: Optional[str] = None,
                           date_from: Optional[DateLike] = None,
                           date_to: Optional[DateLike] = None) -> List[GeneralLedgerLine]:
        if account_code is not None:
            self.registry.get_account(account_code)
        return self.ledger.general_ledger_lines(account_code, date_from, date_to)

    def get_account_balance(self, code: str) -> Decimal:
        return self.rollup.account_balance(code)

    def get_trial_balance(self, as_of: Optional[DateLike] = None) -> TrialBalance:
        return self.ledger.trial_balance(as_of)

    def get_entries(self, account_code: Optional[str] = None,
                    date_from: Optional[DateLike] = None,
                    date_to: Optional[DateLike] = None,
                    reference_type: Optional[str] = None) -> List[JournalEntry]:
        return list(self.ledger.query(account_code, date_from, date_to, reference_type))

    def get_entry(self, entry_id: int) -> JournalEntry:
        return self.ledger.get_entry(entry_id)

    def check_integrity(self) -> Dict[str, Any]:
        """
        Verify the audit hash chain and the balance rollup

        A drifted rollup is repaired as part of the check.
        """
        audit = self.audit_trail.verify_integrity()
        repaired = self.rollup.ensure_consistent()
        return {'audit': audit, 'rollup_repaired': repaired,
                'valid': audit['valid'] and not repaired}

    def close(self) -> None:
        self.storage.close()
