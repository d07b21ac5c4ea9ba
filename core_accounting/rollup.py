"""
Balance Rollup Engine

Derives account balances, the balance sheet and the income statement from
posted journal entries. A map of raw debit/credit totals per account is
advanced by one fold step per post and can always be rebuilt from the
journal. The sign convention is applied here, at read time, from each
account's current type:

    asset, expense                  debit - credit
    liability, equity, revenue      credit - debit
"""

import threading
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Tuple

from .accounts import Account, AccountCategory, AccountType
from .amounts import ZERO, sum_amounts
from .audit import AuditTrail, AuditEventType
from .entries import DateLike, JournalEntry, to_date
from .events import DomainEvent, EventDispatcher, EventPayload
from .exceptions import (
    AccountNotFoundError, InvariantViolation, RollupDriftError, ValidationError,
)
from .logging_config import get_logger, log_action

logger = get_logger(__name__)


@dataclass(frozen=True)
class AccountTotals:
    """Raw totals posted to one account"""
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    postings: int = 0


def fold_entries(entries: Iterable[JournalEntry]) -> Dict[str, AccountTotals]:
    """Fold journal entries into per-account raw totals"""
    totals: Dict[str, AccountTotals] = {}
    for entry in entries:
        _fold_one(totals, entry)
    return totals


def _fold_one(totals: Dict[str, AccountTotals], entry: JournalEntry) -> None:
    seen = set()
    for line in entry.lines:
        current = totals.get(line.account_code, AccountTotals())
        postings = current.postings
        if line.account_code not in seen:
            postings += 1
            seen.add(line.account_code)
        totals[line.account_code] = AccountTotals(
            debit=current.debit + line.debit,
            credit=current.credit + line.credit,
            postings=postings
        )


@dataclass(frozen=True)
class BalanceLine:
    account_code: str
    description: str
    balance: Decimal

    def to_dict(self) -> Dict[str, str]:
        return {'balance': str(self.balance), 'description': self.description}


Section = Dict[str, BalanceLine]


def _section_total(section: Section) -> Decimal:
    return sum_amounts(line.balance for line in section.values())


def _section_dict(section: Section) -> Dict[str, Dict[str, str]]:
    return {code: line.to_dict() for code, line in section.items()}


@dataclass(frozen=True)
class BalanceSheet:
    """
    Balance sheet built from touched accounts only

    current_result is revenue minus expenses not yet closed to equity; with
    it, assets equal liabilities plus equity.
    """
    assets_current: Section
    assets_fixed: Section
    liabilities_current: Section
    liabilities_long_term: Section
    equity: Section
    current_result: Decimal
    as_of: Optional[date] = None

    @property
    def total_assets(self) -> Decimal:
        return _section_total(self.assets_current) + _section_total(self.assets_fixed)

    @property
    def total_liabilities(self) -> Decimal:
        return _section_total(self.liabilities_current) + _section_total(self.liabilities_long_term)

    @property
    def total_equity(self) -> Decimal:
        return _section_total(self.equity)

    @property
    def liabilities_and_equity(self) -> Decimal:
        return self.total_liabilities + self.total_equity + self.current_result

    @property
    def balanced(self) -> bool:
        return self.total_assets == self.liabilities_and_equity

    def to_dict(self) -> Dict[str, Any]:
        return {
            'as_of': self.as_of.isoformat() if self.as_of else None,
            'assets': {
                'current': _section_dict(self.assets_current),
                'fixed': _section_dict(self.assets_fixed),
            },
            'liabilities': {
                'current': _section_dict(self.liabilities_current),
                'long_term': _section_dict(self.liabilities_long_term),
            },
            'equity': _section_dict(self.equity),
            'totals': {
                'assets': str(self.total_assets),
                'liabilities': str(self.total_liabilities),
                'equity': str(self.total_equity),
                'current_result': str(self.current_result),
                'liabilities_and_equity': str(self.liabilities_and_equity),
            }
        }


@dataclass(frozen=True)
class IncomeStatement:
    """Revenue, cost and expense totals over an inclusive date range"""
    date_from: date
    date_to: date
    revenues: Section
    costs: Section
    expenses: Section

    @property
    def total_revenue(self) -> Decimal:
        return _section_total(self.revenues)

    @property
    def total_costs(self) -> Decimal:
        return _section_total(self.costs)

    @property
    def total_expenses(self) -> Decimal:
        return _section_total(self.expenses)

    @property
    def gross_profit(self) -> Decimal:
        return self.total_revenue - self.total_costs

    @property
    def net_income(self) -> Decimal:
        return self.gross_profit - self.total_expenses

    def to_dict(self) -> Dict[str, Any]:
        return {
            'period': {'from': self.date_from.isoformat(), 'to': self.date_to.isoformat()},
            'revenues': _section_dict(self.revenues),
            'costs': _section_dict(self.costs),
            'expenses': _section_dict(self.expenses),
            'totals': {
                'revenue': str(self.total_revenue),
                'costs': str(self.total_costs),
                'expenses': str(self.total_expenses),
                'gross_profit': str(self.gross_profit),
                'net_income': str(self.net_income),
            }
        }


class BalanceRollupEngine:
    """
    Incrementally maintained account balances with full-rebuild recovery

    The engine registers itself as a ledger listener, so every successful
    post advances the totals map exactly once, under the ledger's writer lock.
    """

    def __init__(
        self,
        ledger,
        registry,
        audit_trail: AuditTrail,
        cost_prefixes: Tuple[str, ...] = ("5",),
        verify_on_read: bool = False,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.ledger = ledger
        self.registry = registry
        self.audit_trail = audit_trail
        self.cost_prefixes = tuple(cost_prefixes)
        self.verify_on_read = verify_on_read
        self._event_dispatcher = event_dispatcher
        self._lock = threading.RLock()
        self._stale = False

        with self.ledger.write_lock:
            self._totals: Dict[str, AccountTotals] = fold_entries(self.ledger.all_entries())
            self.ledger.add_listener(self._apply)

    def _apply(self, entry: JournalEntry) -> None:
        """Advance the totals map by one posted entry"""
        with self._lock:
            try:
                _fold_one(self._totals, entry)
            except Exception:
                # The map may hold part of the entry; the next read rebuilds it
                self._stale = True
                raise

    @property
    def stale(self) -> bool:
        """True when an update failed and the map awaits a rebuild"""
        return self._stale

    def totals(self) -> Dict[str, AccountTotals]:
        """Copy of the incremental totals map, rebuilt first if it is stale"""
        self._rebuild_if_stale()
        with self._lock:
            return dict(self._totals)

    def account_balance(self, code: str) -> Decimal:
        """
        Signed balance of one account over the full journal

        Raises:
            AccountNotFoundError: If the account is not in the chart
        """
        self._check_on_read()
        account = self.registry.find_account(code)
        if account is None:
            raise AccountNotFoundError(code)
        with self._lock:
            totals = self._totals.get(code)
        if totals is None:
            return ZERO
        return account.signed_balance(totals.debit, totals.credit)

    def balance_sheet_view(self, as_of: Optional[DateLike] = None) -> BalanceSheet:
        """
        Balance sheet of every touched account

        Without as_of the incremental map is used; with as_of the journal is
        folded up to that date (inclusive).
        """
        if as_of is None:
            self._check_on_read()
            totals = self.totals()
            as_of_date = None
        else:
            as_of_date = to_date(as_of)
            totals = fold_entries(self.ledger.query(date_to=as_of_date))

        sections = {
            'assets_current': {}, 'assets_fixed': {}, 'liabilities_current': {},
            'liabilities_long_term': {}, 'equity': {},
        }
        current_result = ZERO

        for code in sorted(totals):
            account = self._posted_account(code)
            balance = account.signed_balance(totals[code].debit, totals[code].credit)
            line = BalanceLine(code, account.name, balance)

            if account.account_type == AccountType.ASSET:
                key = ('assets_current' if account.category == AccountCategory.CURRENT
                       else 'assets_fixed')
            elif account.account_type == AccountType.LIABILITY:
                key = ('liabilities_current' if account.category == AccountCategory.CURRENT
                       else 'liabilities_long_term')
            elif account.account_type == AccountType.EQUITY:
                key = 'equity'
            elif account.account_type == AccountType.REVENUE:
                current_result += balance
                continue
            else:
                current_result -= balance
                continue
            sections[key][code] = line

        return BalanceSheet(current_result=current_result, as_of=as_of_date, **sections)

    def income_statement_view(self, date_from: DateLike, date_to: DateLike) -> IncomeStatement:
        """
        Revenue, costs and expenses for entries dated within [date_from, date_to]

        Expense accounts whose code starts with a cost-of-sales prefix are
        reported as costs; gross profit = revenue - costs and
        net income = gross profit - expenses.

        Raises:
            ValidationError: If the range is inverted
        """
        start, end = to_date(date_from), to_date(date_to)
        if start > end:
            raise ValidationError(f"Invalid period: {start} is after {end}",
                                  details={'date_from': start.isoformat(),
                                           'date_to': end.isoformat()})

        totals = fold_entries(self.ledger.query(date_from=start, date_to=end))
        revenues: Section = {}
        costs: Section = {}
        expenses: Section = {}

        for code in sorted(totals):
            account = self._posted_account(code)
            if account.account_type == AccountType.REVENUE:
                target = revenues
            elif account.account_type == AccountType.EXPENSE:
                target = costs if self._is_cost(code) else expenses
            else:
                continue
            balance = account.signed_balance(totals[code].debit, totals[code].credit)
            target[code] = BalanceLine(code, account.name, balance)

        return IncomeStatement(date_from=start, date_to=end, revenues=revenues,
                               costs=costs, expenses=expenses)

    def rebuild(self) -> Dict[str, AccountTotals]:
        """Re-derive the totals map from the full journal"""
        with self.ledger.write_lock:
            totals = fold_entries(self.ledger.all_entries())
            with self._lock:
                self._totals = dict(totals)
                self._stale = False
            entry_count = self.ledger.entry_count()
            self.audit_trail.log_event(
                event_type=AuditEventType.ROLLUP_REBUILT,
                entity_type="rollup",
                entity_id="balances",
                metadata={"accounts": len(totals), "entries": entry_count}
            )

        log_action(logger, "info", "Rebuilt balance rollup from journal",
                   action="rebuild_rollup", resource="rollup",
                   extra={"accounts": len(totals), "entries": entry_count})
        if self._event_dispatcher:
            self._event_dispatcher.publish(EventPayload(
                event_type=DomainEvent.BALANCES_REBUILT,
                entity_type="rollup",
                entity_id="balances",
                data={"accounts": len(totals), "entries": entry_count}
            ))
        return totals

    def verify(self) -> None:
        """
        Compare the incremental map with a full recompute

        Raises:
            RollupDriftError: Naming every account whose totals differ
        """
        with self.ledger.write_lock:
            expected = fold_entries(self.ledger.all_entries())
            with self._lock:
                actual = dict(self._totals)

        drifted = {}
        for code in sorted(set(expected) | set(actual)):
            want, have = expected.get(code), actual.get(code)
            if want != have:
                drifted[code] = {
                    'incremental': _describe(have),
                    'recomputed': _describe(want),
                }
        if drifted:
            raise RollupDriftError(drifted)

    def ensure_consistent(self) -> bool:
        """
        Verify the map and rebuild it if it drifted

        Returns:
            True if a drift was found and repaired
        """
        # Audit writes happen under the ledger writer lock, like every other
        with self.ledger.write_lock:
            try:
                self.verify()
            except RollupDriftError as drift:
                logger.error("Balance rollup drift detected: %s", drift.message)
                self.audit_trail.log_event(
                    event_type=AuditEventType.ROLLUP_DRIFT_DETECTED,
                    entity_type="rollup",
                    entity_id="balances",
                    metadata={"drifted": drift.drifted}
                )
                self.rebuild()
                return True
        return False

    def _rebuild_if_stale(self) -> None:
        if self._stale:
            logger.error("Balance rollup missed an update; rebuilding from the journal")
            self.rebuild()

    def _check_on_read(self) -> None:
        self._rebuild_if_stale()
        if self.verify_on_read:
            self.ensure_consistent()

    def _is_cost(self, code: str) -> bool:
        return any(code.startswith(prefix) for prefix in self.cost_prefixes)

    def _posted_account(self, code: str) -> Account:
        account = self.registry.find_account(code)
        if account is None:
            # Accounts with postings cannot be deleted
            raise InvariantViolation(f"Posted account {code} is missing from the chart",
                                     details={'code': code})
        return account


def _describe(totals: Optional[AccountTotals]) -> str:
    if totals is None:
        return "absent"
    return f"debit={totals.debit} credit={totals.credit} postings={totals.postings}"
