"""
Double-Entry Ledger Engine

Append-only journal of posted entries. Every entry is validated before it is
appended, entries are immutable once posted and corrections are made with
new offsetting entries. Posts are serialized by a single writer lock; readers
work on immutable snapshots and never see a half-appended entry.
"""

import threading
from bisect import bisect_right
from collections import Counter
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .amounts import DEFAULT_TOLERANCE, ZERO, sum_amounts
from .audit import AuditTrail, AuditEventType
from .entries import DateLike, JournalEntry, JournalLine, LineLike, ProposedEntry, to_date
from .events import DomainEvent, EventDispatcher, EventPayload
from .exceptions import EntryNotFoundError, JournalValidationError, ValidationError
from .logging_config import get_logger, log_action
from .storage import JOURNAL_TABLE, StorageInterface
from .validation import JournalEntryValidator

logger = get_logger(__name__)

UNDEFINED_ACCOUNT_NAME = "Cuenta no definida"
DEFAULT_ROUNDING_ACCOUNT = '7101'  # Otros Ingresos
ROUNDING_DESCRIPTION = "Diferencia de redondeo"

PostListener = Callable[[JournalEntry], None]


@dataclass(frozen=True)
class _Snapshot:
    """Immutable view of the journal at one point in time"""
    ordered: Tuple[JournalEntry, ...]        # by (date, id)
    keys: Tuple[Tuple[date, int], ...]       # sort keys of `ordered`
    by_id: Dict[int, JournalEntry]
    postings: Counter                        # account code -> entries touching it
    reversed_ids: frozenset

    @classmethod
    def empty(cls) -> '_Snapshot':
        return cls((), (), {}, Counter(), frozenset())

    def with_entry(self, entry: JournalEntry) -> '_Snapshot':
        position = bisect_right(self.keys, entry.sort_key)
        ordered = self.ordered[:position] + (entry,) + self.ordered[position:]
        keys = self.keys[:position] + (entry.sort_key,) + self.keys[position:]
        by_id = dict(self.by_id)
        by_id[entry.id] = entry
        postings = Counter(self.postings)
        postings.update(entry.affected_accounts)
        reversed_ids = self.reversed_ids
        if entry.reverses is not None:
            reversed_ids = reversed_ids | {entry.reverses}
        return _Snapshot(ordered, keys, by_id, postings, reversed_ids)


@dataclass(frozen=True)
class GeneralLedgerLine:
    """One line of the general ledger (libro mayor) view"""
    entry_id: int
    date: date
    reference: str
    description: str
    account_code: str
    account_name: str
    debit: Decimal
    credit: Decimal
    running_balance: Optional[Decimal] = None


@dataclass(frozen=True)
class TrialBalanceRow:
    account_code: str
    account_name: str
    debit: Decimal
    credit: Decimal
    balance: Decimal


@dataclass(frozen=True)
class TrialBalance:
    rows: Tuple[TrialBalanceRow, ...]
    total_debit: Decimal
    total_credit: Decimal
    as_of: Optional[date] = None

    @property
    def balanced(self) -> bool:
        return self.total_debit == self.total_credit


class GeneralLedger:
    """
    General ledger that validates, stores and serves journal entries
    Balances are derived from journal entries, never stored separately
    """

    def __init__(
        self,
        storage: StorageInterface,
        registry,
        audit_trail: AuditTrail,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        event_dispatcher: Optional[EventDispatcher] = None,
        rounding_account: Optional[str] = DEFAULT_ROUNDING_ACCOUNT
    ):
        self.storage = storage
        self.registry = registry
        self.audit_trail = audit_trail
        self.table_name = JOURNAL_TABLE
        self.rounding_account = rounding_account
        # Without a rounding account every entry must balance to the cent
        self.validator = JournalEntryValidator(
            registry, tolerance if rounding_account else ZERO,
            rounding_account=rounding_account
        )
        self.write_lock = threading.RLock()
        self._event_dispatcher = event_dispatcher
        self._listeners: List[PostListener] = []

        snapshot = _Snapshot.empty()
        stored = sorted((JournalEntry.from_dict(data)
                         for data in self.storage.load_all(self.table_name)),
                        key=lambda e: e.id)
        for entry in stored:
            snapshot = snapshot.with_entry(entry)
        self._snapshot = snapshot
        self._next_id = stored[-1].id + 1 if stored else 1

    def add_listener(self, listener: PostListener) -> None:
        """
        Register a callback run under the writer lock after each post

        Listeners see entries in posting order, exactly once each.
        """
        with self.write_lock:
            self._listeners.append(listener)

    def post(self, proposed: ProposedEntry, reverses: Optional[int] = None) -> JournalEntry:
        """
        Validate and append a journal entry

        Args:
            proposed: Candidate entry
            reverses: Id of the entry this one offsets, for reversals

        Returns:
            The stored, immutable JournalEntry

        Raises:
            JournalValidationError: With every issue found; nothing is appended
            ValidationError: If the entry to reverse was already reversed
        """
        with self.write_lock:
            if reverses is not None and reverses in self._snapshot.reversed_ids:
                raise ValidationError(f"Journal entry {reverses} has already been reversed",
                                      details={'entry_id': reverses})

            report = self.validator.validate(proposed)
            if not report.ok:
                self._reject(proposed, report.issues)
                raise JournalValidationError(report.issues)
            if report.difference != ZERO:
                proposed = self._absorb_residual(proposed, report.difference)

            entry = JournalEntry.from_proposed(self._next_id, proposed, reverses=reverses)
            try:
                with self.storage.atomic():
                    self.storage.save(self.table_name, str(entry.id), entry.to_dict())
                    self.audit_trail.log_event(
                        event_type=AuditEventType.JOURNAL_ENTRY_POSTED,
                        entity_type="journal_entry",
                        entity_id=str(entry.id),
                        metadata={
                            "reference": entry.reference,
                            "date": entry.date,
                            "total": entry.total_debit,
                            "accounts": sorted(entry.affected_accounts)
                        }
                    )
            except Exception:
                self.audit_trail.resync()
                raise

            self._snapshot = self._snapshot.with_entry(entry)
            self._next_id += 1
            self._notify_listeners(entry)

        log_action(logger, "info",
                   f"Posted journal entry {entry.id} ({entry.reference})",
                   action="post_entry", resource=f"journal_entry:{entry.id}",
                   extra={"total": str(entry.total_debit), "lines": len(entry.lines)})
        self._publish(entry)
        return entry

    def post_entry(
        self,
        date: DateLike,
        reference: str,
        description: str,
        lines: Iterable[LineLike],
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None
    ) -> JournalEntry:
        """
        Build a ProposedEntry from loose input and post it

        Raises:
            ValidationError: If a date or amount cannot be parsed
            JournalValidationError: If the entry breaks a posting rule
        """
        try:
            proposed = ProposedEntry(date=date, reference=reference, description=description,
                                     lines=tuple(lines), reference_type=reference_type,
                                     reference_id=reference_id)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        return self.post(proposed)

    def reverse_entry(self, entry_id: int, reason: str,
                      date: Optional[DateLike] = None) -> JournalEntry:
        """
        Offset a posted entry with a new entry that swaps debits and credits

        The original entry is left untouched.

        Raises:
            EntryNotFoundError: If the entry does not exist
            ValidationError: If the entry was already reversed
        """
        original = self.get_entry(entry_id)
        proposed = ProposedEntry(
            date=to_date(date) if date is not None else original.date,
            reference=f"REV-{original.reference}",
            description=f"REVERSAL: {reason}",
            lines=tuple(line.reversed() for line in original.lines),
            reference_type="reversal",
            reference_id=str(original.id)
        )
        return self.post(proposed, reverses=original.id)

    def query(
        self,
        account_code: Optional[str] = None,
        date_from: Optional[DateLike] = None,
        date_to: Optional[DateLike] = None,
        reference_type: Optional[str] = None
    ) -> Iterator[JournalEntry]:
        """
        Lazily iterate posted entries ordered by date, then posting order

        Date bounds are inclusive. reference_type keeps only entries made
        from one kind of source document (e.g. "invoice", "reversal"). The
        sequence reflects the journal as of the call; later posts do not
        show up in it.
        """
        snapshot = self._snapshot
        start = to_date(date_from) if date_from is not None else None
        end = to_date(date_to) if date_to is not None else None

        first = 0
        if start is not None:
            first = bisect_right(snapshot.keys, (start, 0))

        def _iterate():
            for entry in snapshot.ordered[first:]:
                if end is not None and entry.date > end:
                    return
                if account_code is not None and not entry.touches(account_code):
                    continue
                if reference_type is not None and entry.reference_type != reference_type:
                    continue
                yield entry

        return _iterate()

    def get_entry(self, entry_id: int) -> JournalEntry:
        """Get a journal entry by id"""
        entry = self._snapshot.by_id.get(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return entry

    def find_by_reference(self, reference: str) -> List[JournalEntry]:
        """Entries carrying a reference, in ledger order"""
        return [entry for entry in self._snapshot.ordered if entry.reference == reference]

    def all_entries(self) -> Tuple[JournalEntry, ...]:
        """Every posted entry in posting (id) order"""
        snapshot = self._snapshot
        return tuple(snapshot.by_id[entry_id] for entry_id in sorted(snapshot.by_id))

    def entry_count(self) -> int:
        return len(self._snapshot.by_id)

    def posting_count(self, account_code: str) -> int:
        """Number of posted entries that reference an account"""
        return self._snapshot.postings.get(account_code, 0)

    def has_postings(self, account_code: str) -> bool:
        return self.posting_count(account_code) > 0

    def general_ledger_lines(
        self,
        account_code: Optional[str] = None,
        date_from: Optional[DateLike] = None,
        date_to: Optional[DateLike] = None
    ) -> List[GeneralLedgerLine]:
        """
        Flattened line view of the journal

        When filtered to one account, each line also carries the account's
        signed running balance within the selected range.
        """
        account = self.registry.find_account(account_code) if account_code else None
        running = ZERO
        result = []

        for entry in self.query(account_code, date_from, date_to):
            for line in entry.lines:
                if account_code is not None and line.account_code != account_code:
                    continue
                line_account = account or self.registry.find_account(line.account_code)
                running_balance = None
                if account is not None:
                    running += account.signed_balance(line.debit, line.credit)
                    running_balance = running
                result.append(GeneralLedgerLine(
                    entry_id=entry.id,
                    date=entry.date,
                    reference=entry.reference,
                    description=line.description or entry.description,
                    account_code=line.account_code,
                    account_name=line_account.name if line_account else UNDEFINED_ACCOUNT_NAME,
                    debit=line.debit,
                    credit=line.credit,
                    running_balance=running_balance
                ))

        return result

    def trial_balance(self, as_of: Optional[DateLike] = None) -> TrialBalance:
        """
        Total debits and credits per account up to a date (inclusive)

        Total debits equal total credits for any set of balanced entries.
        """
        debits: Dict[str, Decimal] = {}
        credits: Dict[str, Decimal] = {}
        for entry in self.query(date_to=as_of):
            for line in entry.lines:
                debits[line.account_code] = debits.get(line.account_code, ZERO) + line.debit
                credits[line.account_code] = credits.get(line.account_code, ZERO) + line.credit

        rows = []
        for code in sorted(debits):
            account = self.registry.find_account(code)
            debit, credit = debits[code], credits[code]
            rows.append(TrialBalanceRow(
                account_code=code,
                account_name=account.name if account else UNDEFINED_ACCOUNT_NAME,
                debit=debit,
                credit=credit,
                balance=account.signed_balance(debit, credit) if account else debit - credit
            ))

        return TrialBalance(
            rows=tuple(rows),
            total_debit=sum_amounts(row.debit for row in rows),
            total_credit=sum_amounts(row.credit for row in rows),
            as_of=to_date(as_of) if as_of is not None else None
        )

    def _absorb_residual(self, proposed: ProposedEntry, residual: Decimal) -> ProposedEntry:
        # Stored entries balance exactly; the accepted residual goes to one line
        if residual > ZERO:
            line = JournalLine.credit_line(self.rounding_account, residual, ROUNDING_DESCRIPTION)
        else:
            line = JournalLine.debit_line(self.rounding_account, -residual, ROUNDING_DESCRIPTION)
        log_action(logger, "info",
                   f"Carried rounding difference {residual} of {proposed.reference!r} "
                   f"to {self.rounding_account}",
                   action="post_entry", resource="journal_entry",
                   extra={"residual": str(residual), "account": self.rounding_account})
        return replace(proposed, lines=proposed.lines + (line,))

    def _reject(self, proposed: ProposedEntry, issues) -> None:
        self.audit_trail.log_event(
            event_type=AuditEventType.JOURNAL_ENTRY_REJECTED,
            entity_type="journal_entry",
            entity_id=proposed.reference or "",
            metadata={"issues": [issue.to_dict() for issue in issues]}
        )
        log_action(logger, "warning",
                   f"Rejected journal entry {proposed.reference!r}",
                   action="post_entry", resource="journal_entry",
                   extra={"issues": [issue.message for issue in issues]})

    def _notify_listeners(self, entry: JournalEntry) -> None:
        for listener in self._listeners:
            try:
                listener(entry)
            except Exception:
                # The entry is durable; listeners rebuild from the journal
                logger.error("Post listener %r failed for entry %s", listener, entry.id,
                             exc_info=True)

    def _publish(self, entry: JournalEntry) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(EventPayload(
                event_type=DomainEvent.ENTRY_POSTED,
                entity_type="journal_entry",
                entity_id=str(entry.id),
                data={
                    "date": entry.date.isoformat(),
                    "reference": entry.reference,
                    "reference_type": entry.reference_type,
                    "reference_id": entry.reference_id,
                    "total": str(entry.total_debit),
                    "accounts": sorted(entry.affected_accounts)
                }
            ))
