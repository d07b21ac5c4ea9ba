"""
Journal Entry Data Model

Lines and entries of the double-entry journal. A ProposedEntry is what
producers hand to the ledger; a JournalEntry is what the ledger stores once
posting succeeds. Both are frozen: posted history is never edited, only
offset by new entries.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Union

from .amounts import ZERO, AmountLike, sum_amounts, to_amount

DateLike = Union[date, datetime, str]
LineLike = Union['JournalLine', Mapping[str, Any]]


def to_date(value: DateLike) -> date:
    """Coerce an ISO string or datetime to a calendar date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            raise ValueError(f"Invalid date: {value!r}")
    raise ValueError(f"Invalid date: {value!r}")


@dataclass(frozen=True)
class JournalLine:
    """
    Individual line of a journal entry

    Amounts are normalised to two-decimal Decimals on construction. Whether
    the line is well formed (non-negative, exactly one side set) is checked
    by the validator so every problem can be reported together.
    """
    account_code: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str = ""

    def __post_init__(self):
        object.__setattr__(self, 'account_code', str(self.account_code).strip())
        object.__setattr__(self, 'debit', to_amount(self.debit))
        object.__setattr__(self, 'credit', to_amount(self.credit))

    @classmethod
    def debit_line(cls, account_code: str, amount: AmountLike, description: str = "") -> 'JournalLine':
        return cls(account_code=account_code, debit=amount, credit=ZERO, description=description)

    @classmethod
    def credit_line(cls, account_code: str, amount: AmountLike, description: str = "") -> 'JournalLine':
        return cls(account_code=account_code, debit=ZERO, credit=amount, description=description)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'JournalLine':
        """Build from a mapping; accepts 'account' as an alias of 'account_code'"""
        code = data.get('account_code', data.get('account'))
        if code is None:
            raise ValueError("Journal line requires an account code")
        return cls(
            account_code=code,
            debit=data.get('debit') or ZERO,
            credit=data.get('credit') or ZERO,
            description=data.get('description') or ""
        )

    @property
    def is_debit(self) -> bool:
        return self.debit != ZERO

    @property
    def is_credit(self) -> bool:
        return self.credit != ZERO

    @property
    def amount(self) -> Decimal:
        """The non-zero side"""
        return self.debit if self.is_debit else self.credit

    def reversed(self, prefix: str = "REVERSAL: ") -> 'JournalLine':
        """Same line with debit and credit swapped"""
        return JournalLine(self.account_code, debit=self.credit, credit=self.debit,
                           description=f"{prefix}{self.description}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_code': self.account_code,
            'debit': str(self.debit),
            'credit': str(self.credit),
            'description': self.description
        }


def _coerce_lines(lines: Iterable[LineLike]) -> Tuple[JournalLine, ...]:
    return tuple(line if isinstance(line, JournalLine) else JournalLine.from_dict(line)
                 for line in lines)


class _EntryTotals:
    lines: Tuple[JournalLine, ...]

    @property
    def total_debit(self) -> Decimal:
        return sum_amounts(line.debit for line in self.lines)

    @property
    def total_credit(self) -> Decimal:
        return sum_amounts(line.credit for line in self.lines)

    @property
    def affected_accounts(self) -> FrozenSet[str]:
        return frozenset(line.account_code for line in self.lines)

    def touches(self, account_code: str) -> bool:
        return any(line.account_code == account_code for line in self.lines)


@dataclass(frozen=True)
class ProposedEntry(_EntryTotals):
    """Candidate journal entry, not yet validated or posted"""
    date: date
    reference: str
    description: str
    lines: Tuple[JournalLine, ...]
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'date', to_date(self.date))
        object.__setattr__(self, 'lines', _coerce_lines(self.lines))
        if self.reference_id is not None:
            object.__setattr__(self, 'reference_id', str(self.reference_id))


@dataclass(frozen=True)
class JournalEntry(_EntryTotals):
    """
    Posted journal entry

    Immutable once posted. The id is the ledger sequence number; entries
    order by (date, id).
    """
    id: int
    date: date
    reference: str
    description: str
    lines: Tuple[JournalLine, ...]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    reverses: Optional[int] = None

    @classmethod
    def from_proposed(cls, entry_id: int, proposed: ProposedEntry,
                      reverses: Optional[int] = None) -> 'JournalEntry':
        return cls(
            id=entry_id,
            date=proposed.date,
            reference=proposed.reference,
            description=proposed.description,
            lines=proposed.lines,
            reference_type=proposed.reference_type,
            reference_id=proposed.reference_id,
            reverses=reverses
        )

    @property
    def sort_key(self) -> Tuple[date, int]:
        return (self.date, self.id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert JournalEntry to dictionary for storage"""
        return {
            'id': self.id,
            'date': self.date.isoformat(),
            'reference': self.reference,
            'description': self.description,
            'lines': [line.to_dict() for line in self.lines],
            'total_debit': str(self.total_debit),
            'total_credit': str(self.total_credit),
            'created_at': self.created_at.isoformat(),
            'reference_type': self.reference_type,
            'reference_id': self.reference_id,
            'reverses': self.reverses
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'JournalEntry':
        """Convert dictionary to JournalEntry"""
        return cls(
            id=int(data['id']),
            date=date.fromisoformat(data['date']),
            reference=data['reference'],
            description=data['description'],
            lines=tuple(JournalLine.from_dict(line) for line in data['lines']),
            created_at=datetime.fromisoformat(data['created_at']),
            reference_type=data.get('reference_type'),
            reference_id=data.get('reference_id'),
            reverses=data.get('reverses')
        )
