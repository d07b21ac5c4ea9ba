"""
Chart of Accounts Module

Registry of ledger accounts and their classification. Accounts are keyed by
a fixed-width numeric code that never changes. An account that has postings
can be deactivated but never deleted, so historical reports stay resolvable.
"""

import re
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Union
from enum import Enum

from .storage import ACCOUNTS_TABLE, StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .events import EventDispatcher, EventPayload, DomainEvent
from .exceptions import (
    AccountNotFoundError, DuplicateAccountCodeError, InvalidAccountCodeError,
    ValidationError,
)
from .logging_config import get_logger, log_action

logger = get_logger(__name__)

DEFAULT_CODE_PATTERN = r"^\d{4}$"


class AccountType(Enum):
    """Standard accounting account types"""
    ASSET = "asset"           # Debit normal balance
    LIABILITY = "liability"   # Credit normal balance
    EQUITY = "equity"         # Credit normal balance
    REVENUE = "revenue"       # Credit normal balance
    EXPENSE = "expense"       # Debit normal balance

    @property
    def is_debit_normal(self) -> bool:
        return self in (AccountType.ASSET, AccountType.EXPENSE)

    @property
    def is_balance_sheet(self) -> bool:
        return self in (AccountType.ASSET, AccountType.LIABILITY, AccountType.EQUITY)


class AccountCategory(Enum):
    """Qualifies assets and liabilities; everything else is OTHER"""
    CURRENT = "current"
    FIXED = "fixed"
    LONG_TERM = "long_term"
    OTHER = "other"


QUALIFIED_TYPES = (AccountType.ASSET, AccountType.LIABILITY)
UPDATABLE_FIELDS = ('name', 'account_type', 'category', 'parent_code', 'description', 'active')


@dataclass
class Account(StorageRecord):
    """Ledger account"""
    code: str
    name: str
    account_type: AccountType
    category: AccountCategory
    parent_code: Optional[str] = None
    description: Optional[str] = None
    active: bool = True

    def signed_balance(self, debit_total, credit_total):
        """Apply the normal-balance sign convention to raw totals"""
        if self.account_type.is_debit_normal:
            return debit_total - credit_total
        return credit_total - debit_total

    @classmethod
    def from_dict(cls, data) -> 'Account':
        return cls(
            code=data['code'],
            name=data['name'],
            account_type=AccountType(data['account_type']),
            category=AccountCategory(data['category']),
            parent_code=data.get('parent_code'),
            description=data.get('description'),
            active=data.get('active', True),
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
        )


@dataclass(frozen=True)
class DeactivationResult:
    """Outcome of deactivate_or_delete"""
    code: str
    action: str  # "deleted" or "deactivated"
    account: Account

    @property
    def deleted(self) -> bool:
        return self.action == "deleted"


def _coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field_name} {value!r}; expected one of: {allowed}",
                              details={'field': field_name, 'value': value})


def _default_category(account_type: AccountType) -> AccountCategory:
    if account_type in QUALIFIED_TYPES:
        return AccountCategory.CURRENT
    return AccountCategory.OTHER


def _check_category(account_type: AccountType, category: AccountCategory) -> None:
    if account_type not in QUALIFIED_TYPES and category != AccountCategory.OTHER:
        raise ValidationError(
            f"{account_type.value} accounts must use category 'other', got {category.value!r}",
            details={'field': 'category', 'value': category.value}
        )


class ChartOfAccounts:
    """
    Chart of accounts registry

    Keeps a code-keyed map of accounts backed by storage. Deletion needs to
    know whether an account has postings, so the ledger is attached after
    construction with attach_ledger().
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        code_pattern: str = DEFAULT_CODE_PATTERN,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = ACCOUNTS_TABLE
        self.code_pattern = code_pattern
        self._code_re = re.compile(code_pattern)
        self._event_dispatcher = event_dispatcher
        self._lock = threading.RLock()
        self._posting_count: Optional[Callable[[str], int]] = None
        self._ledger_lock = None

        self._accounts: Dict[str, Account] = {
            data['code']: Account.from_dict(data)
            for data in self.storage.load_all(self.table_name)
        }

    def attach_ledger(self, ledger) -> None:
        """Wire the ledger used for the postings check and write serialization"""
        self._posting_count = ledger.posting_count
        self._ledger_lock = ledger.write_lock

    @contextmanager
    def _persisting(self):
        # Record and audit event land together or not at all
        try:
            with self.storage.atomic():
                yield
        except Exception:
            self.audit_trail.resync()
            raise

    @contextmanager
    def _write_guard(self):
        # Deletion must not interleave with a post that references the account
        if self._ledger_lock is not None:
            with self._ledger_lock, self._lock:
                yield
        else:
            with self._lock:
                yield

    def create_account(
        self,
        code: str,
        name: str,
        account_type: Union[AccountType, str],
        category: Union[AccountCategory, str, None] = None,
        parent_code: Optional[str] = None,
        description: Optional[str] = None
    ) -> Account:
        """
        Create a new account

        Args:
            code: Fixed-width numeric code, unique and immutable
            name: Display name
            account_type: asset, liability, equity, revenue or expense
            category: current/fixed/long_term for assets and liabilities;
                defaults to current for those and other for the rest
            parent_code: Optional parent for hierarchical presentation
            description: Optional free text

        Returns:
            Created Account

        Raises:
            InvalidAccountCodeError: If code does not match the configured format
            DuplicateAccountCodeError: If code is already registered
            AccountNotFoundError: If parent_code is unknown
        """
        code = str(code).strip()
        if not self._code_re.fullmatch(code):
            raise InvalidAccountCodeError(code, self.code_pattern)
        if not name or not str(name).strip():
            raise ValidationError("Account name is required", details={'field': 'name'})

        account_type = _coerce_enum(AccountType, account_type, 'account_type')
        if category is None:
            category = _default_category(account_type)
        category = _coerce_enum(AccountCategory, category, 'category')
        _check_category(account_type, category)

        with self._write_guard():
            if code in self._accounts:
                raise DuplicateAccountCodeError(code)
            if parent_code is not None:
                self._check_parent(code, parent_code)

            now = datetime.now(timezone.utc)
            account = Account(
                code=code,
                name=str(name).strip(),
                account_type=account_type,
                category=category,
                parent_code=parent_code,
                description=description,
                active=True,
                created_at=now,
                updated_at=now
            )

            with self._persisting():
                self.storage.save(self.table_name, code, account.to_dict())
                self.audit_trail.log_event(
                    event_type=AuditEventType.ACCOUNT_CREATED,
                    entity_type="account",
                    entity_id=code,
                    metadata={
                        "name": account.name,
                        "account_type": account_type.value,
                        "category": category.value
                    }
                )
            self._accounts[code] = account

        log_action(logger, "info", f"Created account {code} {account.name}",
                   action="create_account", resource=f"account:{code}")
        self._publish(DomainEvent.ACCOUNT_CREATED, account)
        return account

    def update_account(self, code: str, **fields) -> Account:
        """
        Update any account field except its code

        Raises:
            AccountNotFoundError: If the account does not exist
            ValidationError: On an attempt to change the code, an unknown
                field or an invalid type/category combination
        """
        if 'code' in fields:
            raise ValidationError("Account code cannot be changed", details={'field': 'code'})
        unknown = sorted(set(fields) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown account fields: {', '.join(unknown)}",
                                  details={'fields': unknown})

        with self._write_guard():
            account = self.get_account(code)
            changes = {}

            account_type = account.account_type
            if 'account_type' in fields:
                account_type = _coerce_enum(AccountType, fields['account_type'], 'account_type')
            category = account.category
            if 'category' in fields:
                category = _coerce_enum(AccountCategory, fields['category'], 'category')
            elif account_type != account.account_type and account_type not in QUALIFIED_TYPES:
                category = AccountCategory.OTHER
            _check_category(account_type, category)

            if 'name' in fields:
                if not fields['name'] or not str(fields['name']).strip():
                    raise ValidationError("Account name is required", details={'field': 'name'})
                changes['name'] = str(fields['name']).strip()
            if 'parent_code' in fields and fields['parent_code'] is not None:
                self._check_parent(code, fields['parent_code'])
            for key in ('parent_code', 'description'):
                if key in fields:
                    changes[key] = fields[key]
            if 'active' in fields:
                changes['active'] = bool(fields['active'])
            changes['account_type'] = account_type
            changes['category'] = category

            changed = {key: value for key, value in changes.items()
                       if getattr(account, key) != value}
            if not changed:
                return account

            previous_type = account.account_type
            postings = self._posting_count(code) if self._posting_count else 0
            account = replace(account, updated_at=datetime.now(timezone.utc), **changed)
            metadata = {"changes": changed}
            if "account_type" in changed and postings:
                # Posted history is re-signed and moves statement section
                metadata["previous_account_type"] = previous_type
                metadata["postings"] = postings
            with self._persisting():
                self.storage.save(self.table_name, code, account.to_dict())
                self.audit_trail.log_event(
                    event_type=AuditEventType.ACCOUNT_UPDATED,
                    entity_type="account",
                    entity_id=code,
                    metadata=metadata
                )
            self._accounts[code] = account

        if "previous_account_type" in metadata:
            log_action(logger, "warning",
                       f"Account {code} changed type from {previous_type.value} to "
                       f"{account.account_type.value} with {postings} posted entries",
                       action="update_account", resource=f"account:{code}",
                       extra={"previous_account_type": previous_type.value,
                              "account_type": account.account_type.value,
                              "postings": postings})

        log_action(logger, "info", f"Updated account {code}",
                   action="update_account", resource=f"account:{code}",
                   extra={"fields": sorted(changed)})
        self._publish(DomainEvent.ACCOUNT_UPDATED, account)
        return account

    def deactivate_or_delete(self, code: str) -> DeactivationResult:
        """
        Remove an account from use

        Accounts without postings are hard-deleted. Accounts with postings are
        only deactivated so they remain resolvable for historical reporting.

        Raises:
            AccountNotFoundError: If the account does not exist
        """
        with self._write_guard():
            account = self.get_account(code)
            postings = self._posting_count(code) if self._posting_count else 0

            if postings == 0:
                action, event_type, domain_event = (
                    "deleted", AuditEventType.ACCOUNT_DELETED, DomainEvent.ACCOUNT_DELETED)
            else:
                account = replace(account, active=False,
                                  updated_at=datetime.now(timezone.utc))
                action, event_type, domain_event = (
                    "deactivated", AuditEventType.ACCOUNT_DEACTIVATED,
                    DomainEvent.ACCOUNT_DEACTIVATED)

            with self._persisting():
                if postings == 0:
                    self.storage.delete(self.table_name, code)
                else:
                    self.storage.save(self.table_name, code, account.to_dict())
                self.audit_trail.log_event(
                    event_type=event_type,
                    entity_type="account",
                    entity_id=code,
                    metadata={"postings": postings}
                )

            if postings == 0:
                del self._accounts[code]
            else:
                self._accounts[code] = account

        log_action(logger, "info", f"Account {code} {action}",
                   action="deactivate_or_delete", resource=f"account:{code}",
                   extra={"postings": postings})
        self._publish(domain_event, account)
        return DeactivationResult(code=code, action=action, account=account)

    def get_account(self, code: str) -> Account:
        """Get an account by code"""
        account = self._accounts.get(code)
        if account is None:
            raise AccountNotFoundError(code)
        return account

    def find_account(self, code: str) -> Optional[Account]:
        """Get an account by code, or None"""
        return self._accounts.get(code)

    def list_accounts(
        self,
        account_type: Union[AccountType, str, None] = None,
        active_only: bool = False
    ) -> List[Account]:
        """List accounts sorted by code, optionally filtered"""
        if account_type is not None:
            account_type = _coerce_enum(AccountType, account_type, 'account_type')
        with self._lock:
            accounts = list(self._accounts.values())
        if account_type is not None:
            accounts = [a for a in accounts if a.account_type == account_type]
        if active_only:
            accounts = [a for a in accounts if a.active]
        return sorted(accounts, key=lambda a: a.code)

    def exists(self, code: str) -> bool:
        return code in self._accounts

    def is_postable(self, code: str) -> bool:
        """True iff the account exists and is active"""
        account = self._accounts.get(code)
        return account is not None and account.active

    def seed_default_chart(self) -> List[Account]:
        """
        Load the default Chilean chart of accounts

        Codes already registered are left untouched.

        Returns:
            Accounts created by this call
        """
        created = []
        for code, name, account_type, category in DEFAULT_CHART:
            if code not in self._accounts:
                created.append(self.create_account(code, name, account_type, category))
        return created

    def _check_parent(self, code: str, parent_code: str) -> None:
        if parent_code == code:
            raise ValidationError("Account cannot be its own parent",
                                  details={'field': 'parent_code'})
        if parent_code not in self._accounts:
            raise AccountNotFoundError(parent_code)

    def _publish(self, event_type: DomainEvent, account: Account) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(EventPayload(
                event_type=event_type,
                entity_type="account",
                entity_id=account.code,
                data={
                    "name": account.name,
                    "account_type": account.account_type.value,
                    "category": account.category.value,
                    "active": account.active
                }
            ))


_A, _L, _E, _R, _X = (AccountType.ASSET, AccountType.LIABILITY, AccountType.EQUITY,
                      AccountType.REVENUE, AccountType.EXPENSE)
_CUR, _FIX, _LT, _OTH = (AccountCategory.CURRENT, AccountCategory.FIXED,
                         AccountCategory.LONG_TERM, AccountCategory.OTHER)

# Plan de cuentas (Chilean convention): first digit gives the account class
DEFAULT_CHART = (
    ('1101', 'Caja', _A, _CUR),
    ('1102', 'Banco Cuenta Corriente', _A, _CUR),
    ('1103', 'Banco Cuenta de Ahorro', _A, _CUR),
    ('1201', 'Cuentas por Cobrar Clientes', _A, _CUR),
    ('1202', 'Documentos por Cobrar', _A, _CUR),
    ('1301', 'Mercaderías', _A, _CUR),
    ('1302', 'Materiales', _A, _CUR),
    ('1303', 'Productos en Proceso', _A, _CUR),
    ('1304', 'Productos Terminados', _A, _CUR),
    ('1401', 'Muebles y Útiles', _A, _FIX),
    ('1402', 'Equipos de Computación', _A, _FIX),
    ('1403', 'Maquinarias', _A, _FIX),
    ('1404', 'Vehículos', _A, _FIX),
    ('1501', 'Depreciación Acumulada Muebles', _A, _FIX),
    ('1502', 'Depreciación Acumulada Equipos', _A, _FIX),
    ('1503', 'Depreciación Acumulada Maquinarias', _A, _FIX),
    ('1504', 'Depreciación Acumulada Vehículos', _A, _FIX),
    ('2101', 'Cuentas por Pagar Proveedores', _L, _CUR),
    ('2102', 'Documentos por Pagar', _L, _LT),
    ('2103', 'Remuneraciones por Pagar', _L, _CUR),
    ('2104', 'Cotizaciones Previsionales por Pagar', _L, _CUR),
    ('2105', 'IVA Crédito Fiscal', _L, _CUR),
    ('2106', 'Retenciones por Pagar', _L, _CUR),
    ('3101', 'Capital', _E, _OTH),
    ('3102', 'Reservas', _E, _OTH),
    ('3201', 'Utilidades del Ejercicio', _E, _OTH),
    ('3202', 'Pérdidas del Ejercicio', _E, _OTH),
    ('4101', 'Ventas de Servicios', _R, _OTH),
    ('4102', 'Ventas de Productos', _R, _OTH),
    ('5101', 'Costo de Ventas Servicios', _X, _OTH),
    ('5102', 'Costo de Ventas Productos', _X, _OTH),
    ('6101', 'Gastos de Administración', _X, _OTH),
    ('6102', 'Gastos de Ventas', _X, _OTH),
    ('6103', 'Gastos Financieros', _X, _OTH),
    ('7101', 'Otros Ingresos', _R, _OTH),
    ('7102', 'Ingresos Financieros', _R, _OTH),
)
