"""
Transaction-to-Entry Translators

Pure functions that turn business events into balanced journal entries.
Both sides of every entry are computed from the same subtotal/tax/total
figures, so an entry produced here balances by construction. Figures that
do not add up are rejected instead of producing an unbalanced entry.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from .amounts import ZERO, to_amount, within_tolerance
from .classifier import (
    CATEGORY_TO_ACCOUNT, ClassificationSuggestion, PurchaseCategory, classify_purchase,
    resolve_purchase_account,
)
from .entries import DateLike, JournalLine, ProposedEntry, to_date
from .exceptions import ValidationError


class TransactionKind(Enum):
    """Business events that produce journal entries"""
    INVOICE = "invoice"
    INVOICE_PAYMENT = "invoice_payment"
    PURCHASE_ORDER = "purchase_order"
    SUPPLIER_PAYMENT = "supplier_payment"
    INVENTORY = "inventory"
    EXPENSE = "expense"
    PURCHASE_INVOICE = "purchase_invoice"


class MovementType(Enum):
    PURCHASE = "purchase"
    SALE = "sale"
    ADJUSTMENT = "adjustment"


BANK_METHODS = frozenset({'transferencia', 'transfer'})


@dataclass(frozen=True)
class AccountMapping:
    """Fixed accounts used by the translators"""
    cash: str = '1101'               # Caja
    bank: str = '1102'               # Banco Cuenta Corriente
    receivables: str = '1201'        # Cuentas por Cobrar Clientes
    sales: str = '4101'              # Ventas de Servicios
    vat: str = '2105'                # IVA
    payables: str = '2101'           # Cuentas por Pagar Proveedores
    materials: str = '1302'          # Materiales
    equipment: str = '1403'          # Maquinarias
    cost_of_sales: str = '5102'      # Costo de Ventas Productos
    inventory_adjustment: str = '7101'  # Otros Ingresos
    default_expense: str = '6101'    # Gastos de Administración
    expense_accounts: Dict[str, str] = field(default_factory=lambda: {
        'administrative': '6101',
        'sales': '6102',
        'financial': '6103',
        'materials': '5101',
        'labor': '5101',
        'equipment': '5101',
        'other': '6101',
    })

    def settlement_account(self, method: Optional[str]) -> str:
        """Bank for transfers, cash for everything else"""
        return self.bank if (method or '').lower() in BANK_METHODS else self.cash

    def expense_account(self, category: Optional[str]) -> str:
        return self.expense_accounts.get(category or 'other', self.default_expense)

    def purchase_account(self, category: PurchaseCategory) -> str:
        if category == PurchaseCategory.MATERIALS:
            return self.materials
        if category == PurchaseCategory.EQUIPMENT:
            return self.equipment
        return CATEGORY_TO_ACCOUNT.get(category, self.default_expense)


DEFAULT_MAPPING = AccountMapping()


def _amount(value, name: str, reference: str, allow_negative: bool = False) -> Decimal:
    try:
        amount = to_amount(value)
    except ValueError:
        raise ValidationError(f"{reference}: invalid {name} {value!r}",
                              details={'field': name, 'reference': reference})
    if amount < ZERO and not allow_negative:
        raise ValidationError(f"{reference}: {name} cannot be negative",
                              details={'field': name, 'reference': reference})
    return amount


def _date(value, reference: str):
    try:
        return to_date(value)
    except ValueError:
        raise ValidationError(f"{reference}: invalid date {value!r}",
                              details={'field': 'date', 'reference': reference})


def _check_totals(reference: str, subtotal: Decimal, tax: Decimal, total: Decimal) -> None:
    if total == ZERO:
        raise ValidationError(f"{reference}: total must be greater than zero",
                              details={'reference': reference})
    if not within_tolerance(subtotal + tax, total):
        raise ValidationError(
            f"{reference}: subtotal {subtotal} + tax {tax} does not equal total {total}",
            details={'reference': reference, 'subtotal': str(subtotal),
                     'tax': str(tax), 'total': str(total)}
        )


def _generated_reference(prefix: str, event_id: Optional[str], when) -> str:
    return f"{prefix}-{event_id}" if event_id else f"{prefix}-{when.isoformat()}"


def _nonzero(*lines: JournalLine) -> Tuple[JournalLine, ...]:
    # Exempt documents have no tax line
    return tuple(line for line in lines if line.amount != ZERO)


class _Document:
    """Mixin for taxed documents carrying subtotal, tax and total"""

    def _normalise(self, reference: str) -> None:
        object.__setattr__(self, 'date', _date(self.date, reference))
        for name in ('subtotal', 'tax', 'total'):
            object.__setattr__(self, name, _amount(getattr(self, name), name, reference))
        _check_totals(reference, self.subtotal, self.tax, self.total)


@dataclass(frozen=True)
class InvoiceEvent(_Document):
    invoice_number: str
    date: DateLike
    client_name: str
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    id: Optional[str] = None

    def __post_init__(self):
        self._normalise(self.invoice_number)


@dataclass(frozen=True)
class PaymentEvent:
    """
    Settlement of an invoice or a purchase order

    amount defaults to the full document total.
    """
    date: DateLike
    method: str = 'efectivo'
    reference: Optional[str] = None
    amount: Optional[Decimal] = None
    id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'date', _date(self.date, self.reference or 'payment'))
        if self.amount is not None:
            object.__setattr__(self, 'amount',
                               _amount(self.amount, 'amount', self.reference or 'payment'))


@dataclass(frozen=True)
class PurchaseOrderEvent(_Document):
    order_number: str
    date: DateLike
    supplier_name: str
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    received: bool = True
    id: Optional[str] = None

    def __post_init__(self):
        self._normalise(self.order_number)


@dataclass(frozen=True)
class InventoryMovementEvent:
    """total_cost is signed for adjustments: positive gain, negative shrinkage"""
    movement_type: MovementType
    date: DateLike
    product_name: str
    total_cost: Decimal
    document_number: Optional[str] = None
    id: Optional[str] = None

    def __post_init__(self):
        try:
            object.__setattr__(self, 'movement_type', MovementType(self.movement_type))
        except ValueError:
            raise ValidationError(f"Unknown inventory movement type {self.movement_type!r}",
                                  details={'field': 'movement_type'})
        object.__setattr__(self, 'date', _date(self.date, self.product_name))
        object.__setattr__(self, 'total_cost', _amount(
            self.total_cost, 'total_cost', self.product_name,
            allow_negative=self.movement_type == MovementType.ADJUSTMENT))


@dataclass(frozen=True)
class ExpenseEvent:
    description: str
    date: DateLike
    total: Decimal
    category: str = 'other'
    payment_method: str = 'efectivo'
    reference: Optional[str] = None
    id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'date', _date(self.date, self.description))
        total = _amount(self.total, 'total', self.reference or self.description)
        if total == ZERO:
            raise ValidationError(f"{self.description}: total must be greater than zero",
                                  details={'field': 'total'})
        object.__setattr__(self, 'total', total)


@dataclass(frozen=True)
class PurchaseInvoiceEvent(_Document):
    """
    Approved supplier invoice

    category and account_code are optional; when account_code is missing
    the account comes from the category, or from the classifier when the
    category is missing too.
    """
    invoice_number: str
    date: DateLike
    supplier_name: str
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    category: Optional[str] = None
    account_code: Optional[str] = None
    item_descriptions: Tuple[str, ...] = ()
    supplier_type: Optional[str] = None
    id: Optional[str] = None

    def __post_init__(self):
        self._normalise(self.invoice_number)
        object.__setattr__(self, 'item_descriptions', tuple(self.item_descriptions))
        if self.category is not None:
            try:
                PurchaseCategory(self.category)
            except ValueError:
                raise ValidationError(f"Unknown purchase category {self.category!r}",
                                      details={'field': 'category'})


def invoice_issued(invoice: InvoiceEvent, mapping: AccountMapping = DEFAULT_MAPPING) -> ProposedEntry:
    """Dr receivables (total) / Cr sales (subtotal) / Cr VAT (tax)"""
    number = invoice.invoice_number
    return ProposedEntry(
        date=invoice.date,
        reference=number,
        description=f"Factura {number} - {invoice.client_name}",
        lines=_nonzero(
            JournalLine.debit_line(mapping.receivables, invoice.total,
                                   f"Factura {number} - {invoice.client_name}"),
            JournalLine.credit_line(mapping.sales, invoice.subtotal,
                                    f"Venta de servicios - Factura {number}"),
            JournalLine.credit_line(mapping.vat, invoice.tax, f"IVA Factura {number}"),
        ),
        reference_type=TransactionKind.INVOICE.value,
        reference_id=invoice.id
    )


def invoice_paid(invoice: InvoiceEvent, payment: PaymentEvent,
                 mapping: AccountMapping = DEFAULT_MAPPING) -> ProposedEntry:
    """Dr bank or cash / Cr receivables"""
    number = invoice.invoice_number
    amount = payment.amount if payment.amount is not None else invoice.total
    return ProposedEntry(
        date=payment.date,
        reference=payment.reference or f"PAY-{number}",
        description=f"Pago Factura {number}",
        lines=(
            JournalLine.debit_line(mapping.settlement_account(payment.method), amount,
                                   f"Pago Factura {number}"),
            JournalLine.credit_line(mapping.receivables, amount,
                                    f"Pago Factura {number} - {invoice.client_name}"),
        ),
        reference_type=TransactionKind.INVOICE_PAYMENT.value,
        reference_id=payment.id
    )


def purchase_order_received(order: PurchaseOrderEvent,
                            mapping: AccountMapping = DEFAULT_MAPPING) -> Optional[ProposedEntry]:
    """
    Dr materials (subtotal) / Dr VAT credit (tax) / Cr payables (total)

    An order that has not been received is only a commitment and has no
    accounting effect, so no entry is produced.
    """
    if not order.received:
        return None
    number = order.order_number
    return ProposedEntry(
        date=order.date,
        reference=number,
        description=f"Orden de Compra {number}",
        lines=_nonzero(
            JournalLine.debit_line(mapping.materials, order.subtotal,
                                   f"Materiales de Orden {number}"),
            JournalLine.debit_line(mapping.vat, order.tax, f"IVA Crédito Fiscal Orden {number}"),
            JournalLine.credit_line(mapping.payables, order.total,
                                    f"Orden de Compra {number} - {order.supplier_name}"),
        ),
        reference_type=TransactionKind.PURCHASE_ORDER.value,
        reference_id=order.id
    )


def supplier_paid(order: PurchaseOrderEvent, payment: PaymentEvent,
                  mapping: AccountMapping = DEFAULT_MAPPING) -> ProposedEntry:
    """Dr payables / Cr bank or cash"""
    number = order.order_number
    amount = payment.amount if payment.amount is not None else order.total
    return ProposedEntry(
        date=payment.date,
        reference=payment.reference or f"PAY-{number}",
        description=f"Pago Orden {number}",
        lines=(
            JournalLine.debit_line(mapping.payables, amount, f"Pago Orden {number}"),
            JournalLine.credit_line(mapping.settlement_account(payment.method), amount,
                                    f"Pago a {order.supplier_name} - Orden {number}"),
        ),
        reference_type=TransactionKind.SUPPLIER_PAYMENT.value,
        reference_id=payment.id
    )


def inventory_movement(movement: InventoryMovementEvent,
                       mapping: AccountMapping = DEFAULT_MAPPING) -> Optional[ProposedEntry]:
    """
    purchase:   Dr inventory / Cr payables
    sale:       Dr cost of sales / Cr inventory
    adjustment: gain Dr inventory / Cr adjustment account, loss the reverse;
                a zero adjustment produces no entry
    """
    product = movement.product_name
    cost = movement.total_cost
    kind = movement.movement_type

    if kind == MovementType.ADJUSTMENT:
        if cost == ZERO:
            return None
        reference = movement.document_number or _generated_reference("ADJ", movement.id, movement.date)
        amount = abs(cost)
        if cost > ZERO:
            lines = (JournalLine.debit_line(mapping.materials, amount, f"Ajuste {product}"),
                     JournalLine.credit_line(mapping.inventory_adjustment, amount,
                                             f"Ajuste de inventario {product}"))
        else:
            lines = (JournalLine.debit_line(mapping.inventory_adjustment, amount,
                                            f"Ajuste de inventario {product}"),
                     JournalLine.credit_line(mapping.materials, amount, f"Ajuste {product}"))
        description = f"Ajuste de Inventario - {product}"
    else:
        if cost == ZERO:
            raise ValidationError(f"{product}: total_cost must be greater than zero",
                                  details={'field': 'total_cost'})
        reference = movement.document_number or _generated_reference("INV", movement.id, movement.date)
        if kind == MovementType.PURCHASE:
            lines = (JournalLine.debit_line(mapping.materials, cost, f"Compra {product}"),
                     JournalLine.credit_line(mapping.payables, cost, f"Compra {product}"))
            description = f"Compra de Inventario - {product}"
        else:
            lines = (JournalLine.debit_line(mapping.cost_of_sales, cost,
                                            f"Costo de venta {product}"),
                     JournalLine.credit_line(mapping.materials, cost,
                                             f"Salida de inventario {product}"))
            description = f"Venta de Inventario - {product}"

    return ProposedEntry(
        date=movement.date,
        reference=reference,
        description=description,
        lines=lines,
        reference_type=TransactionKind.INVENTORY.value,
        reference_id=movement.id
    )


def expense_recorded(expense: ExpenseEvent,
                     mapping: AccountMapping = DEFAULT_MAPPING) -> ProposedEntry:
    """Dr expense account for the category / Cr bank or cash"""
    reference = expense.reference or _generated_reference("EXP", expense.id, expense.date)
    return ProposedEntry(
        date=expense.date,
        reference=reference,
        description=expense.description,
        lines=(
            JournalLine.debit_line(mapping.expense_account(expense.category), expense.total,
                                   expense.description),
            JournalLine.credit_line(mapping.settlement_account(expense.payment_method),
                                    expense.total, f"Pago gasto {expense.description}"),
        ),
        reference_type=TransactionKind.EXPENSE.value,
        reference_id=expense.id
    )


def purchase_invoice_account(invoice: PurchaseInvoiceEvent,
                             mapping: AccountMapping = DEFAULT_MAPPING
                             ) -> Tuple[str, Optional[ClassificationSuggestion]]:
    """
    Account a purchase invoice is charged to

    Returns:
        (account_code, suggestion); suggestion is None unless the
        classifier had to be consulted
    """
    if invoice.account_code:
        return invoice.account_code, None
    if invoice.category is not None:
        return mapping.purchase_account(PurchaseCategory(invoice.category)), None
    suggestion = classify_purchase(invoice.item_descriptions, invoice.supplier_type)
    account, _ = resolve_purchase_account(None, suggestion)
    return account, suggestion


def purchase_invoice_approved(invoice: PurchaseInvoiceEvent,
                              mapping: AccountMapping = DEFAULT_MAPPING) -> ProposedEntry:
    """Dr inventory/asset/expense (subtotal) / Dr VAT credit (tax) / Cr payables (total)"""
    number = invoice.invoice_number
    account, _ = purchase_invoice_account(invoice, mapping)
    return ProposedEntry(
        date=invoice.date,
        reference=number,
        description=f"Factura de Compra {number} - {invoice.supplier_name}",
        lines=_nonzero(
            JournalLine.debit_line(account, invoice.subtotal,
                                   f"Factura Compra {number} - {invoice.supplier_name}"),
            JournalLine.debit_line(mapping.vat, invoice.tax,
                                   f"IVA Crédito Fiscal Factura {number}"),
            JournalLine.credit_line(mapping.payables, invoice.total,
                                    f"Factura Compra {number} - {invoice.supplier_name}"),
        ),
        reference_type=TransactionKind.PURCHASE_INVOICE.value,
        reference_id=invoice.id
    )


TRANSLATORS: Dict[TransactionKind, Callable[..., Optional[ProposedEntry]]] = {
    TransactionKind.INVOICE: invoice_issued,
    TransactionKind.INVOICE_PAYMENT: invoice_paid,
    TransactionKind.PURCHASE_ORDER: purchase_order_received,
    TransactionKind.SUPPLIER_PAYMENT: supplier_paid,
    TransactionKind.INVENTORY: inventory_movement,
    TransactionKind.EXPENSE: expense_recorded,
    TransactionKind.PURCHASE_INVOICE: purchase_invoice_approved,
}


def translate(kind, *events, mapping: AccountMapping = DEFAULT_MAPPING) -> Optional[ProposedEntry]:
    """
    Translate a business event by kind

    Two-part events take both parts, e.g.
    translate(TransactionKind.INVOICE_PAYMENT, invoice, payment).

    Returns:
        The proposed entry, or None when the event has no accounting effect
    """
    try:
        kind = TransactionKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown transaction kind {kind!r}",
                              details={'field': 'kind'})
    return TRANSLATORS[kind](*events, mapping=mapping)
