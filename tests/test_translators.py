"""
Test suite for transaction translators

Tests that every business event becomes a balanced journal entry on the
right accounts, and that inconsistent figures are rejected.
"""

import pytest
from dataclasses import replace
from decimal import Decimal
from datetime import date

from core_accounting.classifier import PurchaseCategory
from core_accounting.exceptions import ValidationError
from core_accounting.translators import (
    DEFAULT_MAPPING, AccountMapping, ExpenseEvent, InventoryMovementEvent, InvoiceEvent,
    MovementType, PaymentEvent, PurchaseInvoiceEvent, PurchaseOrderEvent, TransactionKind,
    expense_recorded, inventory_movement, invoice_issued, invoice_paid,
    purchase_invoice_account, purchase_invoice_approved, purchase_order_received,
    supplier_paid, translate,
)


def _lines(entry):
    return [(line.account_code, line.debit, line.credit) for line in entry.lines]


def _balanced(entry):
    return entry.total_debit == entry.total_credit


INVOICE = InvoiceEvent(invoice_number="F-001", date="2024-01-15", client_name="Constructora Sur",
                       subtotal="100000", tax="19000", total="119000", id="inv-1")
ORDER = PurchaseOrderEvent(order_number="OC-010", date="2024-01-20", supplier_name="Ferretería Norte",
                           subtotal="50000", tax="9500", total="59500", id="po-10")


class TestEvents:
    """Test event normalisation and consistency checks"""

    def test_amounts_and_date_normalised(self):
        assert INVOICE.total == Decimal('119000.00')
        assert INVOICE.date == date(2024, 1, 15)

    def test_totals_must_add_up(self):
        with pytest.raises(ValidationError, match="does not equal total"):
            InvoiceEvent("F-002", "2024-01-15", "Cliente", subtotal="100", tax="19", total="120")

    def test_one_cent_rounding_accepted(self):
        event = InvoiceEvent("F-003", "2024-01-15", "Cliente",
                             subtotal="100.00", tax="19.01", total="119.00")
        assert event.total == Decimal('119.00')

    def test_negative_amounts_rejected(self):
        with pytest.raises(ValidationError, match="cannot be negative"):
            InvoiceEvent("F-004", "2024-01-15", "Cliente", subtotal="-100", tax="0", total="-100")

    def test_zero_total_rejected(self):
        with pytest.raises(ValidationError, match="greater than zero"):
            PurchaseOrderEvent("OC-1", "2024-01-15", "Proveedor", subtotal="0", tax="0", total="0")

    def test_invalid_date_rejected(self):
        with pytest.raises(ValidationError, match="invalid date"):
            InvoiceEvent("F-005", "mañana", "Cliente", subtotal="1", tax="0", total="1")

    def test_invalid_amount_rejected(self):
        with pytest.raises(ValidationError, match="invalid amount"):
            PaymentEvent(date="2024-01-15", amount="mucho")

    def test_unknown_purchase_category(self):
        with pytest.raises(ValidationError, match="Unknown purchase category"):
            PurchaseInvoiceEvent("FC-1", "2024-01-15", "Proveedor", "10", "0", "10",
                                 category="snacks")


class TestSalesTranslators:
    """Test invoice and customer payment entries"""

    def test_invoice_issued(self):
        entry = invoice_issued(INVOICE)

        assert entry.reference == "F-001"
        assert entry.reference_type == "invoice"
        assert entry.reference_id == "inv-1"
        assert _lines(entry) == [
            ("1201", Decimal('119000.00'), Decimal('0')),
            ("4101", Decimal('0'), Decimal('100000.00')),
            ("2105", Decimal('0'), Decimal('19000.00')),
        ]
        assert _balanced(entry)

    def test_exempt_invoice_has_no_tax_line(self):
        exempt = InvoiceEvent("F-006", "2024-01-15", "Cliente",
                              subtotal="5000", tax="0", total="5000")
        assert [code for code, _, _ in _lines(invoice_issued(exempt))] == ["1201", "4101"]

    @pytest.mark.parametrize("method,account", [
        ("transferencia", "1102"), ("transfer", "1102"), ("efectivo", "1101"), ("cheque", "1101"),
    ])
    def test_invoice_paid_account_by_method(self, method, account):
        entry = invoice_paid(INVOICE, PaymentEvent(date="2024-02-01", method=method))

        assert _lines(entry) == [
            (account, Decimal('119000.00'), Decimal('0')),
            ("1201", Decimal('0'), Decimal('119000.00')),
        ]
        assert entry.reference == "PAY-F-001"
        assert entry.date == date(2024, 2, 1)

    def test_partial_payment(self):
        payment = PaymentEvent(date="2024-02-01", method="transferencia", amount="50000",
                               reference="TRX-99", id="pay-1")
        entry = invoice_paid(INVOICE, payment)

        assert entry.total_debit == Decimal('50000.00')
        assert entry.reference == "TRX-99"
        assert entry.reference_id == "pay-1"


class TestPurchaseTranslators:
    """Test purchase order, supplier payment and purchase invoice entries"""

    def test_purchase_order_received(self):
        entry = purchase_order_received(ORDER)

        assert _lines(entry) == [
            ("1302", Decimal('50000.00'), Decimal('0')),
            ("2105", Decimal('9500.00'), Decimal('0')),
            ("2101", Decimal('0'), Decimal('59500.00')),
        ]
        assert entry.reference_type == "purchase_order"

    def test_pending_order_has_no_entry(self):
        assert purchase_order_received(replace(ORDER, received=False)) is None

    def test_supplier_paid(self):
        entry = supplier_paid(ORDER, PaymentEvent(date="2024-02-10", method="transferencia"))
        assert _lines(entry) == [
            ("2101", Decimal('59500.00'), Decimal('0')),
            ("1102", Decimal('0'), Decimal('59500.00')),
        ]

    @pytest.mark.parametrize("category,account", [
        ("materials", "1302"), ("equipment", "1403"), ("services", "6101"),
        ("expenses", "6101"), ("other", "6101"),
    ])
    def test_purchase_invoice_by_category(self, category, account):
        invoice = PurchaseInvoiceEvent("FC-1", "2024-01-25", "Proveedor",
                                       "1000", "190", "1190", category=category)
        entry = purchase_invoice_approved(invoice)

        assert _lines(entry) == [
            (account, Decimal('1000.00'), Decimal('0')),
            ("2105", Decimal('190.00'), Decimal('0')),
            ("2101", Decimal('0'), Decimal('1190.00')),
        ]

    def test_explicit_account_always_wins(self):
        invoice = PurchaseInvoiceEvent("FC-2", "2024-01-25", "Proveedor", "1000", "190", "1190",
                                       category="materials", account_code="1401",
                                       item_descriptions=("Cemento",))
        account, suggestion = purchase_invoice_account(invoice)

        assert account == "1401"
        assert suggestion is None
        assert purchase_invoice_approved(invoice).lines[0].account_code == "1401"

    def test_classifier_used_without_category(self):
        invoice = PurchaseInvoiceEvent("FC-3", "2024-01-25", "Proveedor", "1000", "190", "1190",
                                       item_descriptions=("Cemento", "Arena", "Flete"))
        account, suggestion = purchase_invoice_account(invoice)

        assert account == "1302"
        assert suggestion.category == PurchaseCategory.MATERIALS
        assert suggestion.confidence == pytest.approx(0.67)

    def test_classifier_supplier_type(self):
        invoice = PurchaseInvoiceEvent("FC-4", "2024-01-25", "Proveedor", "1000", "0", "1000",
                                       supplier_type="tools")
        entry = purchase_invoice_approved(invoice)
        assert _lines(entry) == [
            ("1402", Decimal('1000.00'), Decimal('0')),
            ("2101", Decimal('0'), Decimal('1000.00')),
        ]


class TestInventoryAndExpenses:
    """Test inventory movement and expense entries"""

    def test_inventory_purchase(self):
        entry = inventory_movement(InventoryMovementEvent(
            "purchase", "2024-01-15", "Cemento", "25000", document_number="GD-1"))

        assert entry.reference == "GD-1"
        assert _lines(entry) == [
            ("1302", Decimal('25000.00'), Decimal('0')),
            ("2101", Decimal('0'), Decimal('25000.00')),
        ]

    def test_inventory_sale(self):
        entry = inventory_movement(InventoryMovementEvent(
            MovementType.SALE, "2024-01-15", "Cemento", "12000", id="mov-7"))

        assert entry.reference == "INV-mov-7"
        assert _lines(entry) == [
            ("5102", Decimal('12000.00'), Decimal('0')),
            ("1302", Decimal('0'), Decimal('12000.00')),
        ]

    def test_adjustment_gain_and_loss(self):
        gain = inventory_movement(InventoryMovementEvent("adjustment", "2024-01-31", "Arena", "500"))
        loss = inventory_movement(InventoryMovementEvent("adjustment", "2024-01-31", "Arena", "-300"))

        assert _lines(gain) == [
            ("1302", Decimal('500.00'), Decimal('0')),
            ("7101", Decimal('0'), Decimal('500.00')),
        ]
        assert _lines(loss) == [
            ("7101", Decimal('300.00'), Decimal('0')),
            ("1302", Decimal('0'), Decimal('300.00')),
        ]

    def test_zero_adjustment_has_no_entry(self):
        assert inventory_movement(InventoryMovementEvent("adjustment", "2024-01-31", "Arena", "0")) is None

    def test_zero_purchase_rejected(self):
        with pytest.raises(ValidationError, match="greater than zero"):
            inventory_movement(InventoryMovementEvent("purchase", "2024-01-31", "Arena", "0"))

    def test_negative_sale_rejected(self):
        with pytest.raises(ValidationError, match="cannot be negative"):
            InventoryMovementEvent("sale", "2024-01-31", "Arena", "-10")

    def test_unknown_movement_type(self):
        with pytest.raises(ValidationError, match="Unknown inventory movement type"):
            InventoryMovementEvent("transfer", "2024-01-31", "Arena", "10")

    @pytest.mark.parametrize("category,account", [
        ("administrative", "6101"), ("sales", "6102"), ("financial", "6103"),
        ("labor", "5101"), ("other", "6101"), ("unlisted", "6101"),
    ])
    def test_expense_accounts(self, category, account):
        entry = expense_recorded(ExpenseEvent("Gasto", "2024-01-15", "10000", category=category))
        assert entry.lines[0].account_code == account
        assert entry.lines[1].account_code == "1101"

    def test_expense_reference(self):
        entry = expense_recorded(ExpenseEvent("Luz", "2024-01-15", "8000",
                                              payment_method="transferencia", id="exp-3"))
        assert entry.reference == "EXP-exp-3"
        assert entry.lines[1].account_code == "1102"

    def test_zero_expense_rejected(self):
        with pytest.raises(ValidationError, match="greater than zero"):
            ExpenseEvent("Nada", "2024-01-15", "0")


class TestTranslate:
    """Test dispatch by transaction kind"""

    def test_dispatch_by_enum_and_value(self):
        assert translate(TransactionKind.INVOICE, INVOICE) == invoice_issued(INVOICE)
        assert translate("invoice", INVOICE) == invoice_issued(INVOICE)

    def test_two_part_events(self):
        payment = PaymentEvent(date="2024-02-01")
        assert translate("invoice_payment", INVOICE, payment) == invoice_paid(INVOICE, payment)

    def test_unknown_kind(self):
        with pytest.raises(ValidationError, match="Unknown transaction kind"):
            translate("payroll", INVOICE)

    def test_custom_mapping(self):
        mapping = AccountMapping(receivables="1202", sales="4102")
        entry = translate("invoice", INVOICE, mapping=mapping)
        assert [line.account_code for line in entry.lines] == ["1202", "4102", "2105"]
        assert DEFAULT_MAPPING.receivables == "1201"

    def test_every_translator_balances(self):
        payment = PaymentEvent(date="2024-02-01")
        entries = [
            translate("invoice", INVOICE),
            translate("invoice_payment", INVOICE, payment),
            translate("purchase_order", ORDER),
            translate("supplier_payment", ORDER, payment),
            translate("inventory", InventoryMovementEvent("sale", "2024-01-15", "X", "10")),
            translate("expense", ExpenseEvent("Gasto", "2024-01-15", "10")),
            translate("purchase_invoice", PurchaseInvoiceEvent(
                "FC-9", "2024-01-15", "Proveedor", "10", "1.9", "11.9")),
        ]
        assert all(_balanced(entry) for entry in entries)
