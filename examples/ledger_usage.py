#!/usr/bin/env python3
"""
Example: Running a month of bookkeeping through the accounting service

Loads the default chart, posts opening balances and a handful of business
events, then prints the resulting statements.
"""

import json
import os
import sys

# Add the package to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from core_accounting.config import LedgerConfig
from core_accounting.exceptions import JournalValidationError
from core_accounting.logging_config import setup_logging_from_config
from core_accounting.service import AccountingService
from core_accounting.translators import (
    ExpenseEvent, InvoiceEvent, PaymentEvent, PurchaseInvoiceEvent, TransactionKind
)


def main():
    print("Core Accounting - Monthly Bookkeeping Example")
    print("=" * 60)

    # 1. Configuration
    print("\n1. Configuration Setup")
    config = LedgerConfig(database_url="memory://", seed_default_chart=True,
                          log_format="text", log_level="WARNING")
    setup_logging_from_config(config)
    print(f"   Database URL: {config.database_url}")
    print(f"   Balance tolerance: {config.tolerance}")

    # 2. Service
    print("\n2. Service Initialization")
    service = AccountingService.from_config(config)
    print(f"   Accounts in chart: {len(service.list_accounts())}")

    # 3. Opening balances
    print("\n3. Opening Balances")
    opening = service.post_opening_balances("2024-01-01", {
        "1102": "5000000",
        "1403": "3000000",
        "2102": "2000000",
    })
    print(f"   Entry {opening.id}: {opening.reference} ({opening.total_debit})")

    # 4. Business events
    print("\n4. Business Events")
    invoice = InvoiceEvent("F-001", "2024-01-15", "Constructora Andes",
                           "100000", "19000", "119000")
    entries = [
        service.record_transaction(TransactionKind.INVOICE, invoice),
        service.record_transaction(TransactionKind.INVOICE_PAYMENT, invoice,
                                   PaymentEvent(date="2024-01-25", method="transferencia")),
        service.record_transaction(TransactionKind.PURCHASE_INVOICE, PurchaseInvoiceEvent(
            "FC-310", "2024-01-18", "Ferretería Central", "50000", "9500", "59500",
            item_descriptions=("Cemento 25kg", "Arena gruesa", "Clavos 3\"")
        )),
        service.record_transaction(TransactionKind.EXPENSE, ExpenseEvent(
            "Arriendo oficina", "2024-01-31", "300000", category="administrative",
            payment_method="transferencia"
        )),
    ]
    for entry in entries:
        print(f"   Entry {entry.id}: {entry.reference} - {entry.description}")

    # 5. Rejected entry
    print("\n5. Validation")
    try:
        service.post_entry("2024-01-31", "AJ-1", "Ajuste descuadrado", [
            {"account_code": "1101", "debit": 1000},
            {"account_code": "4101", "credit": 900},
        ])
    except JournalValidationError as e:
        for issue in e.issues:
            print(f"   Rejected ({issue.code.value}): {issue.message}")

    # 6. Statements
    print("\n6. Statements")
    sheet = service.get_balance_sheet()
    statement = service.get_income_statement("2024-01-01", "2024-01-31")
    print(json.dumps(sheet.to_dict()['totals'], indent=2))
    print(json.dumps(statement.to_dict()['totals'], indent=2))
    print(f"   Trial balance balanced: {service.get_trial_balance().balanced}")

    # 7. Integrity
    print("\n7. Integrity Check")
    report = service.check_integrity()
    print(f"   Audit chain valid: {report['audit']['valid']}")
    print(f"   Rollup repaired: {report['rollup_repaired']}")

    service.close()
    print("\nExample completed")
    print("=" * 60)


if __name__ == "__main__":
    main()
