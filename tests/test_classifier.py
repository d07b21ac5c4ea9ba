"""
Test suite for the purchase classifier
"""

import pytest

from core_accounting.classifier import (
    PurchaseCategory, classify_item, classify_purchase, resolve_purchase_account
)


class TestClassifyItem:
    """Test single-description keyword matching"""

    @pytest.mark.parametrize("description,account,category", [
        ("Cemento Polpaico 25kg", "1302", PurchaseCategory.MATERIALS),
        ("Servicio de grúa", "6101", PurchaseCategory.SERVICES),
        ("Arriendo de maquinaria pesada", "1403", PurchaseCategory.EQUIPMENT),
        ("Herramienta eléctrica", "1402", PurchaseCategory.EQUIPMENT),
        ("Combustible diésel", "6103", PurchaseCategory.EXPENSES),
    ])
    def test_keywords(self, description, account, category):
        item = classify_item(description)
        assert item.account_code == account
        assert item.category == category

    def test_accents_are_ignored(self):
        """Test that unaccented spellings still match accented keywords"""
        assert classify_item("REPARACION de techumbre").keyword == "reparación"
        assert classify_item("Vehiculo utilitario").account_code == "1404"

    def test_first_keyword_wins(self):
        # "material" is checked before "oficina"
        assert classify_item("Material de oficina").account_code == "1302"

    def test_no_match(self):
        assert classify_item("Bebidas") is None
        assert classify_item("") is None


class TestClassifyPurchase:
    """Test purchase-level suggestions"""

    def test_supplier_type_decides(self):
        suggestion = classify_purchase(["Cemento"], supplier_type="tools")

        assert suggestion.category == PurchaseCategory.EQUIPMENT
        assert suggestion.account_code == "1402"
        assert suggestion.source == "supplier_type"
        assert suggestion.confidence == 0.9

    def test_unknown_supplier_type_falls_back_to_keywords(self):
        suggestion = classify_purchase(["Cemento"], supplier_type="retail")
        assert suggestion.source == "keywords"

    def test_majority_materials(self):
        suggestion = classify_purchase(["Cemento", "Arena fina", "Servicio de flete", "Clavos"])

        assert suggestion.category == PurchaseCategory.MATERIALS
        assert suggestion.account_code == "1302"
        assert suggestion.matched_keywords == ("cemento", "arena")
        assert suggestion.confidence == 0.5
        assert len(suggestion.items) == 3

    def test_tie_is_not_materials(self):
        """Test materials must strictly outnumber every other group"""
        suggestion = classify_purchase(["Cemento", "Servicio de flete"])
        assert suggestion.category == PurchaseCategory.SERVICES

    def test_equipment_beats_expenses(self):
        suggestion = classify_purchase(["Equipo de soldar", "Maquinaria", "Combustible"])
        assert suggestion.category == PurchaseCategory.EQUIPMENT
        assert suggestion.account_code == "1403"

    def test_expenses(self):
        suggestion = classify_purchase(["Combustible"])
        assert suggestion.category == PurchaseCategory.EXPENSES
        assert suggestion.account_code == "6103"
        assert suggestion.confidence == 1.0

    def test_default_when_nothing_matches(self):
        suggestion = classify_purchase(["Bebidas", "Snacks"])

        assert suggestion.category == PurchaseCategory.OTHER
        assert suggestion.account_code == "6101"
        assert suggestion.confidence == 0.0
        assert suggestion.source == "default"

    def test_no_items(self):
        assert classify_purchase([]).source == "default"


class TestResolvePurchaseAccount:
    """Test that explicit codes are never overridden"""

    def test_explicit_code_wins(self):
        suggestion = classify_purchase(["Cemento"])
        assert resolve_purchase_account("6102", suggestion) == ("6102", "explicit")

    def test_suggestion_used_without_explicit_code(self):
        suggestion = classify_purchase(["Cemento"])
        assert resolve_purchase_account(None, suggestion) == ("1302", "suggested")
        assert resolve_purchase_account("", suggestion) == ("1302", "suggested")
