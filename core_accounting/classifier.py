"""
Purchase Classifier

Best-effort suggestion of a purchase category and account from the supplier
type or from keywords in item descriptions. The result is a suggestion with
a confidence, never an authoritative answer: an account code supplied by the
caller always wins (see resolve_purchase_account).
"""

import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple


class PurchaseCategory(Enum):
    MATERIALS = "materials"
    SERVICES = "services"
    EXPENSES = "expenses"
    EQUIPMENT = "equipment"
    OTHER = "other"


# Suggested account per category when nothing more specific is known
CATEGORY_TO_ACCOUNT = {
    PurchaseCategory.MATERIALS: '1302',   # Materiales
    PurchaseCategory.SERVICES: '6101',    # Gastos de Administración
    PurchaseCategory.EXPENSES: '6101',
    PurchaseCategory.EQUIPMENT: '1403',   # Maquinarias
    PurchaseCategory.OTHER: '6101',
}

# Checked in order; the first keyword found in a description decides the item
KEYWORD_TO_ACCOUNT = (
    # Materiales
    ('cemento', '1302'),
    ('arena', '1302'),
    ('grava', '1302'),
    ('ladrillo', '1302'),
    ('material', '1302'),
    ('acero', '1302'),
    ('hierro', '1302'),
    # Servicios
    ('servicio', '6101'),
    ('mantenimiento', '6101'),
    ('reparación', '6101'),
    ('consultoría', '6101'),
    # Equipos
    ('maquinaria', '1403'),
    ('equipo', '1403'),
    ('herramienta', '1402'),
    ('vehículo', '1404'),
    # Gastos operacionales
    ('combustible', '6103'),
    ('viático', '6101'),
    ('almuerzo', '6101'),
    ('oficina', '6101'),
    ('papelería', '6101'),
)

ACCOUNT_CATEGORY = {
    '1302': PurchaseCategory.MATERIALS,
    '6101': PurchaseCategory.SERVICES,
    '1402': PurchaseCategory.EQUIPMENT,
    '1403': PurchaseCategory.EQUIPMENT,
    '1404': PurchaseCategory.EQUIPMENT,
    '6103': PurchaseCategory.EXPENSES,
}

SUPPLIER_TYPE_SUGGESTION = {
    'materials': (PurchaseCategory.MATERIALS, '1302'),
    'services': (PurchaseCategory.SERVICES, '6101'),
    'tools': (PurchaseCategory.EQUIPMENT, '1402'),
}

SUPPLIER_TYPE_CONFIDENCE = 0.9


@dataclass(frozen=True)
class ItemClassification:
    description: str
    keyword: str
    account_code: str
    category: PurchaseCategory


@dataclass(frozen=True)
class ClassificationSuggestion:
    """Suggested category/account with how much the classifier trusts it"""
    category: PurchaseCategory
    account_code: str
    confidence: float
    source: str  # supplier_type, keywords or default
    matched_keywords: Tuple[str, ...] = ()
    items: Tuple[ItemClassification, ...] = ()


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize('NFKD', text.lower())
    return ''.join(ch for ch in decomposed if not unicodedata.combining(ch))


_FOLDED_KEYWORDS = tuple((_fold(keyword), keyword, account)
                         for keyword, account in KEYWORD_TO_ACCOUNT)


def classify_item(description: str) -> Optional[ItemClassification]:
    """Classify one item description by its first matching keyword"""
    folded = _fold(description or "")
    for folded_keyword, keyword, account in _FOLDED_KEYWORDS:
        if folded_keyword in folded:
            return ItemClassification(description=description, keyword=keyword,
                                      account_code=account,
                                      category=ACCOUNT_CATEGORY[account])
    return None


def classify_purchase(
    item_descriptions: Iterable[str],
    supplier_type: Optional[str] = None
) -> ClassificationSuggestion:
    """
    Suggest a category and account for a purchase

    A known supplier type decides outright. Otherwise items vote by keyword;
    materials must strictly outnumber every other group to win, then
    services, then equipment, then expenses. Confidence is the share of
    items that voted for the winner.
    """
    if supplier_type in SUPPLIER_TYPE_SUGGESTION:
        category, account = SUPPLIER_TYPE_SUGGESTION[supplier_type]
        return ClassificationSuggestion(category=category, account_code=account,
                                        confidence=SUPPLIER_TYPE_CONFIDENCE,
                                        source="supplier_type")

    descriptions = list(item_descriptions)
    items = tuple(item for item in map(classify_item, descriptions) if item is not None)
    counts = {category: 0 for category in PurchaseCategory}
    for item in items:
        counts[item.category] += 1

    materials = counts[PurchaseCategory.MATERIALS]
    services = counts[PurchaseCategory.SERVICES]
    equipment = counts[PurchaseCategory.EQUIPMENT]
    expenses = counts[PurchaseCategory.EXPENSES]

    if materials > services and materials > equipment and materials > expenses:
        category, account = PurchaseCategory.MATERIALS, '1302'
    elif services > equipment and services > expenses:
        category, account = PurchaseCategory.SERVICES, '6101'
    elif equipment > expenses:
        category, account = PurchaseCategory.EQUIPMENT, '1403'
    elif expenses > 0:
        category, account = PurchaseCategory.EXPENSES, '6103'
    else:
        return ClassificationSuggestion(category=PurchaseCategory.OTHER,
                                        account_code=CATEGORY_TO_ACCOUNT[PurchaseCategory.OTHER],
                                        confidence=0.0, source="default")

    confidence = round(counts[category] / len(descriptions), 2) if descriptions else 0.0
    return ClassificationSuggestion(
        category=category,
        account_code=account,
        confidence=confidence,
        source="keywords",
        matched_keywords=tuple(item.keyword for item in items if item.category == category),
        items=items
    )


def resolve_purchase_account(
    explicit_code: Optional[str],
    suggestion: ClassificationSuggestion
) -> Tuple[str, str]:
    """
    Pick the account to post a purchase to

    Returns:
        (account_code, origin) where origin is "explicit" or "suggested"
    """
    if explicit_code:
        return explicit_code, "explicit"
    return suggestion.account_code, "suggested"
