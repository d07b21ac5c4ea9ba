"""
Shared fixtures for the ledger test suite
"""

import pytest

from core_accounting.service import AccountingService
from core_accounting.storage import InMemoryStorage


@pytest.fixture
def service():
    """Service on in-memory storage with the default chart loaded"""
    svc = AccountingService(storage=InMemoryStorage())
    svc.registry.seed_default_chart()
    yield svc
    svc.close()


@pytest.fixture
def empty_service():
    """Service with no accounts at all"""
    svc = AccountingService(storage=InMemoryStorage())
    yield svc
    svc.close()
