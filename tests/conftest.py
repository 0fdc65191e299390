"""
conftest.py - Shared pytest fixtures for loan ledger tests

Provides common fixtures used across unit, functional and conformance tests:
- Bare ledgers with the settlement currency
- Loan books with funded borrower and lender parties
- Loan books with a loan already requested or funded
"""

import pytest
from datetime import datetime
from decimal import Decimal

from loan_ledger import (
    Ledger, LoanBook,
    native_currency,
    CUSTODY_WALLET, DEFAULT_CURRENCY,
)


# =============================================================================
# CONSTANTS
# =============================================================================

START = datetime(2025, 1, 1, 9, 0)

# One ether in wei
ETH = Decimal(10) ** 18

HOUR = 3600

# Every party starts with this much currency
STARTING_BALANCE = Decimal(10) * ETH


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_book(parties=("alice", "bob", "carol"), balance: Decimal = STARTING_BALANCE) -> LoanBook:
    """Loan book at START with each party registered and issued `balance`."""
    book = LoanBook("test", initial_time=START, verbose=False)
    for party in parties:
        book.register_party(party)
        book.issue(party, balance)
    return book


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", initial_time=START, verbose=False)


@pytest.fixture
def currency_ledger():
    """Ledger with WEI, the custody wallet and two parties."""
    ledger = Ledger("test", initial_time=START, verbose=False)
    ledger.register_unit(native_currency(DEFAULT_CURRENCY))
    ledger.register_wallet(CUSTODY_WALLET)
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


# =============================================================================
# LOAN BOOK FIXTURES
# =============================================================================

@pytest.fixture
def book():
    """Loan book with alice, bob and carol each holding 10 ETH."""
    return make_book()


@pytest.fixture
def requested_book(book):
    """Alice has requested loan 0: 1 ETH collateral, 5%, one hour."""
    book.request("alice", interest_rate=5, duration_seconds=HOUR, payment=ETH)
    return book


@pytest.fixture
def funded_book(requested_book):
    """Loan 0 funded by bob."""
    requested_book.fund("bob", 0, payment=ETH)
    return requested_book
