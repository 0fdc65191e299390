"""
loan_ledger - Collateralized Loan Ledger

Fixed-rate, fully collateralized loans hosted on a double-entry ledger.
A borrower locks collateral and requests a loan of the same size, a lender
funds it, and the loan ends repaid or with the collateral claimed.

Usage:
    from loan_ledger import LoanBook

    book = LoanBook("loans", verbose=False)
    book.register_party("alice")
    book.register_party("bob")
    book.issue("alice", 2000)
    book.issue("bob", 1000)

    loan = book.request("alice", interest_rate=5, duration_seconds=3600, payment=1000)
    book.fund("bob", loan.loan_id, payment=1000)
    book.repay("alice", loan.loan_id, payment=1050)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    native_currency,
    SYSTEM_WALLET,
    CUSTODY_WALLET,
    DEFAULT_CURRENCY,
    MAX_AMOUNT,
    UNIT_TYPE_NATIVE_CURRENCY,
    UNIT_TYPE_LOAN_REGISTRY,
    UNIT_TYPE_COLLATERALIZED_LOAN,
    # Exceptions
    LedgerError,
    InsufficientFunds,
    UnitNotRegistered,
    WalletNotRegistered,
    LoanError,
    LoanNotFound,
    AlreadyFunded,
    AlreadyResolved,
    NotFunded,
    WrongAmount,
    NotYetDue,
    Unauthorized,
    InvalidAmount,
)

# Ledger
from .ledger import Ledger

# Collateralized loans
from .units.collateralized_loan import (
    LoanStatus,
    LoanTerms,
    LoanState,
    LOAN_REGISTRY_SYMBOL,
    loan_symbol,
    load_loan,
    to_state_dict,
    calculate_interest,
    calculate_repayment_amount,
    calculate_due_date,
    calculate_status,
    is_past_due,
    create_loan_registry,
    create_loan_unit,
    compute_request,
    compute_funding,
    compute_repayment,
    compute_claim,
    get_loan_ids,
    compute_outstanding_collateral,
)

# Events
from .events import (
    LoanRequested,
    LoanFunded,
    LoanRepaid,
    CollateralClaimed,
    LoanEvent,
    LoanSnapshot,
    events_from_transaction,
    events_from_log,
    reconstruct_loans,
)

# Loan book
from .loan_book import LoanBook

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'Unit', 'UnitStateChange', 'ExecuteResult', 'native_currency',
    'SYSTEM_WALLET', 'CUSTODY_WALLET', 'DEFAULT_CURRENCY', 'MAX_AMOUNT',
    'UNIT_TYPE_NATIVE_CURRENCY', 'UNIT_TYPE_LOAN_REGISTRY', 'UNIT_TYPE_COLLATERALIZED_LOAN',
    # Exceptions
    'LedgerError', 'InsufficientFunds',
    'UnitNotRegistered', 'WalletNotRegistered',
    'LoanError', 'LoanNotFound', 'AlreadyFunded', 'AlreadyResolved', 'NotFunded',
    'WrongAmount', 'NotYetDue', 'Unauthorized', 'InvalidAmount',
    # Ledger
    'Ledger',
    # Collateralized loans
    'LoanStatus', 'LoanTerms', 'LoanState', 'LOAN_REGISTRY_SYMBOL',
    'loan_symbol', 'load_loan', 'to_state_dict',
    'calculate_interest', 'calculate_repayment_amount', 'calculate_due_date',
    'calculate_status', 'is_past_due',
    'create_loan_registry', 'create_loan_unit',
    'compute_request', 'compute_funding', 'compute_repayment', 'compute_claim',
    'get_loan_ids', 'compute_outstanding_collateral',
    # Events
    'LoanRequested', 'LoanFunded', 'LoanRepaid', 'CollateralClaimed', 'LoanEvent',
    'LoanSnapshot', 'events_from_transaction', 'events_from_log', 'reconstruct_loans',
    # Loan book
    'LoanBook',
]

__version__ = '1.0.0'
