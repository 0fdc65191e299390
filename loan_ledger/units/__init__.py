"""
Units module - Loan unit factories and lifecycle transitions.

All unit factories and related functions are re-exported here for convenience.
"""

from .collateralized_loan import (
    LoanStatus,
    LoanTerms,
    LoanState,
    LOAN_REGISTRY_SYMBOL,
    loan_symbol,
    load_loan,
    to_state_dict,
    to_amount,
    calculate_interest,
    calculate_repayment_amount,
    calculate_due_date,
    calculate_status,
    is_past_due,
    validate_collateral,
    create_loan_registry,
    create_loan_unit,
    compute_request,
    compute_funding,
    compute_repayment,
    compute_claim,
    get_loan_ids,
    compute_outstanding_collateral,
)
