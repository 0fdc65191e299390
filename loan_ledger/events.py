"""
events.py - Loan Lifecycle Events

Events are plain frozen records of what a loan operation did. They are not
stored separately: the transaction log is the audit trail, and the events
of any executed Transaction can be derived from it with
events_from_transaction(). Each event carries enough for an observer to
rebuild every loan record with reconstruct_loans() without querying the
ledger.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Union

from .core import Transaction, UNIT_TYPE_COLLATERALIZED_LOAN
from .units.collateralized_loan import LoanState, LoanStatus, calculate_status


# ============================================================================
# EVENT RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanRequested:
    loan_id: int
    borrower: str
    collateral_amount: Decimal
    loan_amount: Decimal
    interest_rate: int
    due_date: datetime


@dataclass(frozen=True, slots=True)
class LoanFunded:
    loan_id: int
    lender: str


@dataclass(frozen=True, slots=True)
class LoanRepaid:
    loan_id: int


@dataclass(frozen=True, slots=True)
class CollateralClaimed:
    loan_id: int


LoanEvent = Union[LoanRequested, LoanFunded, LoanRepaid, CollateralClaimed]


# ============================================================================
# DERIVATION FROM THE TRANSACTION LOG
# ============================================================================

def _became_true(changes: Dict, key: str) -> bool:
    return key in changes and bool(changes[key][1]) and not changes[key][0]


def events_from_transaction(tx: Transaction) -> List[LoanEvent]:
    """
    Derive the loan events emitted by one executed transaction.

    A newly created loan unit yields LoanRequested; a loan state change that
    flips is_funded, is_repaid or collateral_claimed yields LoanFunded,
    LoanRepaid or CollateralClaimed. Transactions that touch no loan
    (issuance, plain transfers) yield nothing.
    """
    events: List[LoanEvent] = []

    for unit in tx.units_to_create:
        if unit.unit_type != UNIT_TYPE_COLLATERALIZED_LOAN:
            continue
        state = unit.state
        events.append(LoanRequested(
            loan_id=state['loan_id'],
            borrower=state['borrower_wallet'],
            collateral_amount=state['collateral_amount'],
            loan_amount=state['loan_amount'],
            interest_rate=state['interest_rate'],
            due_date=state['due_date'],
        ))

    for sc in tx.state_changes:
        new_state = sc.new_state if isinstance(sc.new_state, dict) else {}
        if 'loan_id' not in new_state:
            continue
        loan_id = new_state['loan_id']
        changes = sc.changed_fields()
        if _became_true(changes, 'is_funded'):
            events.append(LoanFunded(loan_id=loan_id, lender=new_state['lender_wallet']))
        if _became_true(changes, 'is_repaid'):
            events.append(LoanRepaid(loan_id=loan_id))
        if _became_true(changes, 'collateral_claimed'):
            events.append(CollateralClaimed(loan_id=loan_id))

    return events


def events_from_log(transaction_log: Iterable[Transaction]) -> List[LoanEvent]:
    """All loan events of a transaction log, in execution order."""
    events: List[LoanEvent] = []
    for tx in transaction_log:
        events.extend(events_from_transaction(tx))
    return events


# ============================================================================
# RECONSTRUCTION
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanSnapshot:
    """A loan record as seen by an observer of the event stream."""
    loan_id: int
    borrower: str
    collateral_amount: Decimal
    loan_amount: Decimal
    interest_rate: int
    due_date: datetime
    lender: Optional[str] = None
    is_funded: bool = False
    is_repaid: bool = False
    collateral_claimed: bool = False

    @property
    def status(self) -> LoanStatus:
        return calculate_status(LoanState(
            lender_wallet=self.lender,
            is_funded=self.is_funded,
            is_repaid=self.is_repaid,
            collateral_claimed=self.collateral_claimed,
        ))


def reconstruct_loans(events: Iterable[LoanEvent]) -> Dict[int, LoanSnapshot]:
    """
    Rebuild every loan record from an ordered event stream.

    Raises:
        ValueError: if the stream is inconsistent (unknown loan, duplicate
                    request, or a transition the lifecycle does not allow)
    """
    loans: Dict[int, LoanSnapshot] = {}

    for event in events:
        if isinstance(event, LoanRequested):
            if event.loan_id in loans:
                raise ValueError(f"Loan {event.loan_id} requested twice")
            loans[event.loan_id] = LoanSnapshot(
                loan_id=event.loan_id,
                borrower=event.borrower,
                collateral_amount=event.collateral_amount,
                loan_amount=event.loan_amount,
                interest_rate=event.interest_rate,
                due_date=event.due_date,
            )
            continue

        snapshot = loans.get(event.loan_id)
        if snapshot is None:
            raise ValueError(f"{type(event).__name__} for unknown loan {event.loan_id}")

        if isinstance(event, LoanFunded):
            if snapshot.status is not LoanStatus.REQUESTED:
                raise ValueError(f"Loan {event.loan_id} funded while {snapshot.status.value}")
            loans[event.loan_id] = replace(snapshot, lender=event.lender, is_funded=True)
        elif isinstance(event, LoanRepaid):
            if snapshot.status is not LoanStatus.FUNDED:
                raise ValueError(f"Loan {event.loan_id} repaid while {snapshot.status.value}")
            loans[event.loan_id] = replace(snapshot, is_repaid=True)
        elif isinstance(event, CollateralClaimed):
            if snapshot.status is not LoanStatus.FUNDED:
                raise ValueError(f"Loan {event.loan_id} claimed while {snapshot.status.value}")
            loans[event.loan_id] = replace(snapshot, collateral_claimed=True)
        else:
            raise ValueError(f"Unknown event {event!r}")

    return loans
