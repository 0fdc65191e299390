"""
loan_book.py - Collateralized Loan Book

LoanBook hosts independent collateralized loans on a Ledger. It exposes the
four caller-facing operations (request, fund, repay, claim), each taking an
explicit caller wallet and an explicit attached payment, and returns the
event the operation emitted.

Every operation is one guarded transition: the compute_* function validates
and builds a PendingTransaction, and Ledger.execute() applies all of its
moves and state changes or none of them.

Example:
    book = LoanBook("loans", initial_time=datetime(2025, 1, 1), verbose=False)
    for party in ("alice", "bob"):
        book.register_party(party)
        book.issue(party, Decimal("5") * ETH)

    requested = book.request("alice", interest_rate=5, duration_seconds=3600, payment=ETH)
    book.fund("bob", requested.loan_id, payment=ETH)
    book.repay("alice", requested.loan_id, payment=book.repayment_amount(requested.loan_id))
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from .core import (
    Move, PendingTransaction, TransactionOrigin, OriginType, ExecuteResult,
    SYSTEM_WALLET, CUSTODY_WALLET, DEFAULT_CURRENCY,
    LedgerError, InvalidAmount,
    build_transaction, native_currency,
)
from .ledger import Ledger
from .events import (
    LoanEvent, LoanRequested, LoanFunded, LoanRepaid, CollateralClaimed,
    events_from_transaction,
)
from .units.collateralized_loan import (
    LoanTerms, LoanState, LoanStatus,
    LOAN_REGISTRY_SYMBOL,
    create_loan_registry, load_loan, get_loan_ids,
    calculate_repayment_amount, compute_outstanding_collateral,
    compute_request, compute_funding, compute_repayment, compute_claim,
    to_amount,
)


class LoanBook:
    """
    A ledger of collateralized loans keyed by sequential id.

    Wallets:
        - one per party, registered with register_party()
        - the custody wallet, holding collateral of unresolved loans
        - the system wallet, issuing currency via issue()

    Thread Safety:
        Not thread-safe. Operations run one at a time, each to completion.
    """

    def __init__(
        self,
        name: str = "loans",
        initial_time: Optional[datetime] = None,
        currency: str = DEFAULT_CURRENCY,
        custody_wallet: str = CUSTODY_WALLET,
        verbose: bool = True,
        ledger: Optional[Ledger] = None,
    ):
        """
        Create a loan book, or attach one to an existing ledger.

        Args:
            name: Ledger name (ignored when ledger is given)
            initial_time: Starting logical time (ignored when ledger is given)
            currency: Settlement currency symbol; registered if missing
            custody_wallet: Wallet holding collateral; registered if missing
            verbose: Print ledger activity and each emitted event
            ledger: Existing ledger to host the book
        """
        self.ledger = ledger if ledger is not None else Ledger(
            name, initial_time=initial_time, verbose=verbose
        )
        self.verbose = verbose
        self.currency = currency
        self.custody_wallet = custody_wallet
        self.events: List[LoanEvent] = []

        if currency not in self.ledger.units:
            self.ledger.register_unit(native_currency(currency))
        if not self.ledger.is_registered(custody_wallet):
            self.ledger.register_wallet(custody_wallet)
        if LOAN_REGISTRY_SYMBOL not in self.ledger.units:
            self.ledger.register_unit(create_loan_registry(currency, custody_wallet))

    # ========================================================================
    # PARTIES, FUNDS AND TIME
    # ========================================================================

    def register_party(self, wallet: str) -> str:
        """Register a borrower or lender identity."""
        return self.ledger.register_wallet(wallet)

    def issue(self, wallet: str, amount: Any) -> None:
        """
        Credit a party with newly issued currency from the system wallet.

        Raises:
            InvalidAmount: if amount is not a positive whole number of base units
                           no larger than MAX_AMOUNT
        """
        quantity = to_amount(amount)
        if quantity <= 0 or quantity != quantity.to_integral_value():
            raise InvalidAmount(f"issue amount must be a positive whole number, got {quantity}")
        # Sequence in the contract id keeps repeated issuances distinct intents
        contract_id = f'issue_{wallet}_{len(self.ledger.transaction_log)}'
        pending = build_transaction(
            self.ledger,
            [Move(quantity, self.currency, SYSTEM_WALLET, wallet, contract_id)],
            origin=TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, operation="ISSUE"),
        )
        result = self.ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            raise LedgerError(f"Issuance rejected: {self.ledger.last_rejection}")

    def balance(self, wallet: str) -> Decimal:
        return self.ledger.get_balance(wallet, self.currency)

    @property
    def current_time(self) -> datetime:
        return self.ledger.current_time

    def advance_time(self, new_time: datetime) -> None:
        self.ledger.advance_time(new_time)

    def elapse(self, seconds: int) -> datetime:
        """Move the clock forward by a number of seconds and return the new time."""
        new_time = self.ledger.current_time + timedelta(seconds=seconds)
        self.ledger.advance_time(new_time)
        return new_time

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    def request(
        self,
        caller: str,
        interest_rate: int,
        duration_seconds: int,
        payment: Any,
    ) -> LoanRequested:
        """Deposit `payment` as collateral and request a loan of the same amount."""
        pending = compute_request(
            self.ledger, caller, interest_rate, duration_seconds, payment, LOAN_REGISTRY_SYMBOL
        )
        return self._submit(pending, LoanRequested)

    def fund(self, caller: str, loan_id: int, payment: Any) -> LoanFunded:
        """Fund a requested loan; `payment` must equal its loan amount."""
        return self._submit(compute_funding(self.ledger, loan_id, caller, payment), LoanFunded)

    def repay(self, caller: str, loan_id: int, payment: Any) -> LoanRepaid:
        """Repay a funded loan; `payment` must equal principal plus truncated interest."""
        return self._submit(compute_repayment(self.ledger, loan_id, caller, payment), LoanRepaid)

    def claim(self, caller: str, loan_id: int) -> CollateralClaimed:
        """Take the collateral of an overdue, unrepaid loan."""
        return self._submit(compute_claim(self.ledger, loan_id, caller), CollateralClaimed)

    def _submit(self, pending: PendingTransaction, expected: type) -> LoanEvent:
        result = self.ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            reason = self.ledger.last_rejection or result.value
            raise LedgerError(f"{pending.origin.operation} rejected: {reason}")

        emitted = events_from_transaction(self.ledger.transaction_log[-1])
        self.events.extend(emitted)
        if self.verbose:
            for event in emitted:
                print(f"📣 {event}")

        event = next((e for e in emitted if isinstance(e, expected)), None)
        if event is None:
            raise LedgerError(f"{pending.origin.operation} emitted no {expected.__name__}")
        return event

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_loan(self, loan_id: int) -> Tuple[LoanTerms, LoanState]:
        """Raises LoanNotFound for unknown ids."""
        return load_loan(self.ledger, loan_id)

    def loan_status(self, loan_id: int) -> LoanStatus:
        return self.get_loan(loan_id)[1].status

    def repayment_amount(self, loan_id: int) -> Decimal:
        terms, _ = self.get_loan(loan_id)
        return calculate_repayment_amount(terms.loan_amount, terms.interest_rate)

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[int]:
        """Loan ids in allocation order, optionally only those in `status`."""
        loan_ids = get_loan_ids(self.ledger, LOAN_REGISTRY_SYMBOL)
        if status is None:
            return loan_ids
        return [i for i in loan_ids if self.loan_status(i) is status]

    @property
    def loan_count(self) -> int:
        return self.ledger.get_unit_state(LOAN_REGISTRY_SYMBOL)['next_loan_id']

    def custody_balance(self) -> Decimal:
        return self.balance(self.custody_wallet)

    def outstanding_collateral(self) -> Decimal:
        return compute_outstanding_collateral(self.ledger, LOAN_REGISTRY_SYMBOL)

    def verify_custody(self) -> bool:
        """True when custody holds exactly the collateral of every unresolved loan."""
        return self.custody_balance() == self.outstanding_collateral()
