"""
collateralized_loan.py - Fully Collateralized Fixed-Rate Loans

A borrower deposits collateral and requests a loan of the same size at a
fixed percentage interest and a deadline. A lender funds it, and the loan
ends either repaid (lender gets principal plus interest, borrower gets the
collateral back) or defaulted (lender takes the collateral after the
deadline).

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - LoanTerms: fixed at request time, never changes
   - LoanState: lender and lifecycle flags, changes on fund/repay/claim

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - No LedgerView, all inputs explicit

3. ADAPTER FUNCTIONS (load_loan, to_state_dict):
   - The only place that reads loan state from a LedgerView

4. TRANSITIONS (compute_*):
   - Guard the transition, then return one PendingTransaction holding every
     move and state change. Nothing is applied until Ledger.execute().

State machine:
    REQUESTED --fund--> FUNDED --repay--> REPAID
                               --claim--> DEFAULTED   (now >= due_date)

Custody:
    request: borrower -> custody        collateral
    fund:    lender   -> borrower       principal (pass-through)
    repay:   borrower -> custody -> lender   principal + interest
             custody  -> borrower       collateral
    claim:   custody  -> lender         collateral

Key Formula:
    repayment = loan_amount + floor(loan_amount * interest_rate / 100)
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, Any, List, Optional, Tuple, Type

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange, TransactionOrigin,
    OriginType, CUSTODY_WALLET, DEFAULT_CURRENCY, MAX_AMOUNT, PERCENT_DENOMINATOR,
    UNIT_TYPE_LOAN_REGISTRY, UNIT_TYPE_COLLATERALIZED_LOAN,
    LoanError, LoanNotFound, AlreadyFunded, NotFunded, AlreadyResolved,
    WrongAmount, NotYetDue, Unauthorized, InvalidAmount,
    InsufficientFunds, UnitNotRegistered, WalletNotRegistered,
    build_transaction, _freeze_state,
)


LOAN_REGISTRY_SYMBOL = "LOANS"
LOAN_SYMBOL_PREFIX = "LOAN_"


class LoanStatus(Enum):
    """Lifecycle position of a loan. REPAID and DEFAULTED are terminal."""
    REQUESTED = "requested"
    FUNDED = "funded"
    REPAID = "repaid"
    DEFAULTED = "defaulted"

    @property
    def is_terminal(self) -> bool:
        return self in (LoanStatus.REPAID, LoanStatus.DEFAULTED)


# ============================================================================
# FROZEN DATACLASSES - Explicit Inputs for Pure Functions
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanTerms:
    """
    Immutable term sheet of a loan, fixed when the borrower requests it.

    loan_amount always equals collateral_amount (1:1 collateralization).
    due_date is request time plus the requested duration, regardless of
    when the loan is funded.
    """
    loan_id: int
    borrower_wallet: str
    collateral_amount: Decimal
    loan_amount: Decimal
    interest_rate: int          # Whole percent (5 means 5%)
    due_date: datetime
    requested_at: datetime
    currency: str
    custody_wallet: str

    def __post_init__(self):
        if not isinstance(self.collateral_amount, Decimal):
            object.__setattr__(self, 'collateral_amount', Decimal(str(self.collateral_amount)))
        if not isinstance(self.loan_amount, Decimal):
            object.__setattr__(self, 'loan_amount', Decimal(str(self.loan_amount)))


@dataclass(frozen=True, slots=True)
class LoanState:
    """
    Immutable snapshot of the parts of a loan that change over its lifecycle.

    At most one of is_repaid and collateral_claimed is ever True.
    """
    lender_wallet: Optional[str] = None
    is_funded: bool = False
    is_repaid: bool = False
    collateral_claimed: bool = False
    funded_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @property
    def status(self) -> LoanStatus:
        return calculate_status(self)

    @property
    def is_resolved(self) -> bool:
        return self.is_repaid or self.collateral_claimed


# ============================================================================
# ADAPTER FUNCTIONS - Bridge Between LedgerView and Pure Functions
# ============================================================================

def loan_symbol(loan_id: int) -> str:
    """Unit symbol under which a loan record is stored."""
    return f"{LOAN_SYMBOL_PREFIX}{loan_id}"


def load_loan(view: LedgerView, loan_id: int) -> Tuple[LoanTerms, LoanState]:
    """
    Load a loan from ledger state as typed frozen dataclasses.

    Raises:
        LoanNotFound: if loan_id is not a non-negative int or no such loan exists
    """
    if isinstance(loan_id, bool) or not isinstance(loan_id, int) or loan_id < 0:
        raise LoanNotFound(f"Loan {loan_id!r} not found")
    try:
        raw = view.get_unit_state(loan_symbol(loan_id))
    except UnitNotRegistered:
        raise LoanNotFound(f"Loan {loan_id} not found") from None
    if raw.get('loan_id') != loan_id:
        raise LoanNotFound(f"Loan {loan_id} not found")

    terms = LoanTerms(
        loan_id=raw['loan_id'],
        borrower_wallet=raw['borrower_wallet'],
        collateral_amount=raw['collateral_amount'],
        loan_amount=raw['loan_amount'],
        interest_rate=raw['interest_rate'],
        due_date=raw['due_date'],
        requested_at=raw['requested_at'],
        currency=raw['currency'],
        custody_wallet=raw['custody_wallet'],
    )
    state = LoanState(
        lender_wallet=raw.get('lender_wallet'),
        is_funded=raw.get('is_funded', False),
        is_repaid=raw.get('is_repaid', False),
        collateral_claimed=raw.get('collateral_claimed', False),
        funded_at=raw.get('funded_at'),
        resolved_at=raw.get('resolved_at'),
    )
    return terms, state


def to_state_dict(terms: LoanTerms, state: LoanState) -> Dict[str, Any]:
    """Inverse of load_loan(): the unit state dict stored for a loan."""
    return {
        'loan_id': terms.loan_id,
        'borrower_wallet': terms.borrower_wallet,
        'collateral_amount': terms.collateral_amount,
        'loan_amount': terms.loan_amount,
        'interest_rate': terms.interest_rate,
        'due_date': terms.due_date,
        'requested_at': terms.requested_at,
        'currency': terms.currency,
        'custody_wallet': terms.custody_wallet,
        'lender_wallet': state.lender_wallet,
        'is_funded': state.is_funded,
        'is_repaid': state.is_repaid,
        'collateral_claimed': state.collateral_claimed,
        'funded_at': state.funded_at,
        'resolved_at': state.resolved_at,
    }


# ============================================================================
# PURE CALCULATION FUNCTIONS - No LedgerView, All Inputs Explicit
# ============================================================================

def to_amount(value: Any, error: Type[LoanError] = InvalidAmount) -> Decimal:
    """
    Convert an attached payment to a Decimal number of base units.

    Raises:
        error: if value is not a finite number, or its magnitude exceeds MAX_AMOUNT
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise error(f"payment must be a number, got {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise error(f"payment must be a number, got {value!r}") from None
    if not amount.is_finite():
        raise error(f"payment must be finite, got {value!r}")
    if abs(amount) > MAX_AMOUNT:
        raise error(f"payment exceeds {MAX_AMOUNT}, got {amount}")
    return amount


def calculate_interest(loan_amount: Decimal, interest_rate: int) -> Decimal:
    """
    Interest owed on a loan: floor(loan_amount * interest_rate / 100).

    Computed on ints, so the result is exact for every amount up to
    MAX_AMOUNT and any rate.
    """
    return Decimal(int(loan_amount) * interest_rate // PERCENT_DENOMINATOR)


def calculate_repayment_amount(loan_amount: Decimal, interest_rate: int) -> Decimal:
    """Exact amount the borrower must attach to repay: principal plus truncated interest."""
    return Decimal(int(loan_amount)) + calculate_interest(loan_amount, interest_rate)


def calculate_due_date(requested_at: datetime, duration_seconds: int) -> datetime:
    """Deadline of a loan requested at requested_at, fixed for its whole life."""
    return requested_at + timedelta(seconds=duration_seconds)


def calculate_status(state: LoanState) -> LoanStatus:
    """Lifecycle position implied by a loan's flags; a resolution outranks funding."""
    if state.is_repaid:
        return LoanStatus.REPAID
    if state.collateral_claimed:
        return LoanStatus.DEFAULTED
    if state.is_funded:
        return LoanStatus.FUNDED
    return LoanStatus.REQUESTED


def is_past_due(terms: LoanTerms, current_time: datetime) -> bool:
    """True once current_time has reached the due date (inclusive)."""
    return current_time >= terms.due_date


def validate_collateral(payment: Any) -> Decimal:
    """
    Validate a collateral deposit.

    Raises:
        InvalidAmount: if the deposit is not a strictly positive whole number of base units
    """
    amount = to_amount(payment, InvalidAmount)
    if amount <= 0:
        raise InvalidAmount(f"collateral must be positive, got {amount}")
    if amount != amount.to_integral_value():
        raise InvalidAmount(f"collateral must be a whole number of base units, got {amount}")
    return amount


def _validate_interest_rate(interest_rate: Any) -> None:
    if isinstance(interest_rate, bool) or not isinstance(interest_rate, int):
        raise ValueError(f"interest_rate must be an int percentage, got {interest_rate!r}")
    if interest_rate < 0:
        raise ValueError(f"interest_rate cannot be negative, got {interest_rate}")


def _validate_duration(duration_seconds: Any) -> None:
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int):
        raise ValueError(f"duration_seconds must be an int, got {duration_seconds!r}")
    if duration_seconds <= 0:
        raise ValueError(f"duration_seconds must be positive, got {duration_seconds}")


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def create_loan_registry(
    currency: str = DEFAULT_CURRENCY,
    custody_wallet: str = CUSTODY_WALLET,
    symbol: str = LOAN_REGISTRY_SYMBOL,
) -> Unit:
    """
    Create the registry unit that owns the loan id sequence.

    The registry never holds positions. Its state carries next_loan_id, which
    each request transaction increments together with creating the loan, so
    ids are allocated by the same atomic step that creates the record.

    Raises:
        ValueError: if currency or custody_wallet is empty
    """
    if not currency or not currency.strip():
        raise ValueError("currency cannot be empty")
    if not custody_wallet or not custody_wallet.strip():
        raise ValueError("custody_wallet cannot be empty")

    return Unit(
        symbol=symbol,
        name="Collateralized Loan Registry",
        unit_type=UNIT_TYPE_LOAN_REGISTRY,
        max_balance=Decimal("0"),
        _frozen_state=_freeze_state({
            'next_loan_id': 0,
            'currency': currency,
            'custody_wallet': custody_wallet,
        }),
    )


def create_loan_unit(terms: LoanTerms, state: Optional[LoanState] = None) -> Unit:
    """
    Create the unit holding one loan record.

    Loan units are state carriers only: max_balance is zero and the ledger
    refuses to move them, so no wallet ever holds a position in one.
    """
    return Unit(
        symbol=loan_symbol(terms.loan_id),
        name=f"Collateralized Loan #{terms.loan_id}",
        unit_type=UNIT_TYPE_COLLATERALIZED_LOAN,
        max_balance=Decimal("0"),
        _frozen_state=_freeze_state(to_state_dict(terms, state or LoanState())),
    )


# ============================================================================
# TRANSITIONS
# ============================================================================

def _require_wallet(view: LedgerView, wallet: str) -> None:
    if wallet not in view.list_wallets():
        raise WalletNotRegistered(f"Wallet {wallet} not registered")


def _require_funds(view: LedgerView, wallet: str, currency: str, amount: Decimal) -> None:
    # The attached payment must be fully held by the caller before anything moves
    balance = view.get_balance(wallet, currency)
    if balance < amount:
        raise InsufficientFunds(f"{wallet} holds {balance} {currency}, needs {amount}")


def _origin(caller: str, loan_id: int, operation: str) -> TransactionOrigin:
    return TransactionOrigin(
        origin_type=OriginType.USER_ACTION,
        caller=caller,
        unit_symbol=loan_symbol(loan_id),
        operation=operation,
    )


def compute_request(
    view: LedgerView,
    borrower: str,
    interest_rate: int,
    duration_seconds: int,
    payment: Any,
    registry_symbol: str = LOAN_REGISTRY_SYMBOL,
) -> PendingTransaction:
    """
    Deposit collateral and request a loan of the same amount.

    Args:
        view: Read-only ledger access
        borrower: Caller wallet depositing the collateral
        interest_rate: Whole percent, >= 0
        duration_seconds: Seconds from now until the loan is due, > 0
        payment: Collateral attached to the call
        registry_symbol: Registry unit supplying the next loan id

    Returns:
        PendingTransaction that creates the loan unit, bumps the registry's
        next_loan_id and moves the collateral into custody.

    Raises:
        ValueError: interest_rate or duration_seconds malformed
        InvalidAmount: payment not a positive whole number of base units
        WalletNotRegistered: borrower unknown
        InsufficientFunds: borrower does not hold the collateral

    Example:
        pending = compute_request(ledger, "alice", 5, 3600, Decimal(10**18))
        ledger.execute(pending)
    """
    _validate_interest_rate(interest_rate)
    _validate_duration(duration_seconds)
    collateral = validate_collateral(payment)
    _require_wallet(view, borrower)

    registry = view.get_unit_state(registry_symbol)
    loan_id = registry['next_loan_id']
    currency = registry['currency']
    custody = registry['custody_wallet']
    if borrower == custody:
        raise Unauthorized("custody wallet cannot borrow")
    _require_funds(view, borrower, currency, collateral)

    now = view.current_time
    terms = LoanTerms(
        loan_id=loan_id,
        borrower_wallet=borrower,
        collateral_amount=collateral,
        loan_amount=collateral,
        interest_rate=interest_rate,
        due_date=calculate_due_date(now, duration_seconds),
        requested_at=now,
        currency=currency,
        custody_wallet=custody,
    )
    symbol = loan_symbol(loan_id)

    moves = [
        Move(
            quantity=collateral,
            unit_symbol=currency,
            source=borrower,
            dest=custody,
            contract_id=f'request_{symbol}_collateral',
        ),
    ]
    new_registry = {**registry, 'next_loan_id': loan_id + 1}
    state_changes = [
        UnitStateChange(unit=registry_symbol, old_state=registry, new_state=new_registry),
    ]

    return build_transaction(
        view, moves, state_changes,
        origin=_origin(borrower, loan_id, "REQUEST"),
        units_to_create=(create_loan_unit(terms),),
    )


def compute_funding(
    view: LedgerView,
    loan_id: int,
    lender: str,
    payment: Any,
) -> PendingTransaction:
    """
    Fund a requested loan. The principal passes straight to the borrower.

    Any registered wallet but custody may fund, the borrower included. A
    borrower funding their own loan still has to hold the principal, but no
    currency moves: they would be paying themselves.

    Raises:
        WalletNotRegistered: lender unknown
        LoanNotFound: no such loan
        AlreadyFunded: the loan already has a lender
        WrongAmount: payment != loan_amount
        Unauthorized: the custody wallet tries to fund
        InsufficientFunds: lender does not hold the principal
    """
    _require_wallet(view, lender)
    terms, state = load_loan(view, loan_id)

    if state.is_funded:
        raise AlreadyFunded(f"Loan {loan_id} is already funded by {state.lender_wallet}")
    amount = to_amount(payment, WrongAmount)
    if amount != terms.loan_amount:
        raise WrongAmount(
            f"Loan {loan_id} must be funded with exactly {terms.loan_amount}, got {amount}"
        )
    if lender == terms.custody_wallet:
        raise Unauthorized(f"custody wallet cannot fund loan {loan_id}")
    _require_funds(view, lender, terms.currency, amount)

    symbol = loan_symbol(loan_id)
    moves = []
    if lender != terms.borrower_wallet:
        moves.append(Move(
            quantity=amount,
            unit_symbol=terms.currency,
            source=lender,
            dest=terms.borrower_wallet,
            contract_id=f'fund_{symbol}_principal',
        ))
    old_state = to_state_dict(terms, state)
    new_state = {
        **old_state,
        'lender_wallet': lender,
        'is_funded': True,
        'funded_at': view.current_time,
    }
    state_changes = [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)]

    return build_transaction(view, moves, state_changes, origin=_origin(lender, loan_id, "FUND"))


def compute_repayment(
    view: LedgerView,
    loan_id: int,
    borrower: str,
    payment: Any,
) -> PendingTransaction:
    """
    Repay a funded loan in full and release the collateral.

    The payment is taken into custody and forwarded to the lender in the
    same transaction that returns the collateral to the borrower.

    Raises:
        WalletNotRegistered: caller unknown
        LoanNotFound: no such loan
        NotFunded: the loan has no lender yet
        AlreadyResolved: the loan was already repaid or claimed
        Unauthorized: caller is not the borrower
        WrongAmount: payment != loan_amount + floor(loan_amount * rate / 100)
        InsufficientFunds: borrower does not hold the repayment amount

    Example:
        # 1 ETH at 5% -> 1.05 ETH
        pending = compute_repayment(ledger, 0, "alice", Decimal("1050000000000000000"))
        ledger.execute(pending)
    """
    _require_wallet(view, borrower)
    terms, state = load_loan(view, loan_id)

    if not state.is_funded:
        raise NotFunded(f"Loan {loan_id} has not been funded")
    if state.is_resolved:
        raise AlreadyResolved(f"Loan {loan_id} is already {state.status.value}")
    if borrower != terms.borrower_wallet:
        raise Unauthorized(f"Only {terms.borrower_wallet} can repay loan {loan_id}")
    amount = to_amount(payment, WrongAmount)
    required = calculate_repayment_amount(terms.loan_amount, terms.interest_rate)
    if amount != required:
        raise WrongAmount(f"Loan {loan_id} requires exactly {required}, got {amount}")
    _require_funds(view, borrower, terms.currency, amount)

    symbol = loan_symbol(loan_id)
    custody = terms.custody_wallet
    moves = [
        Move(
            quantity=amount,
            unit_symbol=terms.currency,
            source=borrower,
            dest=custody,
            contract_id=f'repay_{symbol}_payment',
        ),
        Move(
            quantity=amount,
            unit_symbol=terms.currency,
            source=custody,
            dest=state.lender_wallet,
            contract_id=f'repay_{symbol}_forward',
        ),
        Move(
            quantity=terms.collateral_amount,
            unit_symbol=terms.currency,
            source=custody,
            dest=borrower,
            contract_id=f'repay_{symbol}_release',
        ),
    ]
    old_state = to_state_dict(terms, state)
    new_state = {
        **old_state,
        'is_repaid': True,
        'resolved_at': view.current_time,
    }
    state_changes = [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)]

    return build_transaction(view, moves, state_changes, origin=_origin(borrower, loan_id, "REPAY"))


def compute_claim(
    view: LedgerView,
    loan_id: int,
    lender: str,
) -> PendingTransaction:
    """
    Seize the collateral of a funded loan that is past due and unrepaid.

    The time condition is evaluated against view.current_time at call time.
    Nothing happens to an overdue loan until its lender calls this.

    Raises:
        WalletNotRegistered: caller unknown
        LoanNotFound: no such loan
        NotFunded: the loan has no lender
        AlreadyResolved: the loan was already repaid or claimed
        NotYetDue: current time is before due_date
        Unauthorized: caller is not the lender
    """
    _require_wallet(view, lender)
    terms, state = load_loan(view, loan_id)

    if not state.is_funded:
        raise NotFunded(f"Loan {loan_id} has not been funded")
    if state.is_resolved:
        raise AlreadyResolved(f"Loan {loan_id} is already {state.status.value}")
    if not is_past_due(terms, view.current_time):
        raise NotYetDue(f"Loan {loan_id} is due at {terms.due_date}, now {view.current_time}")
    if lender != state.lender_wallet:
        raise Unauthorized(f"Only {state.lender_wallet} can claim loan {loan_id}")

    symbol = loan_symbol(loan_id)
    moves = [
        Move(
            quantity=terms.collateral_amount,
            unit_symbol=terms.currency,
            source=terms.custody_wallet,
            dest=lender,
            contract_id=f'claim_{symbol}_collateral',
        ),
    ]
    old_state = to_state_dict(terms, state)
    new_state = {
        **old_state,
        'collateral_claimed': True,
        'resolved_at': view.current_time,
    }
    state_changes = [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)]

    return build_transaction(view, moves, state_changes, origin=_origin(lender, loan_id, "CLAIM"))


# ============================================================================
# QUERIES
# ============================================================================

def get_loan_ids(view: LedgerView, registry_symbol: str = LOAN_REGISTRY_SYMBOL) -> List[int]:
    """All allocated loan ids, in allocation order."""
    return list(range(view.get_unit_state(registry_symbol)['next_loan_id']))


def compute_outstanding_collateral(
    view: LedgerView,
    registry_symbol: str = LOAN_REGISTRY_SYMBOL,
) -> Decimal:
    """
    Sum of collateral that should be in custody: every loan not yet repaid
    or claimed. Equals the custody wallet balance whenever the ledger is
    consistent.
    """
    total = Decimal("0")
    for loan_id in get_loan_ids(view, registry_symbol):
        terms, state = load_loan(view, loan_id)
        if not state.is_resolved:
            total += terms.collateral_amount
    return total
