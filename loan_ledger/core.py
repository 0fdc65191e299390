"""
Core types for the loan ledger.

Everything a loan transition needs to describe itself, and nothing that
mutates state:
1. LedgerView, the read-only protocol the compute_* functions accept
2. Move, UnitStateChange and TransactionOrigin, the parts of a transition
3. PendingTransaction (intent) and Transaction (executed fact)
4. Unit, either the settlement currency or a state carrier holding a loan
   record or the loan registry
5. The exception hierarchy: LedgerError and the loan errors built on it

Amounts are whole base units (wei) held as Decimal, bounded by MAX_AMOUNT.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, getcontext
from enum import Enum
import copy
import hashlib
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple, runtime_checkable


# ============================================================================
# DECIMAL CONTEXT
# ============================================================================
#
# Balances are bounded by MAX_AMOUNT (78 digits). 100 digits keeps every sum
# of balances exact; no amount ever needs rounding.
#
getcontext().prec = 100


# ============================================================================
# CONSTANTS
# ============================================================================

# Issues currency; the only wallet allowed a negative balance.
SYSTEM_WALLET = "system"

# Holds collateral between request and repayment or claim.
CUSTODY_WALLET = "custody"

DEFAULT_CURRENCY = "WEI"

# Largest amount any payment or balance may reach (2**256 - 1).
MAX_AMOUNT = Decimal(2 ** 256 - 1)

# Interest rates are whole percentages.
PERCENT_DENOMINATOR = 100

UNIT_TYPE_NATIVE_CURRENCY = "NATIVE_CURRENCY"
UNIT_TYPE_LOAN_REGISTRY = "LOAN_REGISTRY"
UNIT_TYPE_COLLATERALIZED_LOAN = "COLLATERALIZED_LOAN"

# A loan record, the registry counter, or currency issuer info.
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    What a loan transition may read.

    Ledger implements it; tests pass a FakeView.
    """

    @property
    def current_time(self) -> datetime:
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """A copy of the unit's state. Raises UnitNotRegistered for unknown units."""
        ...

    def list_wallets(self) -> Set[str]:
        ...

    def list_units(self) -> List[str]:
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    APPLIED: every move and state change took effect.
    ALREADY_APPLIED: the same intent was executed before; nothing changed.
    REJECTED: validation failed; nothing changed (see Ledger.last_rejection).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    USER_ACTION = "user_action"     # request, fund, repay, claim
    SYSTEM = "system"               # issuance


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a caller does not hold the payment it attached."""
    pass


class UnitNotRegistered(LedgerError):
    pass


class WalletNotRegistered(LedgerError):
    pass


class LoanError(LedgerError):
    """Base exception for a rejected loan operation. Nothing is applied when raised."""
    pass


class LoanNotFound(LoanError):
    """Raised when a loan id does not reference an existing loan."""
    pass


class AlreadyFunded(LoanError):
    """Raised when funding a loan that already has a lender."""
    pass


class NotFunded(LoanError):
    """Raised when repaying or claiming a loan that was never funded."""
    pass


class AlreadyResolved(LoanError):
    """Raised when a loan has already been repaid or had its collateral claimed."""
    pass


class WrongAmount(LoanError):
    """Raised when an attached payment does not exactly match the required amount."""
    pass


class NotYetDue(LoanError):
    """Raised when collateral is claimed before the loan's due date."""
    pass


class Unauthorized(LoanError):
    """Raised when the caller is not the party allowed to perform the operation."""
    pass


class InvalidAmount(LoanError):
    """Raised when a deposit or issuance is not a whole number of base units in range."""
    pass


# ============================================================================
# TRANSITION PARTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Who asked for a transaction and which loan operation it performs.

    Attributes:
        origin_type: USER_ACTION for loan operations, SYSTEM for issuance
        caller: Wallet that made the call
        unit_symbol: Loan unit the operation targets, if any
        operation: "REQUEST", "FUND", "REPAY", "CLAIM" or "ISSUE"
    """
    origin_type: OriginType
    caller: str
    unit_symbol: Optional[str] = None
    operation: Optional[str] = None

    def __repr__(self) -> str:
        target = f" {self.unit_symbol}" if self.unit_symbol else ""
        operation = f" {self.operation}" if self.operation else ""
        return f"Origin({self.caller}{operation}{target})"


@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Replacement of a unit's whole state.

    old_state is the state the change was computed from. The ledger rejects
    the change if the unit no longer holds exactly that state.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Field name -> (old, new) for every field that differs."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        return {
            key: (old.get(key), new.get(key))
            for key in sorted(set(old) | set(new))
            if old.get(key) != new.get(key)
        }


@dataclass(frozen=True, slots=True)
class Move:
    """
    Transfer of a whole, positive number of base units between two wallets.

    Attributes:
        quantity: Base units moved, 0 < quantity <= MAX_AMOUNT
        unit_symbol: Currency moved
        source: Debited wallet
        dest: Credited wallet
        contract_id: Names the leg of the operation, e.g. "repay_LOAN_0_release"
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        for name in ('unit_symbol', 'source', 'dest', 'contract_id'):
            value = getattr(self, name)
            if not value or not value.strip():
                raise ValueError(f"Move {name} cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if not self.quantity.is_finite() or self.quantity != self.quantity.to_integral_value():
            raise ValueError(f"Move quantity must be a whole number, got {self.quantity}")
        if not 0 < self.quantity <= MAX_AMOUNT:
            raise ValueError(f"Move quantity out of range: {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


# ============================================================================
# INTENT IDS
# ============================================================================

def _canonicalize(value: Any) -> str:
    """Type-tagged text of a value, independent of dict order and Decimal exponent."""
    if value is None or isinstance(value, bool):
        return repr(value)
    if isinstance(value, Decimal):
        return f"D:{int(value)}" if value == value.to_integral_value() else f"D:{value.normalize():f}"
    if isinstance(value, (int, str)):
        return f"{type(value).__name__}:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        return "{" + ",".join(
            f"{k}={_canonicalize(value[k])}" for k in sorted(value, key=str)
        ) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return f"R:{value!r}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = (),
) -> str:
    """
    Content hash of what a transaction does. Timestamps are not part of it,
    so resubmitting the same transition is recognised as a duplicate.
    """
    parts = [_canonicalize([origin.origin_type.value, origin.caller, origin.unit_symbol, origin.operation])]
    parts += sorted(
        _canonicalize([u.symbol, u.unit_type, u.state]) for u in units_to_create
    )
    parts += sorted(
        _canonicalize([m.quantity, m.unit_symbol, m.source, m.dest, m.contract_id]) for m in moves
    )
    parts += sorted(
        _canonicalize([sc.unit, sc.old_state, sc.new_state]) for sc in state_changes
    )
    return hashlib.sha256("|".join(parts).encode()).hexdigest()[:16]


# ============================================================================
# TRANSACTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    One loan transition before execution: the moves, state changes and new
    units that Ledger.execute() applies together or not at all.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(self, 'intent_id', _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            ))

    def is_empty(self) -> bool:
        return not (self.moves or self.state_changes or self.units_to_create)


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Tuple['Unit', ...] = (),
) -> PendingTransaction:
    """
    Stamp a transition with the view's current time.

    State snapshots are deep-copied so later edits by the caller cannot
    change the pending transaction. Without an origin the transaction is
    attributed to the system wallet.

    Example:
        old = view.get_unit_state("LOAN_0")
        change = UnitStateChange("LOAN_0", old, {**old, "is_funded": True, "lender_wallet": "bob"})
        move = Move(Decimal("1000"), "WEI", "bob", "alice", "fund_LOAN_0_principal")
        pending = build_transaction(view, [move], [change])
    """
    changes = tuple(
        UnitStateChange(sc.unit, copy.deepcopy(sc.old_state), copy.deepcopy(sc.new_state))
        for sc in state_changes or ()
    )
    return PendingTransaction(
        moves=tuple(moves),
        state_changes=changes,
        origin=origin or TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET),
        timestamp=view.current_time,
        units_to_create=tuple(units_to_create),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed PendingTransaction, as kept in the ledger's log.

    exec_id is "<ledger>:<sequence>"; sequence_number orders the log.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()

    def __post_init__(self):
        if self.is_empty():
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")

    def is_empty(self) -> bool:
        return not (self.moves or self.state_changes or self.units_to_create)

    def __repr__(self) -> str:
        w = 78
        bar = "─" * w

        def row(text: str) -> str:
            text = text if len(text) <= w else text[:w - 3] + "..."
            return f"│{text:<{w}}│"

        title = f" #{self.sequence_number} {self.origin.operation or 'TRANSACTION'}"
        if self.origin.unit_symbol:
            title += f" {self.origin.unit_symbol}"
        lines = [
            f"┌{bar}┐",
            row(f"{title} by {self.origin.caller} at {self.execution_time}"),
            f"├{bar}┤",
        ]
        for unit in self.units_to_create:
            lines.append(row(f"   + {unit.symbol} ({unit.name})"))
        for move in self.moves:
            lines.append(row(f"   {move.source} → {move.dest}: {move.quantity} {move.unit_symbol}"))
        for sc in self.state_changes:
            for name, (old, new) in sc.changed_fields().items():
                lines.append(row(f"   {sc.unit}.{name}: {old!r} → {new!r}"))
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# ============================================================================
# UNITS
# ============================================================================

def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Sorted (key, value) pairs, so a Unit stays hashable and immutable."""
    return tuple(sorted((state or {}).items()))


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Something the ledger tracks: the settlement currency, or a state carrier.

    No wallet except the system wallet may hold less than zero of a unit,
    and none may hold more than max_balance. State carriers (the registry,
    each loan) have max_balance 0: they never move and only carry state.
    """
    symbol: str
    name: str
    unit_type: str
    max_balance: Decimal = Decimal("0")
    _frozen_state: Tuple[Tuple[str, Any], ...] = ()

    @property
    def state(self) -> UnitState:
        """A fresh mutable copy of the unit's state."""
        return copy.deepcopy(dict(self._frozen_state))

    @property
    def is_transferable(self) -> bool:
        return self.max_balance > 0

    def with_state(self, state: UnitState) -> Unit:
        return Unit(self.symbol, self.name, self.unit_type, self.max_balance, _freeze_state(state))


def native_currency(symbol: str = DEFAULT_CURRENCY, name: str = "Wei") -> Unit:
    """
    The settlement currency: whole base units, never negative outside the
    system wallet, never above MAX_AMOUNT in any wallet.
    """
    if not symbol or not symbol.strip():
        raise ValueError("symbol cannot be empty")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_NATIVE_CURRENCY,
        max_balance=MAX_AMOUNT,
        _frozen_state=_freeze_state({'issuer': SYSTEM_WALLET}),
    )
