"""
ledger.py - The Ledger Underneath the Loan Book

Ledger owns every balance and every loan record. Loan transitions are
computed elsewhere as PendingTransactions; this module decides whether a
transition may happen and, if so, applies all of it.

A transition is rejected, with nothing applied, when:
    - it is stamped later than the ledger's clock
    - it creates a loan or registry unit that already exists
    - it names an unregistered wallet or unit
    - it moves a state carrier instead of the settlement currency
    - it changes a loan or registry built from outdated state
    - it leaves a wallet below zero or above MAX_AMOUNT of the currency
      (the system wallet alone may go negative)
"""

from __future__ import annotations
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple

from .core import (
    Move, Transaction, Unit, PendingTransaction, ExecuteResult, UnitState,
    SYSTEM_WALLET,
    UnitNotRegistered, WalletNotRegistered,
)


ZERO = Decimal("0")


class Ledger:
    """
    Wallet balances, loan records and the log of every executed transition.

    Implements LedgerView, so the compute_* functions can read it directly.

    Example:
        ledger = Ledger("loans")
        ledger.register_unit(native_currency("WEI"))
        ledger.register_unit(create_loan_registry("WEI"))
        ledger.register_wallet("custody")
        ledger.register_wallet("alice")

        pending = compute_request(ledger, "alice", 5, 3600, Decimal("1000"))
        ledger.execute(pending)
    """

    def __init__(self, name: str, initial_time: Optional[datetime] = None, verbose: bool = True):
        self.name = name
        self.verbose = verbose
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = {SYSTEM_WALLET}
        self.balances: Dict[str, Dict[str, Decimal]] = {SYSTEM_WALLET: defaultdict(Decimal)}
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self.last_rejection: Optional[str] = None
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)

    # ========================================================================
    # LedgerView
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id][unit_symbol]

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.units[unit_symbol].state

    def list_wallets(self) -> Set[str]:
        return set(self.registered_wallets)

    def list_units(self) -> List[str]:
        return sorted(self.units)

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    # ========================================================================
    # CONSERVATION
    # ========================================================================

    def total_supply(self, unit_symbol: str) -> Decimal:
        """Sum of one unit over every wallet, the system wallet included."""
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum((self.balances[w][unit_symbol] for w in sorted(self.registered_wallets)), ZERO)

    def verify_double_entry(self) -> bool:
        """
        True when every unit sums to zero across all wallets.

        Currency only enters through the system wallet, which goes negative by
        exactly what it issued, and state carriers never move. Any nonzero
        supply therefore means value was created or destroyed.
        """
        return all(self.total_supply(symbol) == 0 for symbol in self.units)

    # ========================================================================
    # SETUP
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    def register_wallet(self, wallet_id: str) -> str:
        """
        Raises:
            ValueError: If wallet id is empty or already registered
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(Decimal)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Apply a loan transition atomically.

        Returns:
            APPLIED if every part took effect
            ALREADY_APPLIED if this intent_id was executed before
            REJECTED if validation failed; the reason is in last_rejection
        """
        self.last_rejection = None

        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: {pending.origin} intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        reason = self._rejection_reason(pending)
        if reason:
            self.last_rejection = reason
            if self.verbose:
                print(f"✗ REJECTED {pending.origin}: {reason}")
            return ExecuteResult.REJECTED

        sequence = len(self.transaction_log)
        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=f"{self.name}:{sequence}",
            execution_time=self._current_time,
            sequence_number=sequence,
            units_to_create=pending.units_to_create,
        )

        for unit in tx.units_to_create:
            self.register_unit(unit)
        for move in tx.moves:
            self._shift(move, 1)
        for sc in tx.state_changes:
            self.units[sc.unit] = self.units[sc.unit].with_state(sc.new_state)

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(tx.intent_id)

        if self.verbose:
            print(tx)
        return ExecuteResult.APPLIED

    def _shift(self, move: Move, direction: int) -> None:
        """Apply a move (direction 1) or undo it (direction -1)."""
        quantity = move.quantity * direction
        self.balances[move.source][move.unit_symbol] -= quantity
        self.balances[move.dest][move.unit_symbol] += quantity

    def _rejection_reason(self, pending: PendingTransaction) -> str:
        """Why the ledger refuses pending, or "" if it may be applied."""
        if pending.timestamp > self._current_time:
            return "future timestamp"

        created: Dict[str, Unit] = {}
        for unit in pending.units_to_create:
            if unit.symbol in self.units or unit.symbol in created:
                return f"unit already registered: {unit.symbol}"
            created[unit.symbol] = unit

        net: Dict[Tuple[str, str], Decimal] = defaultdict(Decimal)
        for move in pending.moves:
            unit = self.units.get(move.unit_symbol) or created.get(move.unit_symbol)
            if unit is None:
                return f"unit not registered: {move.unit_symbol}"
            if not unit.is_transferable:
                return f"{move.unit_symbol} carries state and cannot be moved"
            for wallet in (move.source, move.dest):
                if wallet not in self.registered_wallets:
                    return f"wallet not registered: {wallet}"
            net[move.source, move.unit_symbol] -= move.quantity
            net[move.dest, move.unit_symbol] += move.quantity

        for sc in pending.state_changes:
            unit = self.units.get(sc.unit) or created.get(sc.unit)
            if unit is None:
                return f"unit not registered: {sc.unit}"
            if sc.old_state is not None and sc.old_state != unit.state:
                return f"stale state for {sc.unit}"

        for (wallet, symbol), delta in sorted(net.items()):
            proposed = self.balances[wallet][symbol] + delta
            if proposed < 0 and wallet != SYSTEM_WALLET:
                return f"{wallet} would hold {proposed} {symbol}"
            limit = (self.units.get(symbol) or created[symbol]).max_balance
            if proposed > limit:
                return f"{wallet} would hold {proposed} {symbol}, above {limit}"

        return ""

    # ========================================================================
    # HISTORY
    # ========================================================================

    def clone(self) -> Ledger:
        """An independent copy: later execution on either side leaves the other untouched."""
        cloned = Ledger(self.name, self._current_time, self.verbose)
        cloned.units = dict(self.units)
        cloned.registered_wallets = set(self.registered_wallets)
        cloned.balances = {
            wallet: defaultdict(Decimal, balances) for wallet, balances in self.balances.items()
        }
        cloned.seen_intent_ids = set(self.seen_intent_ids)
        cloned.transaction_log = list(self.transaction_log)
        return cloned

    def clone_at(self, target_time: datetime) -> Ledger:
        """
        The ledger as it stood at target_time.

        Every transition executed after target_time is undone, newest first:
        moves reversed, loan and registry state put back, created loans
        removed. Wallets registered later are kept, with zero balances.

        Raises:
            ValueError: If target_time is after the current time
        """
        if target_time > self._current_time:
            raise ValueError(f"Target time {target_time} is in the future")

        cloned = self.clone()
        cloned._current_time = target_time
        while cloned.transaction_log and cloned.transaction_log[-1].execution_time > target_time:
            tx = cloned.transaction_log.pop()
            cloned.seen_intent_ids.discard(tx.intent_id)
            for move in reversed(tx.moves):
                cloned._shift(move, -1)
            for sc in tx.state_changes:
                if sc.unit in cloned.units:
                    cloned.units[sc.unit] = cloned.units[sc.unit].with_state(sc.old_state or {})
            for unit in tx.units_to_create:
                del cloned.units[unit.symbol]
        return cloned
