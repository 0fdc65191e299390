#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Collateralized Loans Step by Step

A walk through the loan book, one operation at a time. Each step builds on
the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Foundation   - The loan book, parties, issuing currency
  4-6:  Happy Path   - Request, fund, repay
  7-8:  Default      - Deadlines and claiming collateral
  9-10: Audit        - Events from the log, time travel, conservation

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import sys

from loan_ledger import (
    LoanBook, LoanStatus,
    LoanError,
    events_from_log, reconstruct_loans,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

ETH = Decimal(10) ** 18


@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    # Initial funding, in wei
    alice_initial: Decimal = Decimal(5) * ETH
    bob_initial: Decimal = Decimal(5) * ETH

    # Loan parameters
    collateral: Decimal = ETH
    interest_rate: int = 5
    duration_seconds: int = 3600


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def eth(amount: Decimal) -> str:
    return f"{amount / ETH:.4f} ETH"


def show_balances(book: LoanBook):
    for wallet in ("alice", "bob", book.custody_wallet):
        print(f"  {wallet:<8} {eth(book.balance(wallet))}")


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_loan_book():
    step_header(1, "The Loan Book",
        "A loan book is a ledger with a currency, a custody wallet and a loan registry.")

    print(">>> book = LoanBook('tutorial', initial_time=datetime(2025, 1, 1, 9, 0))")
    book = LoanBook("tutorial", initial_time=CONFIG.start_time, verbose=False)

    section_header("Initial State")
    print(f"Currency:        {book.currency}")
    print(f"Custody wallet:  {book.custody_wallet}")
    print(f"Units:           {book.ledger.list_units()}")
    print(f"Loans:           {book.loan_count}")

    section_header("Key Insight")
    print("""
    The registry unit LOANS holds the next loan id. Each request bumps it
    in the same transaction that creates the loan, so ids are 0, 1, 2, ...
    with no gaps.
    """)
    wait_for_enter()
    return book


def step_02_parties(book: LoanBook):
    step_header(2, "Parties",
        "Borrowers and lenders are plain wallet identities.")
    print(">>> book.register_party('alice')")
    print(">>> book.register_party('bob')")
    book.register_party("alice")
    book.register_party("bob")
    print(f"\nWallets: {sorted(book.ledger.list_wallets())}")
    wait_for_enter()


def step_03_issue(book: LoanBook):
    step_header(3, "Issuing Currency",
        "Currency enters through the system wallet, which goes negative.")
    book.issue("alice", CONFIG.alice_initial)
    book.issue("bob", CONFIG.bob_initial)
    show_balances(book)
    print(f"  system   {eth(book.balance('system'))}")
    wait_for_enter()


# ============================================================================
# PHASE 2: HAPPY PATH (Steps 4-6)
# ============================================================================

def step_04_request(book: LoanBook) -> int:
    step_header(4, "Requesting a Loan",
        "The borrower locks collateral and asks for a loan of the same size.")
    print(f">>> book.request('alice', interest_rate={CONFIG.interest_rate}, "
          f"duration_seconds={CONFIG.duration_seconds}, payment=1 ETH)")
    event = book.request(
        "alice", CONFIG.interest_rate, CONFIG.duration_seconds, CONFIG.collateral
    )
    print(f"\n{event}")
    show_balances(book)
    wait_for_enter()
    return event.loan_id


def step_05_fund(book: LoanBook, loan_id: int):
    step_header(5, "Funding",
        "A lender pays exactly the loan amount, straight to the borrower.")

    section_header("A wrong amount is rejected and changes nothing")
    try:
        book.fund("bob", loan_id, CONFIG.collateral - 1)
    except LoanError as e:
        print(f"✗ {type(e).__name__}: {e}")

    section_header("The exact amount")
    print(book.fund("bob", loan_id, CONFIG.collateral))
    show_balances(book)
    wait_for_enter()


def step_06_repay(book: LoanBook, loan_id: int):
    step_header(6, "Repayment",
        "Principal plus truncated interest goes to the lender; collateral comes back.")
    amount = book.repayment_amount(loan_id)
    print(f"Repayment amount: {amount} wei ({eth(amount)})")
    print(book.repay("alice", loan_id, amount))
    show_balances(book)

    section_header("A repaid loan cannot be claimed")
    try:
        book.claim("bob", loan_id)
    except LoanError as e:
        print(f"✗ {type(e).__name__}: {e}")
    wait_for_enter()


# ============================================================================
# PHASE 3: DEFAULT (Steps 7-8)
# ============================================================================

def step_07_second_loan(book: LoanBook) -> int:
    step_header(7, "A Loan That Is Never Repaid",
        "Claims are refused until the deadline, whoever asks.")
    loan_id = book.request(
        "alice", CONFIG.interest_rate, CONFIG.duration_seconds, CONFIG.collateral
    ).loan_id
    book.fund("bob", loan_id, CONFIG.collateral)

    book.elapse(CONFIG.duration_seconds - 1)
    print(f"Now: {book.current_time}")
    try:
        book.claim("bob", loan_id)
    except LoanError as e:
        print(f"✗ {type(e).__name__}: {e}")
    wait_for_enter()
    return loan_id


def step_08_claim(book: LoanBook, loan_id: int):
    step_header(8, "Claiming Collateral",
        "At the deadline the lender takes the collateral.")
    book.elapse(1)
    print(f"Now: {book.current_time}")
    print(book.claim("bob", loan_id))
    print(f"Status: {book.loan_status(loan_id).value}")
    show_balances(book)
    wait_for_enter()


# ============================================================================
# PHASE 4: AUDIT (Steps 9-10)
# ============================================================================

def step_09_events(book: LoanBook):
    step_header(9, "Events From the Log",
        "The transaction log is the audit trail; events are derived from it.")
    for event in events_from_log(book.ledger.transaction_log):
        print(f"  {event}")

    section_header("Rebuilding loans from events alone")
    for loan_id, snapshot in reconstruct_loans(book.events).items():
        print(f"  loan {loan_id}: {snapshot.status.value}, lender={snapshot.lender}")
    wait_for_enter()


def step_10_conservation(book: LoanBook):
    step_header(10, "Time Travel and Conservation",
        "Past states can be rebuilt, and currency is never created or destroyed.")
    past = book.ledger.clone_at(CONFIG.start_time)
    print(f"custody at start of day:  {eth(past.get_balance(book.custody_wallet, book.currency))}")
    print(f"custody now:              {eth(book.custody_balance())}")

    balanced = book.ledger.verify_double_entry()
    print(f"\nDouble entry valid: {balanced}")
    print(f"Custody matches open loans: {book.verify_custody()}")
    print(f"Open loans: {book.list_loans(LoanStatus.FUNDED)}")


def main():
    book = step_01_loan_book()
    step_02_parties(book)
    step_03_issue(book)

    loan_id = step_04_request(book)
    step_05_fund(book, loan_id)
    step_06_repay(book, loan_id)

    defaulted = step_07_second_loan(book)
    step_08_claim(book, defaulted)

    step_09_events(book)
    step_10_conservation(book)


if __name__ == "__main__":
    main()
