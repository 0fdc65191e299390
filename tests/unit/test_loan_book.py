"""
test_loan_book.py - Unit tests for LoanBook

Tests:
- Setup: currency, custody wallet and registry registration
- Issuance and its validation
- Each operation's balance effects and returned event
- Rejections leave balances, loan state and the event list untouched
- Query helpers (list_loans, loan_count, repayment_amount, verify_custody)
- Amounts up to and past MAX_AMOUNT
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from loan_ledger import (
    Ledger, LoanBook, LoanStatus,
    LoanRequested, LoanFunded, LoanRepaid, CollateralClaimed,
    CUSTODY_WALLET, DEFAULT_CURRENCY, LOAN_REGISTRY_SYMBOL,
    LedgerError, InvalidAmount, LoanNotFound, AlreadyFunded, NotFunded,
    AlreadyResolved, WrongAmount, NotYetDue, Unauthorized, InsufficientFunds,
    WalletNotRegistered, MAX_AMOUNT,
)


ETH = Decimal(10) ** 18
TEN_ETH = Decimal(10) * ETH
START = datetime(2025, 1, 1, 9, 0)
HOUR = 3600
REPAYMENT = Decimal("1050000000000000000")


def snapshot(book):
    """Balances, loan records and event count, for before/after comparison."""
    balances = {w: book.balance(w) for w in ("alice", "bob", "carol", CUSTODY_WALLET)}
    loans = {i: book.get_loan(i) for i in book.list_loans()}
    return balances, loans, len(book.events), len(book.ledger.transaction_log)


# ============================================================================
# SETUP
# ============================================================================

class TestSetup:
    """Tests for LoanBook construction and issuance."""

    def test_registers_currency_custody_and_registry(self):
        book = LoanBook("setup", initial_time=START, verbose=False)
        assert DEFAULT_CURRENCY in book.ledger.units
        assert LOAN_REGISTRY_SYMBOL in book.ledger.units
        assert book.ledger.is_registered(CUSTODY_WALLET)
        assert book.loan_count == 0
        assert book.list_loans() == []
        assert book.current_time == START

    def test_attaches_to_existing_ledger(self):
        ledger = Ledger("shared", initial_time=START, verbose=False)
        book = LoanBook(ledger=ledger, verbose=False)
        assert book.ledger is ledger
        again = LoanBook(ledger=ledger, verbose=False)
        assert again.loan_count == 0

    def test_custom_currency_and_custody(self):
        book = LoanBook("gwei", initial_time=START, currency="GWEI", custody_wallet="vault", verbose=False)
        book.register_party("alice")
        book.issue("alice", 100)
        book.request("alice", interest_rate=1, duration_seconds=60, payment=40)
        assert book.balance("vault") == Decimal("40")
        assert book.ledger.get_balance("vault", "GWEI") == Decimal("40")

    def test_issue(self, book):
        assert book.balance("alice") == TEN_ETH
        book.issue("alice", ETH)
        book.issue("alice", ETH)
        assert book.balance("alice") == TEN_ETH + 2 * ETH

    @pytest.mark.parametrize("amount", [0, -1, "0.5", "abc", 2 ** 256])
    def test_issue_rejects_bad_amounts(self, book, amount):
        with pytest.raises(InvalidAmount):
            book.issue("alice", amount)

    def test_issue_to_unknown_wallet(self, book):
        with pytest.raises(LedgerError):
            book.issue("mallory", ETH)

    def test_elapse(self, book):
        assert book.elapse(HOUR) == START + timedelta(hours=1)
        assert book.current_time == START + timedelta(hours=1)

    def test_time_only_moves_forward(self, book):
        with pytest.raises(ValueError):
            book.advance_time(START - timedelta(seconds=1))


# ============================================================================
# REQUEST
# ============================================================================

class TestRequest:
    """Tests for LoanBook.request."""

    def test_request_locks_collateral(self, book):
        event = book.request("alice", interest_rate=5, duration_seconds=HOUR, payment=ETH)

        assert event == LoanRequested(
            loan_id=0,
            borrower="alice",
            collateral_amount=ETH,
            loan_amount=ETH,
            interest_rate=5,
            due_date=START + timedelta(hours=1),
        )
        assert book.balance("alice") == TEN_ETH - ETH
        assert book.custody_balance() == ETH
        assert book.loan_status(0) is LoanStatus.REQUESTED
        assert book.events == [event]

    def test_ids_are_sequential(self, book):
        ids = [book.request("alice", 5, HOUR, ETH).loan_id for _ in range(3)]
        ids.append(book.request("bob", 2, HOUR, ETH).loan_id)
        assert ids == [0, 1, 2, 3]
        assert book.loan_count == 4
        assert book.list_loans() == [0, 1, 2, 3]

    def test_identical_requests_are_distinct_loans(self, book):
        book.request("alice", 5, HOUR, ETH)
        book.request("alice", 5, HOUR, ETH)
        assert book.loan_count == 2
        assert book.custody_balance() == 2 * ETH

    def test_due_date_fixed_at_request(self, book):
        book.request("alice", 5, HOUR, ETH)
        book.elapse(HOUR // 2)
        book.fund("bob", 0, ETH)
        terms, _ = book.get_loan(0)
        assert terms.due_date == START + timedelta(hours=1)

    def test_zero_collateral_rejected(self, book):
        before = snapshot(book)
        with pytest.raises(InvalidAmount):
            book.request("alice", 5, HOUR, 0)
        assert snapshot(book) == before
        assert book.loan_count == 0

    def test_insufficient_funds(self, book):
        with pytest.raises(InsufficientFunds):
            book.request("alice", 5, HOUR, TEN_ETH + 1)
        assert book.loan_count == 0

    def test_unregistered_caller(self, book):
        with pytest.raises(WalletNotRegistered):
            book.request("mallory", 5, HOUR, ETH)


# ============================================================================
# FUND
# ============================================================================

class TestFund:
    """Tests for LoanBook.fund."""

    def test_fund_pays_borrower(self, requested_book):
        book = requested_book
        event = book.fund("bob", 0, ETH)

        assert event == LoanFunded(loan_id=0, lender="bob")
        assert book.balance("alice") == TEN_ETH
        assert book.balance("bob") == TEN_ETH - ETH
        assert book.custody_balance() == ETH
        assert book.loan_status(0) is LoanStatus.FUNDED
        _, state = book.get_loan(0)
        assert state.lender_wallet == "bob"
        assert state.funded_at == START

    def test_fund_twice(self, funded_book):
        before = snapshot(funded_book)
        with pytest.raises(AlreadyFunded):
            funded_book.fund("carol", 0, ETH)
        assert snapshot(funded_book) == before

    def test_wrong_amount(self, requested_book):
        before = snapshot(requested_book)
        with pytest.raises(WrongAmount):
            requested_book.fund("bob", 0, ETH - 1)
        assert snapshot(requested_book) == before

    def test_self_funding(self, requested_book):
        """The borrower may lend to themselves; the principal stays put."""
        before = requested_book.balance("alice")
        event = requested_book.fund("alice", 0, ETH)

        assert event == LoanFunded(loan_id=0, lender="alice")
        assert requested_book.balance("alice") == before
        assert requested_book.get_loan(0)[1].lender_wallet == "alice"

        requested_book.repay("alice", 0, REPAYMENT)
        assert requested_book.balance("alice") == before + ETH
        assert requested_book.custody_balance() == Decimal("0")
        assert requested_book.ledger.verify_double_entry()

    def test_custody_cannot_fund(self, requested_book):
        before = snapshot(requested_book)
        with pytest.raises(Unauthorized):
            requested_book.fund(CUSTODY_WALLET, 0, ETH)
        assert snapshot(requested_book) == before

    def test_unknown_loan(self, requested_book):
        with pytest.raises(LoanNotFound):
            requested_book.fund("bob", 1, ETH)

    def test_fund_after_due_date_allowed(self, requested_book):
        requested_book.elapse(2 * HOUR)
        requested_book.fund("bob", 0, ETH)
        assert requested_book.loan_status(0) is LoanStatus.FUNDED


# ============================================================================
# REPAY
# ============================================================================

class TestRepay:
    """Tests for LoanBook.repay."""

    def test_repay_settles_loan(self, funded_book):
        book = funded_book
        assert book.repayment_amount(0) == REPAYMENT

        event = book.repay("alice", 0, REPAYMENT)

        assert event == LoanRepaid(loan_id=0)
        assert book.balance("alice") == TEN_ETH - (REPAYMENT - ETH)
        assert book.balance("bob") == TEN_ETH - ETH + REPAYMENT
        assert book.custody_balance() == Decimal("0")
        assert book.loan_status(0) is LoanStatus.REPAID

    def test_repay_unfunded(self, requested_book):
        with pytest.raises(NotFunded):
            requested_book.repay("alice", 0, REPAYMENT)

    def test_repay_twice(self, funded_book):
        funded_book.repay("alice", 0, REPAYMENT)
        before = snapshot(funded_book)
        with pytest.raises(AlreadyResolved):
            funded_book.repay("alice", 0, REPAYMENT)
        assert snapshot(funded_book) == before

    def test_repay_by_non_borrower(self, funded_book):
        with pytest.raises(Unauthorized):
            funded_book.repay("carol", 0, REPAYMENT)

    def test_principal_only_is_wrong_amount(self, funded_book):
        before = snapshot(funded_book)
        with pytest.raises(WrongAmount):
            funded_book.repay("alice", 0, ETH)
        assert snapshot(funded_book) == before

    def test_late_repayment_allowed(self, funded_book):
        funded_book.elapse(10 * HOUR)
        funded_book.repay("alice", 0, REPAYMENT)
        assert funded_book.loan_status(0) is LoanStatus.REPAID

    def test_repay_after_claim(self, funded_book):
        funded_book.elapse(HOUR)
        funded_book.claim("bob", 0)
        with pytest.raises(AlreadyResolved):
            funded_book.repay("alice", 0, REPAYMENT)


# ============================================================================
# CLAIM
# ============================================================================

class TestClaim:
    """Tests for LoanBook.claim."""

    def test_claim_after_due_date(self, funded_book):
        book = funded_book
        book.elapse(HOUR)

        event = book.claim("bob", 0)

        assert event == CollateralClaimed(loan_id=0)
        assert book.balance("bob") == TEN_ETH
        assert book.balance("alice") == TEN_ETH
        assert book.custody_balance() == Decimal("0")
        assert book.loan_status(0) is LoanStatus.DEFAULTED

    def test_claim_one_second_early(self, funded_book):
        funded_book.elapse(HOUR - 1)
        before = snapshot(funded_book)
        with pytest.raises(NotYetDue):
            funded_book.claim("bob", 0)
        assert snapshot(funded_book) == before

    def test_claim_by_non_lender(self, funded_book):
        funded_book.elapse(HOUR)
        with pytest.raises(Unauthorized):
            funded_book.claim("carol", 0)

    def test_claim_unfunded(self, requested_book):
        requested_book.elapse(HOUR)
        with pytest.raises(NotFunded):
            requested_book.claim("bob", 0)

    def test_claim_after_repay(self, funded_book):
        funded_book.repay("alice", 0, REPAYMENT)
        funded_book.elapse(HOUR)
        with pytest.raises(AlreadyResolved):
            funded_book.claim("bob", 0)

    def test_claim_twice(self, funded_book):
        funded_book.elapse(HOUR)
        funded_book.claim("bob", 0)
        with pytest.raises(AlreadyResolved):
            funded_book.claim("bob", 0)


# ============================================================================
# QUERIES
# ============================================================================

class TestQueries:
    """Tests for the query helpers."""

    def test_list_loans_by_status(self, book):
        for _ in range(4):
            book.request("alice", 5, HOUR, ETH)
        book.fund("bob", 1, ETH)
        book.fund("bob", 2, ETH)
        book.fund("carol", 3, ETH)
        book.repay("alice", 1, REPAYMENT)
        book.elapse(HOUR)
        book.claim("carol", 3)

        assert book.list_loans(LoanStatus.REQUESTED) == [0]
        assert book.list_loans(LoanStatus.FUNDED) == [2]
        assert book.list_loans(LoanStatus.REPAID) == [1]
        assert book.list_loans(LoanStatus.DEFAULTED) == [3]
        assert book.outstanding_collateral() == 2 * ETH
        assert book.verify_custody()

    def test_get_loan_unknown(self, book):
        with pytest.raises(LoanNotFound):
            book.get_loan(0)

    def test_verbose_prints_events(self, capsys):
        book = LoanBook("loud", initial_time=START, verbose=True)
        book.register_party("alice")
        book.issue("alice", 100)
        book.request("alice", 5, HOUR, 100)
        out = capsys.readouterr().out
        assert "Registered" in out
        assert "LoanRequested" in out


# ============================================================================
# AMOUNT RANGE
# ============================================================================

class TestAmountRange:
    """Amounts far beyond ether scale stay exact; amounts past MAX_AMOUNT are refused."""

    HUGE = Decimal(10) ** 55

    def huge_book(self):
        book = LoanBook("huge", initial_time=START, verbose=False)
        for party in ("alice", "bob"):
            book.register_party(party)
            book.issue(party, 2 * self.HUGE)
        return book

    def test_lifecycle_at_ten_to_the_fifty_five(self):
        book = self.huge_book()
        loan = book.request("alice", 7, HOUR, self.HUGE)
        book.fund("bob", loan.loan_id, self.HUGE)
        repayment = book.repayment_amount(loan.loan_id)
        assert repayment == self.HUGE + self.HUGE * 7 / 100

        book.repay("alice", loan.loan_id, repayment)
        assert book.balance("bob") == repayment + self.HUGE
        assert book.balance("alice") == 3 * self.HUGE - repayment
        assert book.ledger.verify_double_entry()
        assert book.verify_custody()

    def test_request_beyond_max_is_invalid(self, book):
        before = snapshot(book)
        with pytest.raises(InvalidAmount):
            book.request("alice", 5, HOUR, 2 ** 256)
        assert snapshot(book) == before

    def test_fund_and_repay_beyond_max_are_wrong_amounts(self, funded_book):
        funded_book.request("carol", 5, HOUR, ETH)
        before = snapshot(funded_book)
        with pytest.raises(WrongAmount):
            funded_book.fund("bob", 1, 2 ** 256)
        with pytest.raises(WrongAmount):
            funded_book.repay("alice", 0, Decimal(10) ** 100)
        assert snapshot(funded_book) == before

    def test_issue_past_max_balance_rejected(self, book):
        with pytest.raises(LedgerError):
            book.issue("alice", MAX_AMOUNT)
        assert book.balance("alice") == TEN_ETH
