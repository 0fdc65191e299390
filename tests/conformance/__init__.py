"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the loan ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Currency is neither created nor destroyed; custody
   holds exactly the collateral of unresolved loans
2. lifecycle.py - Terminal states are exclusive and reached at most once
3. atomicity.py - A rejected operation changes nothing

These tests use hypothesis for property-based testing.
"""
