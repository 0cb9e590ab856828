"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the token ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Supply equals the sum of balances, nothing negative
2. atomicity.py - Rejected commands leave no trace
3. determinism.py - Same commands, same state; replay reproduces state
4. authorization.py - Admin-only commands, pause gating, pure queries

These tests use hypothesis for property-based testing.
"""
