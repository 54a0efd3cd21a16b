"""
Conformance Test Suite

Property-based checks of the rules every session engine build must keep:
1. test_credits.py - Wallet balances and the ledger journal agree
2. test_settlement.py - A session is settled at most once
3. test_schedule.py - Overlap detection and status ordering

These tests use hypothesis for property-based testing. Each example
builds its own in-memory database.
"""
