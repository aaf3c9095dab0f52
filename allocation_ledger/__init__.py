"""
Allocation Ledger - Source Package

Tracks personal funds held across bank accounts and the portions of
those balances earmarked for savings goals, and records withdrawals
and returns against them.

DESIGN PRINCIPLES:
1. Bank balance, goal allocation and transaction log move together
2. Validate before the first write, never after
3. Every multi-step write is recorded so it can be finished after a crash
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Allocation Ledger Team"
