"""
DebtFlow - Source Package

A personal ledger that tracks debt paydown funded by betting profit,
trading and savings, reconciled against one or more debt cards.

DESIGN PRINCIPLES:
1. Every figure is derived from the records, never stored
2. The auto-bank milestone counter is the only engine state
3. Degenerate inputs resolve to defined defaults, not exceptions
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "DebtFlow Team"
