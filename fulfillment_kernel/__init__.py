"""
Fulfillment Kernel - document lifecycle and inventory consistency core

Multi-warehouse order fulfillment primitives with:
- Per-warehouse, per-month document numbering
- A stock ledger with an append-only movement trail
- Multi-level approval chains
- Row-locked, all-or-nothing units of work
"""

__version__ = "0.1.0"
