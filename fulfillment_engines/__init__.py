"""
Pure calculation engines.

Engines take domain value objects, return domain value objects, and never
touch the database, the clock, or any other I/O.
"""

from fulfillment_engines.approval import (
    build_chain,
    find_ambiguous_rules,
    resolve_chain,
    select_rule,
)

__all__ = [
    "build_chain",
    "find_ambiguous_rules",
    "resolve_chain",
    "select_rule",
]
