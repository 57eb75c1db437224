"""
Fulfillment document modules.

Each module (``picking``, ``transfer``, ``delivery``) follows the same
structure:

    models.py     Enums and frozen DTOs handed back to callers.
    orm.py        SQLAlchemy persistence models.
    workflows.py  The document's state machine (single source of truth).
    service.py    Thin orchestration: workflow check, ledger and numbering
                  calls, one transaction per public method.

Modules import from ``fulfillment_kernel`` (and ``fulfillment_engines``)
but never the reverse.
"""
