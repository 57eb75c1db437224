"""
Module ORM registry (``fulfillment_modules._orm_registry``).

Ensures every SQLAlchemy model is imported so that ``Base.metadata``
contains all tables before ``create_tables()`` runs.  Scripts and
``tests/conftest.py`` go through ``create_all_tables()``.

MUST NOT be imported at module level by ``fulfillment_kernel``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``fulfillment_modules.*.orm`` module.

    Idempotent -- repeated calls are harmless.
    """
    # Kernel tables first: module tables reference warehouses and products
    import fulfillment_kernel.models  # noqa: F401
    # fmt: off
    import fulfillment_modules.picking.orm  # noqa: F401
    import fulfillment_modules.transfer.orm  # noqa: F401
    import fulfillment_modules.delivery.orm  # noqa: F401
    # fmt: on


def create_all_tables() -> None:
    """Create kernel and module tables.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from fulfillment_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
