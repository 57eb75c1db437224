"""
Fixtures for the document module tests.

Module services commit their own unit of work, and a failed call rolls
the session back to its last commit.  Reference data and opening stock
are therefore committed here, so a test that provokes a failure still
finds its warehouses, products and stock afterwards.
"""

from uuid import uuid4

import pytest

from fulfillment_kernel.domain.actor import APPROVE_TRANSFERS, Actor
from fulfillment_modules.delivery.service import DeliveryService
from fulfillment_modules.picking.service import PickingService
from fulfillment_modules.transfer.service import TransferService


@pytest.fixture
def jakarta(jakarta, session):
    session.commit()
    return jakarta


@pytest.fixture
def makassar(makassar, session):
    session.commit()
    return makassar


@pytest.fixture
def product(product, session):
    session.commit()
    return product


@pytest.fixture
def stocked(session, seed_stock, create_product):
    """Factory: a committed product with opening stock in one warehouse.

    Usage::

        item = stocked(jakarta.id, 100, bin_location="A-01-03")
    """

    def _stocked(warehouse_id, quantity, **kwargs):
        item = create_product()
        seed_stock(item.id, warehouse_id, quantity, **kwargs)
        session.commit()
        return item

    return _stocked


@pytest.fixture
def picking_service(session, sequence_service, deterministic_clock) -> PickingService:
    return PickingService(session, sequence_service, deterministic_clock)


@pytest.fixture
def transfer_service(session, sequence_service, deterministic_clock) -> TransferService:
    return TransferService(session, sequence_service, deterministic_clock)


@pytest.fixture
def delivery_service(session, sequence_service, deterministic_clock) -> DeliveryService:
    return DeliveryService(session, sequence_service, deterministic_clock)


@pytest.fixture
def jakarta_manager(jakarta) -> Actor:
    """May approve transfers out of Jakarta only."""
    return Actor(
        actor_id=uuid4(),
        role="WAREHOUSE_MANAGER",
        capabilities=frozenset({APPROVE_TRANSFERS}),
        warehouse_ids=frozenset({jakarta.id}),
    )
