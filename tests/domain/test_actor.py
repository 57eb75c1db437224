"""Tests for warehouse authority checks on ``Actor``."""

from uuid import uuid4

from fulfillment_kernel.domain.actor import APPROVE_TRANSFERS, MANAGE_ALL_WAREHOUSES, Actor


def test_manager_of_all_warehouses_may_approve_anywhere():
    actor = Actor(uuid4(), "ADMIN", capabilities=frozenset({MANAGE_ALL_WAREHOUSES}))
    assert actor.can_approve_transfer_from(uuid4())
    assert actor.can_access_warehouse(uuid4())


def test_approver_limited_to_assigned_warehouses():
    jakarta, makassar = uuid4(), uuid4()
    actor = Actor(
        uuid4(), "WAREHOUSE_MANAGER",
        capabilities=frozenset({APPROVE_TRANSFERS}),
        warehouse_ids=frozenset({jakarta}),
    )
    assert actor.can_approve_transfer_from(jakarta)
    assert not actor.can_approve_transfer_from(makassar)


def test_warehouse_access_without_capability():
    jakarta = uuid4()
    actor = Actor(uuid4(), "STAFF", warehouse_ids=frozenset({jakarta}))
    assert actor.can_access_warehouse(jakarta)
    assert not actor.can_approve_transfer_from(jakarta)
