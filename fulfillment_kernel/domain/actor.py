"""
Acting user (``fulfillment_kernel.domain.actor``).

The kernel does not own users or sessions; the surrounding application
passes an ``Actor`` describing who is acting, which role they hold, which
capabilities that role grants and which warehouses they may touch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

APPROVE_TRANSFERS = "approve_transfers"
MANAGE_ALL_WAREHOUSES = "manage_all_warehouses"


@dataclass(frozen=True)
class Actor:
    actor_id: UUID
    role: str
    capabilities: frozenset[str] = field(default_factory=frozenset)
    warehouse_ids: frozenset[UUID] = field(default_factory=frozenset)

    def can(self, capability: str) -> bool:
        return capability in self.capabilities

    @property
    def manages_all_warehouses(self) -> bool:
        return MANAGE_ALL_WAREHOUSES in self.capabilities

    def can_access_warehouse(self, warehouse_id: UUID) -> bool:
        return self.manages_all_warehouses or warehouse_id in self.warehouse_ids

    def can_approve_transfer_from(self, warehouse_id: UUID) -> bool:
        if self.manages_all_warehouses:
            return True
        return self.can(APPROVE_TRANSFERS) and warehouse_id in self.warehouse_ids
