"""
Config -> Kernel bridges.

Turn a ``FulfillmentConfig`` into kernel inputs: the prefix map and
timezone for ``SequenceService``, the override roles for
``ApprovalService``, module services that number their documents in the
configured timezone, and persisted approval levels and rules.  These live
in fulfillment_config because the kernel must never import it.

Usage:
    config = get_active_config()
    seed_approval_configuration(session, config, actor_id)
    numbers = build_sequence_service(session, config, clock)
    transfers = build_transfer_service(session, config, clock)
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment_config.schema import FulfillmentConfig
from fulfillment_kernel.domain.approval import ApproverDirectory
from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.numbering import DEFAULT_PREFIXES
from fulfillment_kernel.exceptions import ConfigurationError
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.approval import (
    ApprovalLevelModel,
    ApprovalRuleLevelModel,
    ApprovalRuleModel,
)
from fulfillment_kernel.services.approval_service import ApprovalService
from fulfillment_kernel.services.sequence_service import SequenceService
from fulfillment_modules.delivery.service import DeliveryService
from fulfillment_modules.picking.service import PickingService
from fulfillment_modules.transfer.config import TransferConfig
from fulfillment_modules.transfer.service import TransferService

logger = get_logger("config.bridges")


def build_prefix_map(config: FulfillmentConfig) -> dict[str, str]:
    """Built-in prefixes overlaid with the configured ones."""
    return {**DEFAULT_PREFIXES, **config.prefixes}


def build_sequence_service(
    session: Session,
    config: FulfillmentConfig,
    clock: Clock | None = None,
) -> SequenceService:
    return SequenceService(
        session,
        clock=clock,
        prefixes=build_prefix_map(config),
        timezone=config.timezone,
    )


def build_approval_service(
    session: Session,
    config: FulfillmentConfig,
    clock: Clock | None = None,
    directory: ApproverDirectory | None = None,
) -> ApprovalService:
    return ApprovalService(
        session,
        clock=clock,
        directory=directory,
        override_roles=frozenset(config.override_roles),
    )


def build_picking_service(
    session: Session,
    config: FulfillmentConfig,
    clock: Clock | None = None,
    auto_commit: bool = True,
) -> PickingService:
    return PickingService(
        session,
        sequence=build_sequence_service(session, config, clock),
        clock=clock,
        auto_commit=auto_commit,
    )


def build_transfer_service(
    session: Session,
    config: FulfillmentConfig,
    clock: Clock | None = None,
    transfer_config: TransferConfig | None = None,
    auto_commit: bool = True,
) -> TransferService:
    """Transfer service numbering WT, PL and DO documents in the business timezone."""
    return TransferService(
        session,
        sequence=build_sequence_service(session, config, clock),
        clock=clock,
        config=transfer_config,
        auto_commit=auto_commit,
    )


def build_delivery_service(
    session: Session,
    config: FulfillmentConfig,
    clock: Clock | None = None,
    auto_commit: bool = True,
) -> DeliveryService:
    return DeliveryService(
        session,
        sequence=build_sequence_service(session, config, clock),
        clock=clock,
        auto_commit=auto_commit,
    )


def seed_approval_configuration(
    session: Session,
    config: FulfillmentConfig,
    actor_id: UUID,
) -> tuple[dict[str, ApprovalLevelModel], dict[str, ApprovalRuleModel]]:
    """
    Upsert the configured approval levels and rules, keyed by name.

    Existing rows are updated in place; a rule's level list is replaced.
    Levels and rules absent from the configuration are left untouched.
    Flushes but does not commit.

    Returns:
        (levels by name, rules by name) for everything in the configuration.
    """
    levels: dict[str, ApprovalLevelModel] = {}
    for definition in config.approval_levels:
        level = session.execute(
            select(ApprovalLevelModel).where(ApprovalLevelModel.name == definition.name)
        ).scalar_one_or_none()
        if level is None:
            level = ApprovalLevelModel(name=definition.name, created_by_id=actor_id)
            session.add(level)
        else:
            level.updated_by_id = actor_id
        level.level_order = definition.level_order
        level.role = definition.role
        level.min_amount = definition.min_amount
        level.max_amount = definition.max_amount
        level.is_active = definition.is_active
        levels[definition.name] = level
    session.flush()

    rules: dict[str, ApprovalRuleModel] = {}
    for definition in config.approval_rules:
        missing = [name for name in definition.levels if name not in levels]
        if missing:
            raise ConfigurationError(
                f"Approval rule '{definition.name}' references unknown level(s) "
                f"{', '.join(missing)}"
            )
        rule = session.execute(
            select(ApprovalRuleModel).where(ApprovalRuleModel.name == definition.name)
        ).scalar_one_or_none()
        if rule is None:
            rule = ApprovalRuleModel(name=definition.name, created_by_id=actor_id)
            session.add(rule)
        else:
            rule.updated_by_id = actor_id
            rule.level_links.clear()
            session.flush()
        rule.document_type = definition.document_type
        rule.min_amount = definition.min_amount
        rule.max_amount = definition.max_amount
        rule.is_active = definition.is_active
        rule.level_links.extend(
            ApprovalRuleLevelModel(level_id=levels[name].id, position=position)
            for position, name in enumerate(definition.levels, start=1)
        )
        rules[definition.name] = rule
    session.flush()

    logger.info(
        "approval_configuration_seeded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "level_count": len(levels),
            "rule_count": len(rules),
        },
    )
    return levels, rules
