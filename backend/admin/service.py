"""Admin service — audited leave-type configuration changes."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from backend.common.constants import LeaveType
from backend.common.unit_of_work import unit_of_work
from backend.dependencies import Services
from backend.leave.config_store import jsonable
from backend.leave.schemas import LeaveTypeConfigOut, LeaveTypeConfigUpdate

logger = logging.getLogger(__name__)


class AdminService:
    """Administrative actions that span the config store and the audit sink."""

    @staticmethod
    async def update_leave_config(
        services: Services,
        leave_type: LeaveType,
        body: LeaveTypeConfigUpdate,
        actor_id: uuid.UUID,
    ) -> LeaveTypeConfigOut:
        fields: dict[str, Any] = body.model_dump(exclude_unset=True)
        async with unit_of_work(services.session_factory) as db:
            row, old_values = await services.config_store.update(db, leave_type, fields)
            new_values = {name: jsonable(getattr(row, name)) for name in fields}
            snapshot = LeaveTypeConfigOut.model_validate(row)

        logger.info(
            "Leave config %s updated by %s: %s", leave_type.value, actor_id, sorted(fields),
        )
        await services.audit.record(
            action="update_leave_config",
            entity_type="leave_type_config",
            entity_id=snapshot.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=new_values,
        )
        return snapshot

    @staticmethod
    async def seed_leave_configs(services: Services) -> int:
        async with unit_of_work(services.session_factory) as db:
            return await services.config_store.seed_defaults_if_empty(db)
