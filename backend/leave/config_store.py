"""Entitlement configuration store and the built-in fallback policies.

Administrators edit one ``LeaveTypeConfig`` row per leave type. The hot path
reads them through :meth:`EntitlementConfigStore.resolve`, which degrades to
the hard-coded defaults below when a row is missing so that submitting and
approving leave never depends on admin setup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import LeaveType
from backend.common.exceptions import ConfigurationMissing
from backend.config import settings
from backend.leave.models import LeaveTypeConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeavePolicy:
    """Immutable view of a leave type's policy, from a row or the defaults."""

    leave_type: LeaveType
    base_entitlement: Decimal
    # (years threshold, bonus days), ascending; bonuses are cumulative
    tenure_tiers: tuple[tuple[int, Decimal], ...] = ()
    prorate_first_year: bool = False
    allow_carry_forward: bool = False
    max_carry_forward: Optional[Decimal] = None
    requires_attachment: bool = False
    min_advance_notice_days: int = 0
    max_days_per_application: Optional[Decimal] = None
    is_balance_bearing: bool = False
    counts_calendar_days: bool = False
    is_active: bool = True
    is_fallback: bool = field(default=False, compare=False)

    @classmethod
    def from_row(cls, row: LeaveTypeConfig) -> "LeavePolicy":
        tiers = sorted(
            (int(t["years"]), Decimal(str(t["bonus_days"])))
            for t in (row.tenure_tiers or [])
        )
        return cls(
            leave_type=row.leave_type,
            base_entitlement=Decimal(row.base_entitlement),
            tenure_tiers=tuple(tiers),
            prorate_first_year=row.prorate_first_year,
            allow_carry_forward=row.allow_carry_forward,
            max_carry_forward=(
                Decimal(row.max_carry_forward)
                if row.max_carry_forward is not None
                else None
            ),
            requires_attachment=row.requires_attachment,
            min_advance_notice_days=row.min_advance_notice_days,
            max_days_per_application=(
                Decimal(row.max_days_per_application)
                if row.max_days_per_application is not None
                else None
            ),
            is_balance_bearing=row.is_balance_bearing,
            counts_calendar_days=row.counts_calendar_days,
            is_active=row.is_active,
        )

    @property
    def carry_forward_cap(self) -> Decimal:
        if self.max_carry_forward is not None:
            return self.max_carry_forward
        return Decimal(settings.MAX_CARRY_FORWARD_DAYS)


# ── Built-in fallback table ─────────────────────────────────────────
# annual 12 (16 from 5 years), sick 14 / 18 / 22, maternity 98,
# paternity 7, hospitalization 60, everything else 0.

BALANCE_BEARING_DEFAULT = frozenset(
    {LeaveType.annual, LeaveType.sick, LeaveType.emergency}
)
CALENDAR_DAY_DEFAULT = frozenset({LeaveType.maternity, LeaveType.paternity})

FALLBACK_POLICIES: dict[LeaveType, LeavePolicy] = {
    LeaveType.annual: LeavePolicy(
        leave_type=LeaveType.annual,
        base_entitlement=Decimal("12"),
        tenure_tiers=((5, Decimal("4")),),
        prorate_first_year=True,
        allow_carry_forward=True,
        is_balance_bearing=True,
        is_fallback=True,
    ),
    LeaveType.sick: LeavePolicy(
        leave_type=LeaveType.sick,
        base_entitlement=Decimal("14"),
        tenure_tiers=((2, Decimal("4")), (5, Decimal("4"))),
        is_balance_bearing=True,
        is_fallback=True,
    ),
    LeaveType.maternity: LeavePolicy(
        leave_type=LeaveType.maternity,
        base_entitlement=Decimal("98"),
        counts_calendar_days=True,
        is_fallback=True,
    ),
    LeaveType.paternity: LeavePolicy(
        leave_type=LeaveType.paternity,
        base_entitlement=Decimal("7"),
        counts_calendar_days=True,
        is_fallback=True,
    ),
    LeaveType.hospitalization: LeavePolicy(
        leave_type=LeaveType.hospitalization,
        base_entitlement=Decimal("60"),
        is_fallback=True,
    ),
}


def fallback_policy(leave_type: LeaveType) -> LeavePolicy:
    policy = FALLBACK_POLICIES.get(leave_type)
    if policy is not None:
        return policy
    return LeavePolicy(
        leave_type=leave_type,
        base_entitlement=Decimal("0"),
        is_balance_bearing=leave_type in BALANCE_BEARING_DEFAULT,
        counts_calendar_days=leave_type in CALENDAR_DAY_DEFAULT,
        is_fallback=True,
    )


# ── Seed rows ───────────────────────────────────────────────────────

DEFAULT_CONFIGS: list[dict[str, Any]] = [
    {
        "leave_type": LeaveType.annual,
        "name": "Annual Leave",
        "base_entitlement": Decimal("12"),
        "tenure_tiers": [{"years": 2, "bonus_days": 4}, {"years": 5, "bonus_days": 8}],
        "prorate_first_year": True,
        "allow_carry_forward": True,
        "max_carry_forward": Decimal("5"),
        "is_balance_bearing": True,
        "display_order": 1,
    },
    {
        "leave_type": LeaveType.sick,
        "name": "Sick Leave",
        "base_entitlement": Decimal("14"),
        "tenure_tiers": [{"years": 2, "bonus_days": 4}, {"years": 5, "bonus_days": 8}],
        "requires_attachment": True,
        "is_balance_bearing": True,
        "display_order": 2,
    },
    {
        "leave_type": LeaveType.maternity,
        "name": "Maternity Leave",
        "base_entitlement": Decimal("98"),
        "requires_attachment": True,
        "counts_calendar_days": True,
        "display_order": 3,
    },
    {
        "leave_type": LeaveType.paternity,
        "name": "Paternity Leave",
        "base_entitlement": Decimal("7"),
        "counts_calendar_days": True,
        "display_order": 4,
    },
    {
        "leave_type": LeaveType.emergency,
        "name": "Emergency Leave",
        "base_entitlement": Decimal("3"),
        "is_balance_bearing": True,
        "display_order": 5,
    },
    {
        "leave_type": LeaveType.unpaid,
        "name": "Unpaid Leave",
        "base_entitlement": Decimal("0"),
        "display_order": 6,
    },
    {
        "leave_type": LeaveType.special,
        "name": "Special Leave",
        "description": "Marriage, compassionate and hajj leave",
        "base_entitlement": Decimal("0"),
        "display_order": 7,
    },
    {
        "leave_type": LeaveType.hospitalization,
        "name": "Hospitalization Leave",
        "base_entitlement": Decimal("60"),
        "requires_attachment": True,
        "display_order": 8,
    },
]


# ═════════════════════════════════════════════════════════════════════
# EntitlementConfigStore
# ═════════════════════════════════════════════════════════════════════


class EntitlementConfigStore:
    """CRUD over ``leave_type_configs`` plus fallback resolution."""

    async def get(self, db: AsyncSession, leave_type: LeaveType) -> LeaveTypeConfig:
        result = await db.execute(
            select(LeaveTypeConfig).where(LeaveTypeConfig.leave_type == leave_type)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise ConfigurationMissing(leave_type)
        return row

    async def resolve(self, db: AsyncSession, leave_type: LeaveType) -> LeavePolicy:
        """Policy for ``leave_type``, falling back to the built-in table."""
        try:
            row = await self.get(db, leave_type)
        except ConfigurationMissing:
            logger.warning(
                "No configuration for leave type %s; using built-in defaults",
                leave_type.value,
            )
            return fallback_policy(leave_type)
        return LeavePolicy.from_row(row)

    async def list_all(
        self, db: AsyncSession, *, active_only: bool = False,
    ) -> list[LeaveTypeConfig]:
        query = select(LeaveTypeConfig).order_by(
            LeaveTypeConfig.display_order, LeaveTypeConfig.leave_type
        )
        if active_only:
            query = query.where(LeaveTypeConfig.is_active.is_(True))
        result = await db.execute(query)
        return list(result.scalars().all())

    async def update(
        self, db: AsyncSession, leave_type: LeaveType, fields: dict[str, Any],
    ) -> tuple[LeaveTypeConfig, dict[str, Any]]:
        """Apply ``fields`` to the row; returns the row and its previous values."""
        row = await self.get(db, leave_type)
        old_values: dict[str, Any] = {}
        for name, value in fields.items():
            if name == "tenure_tiers" and value is not None:
                value = sorted(
                    (
                        {"years": int(t["years"]), "bonus_days": float(t["bonus_days"])}
                        for t in value
                    ),
                    key=lambda t: t["years"],
                )
            old_values[name] = jsonable(getattr(row, name))
            setattr(row, name, value)
        await db.flush()
        return row, old_values

    async def seed_defaults_if_empty(self, db: AsyncSession) -> int:
        """Install the default rows when the table is empty. Returns rows added."""
        count = (
            await db.execute(select(func.count()).select_from(LeaveTypeConfig))
        ).scalar_one()
        if count:
            return 0

        for defaults in DEFAULT_CONFIGS:
            db.add(LeaveTypeConfig(**defaults))
        await db.flush()
        logger.info("Seeded %d default leave type configurations", len(DEFAULT_CONFIGS))
        return len(DEFAULT_CONFIGS)


def jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "value"):
        return value.value
    return value
