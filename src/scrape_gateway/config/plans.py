"""Plan tiers and their default daily request quotas.

A principal's ``quota_limit`` is copied from this table when the principal is
first synced.  Later plan changes are made by updating the row directly; the
ledger only ever reads the stored limit.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Plan(str, Enum):
    """Billing plan of a principal."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


@dataclass(frozen=True)
class PlanConfig:
    """Per-plan defaults.

    Attributes:
        plan: The :class:`Plan` this configuration applies to.
        daily_quota: Requests per UTC day counted against ``/scrape`` and
            ``/screenshot``.
    """

    plan: Plan
    daily_quota: int


PLAN_DEFAULTS: dict[Plan, PlanConfig] = {
    Plan.FREE: PlanConfig(plan=Plan.FREE, daily_quota=100),
    Plan.PRO: PlanConfig(plan=Plan.PRO, daily_quota=5_000),
    Plan.ENTERPRISE: PlanConfig(plan=Plan.ENTERPRISE, daily_quota=100_000),
}


def default_quota_for(plan: str) -> int:
    """Return the default daily quota for ``plan``, falling back to FREE."""
    try:
        return PLAN_DEFAULTS[Plan(plan)].daily_quota
    except ValueError:
        return PLAN_DEFAULTS[Plan.FREE].daily_quota
