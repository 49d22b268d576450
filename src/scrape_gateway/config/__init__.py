"""Configuration package for Scrape Gateway.

Re-exports the most commonly used configuration symbols so that
callers can write::

    from scrape_gateway.config import get_settings, Plan

without needing to know which sub-module each symbol lives in.
"""

from __future__ import annotations

from scrape_gateway.config.plans import PLAN_DEFAULTS, Plan, PlanConfig, default_quota_for
from scrape_gateway.config.settings import Settings, get_settings

__all__ = [
    # settings
    "Settings",
    "get_settings",
    # plans
    "Plan",
    "PlanConfig",
    "PLAN_DEFAULTS",
    "default_quota_for",
]
