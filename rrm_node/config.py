"""
rrm_node/config.py

Guardrail Policy Parameters for the SafeRRM Change Planner.

The two stability policies are fixed integers in production, but every
deployment site has its own tolerance for churn. `GuardrailPolicy` bundles
them into one validated, immutable object that is injected into the planner
and the rule engine, so a test or a site override never touches module state.

Environment overrides:
    SAFE_RRM_CHANGE_BUDGET_MINUTES   -> change_budget_minutes
    SAFE_RRM_HYSTERESIS_THRESHOLD_DB -> hysteresis_threshold_db
"""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


# Minimum spacing between applied changes to the same access point (4 hours).
CHANGE_BUDGET_MINUTES = 4 * 60

# Minimum transmit power delta accepted for a power change.
HYSTERESIS_THRESHOLD_DB = 2

ENV_CHANGE_BUDGET_MINUTES = "SAFE_RRM_CHANGE_BUDGET_MINUTES"
ENV_HYSTERESIS_THRESHOLD_DB = "SAFE_RRM_HYSTERESIS_THRESHOLD_DB"


class GuardrailPolicy(BaseModel):
    """Tunable parameters for the rate-limit and hysteresis guardrails."""

    model_config = ConfigDict(frozen=True)

    change_budget_minutes: int = Field(
        default=CHANGE_BUDGET_MINUTES,
        ge=0,
        description="Minimum minutes between applied changes to one access point.",
    )
    hysteresis_threshold_db: int = Field(
        default=HYSTERESIS_THRESHOLD_DB,
        ge=0,
        description="Minimum |new - current| power delta (dB) for a power change.",
    )

    @property
    def initial_change_time(self) -> int:
        """
        Sentinel `last_change_time_minutes` for a freshly registered access
        point. One minute further back than the budget, so a request at any
        non-negative time always clears the rate-limit rule.
        """
        return -self.change_budget_minutes - 1

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GuardrailPolicy":
        """Builds a policy from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        overrides: dict[str, str] = {}
        if ENV_CHANGE_BUDGET_MINUTES in env:
            overrides["change_budget_minutes"] = env[ENV_CHANGE_BUDGET_MINUTES]
        if ENV_HYSTERESIS_THRESHOLD_DB in env:
            overrides["hysteresis_threshold_db"] = env[ENV_HYSTERESIS_THRESHOLD_DB]

        policy = cls(**overrides)
        if overrides:
            logger.info(
                "Guardrail policy overridden from environment: budget=%d min, hysteresis=%d dB",
                policy.change_budget_minutes, policy.hysteresis_threshold_db,
            )
        return policy
