"""
rrm_node/guardrails.py

Deterministic Stability Guardrails for Wi-Fi Radio Configuration Changes.

Every proposed channel or transmit-power change is evaluated against an
ordered chain of admission rules before the planner is allowed to touch the
access point's record:

    1. Time Window   - no non-emergency changes during peak hour
    2. Change Budget - at most one applied change per budget window
    3. Hysteresis    - power changes must move by at least the threshold

The chain short-circuits: the first failing rule is the reported reason and
later rules are not evaluated. A request failing several rules is reported
by the earliest one.

The engine is pure. It reads the access point and the request and returns a
verdict; applying the change is the planner's job.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from rrm_node.config import GuardrailPolicy
from rrm_node.state_store import AccessPoint


# ---------------------------------------------------------------------------
# Rejection Taxonomy
# ---------------------------------------------------------------------------

class RejectionReason(str, Enum):
    """Why a change request was refused."""
    PEAK_HOUR_BLOCKED = "PEAK_HOUR_BLOCKED"
    BUDGET_NOT_ELAPSED = "BUDGET_NOT_ELAPSED"
    HYSTERESIS_TOO_SMALL = "HYSTERESIS_TOO_SMALL"

    UNKNOWN_ACCESS_POINT = "UNKNOWN_ACCESS_POINT"
    """Lookup failure, not a policy rejection. Never produced by a rule."""


# ---------------------------------------------------------------------------
# Request and Violation Records
# ---------------------------------------------------------------------------

class ChangeRequest(BaseModel):
    """
    A proposed mutation to one access point. Not persisted.

    `None` on a field means "no change requested", which is distinct from
    requesting the value the access point already has.
    """
    new_channel: Optional[int] = Field(default=None, description="Requested channel, if any.")
    new_power_db: Optional[int] = Field(default=None, description="Requested power (dB), if any.")
    is_emergency: bool = Field(default=False, description="Bypasses the time-window rule only.")

    @property
    def is_empty(self) -> bool:
        return self.new_channel is None and self.new_power_db is None


class GuardrailViolation(BaseModel):
    """Structured record of the guardrail that vetoed a request."""
    rule: RejectionReason
    observed_value: Optional[int] = None
    limit_value: Optional[int] = None
    message: str


# ---------------------------------------------------------------------------
# Rule Engine
# ---------------------------------------------------------------------------

Rule = Callable[[AccessPoint, ChangeRequest, int, bool], Optional[GuardrailViolation]]


class GuardrailEngine:
    """
    Ordered, short-circuiting evaluator for the stability guardrails.

    Args:
        policy: Budget and hysteresis parameters. Defaults to GuardrailPolicy().
    """

    def __init__(self, policy: Optional[GuardrailPolicy] = None) -> None:
        self.policy = policy or GuardrailPolicy()
        self._rules: tuple[Rule, ...] = (
            self.check_time_window,
            self.check_change_budget,
            self.check_hysteresis,
        )

    def evaluate(
        self,
        ap: AccessPoint,
        request: ChangeRequest,
        current_time_minutes: int,
        is_peak_hour: bool,
    ) -> Optional[GuardrailViolation]:
        """
        Runs the rule chain against one access point.

        Returns:
            The first GuardrailViolation raised by the chain, or None if the
            request passes every applicable rule.
        """
        for rule in self._rules:
            violation = rule(ap, request, current_time_minutes, is_peak_hour)
            if violation is not None:
                return violation
        return None

    # --- Rule 1: Time Window (peak-hour avoidance) ---
    def check_time_window(
        self, ap: AccessPoint, request: ChangeRequest, current_time_minutes: int, is_peak_hour: bool
    ) -> Optional[GuardrailViolation]:
        if is_peak_hour and not request.is_emergency:
            return GuardrailViolation(
                rule=RejectionReason.PEAK_HOUR_BLOCKED,
                message=f"Change to {ap.id} blocked by time window (peak hour, non-emergency).",
            )
        return None

    # --- Rule 2: Change Budget (rate limiting). Emergencies are not exempt. ---
    def check_change_budget(
        self, ap: AccessPoint, request: ChangeRequest, current_time_minutes: int, is_peak_hour: bool
    ) -> Optional[GuardrailViolation]:
        elapsed = current_time_minutes - ap.last_change_time_minutes
        if elapsed < self.policy.change_budget_minutes:
            return GuardrailViolation(
                rule=RejectionReason.BUDGET_NOT_ELAPSED,
                observed_value=elapsed,
                limit_value=self.policy.change_budget_minutes,
                message=(
                    f"Change to {ap.id} blocked by budget (last change {elapsed} min ago, "
                    f"budget {self.policy.change_budget_minutes} min)."
                ),
            )
        return None

    # --- Rule 3: Hysteresis (anti-flapping). Power changes only. ---
    def check_hysteresis(
        self, ap: AccessPoint, request: ChangeRequest, current_time_minutes: int, is_peak_hour: bool
    ) -> Optional[GuardrailViolation]:
        if request.new_power_db is None:
            return None
        delta = abs(request.new_power_db - ap.power_db)
        if delta < self.policy.hysteresis_threshold_db:
            return GuardrailViolation(
                rule=RejectionReason.HYSTERESIS_TOO_SMALL,
                observed_value=delta,
                limit_value=self.policy.hysteresis_threshold_db,
                message=(
                    f"Power change on {ap.id} blocked by hysteresis "
                    f"(delta {delta}dB < {self.policy.hysteresis_threshold_db}dB)."
                ),
            )
        return None
