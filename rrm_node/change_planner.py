"""
rrm_node/change_planner.py

Safe Change Planner: admission and application of radio configuration changes.

This module is where the guardrails meet the network state. For each request:
  1. Lock the target access point's record in the NetworkStateStore.
  2. [GUARDRAILS] Run the GuardrailEngine rule chain against the live record.
     - On the first violation: reject. No mutation.
  3. [APPLY] Overwrite each requested field that differs from the stored value.
     - If anything changed, stamp `last_change_time_minutes` with the request time.
     - If nothing changed, the request is still accepted but the clock is left alone.
  4. Emit a DecisionEvent describing exactly what happened.

The planner does not propose configurations. It only accepts or rejects
proposals supplied by the caller.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from rrm_node.config import GuardrailPolicy
from rrm_node.guardrails import (
    ChangeRequest,
    GuardrailEngine,
    GuardrailViolation,
    RejectionReason,
)
from rrm_node.state_store import AccessPoint, AccessPointNotFound, NetworkStateStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Decision Outcome Taxonomy
# ---------------------------------------------------------------------------

class DecisionOutcome(str, Enum):
    """Every possible result of a single evaluate_and_apply call."""

    ACCEPTED_APPLIED = "ACCEPTED_APPLIED"
    """All guardrails passed and at least one field changed."""

    ACCEPTED_NO_CHANGE = "ACCEPTED_NO_CHANGE"
    """All guardrails passed but the request matched current state. Clock untouched."""

    REJECTED_PEAK_HOUR = "REJECTED_PEAK_HOUR"
    REJECTED_CHANGE_BUDGET = "REJECTED_CHANGE_BUDGET"
    REJECTED_HYSTERESIS = "REJECTED_HYSTERESIS"

    REJECTED_UNKNOWN_ACCESS_POINT = "REJECTED_UNKNOWN_ACCESS_POINT"
    """Lookup failure. Reported apart from the policy rejections."""


_OUTCOME_BY_REASON: dict[RejectionReason, DecisionOutcome] = {
    RejectionReason.PEAK_HOUR_BLOCKED: DecisionOutcome.REJECTED_PEAK_HOUR,
    RejectionReason.BUDGET_NOT_ELAPSED: DecisionOutcome.REJECTED_CHANGE_BUDGET,
    RejectionReason.HYSTERESIS_TOO_SMALL: DecisionOutcome.REJECTED_HYSTERESIS,
    RejectionReason.UNKNOWN_ACCESS_POINT: DecisionOutcome.REJECTED_UNKNOWN_ACCESS_POINT,
}


# ---------------------------------------------------------------------------
# Decision Event: Structured Audit Record
# ---------------------------------------------------------------------------

class AppliedChange(BaseModel):
    field: str
    previous: int
    new: int


class DecisionEvent(BaseModel):
    """
    Structured record of one evaluate_and_apply call.
    Every DecisionEvent can be forwarded to the DecisionLedger.
    """
    timestamp_ns: int = Field(default_factory=time.time_ns)
    ap_id: str
    outcome: DecisionOutcome
    accepted: bool
    state_changed: bool = False
    rejection_reason: Optional[RejectionReason] = None
    violation: Optional[GuardrailViolation] = None
    request: ChangeRequest
    current_time_minutes: int
    is_peak_hour: bool
    applied_changes: list[AppliedChange] = Field(default_factory=list)

    # Record state after the decision. None when the access point is unknown.
    channel: Optional[int] = None
    power_db: Optional[int] = None
    last_change_time_minutes: Optional[int] = None

    message: str = ""

    def __bool__(self) -> bool:
        return self.accepted


# ---------------------------------------------------------------------------
# Safe Change Planner
# ---------------------------------------------------------------------------

class SafeChangePlanner:
    """
    Guardrail-gated writer for the NetworkStateStore.

    Args:
        store: The state store to read and mutate. A fresh one is created if omitted.
        policy: Guardrail parameters. Defaults to GuardrailPolicy().
    """

    def __init__(
        self,
        store: Optional[NetworkStateStore] = None,
        policy: Optional[GuardrailPolicy] = None,
    ) -> None:
        self.store = store if store is not None else NetworkStateStore()
        self.policy = policy or GuardrailPolicy()
        self.engine = GuardrailEngine(self.policy)

    # -----------------------------------------------------------------------
    # Fleet registration and queries
    # -----------------------------------------------------------------------

    def register_access_point(
        self,
        ap_id: str,
        channel: int,
        power_db: int,
        last_change_time_minutes: Optional[int] = None,
    ) -> AccessPoint:
        """
        Adds (or overwrites) an access point. Without an explicit
        `last_change_time_minutes` the record starts far enough in the past
        that its first change is never held back by the budget.
        """
        if last_change_time_minutes is None:
            last_change_time_minutes = self.policy.initial_change_time
        ap = AccessPoint(
            id=ap_id,
            channel=channel,
            power_db=power_db,
            last_change_time_minutes=last_change_time_minutes,
        )
        self.store.add(ap)
        return ap

    def query_access_point(self, ap_id: str) -> AccessPoint:
        """Snapshot of the current record. Raises AccessPointNotFound."""
        return self.store.get(ap_id)

    def preview(
        self,
        ap_id: str,
        request: ChangeRequest,
        current_time_minutes: int,
        is_peak_hour: bool,
    ) -> Optional[GuardrailViolation]:
        """Dry run of the rule chain against a snapshot. Never mutates state."""
        return self.engine.evaluate(
            self.store.get(ap_id), request, current_time_minutes, is_peak_hour
        )

    # -----------------------------------------------------------------------
    # Core operation
    # -----------------------------------------------------------------------

    def evaluate_and_apply(
        self,
        ap_id: str,
        request: ChangeRequest,
        current_time_minutes: int,
        is_peak_hour: bool,
    ) -> DecisionEvent:
        """
        Evaluates a change request and, if every guardrail passes, applies it.

        Args:
            ap_id: Target access point.
            request: Proposed channel and/or power change.
            current_time_minutes: Authoritative simulated time of the request.
            is_peak_hour: Caller-determined peak-hour flag.

        Returns:
            DecisionEvent: verdict, rejection reason and resulting record state.
        """
        logger.debug(
            "--- Processing request for %s at T=%d (peak=%s) ---",
            ap_id, current_time_minutes, is_peak_hour,
        )
        try:
            with self.store.checkout(ap_id) as ap:
                violation = self.engine.evaluate(ap, request, current_time_minutes, is_peak_hour)
                if violation is not None:
                    return self._reject(ap, request, current_time_minutes, is_peak_hour, violation)
                return self._apply(ap, request, current_time_minutes, is_peak_hour)
        except AccessPointNotFound as e:
            logger.error("[Planner] REJECT: %s", e)
            return DecisionEvent(
                ap_id=ap_id,
                outcome=DecisionOutcome.REJECTED_UNKNOWN_ACCESS_POINT,
                accepted=False,
                rejection_reason=RejectionReason.UNKNOWN_ACCESS_POINT,
                request=request,
                current_time_minutes=current_time_minutes,
                is_peak_hour=is_peak_hour,
                message=str(e),
            )

    # -----------------------------------------------------------------------
    # Internal: verdict handlers (called with the record lock held)
    # -----------------------------------------------------------------------

    def _reject(
        self,
        ap: AccessPoint,
        request: ChangeRequest,
        current_time_minutes: int,
        is_peak_hour: bool,
        violation: GuardrailViolation,
    ) -> DecisionEvent:
        logger.warning(
            "[GUARDRAIL VIOLATION] ap=%s rule=%s observed=%s limit=%s | %s",
            ap.id, violation.rule.value, violation.observed_value,
            violation.limit_value, violation.message,
        )
        return DecisionEvent(
            ap_id=ap.id,
            outcome=_OUTCOME_BY_REASON[violation.rule],
            accepted=False,
            rejection_reason=violation.rule,
            violation=violation,
            request=request,
            current_time_minutes=current_time_minutes,
            is_peak_hour=is_peak_hour,
            channel=ap.channel,
            power_db=ap.power_db,
            last_change_time_minutes=ap.last_change_time_minutes,
            message=violation.message,
        )

    def _apply(
        self,
        ap: AccessPoint,
        request: ChangeRequest,
        current_time_minutes: int,
        is_peak_hour: bool,
    ) -> DecisionEvent:
        logger.info("[Planner] ACCEPT: All guardrails passed for %s.", ap.id)

        applied: list[AppliedChange] = []
        if request.new_channel is not None and ap.channel != request.new_channel:
            applied.append(AppliedChange(field="channel", previous=ap.channel, new=request.new_channel))
            ap.channel = request.new_channel
            logger.info("[State]   %s applied channel -> %d", ap.id, ap.channel)

        if request.new_power_db is not None and ap.power_db != request.new_power_db:
            applied.append(AppliedChange(field="power_db", previous=ap.power_db, new=request.new_power_db))
            ap.power_db = request.new_power_db
            logger.info("[State]   %s applied power -> %ddB", ap.id, ap.power_db)

        if applied:
            ap.last_change_time_minutes = current_time_minutes
            outcome = DecisionOutcome.ACCEPTED_APPLIED
            message = f"Applied {', '.join(c.field for c in applied)} on {ap.id} at T={current_time_minutes}."
        else:
            outcome = DecisionOutcome.ACCEPTED_NO_CHANGE
            message = f"Request accepted for {ap.id} but no state change occurred."
            logger.info("[Planner] Info: %s", message)

        return DecisionEvent(
            ap_id=ap.id,
            outcome=outcome,
            accepted=True,
            state_changed=bool(applied),
            request=request,
            current_time_minutes=current_time_minutes,
            is_peak_hour=is_peak_hour,
            applied_changes=applied,
            channel=ap.channel,
            power_db=ap.power_db,
            last_change_time_minutes=ap.last_change_time_minutes,
            message=message,
        )
