"""
run_simulation.py

End-to-end simulation session for the SafeRRM change planner.

Orchestrates a complete session:
  1. Registers the reference access point and replays the reference request
     sequence (budget, hysteresis, peak-hour and emergency cases)
  2. Starts the decision ledger (background thread)
  3. Builds a synthetic fleet and drives a random proposal feed through the planner
  4. Stops the ledger and flushes all records to JSONL
  5. Runs the evaluation harness on the generated ledger

Usage:
    python run_simulation.py
    python run_simulation.py --ticks 500 --aps 8 --seed 42
    SAFE_RRM_CHANGE_BUDGET_MINUTES=120 python run_simulation.py
"""

import argparse
import logging
import time
from pathlib import Path
from typing import Optional

from eval_harness.evaluator import main as run_evaluation
from rrm_node.change_planner import DecisionEvent, SafeChangePlanner
from rrm_node.config import GuardrailPolicy
from rrm_node.decision_ledger import DecisionLedger
from rrm_node.guardrails import ChangeRequest
from sim_engine.wifi_simulator import WifiNetworkSimulator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
)
logger = logging.getLogger("run_simulation")

_SEP = "─" * 60

# (label, request, current_time_minutes, is_peak_hour)
REFERENCE_SEQUENCE: list[tuple[str, ChangeRequest, int, bool]] = [
    ("TOO_SOON", ChangeRequest(new_channel=11), 100, False),
    ("AFTER_BUDGET", ChangeRequest(new_channel=11), 250, False),
    ("HYSTERESIS_SMALL", ChangeRequest(new_power_db=21), 500, False),
    ("HYSTERESIS_OK", ChangeRequest(new_power_db=22), 500, False),
    ("PEAK_HOUR", ChangeRequest(new_channel=1), 800, True),
    ("PEAK_EMERGENCY", ChangeRequest(new_channel=1, is_emergency=True), 800, True),
    ("CHANNEL_ONLY", ChangeRequest(new_channel=6), 1100, False),
]


def _submit(
    planner: SafeChangePlanner,
    ledger: DecisionLedger,
    ap_id: str,
    request: ChangeRequest,
    current_time_minutes: int,
    is_peak_hour: bool,
    label: str = "",
) -> DecisionEvent:
    """Run one request through the planner and record it in the ledger."""
    t0 = time.perf_counter()
    event = planner.evaluate_and_apply(ap_id, request, current_time_minutes, is_peak_hour)
    latency_us = (time.perf_counter() - t0) * 1_000_000

    ledger.log(event, evaluation_latency_us=latency_us, policy=planner.policy)

    tag = f"[{label}] " if label else ""
    if event.accepted:
        logger.info("%s%s T=%d %s | %s", tag, ap_id, current_time_minutes, event.outcome.value, event.message)
    else:
        logger.warning("%s%s T=%d %s", tag, ap_id, current_time_minutes, event.outcome.value)
    return event


def run(
    ticks: int = 200,
    ap_count: int = 5,
    seed: Optional[int] = None,
    log_dir: Path = Path("logs/decisions"),
    policy: Optional[GuardrailPolicy] = None,
) -> Path:
    """
    Executes a complete simulation session and returns the path to the
    generated decision ledger.
    """
    planner = SafeChangePlanner(policy=policy or GuardrailPolicy.from_env())
    ledger = DecisionLedger(log_dir=log_dir, session_tag="sim")
    ledger.start()

    # =========================================================================
    # PHASE A: Reference sequence on AP-REF (registered with its clock at T=0)
    # =========================================================================
    print(f"\n{_SEP}")
    print("  PHASE A: REFERENCE REQUEST SEQUENCE (AP-REF)")
    print(_SEP)
    planner.register_access_point("AP-REF", channel=6, power_db=20, last_change_time_minutes=0)
    for label, request, t, peak in REFERENCE_SEQUENCE:
        _submit(planner, ledger, "AP-REF", request, t, peak, label=label)

    # =========================================================================
    # PHASE B: Unknown access point
    # =========================================================================
    print(f"\n{_SEP}")
    print("  PHASE B: UNKNOWN ACCESS POINT")
    print(_SEP)
    _submit(planner, ledger, "AP-MISSING", ChangeRequest(new_channel=1), 0, False, label="UNKNOWN")

    # =========================================================================
    # PHASE C: Synthetic fleet with a random proposal feed
    # =========================================================================
    print(f"\n{_SEP}")
    print(f"  PHASE C: SYNTHETIC FLEET ({ap_count} APs, {ticks} proposals)")
    print(_SEP)
    sim = WifiNetworkSimulator(ap_count=ap_count, seed=seed)
    for member in sim.fleet:
        planner.register_access_point(member.ap_id, member.channel, member.power_db)
    for _ in range(ticks):
        proposal = sim.run_step()
        event = _submit(
            planner, ledger, proposal.ap_id, proposal.request,
            proposal.current_time_minutes, proposal.is_peak_hour, label="FEED",
        )
        sim.observe(proposal.ap_id, event.channel, event.power_db)

    ledger.stop()
    logger.info(
        "Simulation complete. Decision ledger: %s (%d records written)",
        ledger.log_path, ledger.records_written,
    )
    return ledger.log_path


def main() -> None:
    parser = argparse.ArgumentParser(description="SafeRRM change planner simulation + evaluation")
    parser.add_argument("--ticks", type=int, default=200, help="Number of synthetic proposals (default: 200)")
    parser.add_argument("--aps", type=int, default=5, help="Synthetic fleet size (default: 5)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for the proposal feed")
    parser.add_argument("--log-dir", type=Path, default=Path("logs/decisions"), help="Ledger directory")
    parser.add_argument("--no-eval", action="store_true", help="Skip the evaluation report")
    args = parser.parse_args()
    if args.aps < 1:
        parser.error("--aps must be at least 1")

    print(f"\n{'═' * 60}")
    print("  SafeRRM — Simulation Session")
    print(f"{'═' * 60}")

    log_path = run(ticks=args.ticks, ap_count=args.aps, seed=args.seed, log_dir=args.log_dir)

    if not args.no_eval:
        print(f"\n{'═' * 60}")
        print(f"  Running Evaluation Harness on: {log_path}")
        print(f"{'═' * 60}")
        run_evaluation(log_paths=[log_path])


if __name__ == "__main__":
    main()
