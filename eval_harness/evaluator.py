"""
eval_harness/evaluator.py

Statistical Evaluation Harness for the SafeRRM Decision Ledger.

Parses one or more decision-ledger JSONL files and audits the change planner
after the fact. Designed for offline batch analysis: run it after a
simulation session to confirm no applied change slipped past a guardrail.

KPIs Computed:
  1. Decision outcome distribution.
  2. Change Budget Adherence: applied changes to the same access point are
     never closer together than the change budget. Must be 100%.
  3. Hysteresis Adherence: every applied power change moved by at least the
     hysteresis threshold. Must be 100%.
  4. Time Window Adherence: no non-emergency change was applied during peak
     hour. Must be 100%.
  5. Acceptance profile: acceptance rate, no-op share, rejection breakdown.
  6. Evaluation latency: p50/p95/p99 of evaluate_and_apply in microseconds.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import numpy as np

from rrm_node.config import CHANGE_BUDGET_MINUTES, HYSTERESIS_THRESHOLD_DB

# ---------------------------------------------------------------------------
# ANSI color helpers for terminal output
# ---------------------------------------------------------------------------
_RED = "\033[91m"
_GRN = "\033[92m"
_YLW = "\033[93m"
_BLU = "\033[94m"
_BOLD = "\033[1m"
_DIM = "\033[2m"
_RST = "\033[0m"

def _pass(v: str) -> str: return f"{_GRN}{_BOLD}{v}{_RST}"
def _fail(v: str) -> str: return f"{_RED}{_BOLD}{v}{_RST}"
def _warn(v: str) -> str: return f"{_YLW}{_BOLD}{v}{_RST}"
def _hdr(v: str) -> str:  return f"{_BLU}{_BOLD}{v}{_RST}"
def _dim(v: str) -> str:  return f"{_DIM}{v}{_RST}"


APPLIED_OUTCOME = "ACCEPTED_APPLIED"
NO_CHANGE_OUTCOME = "ACCEPTED_NO_CHANGE"
ACCEPTED_OUTCOMES = {APPLIED_OUTCOME, NO_CHANGE_OUTCOME}


# ---------------------------------------------------------------------------
# Log Parser
# ---------------------------------------------------------------------------

def load_records(log_paths: list[Path]) -> list[dict]:
    """
    Loads and parses all JSONL records from the provided ledger paths.
    Skips malformed lines with a warning rather than crashing.
    """
    records = []
    for path in log_paths:
        if not path.exists():
            print(f"{_warn('WARNING')} Log file not found: {path}")
            continue
        with open(path, encoding="utf-8") as f:
            for i, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError as e:
                    print(f"{_warn('WARNING')} Skipping malformed record at {path}:{i}: {e}")
                    continue
                if not isinstance(record, dict):
                    print(f"{_warn('WARNING')} Skipping non-object record at {path}:{i}")
                    continue
                # Ledgers written before session ids existed are scoped by file.
                if not record.get("session_id"):
                    record["session_id"] = str(path)
                records.append(record)
    return records


def _policy_value(record: dict, key: str, default: int) -> int:
    policy = record.get("policy") or {}
    value = policy.get(key)
    return default if value is None else int(value)


# ---------------------------------------------------------------------------
# KPI Computations
# ---------------------------------------------------------------------------

def outcome_distribution(records: list[dict]) -> dict[str, int]:
    """Counts occurrences of each DecisionOutcome across all records."""
    dist: dict[str, int] = {}
    for r in records:
        outcome = r.get("outcome", "UNKNOWN")
        dist[outcome] = dist.get(outcome, 0) + 1
    return dict(sorted(dist.items(), key=lambda x: x[1], reverse=True))


def change_budget_adherence(records: list[dict]) -> tuple[float, int, int]:
    """
    Change Budget Adherence Rate.

    Replays applied changes per (session, access point) in simulated-time
    order, since every session restarts its clock and reuses AP ids. A
    breach is an applied change whose distance from the previous applied
    change on the same AP is below the budget recorded with it. Records
    without a simulated time are skipped.

    Returns:
        (rate %, compliant intervals, total intervals). 100% when no AP had
        two applied changes.
    """
    applied_by_ap: dict[tuple[str, str], list[dict]] = {}
    for r in records:
        if r.get("outcome") != APPLIED_OUTCOME or r.get("current_time_minutes") is None:
            continue
        key = (r.get("session_id") or "", r.get("ap_id", ""))
        applied_by_ap.setdefault(key, []).append(r)

    total = 0
    breaches = 0
    for events in applied_by_ap.values():
        events.sort(key=lambda r: (r["current_time_minutes"], r.get("decision_timestamp_ns", 0)))
        for prev, curr in zip(events, events[1:]):
            total += 1
            budget = _policy_value(curr, "change_budget_minutes", CHANGE_BUDGET_MINUTES)
            if curr["current_time_minutes"] - prev["current_time_minutes"] < budget:
                breaches += 1

    compliant = total - breaches
    rate = (compliant / total * 100.0) if total > 0 else 100.0
    return rate, compliant, total


def hysteresis_adherence(records: list[dict]) -> tuple[float, int, int]:
    """Share of applied power changes whose delta met the hysteresis threshold."""
    total = 0
    compliant = 0
    for r in records:
        if r.get("outcome") != APPLIED_OUTCOME:
            continue
        threshold = _policy_value(r, "hysteresis_threshold_db", HYSTERESIS_THRESHOLD_DB)
        for change in r.get("applied_changes", []):
            if change.get("field") != "power_db":
                continue
            total += 1
            if abs(change["new"] - change["previous"]) >= threshold:
                compliant += 1
    rate = (compliant / total * 100.0) if total > 0 else 100.0
    return rate, compliant, total


def time_window_adherence(records: list[dict]) -> tuple[float, int, int]:
    """Share of peak-hour applied changes that carried the emergency flag."""
    peak_applied = [
        r for r in records
        if r.get("outcome") == APPLIED_OUTCOME and r.get("is_peak_hour")
    ]
    compliant = sum(1 for r in peak_applied if (r.get("request") or {}).get("is_emergency"))
    total = len(peak_applied)
    rate = (compliant / total * 100.0) if total > 0 else 100.0
    return rate, compliant, total


def acceptance_profile(records: list[dict]) -> dict:
    """Acceptance rate, no-op share of acceptances, and rejections by reason."""
    accepted = [r for r in records if r.get("outcome") in ACCEPTED_OUTCOMES]
    no_change = [r for r in accepted if r.get("outcome") == NO_CHANGE_OUTCOME]
    rejections: dict[str, int] = {}
    for r in records:
        reason = r.get("rejection_reason")
        if reason:
            rejections[reason] = rejections.get(reason, 0) + 1
    return {
        "total": len(records),
        "accepted": len(accepted),
        "acceptance_rate": (len(accepted) / len(records) * 100.0) if records else 0.0,
        "no_change": len(no_change),
        "no_change_share": (len(no_change) / len(accepted) * 100.0) if accepted else 0.0,
        "rejections": dict(sorted(rejections.items(), key=lambda x: x[1], reverse=True)),
    }


def latency_percentiles(values_us: list[float], label: str) -> dict:
    """Computes mean, p50, p95, p99 for a list of latency values (microseconds)."""
    if not values_us:
        return {"label": label, "count": 0, "p50_us": None, "p95_us": None, "p99_us": None, "mean_us": None}
    arr = np.array(values_us, dtype=float)
    return {
        "label": label,
        "count": len(arr),
        "mean_us": float(np.mean(arr)),
        "p50_us": float(np.percentile(arr, 50)),
        "p95_us": float(np.percentile(arr, 95)),
        "p99_us": float(np.percentile(arr, 99)),
    }


# ---------------------------------------------------------------------------
# Terminal Report Renderer
# ---------------------------------------------------------------------------

def _print_adherence(title: str, result: tuple[float, int, int], unit: str, empty: str) -> None:
    rate, compliant, total = result
    print(_hdr(title))
    if total == 0:
        print(f"  {_dim(empty)}")
    else:
        rate_str = f"{rate:.4f}%"
        status = _pass(f"PASS  {rate_str}") if rate == 100.0 else _fail(f"FAIL  {rate_str}")
        print(f"  {status} ({compliant}/{total} {unit})")
    print()


def print_report(records: list[dict], log_paths: list[Path]) -> None:
    """Renders the full KPI evaluation report to stdout."""

    W = 70
    SEP = "─" * W
    DBL = "═" * W

    print(f"\n{_hdr(DBL)}")
    print(_hdr(f"{'SafeRRM DECISION LEDGER EVALUATION REPORT':^{W}}"))
    print(_hdr(DBL))
    print(_dim(f"  Sources: {', '.join(str(p) for p in log_paths)}"))
    print(_dim(f"  Total records analysed: {len(records)}"))
    print(f"{_hdr(SEP)}\n")

    if not records:
        print(f"  {_warn('No records found. Run a simulation session first.')}\n")
        return

    # 1. Outcome distribution
    print(_hdr("1. DECISION OUTCOME DISTRIBUTION"))
    for outcome, count in outcome_distribution(records).items():
        pct = count / len(records) * 100
        bar = "█" * int(pct / 2)
        color = _GRN if outcome.startswith("ACCEPTED") else (_RED if "UNKNOWN" in outcome else _YLW)
        print(f"  {color}{outcome:<40}{_RST} {count:>5}  ({pct:5.1f}%)  {color}{bar}{_RST}")
    print()

    # 2-4. Guardrail adherence
    _print_adherence(
        "2. CHANGE BUDGET ADHERENCE  [Target: 100%]",
        change_budget_adherence(records),
        "consecutive applied changes spaced by the budget",
        "Fewer than two applied changes on any access point.",
    )
    _print_adherence(
        "3. HYSTERESIS ADHERENCE  [Target: 100%]",
        hysteresis_adherence(records),
        "applied power changes above threshold",
        "No applied power changes in log.",
    )
    _print_adherence(
        "4. TIME WINDOW ADHERENCE  [Target: 100%]",
        time_window_adherence(records),
        "peak-hour applied changes flagged emergency",
        "No changes applied during peak hour.",
    )

    # 5. Acceptance profile
    print(_hdr("5. ACCEPTANCE PROFILE"))
    profile = acceptance_profile(records)
    print(f"  Accepted        : {profile['accepted']}/{profile['total']} ({profile['acceptance_rate']:.1f}%)")
    print(f"  No-op accepted  : {profile['no_change']} ({profile['no_change_share']:.1f}% of acceptances)")
    for reason, count in profile["rejections"].items():
        print(f"  Rejected {reason:<24}: {count}")
    print()

    # 6. Evaluation latency
    print(_hdr("6. GUARDRAIL EVALUATION LATENCY"))
    latencies = [
        r["evaluation_latency_us"]
        for r in records
        if r.get("evaluation_latency_us") is not None
    ]
    gl = latency_percentiles(latencies, "SafeChangePlanner.evaluate_and_apply()")
    if gl["count"] > 0:
        p95 = f"{gl['p95_us']:,.1f} µs"
        print(f"  Samples  : {gl['count']:,}")
        print(f"  Mean     : {gl['mean_us']:,.1f} µs")
        print(f"  p50      : {gl['p50_us']:,.1f} µs")
        print(f"  p95      : {_warn(p95)}")
        print(f"  p99      : {gl['p99_us']:,.1f} µs")
    else:
        print(f"  {_dim('No latency data available.')}")
    print()

    print(f"{_hdr(DBL)}")
    print(_hdr(f"{'END OF REPORT':^{W}}"))
    print(f"{_hdr(DBL)}\n")


# ---------------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------------

def main(log_paths: Optional[list[Path]] = None) -> None:
    """
    CLI entry point. Accepts ledger paths as arguments, or defaults to
    scanning `logs/decisions/` for all JSONL files.

    Usage:
        python -m eval_harness.evaluator
        python -m eval_harness.evaluator logs/decisions/decisions_session1.jsonl
    """
    if log_paths is None:
        args = sys.argv[1:]
        if args:
            log_paths = [Path(a) for a in args]
        else:
            default_dir = Path("logs/decisions")
            log_paths = sorted(default_dir.glob("*.jsonl")) if default_dir.exists() else []
            if not log_paths:
                print(f"\n{_warn('No log files found.')}")
                print(_dim("  Run a simulation session first, then re-run the evaluator."))
                print(_dim(f"  Default search path: {default_dir.resolve()}"))
                return

    records = load_records(log_paths)
    print_report(records, log_paths)


if __name__ == "__main__":
    main()
