"""
rrm_node/decision_ledger.py

Decision Ledger: append-only audit trail of every change-planner verdict.

Every DecisionEvent emitted by the SafeChangePlanner can be captured here.
The ledger is the forensic record of which radio changes were admitted,
which guardrail vetoed the others, and how long evaluation took:

  1. Chronological audit trail (JSONL format, append-only)
  2. Applied field deltas and post-decision record state per access point
  3. The guardrail policy in force when the decision was made
  4. Evaluation latency of the planner call

Logging must not add blocking I/O to the caller's request path. Disk writes
run on a dedicated background thread fed by a bounded queue.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rrm_node.change_planner import DecisionEvent
from rrm_node.config import GuardrailPolicy

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Log Record Schema
# ---------------------------------------------------------------------------

def build_ledger_record(
    event: DecisionEvent,
    evaluation_latency_us: Optional[float],
    policy: Optional[GuardrailPolicy],
    session_id: Optional[str] = None,
) -> dict:
    """
    Canonical ledger record for one DecisionEvent.

    All wall-clock timestamps are UTC ISO-8601; `current_time_minutes` is the
    caller's simulated clock, which restarts with every session, so
    `session_id` scopes it. Latencies are in microseconds.
    """
    violation = None
    if event.violation is not None:
        violation = {
            "rule": event.violation.rule.value,
            "observed_value": event.violation.observed_value,
            "limit_value": event.violation.limit_value,
            "message": event.violation.message,
        }

    return {
        "schema_version": SCHEMA_VERSION,
        "session_id": session_id,
        "logged_at_utc": datetime.now(timezone.utc).isoformat(),
        "decision_timestamp_ns": event.timestamp_ns,
        "ap_id": event.ap_id,
        "outcome": event.outcome.value,
        "accepted": event.accepted,
        "state_changed": event.state_changed,
        "rejection_reason": event.rejection_reason.value if event.rejection_reason else None,
        "current_time_minutes": event.current_time_minutes,
        "is_peak_hour": event.is_peak_hour,
        "request": event.request.model_dump(),
        "applied_changes": [c.model_dump() for c in event.applied_changes],
        "state": {
            "channel": event.channel,
            "power_db": event.power_db,
            "last_change_time_minutes": event.last_change_time_minutes,
        },
        "violation": violation,
        "policy": policy.model_dump() if policy is not None else None,
        "evaluation_latency_us": evaluation_latency_us,
        "message": event.message,
    }


# ---------------------------------------------------------------------------
# Decision Ledger
# ---------------------------------------------------------------------------

class DecisionLedger:
    """
    Append-only JSONL writer for DecisionEvents, backed by a worker thread.

    Usage:
        ledger = DecisionLedger(log_dir=Path("logs/decisions"))
        ledger.start()
        ledger.log(event, evaluation_latency_us=12.5, policy=planner.policy)
        ledger.stop()  # Flushes all pending records

    Args:
        log_dir: Directory for ledger files. Created if absent.
        max_queue_size: Max unwritten records before records are dropped.
        session_tag: Optional tag embedded in the file name.
    """

    def __init__(
        self,
        log_dir: Path = Path("logs/decisions"),
        max_queue_size: int = 10_000,
        session_tag: Optional[str] = None,
    ) -> None:
        self.log_dir = log_dir
        self.log_dir.mkdir(parents=True, exist_ok=True)

        tag = f"_{session_tag}" if session_tag else ""
        ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        self.session_id = uuid.uuid4().hex
        self.log_path = self.log_dir / f"decisions{tag}_{ts}_{self.session_id[:8]}.jsonl"

        self._queue: queue.Queue[Optional[dict]] = queue.Queue(maxsize=max_queue_size)
        self._worker = threading.Thread(target=self._write_worker, daemon=True, name="DecisionLedgerWorker")

        self.records_written: int = 0
        self.records_dropped: int = 0

        logger.info("Decision ledger initialized. Log path: %s", self.log_path)

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def start(self) -> None:
        self._worker.start()
        logger.info("Decision ledger started (background thread active).")

    def stop(self, timeout_s: float = 5.0) -> None:
        """Flushes queued records and joins the worker for up to `timeout_s` seconds."""
        logger.info("Decision ledger shutdown requested. Flushing queue...")
        self._queue.put(None)
        self._worker.join(timeout=timeout_s)
        logger.info(
            "Decision ledger stopped. Records written: %d | Dropped: %d",
            self.records_written, self.records_dropped,
        )

    def __enter__(self) -> "DecisionLedger":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    # -----------------------------------------------------------------------
    # Public API: non-blocking submission
    # -----------------------------------------------------------------------

    def log(
        self,
        event: DecisionEvent,
        evaluation_latency_us: Optional[float] = None,
        policy: Optional[GuardrailPolicy] = None,
    ) -> None:
        """
        Enqueues a DecisionEvent for serialization. Never blocks.
        If the queue is full the record is dropped and counted in `records_dropped`.
        """
        record = build_ledger_record(event, evaluation_latency_us, policy, session_id=self.session_id)
        try:
            self._queue.put_nowait(record)
        except queue.Full:
            self.records_dropped += 1
            logger.warning(
                "Decision ledger queue full, record dropped. Total dropped: %d. "
                "Consider increasing max_queue_size.",
                self.records_dropped,
            )

    # -----------------------------------------------------------------------
    # Background writer thread
    # -----------------------------------------------------------------------

    def _write_worker(self) -> None:
        """Drains the queue into the JSONL file until the None sentinel arrives."""
        with open(self.log_path, "a", encoding="utf-8", buffering=1) as f:
            while True:
                try:
                    record = self._queue.get(timeout=1.0)
                except queue.Empty:
                    continue

                if record is None:
                    while not self._queue.empty():
                        try:
                            remaining = self._queue.get_nowait()
                        except queue.Empty:
                            break
                        if remaining is not None:
                            f.write(json.dumps(remaining) + "\n")
                            self.records_written += 1
                    break

                f.write(json.dumps(record) + "\n")
                self.records_written += 1
