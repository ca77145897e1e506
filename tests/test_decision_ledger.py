import json

from rrm_node.change_planner import SafeChangePlanner
from rrm_node.config import GuardrailPolicy
from rrm_node.decision_ledger import DecisionLedger, build_ledger_record
from rrm_node.guardrails import ChangeRequest


def _planner():
    planner = SafeChangePlanner()
    planner.register_access_point("AP-001", channel=6, power_db=20, last_change_time_minutes=0)
    return planner


def test_record_schema_for_rejection():
    planner = _planner()
    event = planner.evaluate_and_apply("AP-001", ChangeRequest(new_power_db=21), 300, False)
    record = build_ledger_record(event, evaluation_latency_us=12.5, policy=planner.policy)

    assert record["outcome"] == "REJECTED_HYSTERESIS"
    assert record["rejection_reason"] == "HYSTERESIS_TOO_SMALL"
    assert record["violation"]["observed_value"] == 1
    assert record["violation"]["limit_value"] == 2
    assert record["request"] == {"new_channel": None, "new_power_db": 21, "is_emergency": False}
    assert record["state"] == {"channel": 6, "power_db": 20, "last_change_time_minutes": 0}
    assert record["policy"] == {"change_budget_minutes": 240, "hysteresis_threshold_db": 2}
    json.dumps(record)


def test_record_schema_for_applied_change():
    planner = _planner()
    event = planner.evaluate_and_apply("AP-001", ChangeRequest(new_channel=11), 250, False)
    record = build_ledger_record(event, evaluation_latency_us=None, policy=None)

    assert record["accepted"] is True
    assert record["state_changed"] is True
    assert record["applied_changes"] == [{"field": "channel", "previous": 6, "new": 11}]
    assert record["violation"] is None
    assert record["policy"] is None


def test_ledger_writes_jsonl(tmp_path):
    planner = _planner()
    ledger = DecisionLedger(log_dir=tmp_path / "decisions", session_tag="test")
    ledger.start()
    for t, channel in ((100, 11), (250, 11), (300, 11)):
        event = planner.evaluate_and_apply("AP-001", ChangeRequest(new_channel=channel), t, False)
        ledger.log(event, evaluation_latency_us=5.0, policy=planner.policy)
    ledger.stop()

    assert ledger.log_path.name.startswith("decisions_test_")
    lines = ledger.log_path.read_text(encoding="utf-8").splitlines()
    outcomes = [json.loads(line)["outcome"] for line in lines]
    assert outcomes == ["REJECTED_CHANGE_BUDGET", "ACCEPTED_APPLIED", "REJECTED_CHANGE_BUDGET"]
    assert ledger.records_written == 3
    assert ledger.records_dropped == 0


def test_ledger_drops_when_queue_full(tmp_path):
    planner = SafeChangePlanner(policy=GuardrailPolicy())
    event = planner.evaluate_and_apply("AP-404", ChangeRequest(), 0, False)

    # Not started: nothing drains the queue
    ledger = DecisionLedger(log_dir=tmp_path, max_queue_size=2)
    for _ in range(5):
        ledger.log(event)
    assert ledger.records_dropped == 3


def test_ledger_context_manager_flushes(tmp_path):
    planner = _planner()
    with DecisionLedger(log_dir=tmp_path) as ledger:
        ledger.log(planner.evaluate_and_apply("AP-001", ChangeRequest(new_channel=1), 300, False))
    assert ledger.records_written == 1
    record = json.loads(ledger.log_path.read_text(encoding="utf-8"))
    assert record["outcome"] == "ACCEPTED_APPLIED"
    assert record["evaluation_latency_us"] is None


def test_ledger_stamps_session_id(tmp_path):
    planner = _planner()
    a = DecisionLedger(log_dir=tmp_path, session_tag="same")
    b = DecisionLedger(log_dir=tmp_path, session_tag="same")
    assert a.session_id != b.session_id
    assert a.log_path != b.log_path

    with a:
        a.log(planner.evaluate_and_apply("AP-001", ChangeRequest(new_channel=1), 300, False))
    record = json.loads(a.log_path.read_text(encoding="utf-8"))
    assert record["session_id"] == a.session_id
