import pytest
from pydantic import ValidationError

from rrm_node.config import CHANGE_BUDGET_MINUTES, GuardrailPolicy
from rrm_node.state_store import AccessPoint, AccessPointNotFound, NetworkStateStore


def test_default_sentinel_precedes_budget():
    ap = AccessPoint(id="AP-001", channel=6, power_db=20)
    assert ap.last_change_time_minutes == -CHANGE_BUDGET_MINUTES - 1 == -241


def test_add_and_get_returns_snapshot():
    store = NetworkStateStore()
    store.add(AccessPoint(id="AP-001", channel=6, power_db=20))

    snap = store.get("AP-001")
    snap.channel = 99
    assert store.get("AP-001").channel == 6
    assert "AP-001" in store
    assert len(store) == 1


def test_add_keeps_its_own_copy():
    store = NetworkStateStore()
    ap = AccessPoint(id="AP-001", channel=6, power_db=20)
    store.add(ap)
    ap.channel = 1
    assert store.get("AP-001").channel == 6


def test_add_overwrites_existing_record():
    store = NetworkStateStore()
    store.add(AccessPoint(id="AP-001", channel=6, power_db=20, last_change_time_minutes=500))
    store.add(AccessPoint(id="AP-001", channel=11, power_db=15))
    ap = store.get("AP-001")
    assert (ap.channel, ap.power_db, ap.last_change_time_minutes) == (11, 15, -241)
    assert store.ids() == ["AP-001"]


def test_get_unknown_raises_not_found():
    store = NetworkStateStore()
    with pytest.raises(AccessPointNotFound) as exc:
        store.get("AP-404")
    assert isinstance(exc.value, KeyError)
    assert exc.value.ap_id == "AP-404"


def test_checkout_mutates_live_record():
    store = NetworkStateStore()
    store.add(AccessPoint(id="AP-001", channel=6, power_db=20))
    with store.checkout("AP-001") as ap:
        ap.power_db = 23
    assert store.get("AP-001").power_db == 23

    with pytest.raises(AccessPointNotFound):
        with store.checkout("AP-404"):
            pass


def test_add_notifies_subscribers():
    store = NetworkStateStore()
    seen = []
    store.subscribe(seen.append)
    store.add(AccessPoint(id="AP-001", channel=6, power_db=20))
    store.add(AccessPoint(id="AP-002", channel=1, power_db=12))
    assert [ap.id for ap in seen] == ["AP-001", "AP-002"]

    seen[0].channel = 11
    assert store.get("AP-001").channel == 6


def test_policy_from_env():
    policy = GuardrailPolicy.from_env({
        "SAFE_RRM_CHANGE_BUDGET_MINUTES": "120",
        "SAFE_RRM_HYSTERESIS_THRESHOLD_DB": "3",
    })
    assert policy.change_budget_minutes == 120
    assert policy.hysteresis_threshold_db == 3
    assert policy.initial_change_time == -121

    assert GuardrailPolicy.from_env({}) == GuardrailPolicy()


def test_policy_rejects_invalid_values():
    with pytest.raises(ValidationError):
        GuardrailPolicy(change_budget_minutes=-1)
    with pytest.raises(ValidationError):
        GuardrailPolicy.from_env({"SAFE_RRM_HYSTERESIS_THRESHOLD_DB": "loud"})


def test_unknown_lookups_do_not_register_locks():
    store = NetworkStateStore()
    for i in range(100):
        with pytest.raises(AccessPointNotFound):
            store.get(f"BOGUS-{i}")
        with pytest.raises(AccessPointNotFound):
            with store.checkout(f"BOGUS-{i}"):
                pass
    assert store._key_locks == {}

    store.add(AccessPoint(id="AP-001", channel=6, power_db=20))
    assert list(store._key_locks) == ["AP-001"]


def test_failing_listener_does_not_break_add(caplog):
    store = NetworkStateStore()
    seen = []

    def broken(ap):
        raise RuntimeError("telemetry sink down")

    store.subscribe(broken)
    store.subscribe(seen.append)
    store.add(AccessPoint(id="AP-001", channel=6, power_db=20))

    assert store.get("AP-001").channel == 6
    assert [ap.id for ap in seen] == ["AP-001"]
    assert "Listener failed for AP AP-001" in caplog.text
