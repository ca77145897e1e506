import pytest

from rrm_node.change_planner import SafeChangePlanner
from sim_engine.wifi_simulator import CHANNELS_2G4, POWER_RANGE_DB, WifiNetworkSimulator


def test_fleet_is_deterministic_per_seed():
    a = WifiNetworkSimulator(ap_count=4, seed=3)
    b = WifiNetworkSimulator(ap_count=4, seed=3)
    assert a.fleet == b.fleet
    assert [m.ap_id for m in a.fleet] == ["AP-001", "AP-002", "AP-003", "AP-004"]
    for m in a.fleet:
        assert m.channel in CHANNELS_2G4
        assert POWER_RANGE_DB[0] <= m.power_db <= POWER_RANGE_DB[1]


def test_peak_hour_window():
    sim = WifiNetworkSimulator(peak_hours=(17, 22))
    assert not sim.is_peak_hour(16 * 60 + 59)
    assert sim.is_peak_hour(17 * 60)
    assert sim.is_peak_hour(21 * 60 + 59)
    assert not sim.is_peak_hour(22 * 60)
    assert sim.is_peak_hour(24 * 60 + 18 * 60)


def test_run_step_advances_clock():
    sim = WifiNetworkSimulator(ap_count=2, step_minutes=15, seed=1)
    first = sim.run_step()
    second = sim.run_step()
    assert first.current_time_minutes == 15
    assert second.current_time_minutes == 30
    assert first.ap_id in {"AP-001", "AP-002"}


def test_feed_through_planner_respects_guardrails():
    sim = WifiNetworkSimulator(ap_count=3, step_minutes=45, seed=11)
    planner = SafeChangePlanner()
    for m in sim.fleet:
        planner.register_access_point(m.ap_id, m.channel, m.power_db)

    last_applied: dict[str, int] = {}
    for _ in range(300):
        p = sim.run_step()
        event = planner.evaluate_and_apply(p.ap_id, p.request, p.current_time_minutes, p.is_peak_hour)
        sim.observe(p.ap_id, event.channel, event.power_db)
        if event.state_changed:
            if p.ap_id in last_applied:
                assert p.current_time_minutes - last_applied[p.ap_id] >= 240
            if p.is_peak_hour:
                assert p.request.is_emergency
            last_applied[p.ap_id] = p.current_time_minutes

    assert last_applied


def test_empty_fleet_rejected():
    with pytest.raises(ValueError):
        WifiNetworkSimulator(ap_count=0)
